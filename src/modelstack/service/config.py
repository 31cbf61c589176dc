"""
Service settings and config-directory loading.

Layout of a config directory:

    <config_dir>/
        datasources.json   (or datasources.yaml)
        models/
            note.json
            user.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.defs import DataSourceConfig, ModelConfig
from ..core.errors import ModelConfigError

logger = logging.getLogger(__name__)


class AppSettings(BaseSettings):
    """Service settings loaded from environment variables (prefix MODELSTACK_)."""

    model_config = SettingsConfigDict(
        env_prefix="MODELSTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service
    service_name: str = "modelstack"
    debug: bool = False
    log_level: str = "INFO"

    # REST
    rest_api_root: str = "/api/v1"
    host: str = "0.0.0.0"
    port: int = 8023

    # Auth
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    default_acl_permission: str = "DENY"

    # Models
    config_dir: str = "server"
    disable_cache: bool = False
    strict_single_related_document_check: bool = False


def _read_document(path: Path) -> Any:
    text = path.read_text()
    if path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def load_model_configs(config_dir: Path | str) -> list[ModelConfig]:
    """
    Load every model definition under ``<config_dir>/models``.

    Raises:
        ModelConfigError: listing every file that failed to parse
    """
    models_dir = Path(config_dir) / "models"
    if not models_dir.is_dir():
        logger.warning(f"No models directory at {models_dir}")
        return []

    configs: list[ModelConfig] = []
    errors: list[str] = []
    for path in sorted(models_dir.iterdir()):
        if path.suffix not in (".json", ".yaml", ".yml"):
            continue
        try:
            configs.append(ModelConfig.model_validate(_read_document(path)))
        except (ValueError, ValidationError, yaml.YAMLError) as e:
            errors.append(f"{path.name}: {e}")
    if errors:
        raise ModelConfigError("Invalid model definitions", errors)

    logger.info(f"Loaded {len(configs)} model definitions from {models_dir}")
    return configs


def load_datasource_configs(config_dir: Path | str) -> dict[str, DataSourceConfig]:
    """
    Load ``datasources.json`` (or ``.yaml``): a mapping name -> datasource.

    Raises:
        ModelConfigError: if the file is missing or invalid
    """
    base = Path(config_dir)
    path: Optional[Path] = None
    for name in ("datasources.json", "datasources.yaml", "datasources.yml"):
        if (base / name).is_file():
            path = base / name
            break
    if path is None:
        raise ModelConfigError(f"No datasources file in {base}")

    try:
        raw = _read_document(path) or {}
    except (ValueError, yaml.YAMLError) as e:
        raise ModelConfigError(f"Invalid datasources file {path.name}: {e}")
    if not isinstance(raw, dict):
        raise ModelConfigError(f"{path.name} must map datasource names to definitions")

    datasources: dict[str, DataSourceConfig] = {}
    errors: list[str] = []
    for name, data in raw.items():
        try:
            datasources[name] = DataSourceConfig.model_validate({"name": name, **(data or {})})
        except ValidationError as e:
            errors.append(f"{name}: {e}")
    if errors:
        raise ModelConfigError("Invalid datasource definitions", errors)
    return datasources
