"""
Model registry - loads model configs and resolves them against each other
and against the configured datasources.

Registration is two-phase: ``load`` creates a Model per config, ``resolve``
checks every relation target and datasource reference (reporting all
problems at once), then binds connectors, authorizers, guards and caches.
Models refuse to run operations until the registry is resolved.

Usage:
    from modelstack.core.registry import ModelRegistry

    registry = ModelRegistry({"db": mongo, "cache": kv})
    registry.load([note_config, user_config])
    registry.resolve()

    notes = await registry.get("Note").find_many({"include": ["author"]})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional, Union

from ..datasource.base import Connector
from ..iam.guard import install_guards
from ..iam.service import Authorizer
from ..runtime.cache import CacheCoordinator
from ..runtime.instance import InstanceBuilder
from ..runtime.model import Model
from .compiler import FilterCompiler
from .dates import Clock
from .defs import ModelConfig
from .errors import CacheUnsupportedError, ModelConfigError, ModelNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ResolutionError:
    """Single resolution error."""
    model: Optional[str]
    field: Optional[str]
    message: str

    def __str__(self) -> str:
        location = ".".join(part for part in (self.model, self.field) if part) or "global"
        return f"[{location}] {self.message}"


class ModelRegistry:
    """
    Registry of models bound to datasources.

    Args:
        datasources: Connectors by datasource name
        strict_single_related_document_check: Raise instead of warn on
            duplicate single related documents
        disable_cache: Bypass every model cache
        default_acl_permission: Permission applied when no ACL rule matches
        clock: Clock for special date placeholders
    """

    def __init__(
        self,
        datasources: Optional[dict[str, Connector]] = None,
        *,
        strict_single_related_document_check: bool = False,
        disable_cache: bool = False,
        default_acl_permission: str = "DENY",
        clock: Optional[Clock] = None,
    ):
        self.datasources: dict[str, Connector] = dict(datasources or {})
        self.disable_cache = disable_cache
        self.default_acl_permission = default_acl_permission
        self.compiler = FilterCompiler(self, clock)
        self.builder = InstanceBuilder(self, strict=strict_single_related_document_check)
        self._models: dict[str, Model] = {}
        self.resolved = False

    # =========================================================================
    # Loading
    # =========================================================================

    def register(self, config: Union[ModelConfig, dict[str, Any]]) -> Model:
        if isinstance(config, dict):
            config = ModelConfig.model_validate(config)
        if config.name in self._models:
            raise ModelConfigError(f"Model '{config.name}' is already registered")
        model = Model(config, self)
        self._models[config.name] = model
        self.resolved = False
        logger.debug(f"Registered model '{config.name}'")
        return model

    def load(self, configs: Iterable[Union[ModelConfig, dict[str, Any]]]) -> list[Model]:
        return [self.register(config) for config in configs]

    # =========================================================================
    # Resolution
    # =========================================================================

    def validate(self) -> list[ResolutionError]:
        """Collect every unresolved reference without binding anything."""
        errors: list[ResolutionError] = []
        for model in self._models.values():
            config = model.config
            if config.data_source not in self.datasources:
                errors.append(ResolutionError(
                    config.name, None, f"datasource '{config.data_source}' is not configured",
                ))
            for name, relation in config.relations.items():
                if relation.model not in self._models:
                    errors.append(ResolutionError(
                        config.name, name, f"relation target '{relation.model}' is not registered",
                    ))
            if config.cache is not None and config.cache.datasource not in self.datasources:
                errors.append(ResolutionError(
                    config.name, "cache", f"cache datasource '{config.cache.datasource}' is not configured",
                ))
        return errors

    def resolve(self) -> None:
        """
        Validate all models and bind their runtime collaborators.

        Raises:
            ModelConfigError: listing every resolution error
        """
        errors = self.validate()
        if errors:
            raise ModelConfigError("Model registry resolution failed", [str(e) for e in errors])

        cache_errors: list[str] = []
        for model in self._models.values():
            config = model.config
            model.connector = self.datasources[config.data_source]
            if model.authorizer is None:
                model.authorizer = Authorizer(config.name, config.acls, self.default_acl_permission)
                install_guards(model, model.authorizer)
            if config.cache is not None:
                try:
                    model.cache = CacheCoordinator(
                        config.name,
                        config.cache,
                        self.datasources[config.cache.datasource],
                        disable_cache=self.disable_cache,
                    )
                except CacheUnsupportedError as e:
                    cache_errors.append(f"[{config.name}.cache] {e.message}")
        if cache_errors:
            raise ModelConfigError("Model registry resolution failed", cache_errors)

        self.resolved = True
        logger.info(f"Resolved {len(self._models)} models")

    # =========================================================================
    # Access
    # =========================================================================

    def get(self, name: str) -> Model:
        model = self._models.get(name)
        if model is None:
            raise ModelNotFoundError(name)
        return model

    def get_config(self, name: str) -> ModelConfig:
        return self.get(name).config

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[Model]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    @property
    def models(self) -> dict[str, Model]:
        return dict(self._models)

    def public_models(self) -> list[Model]:
        return [model for model in self._models.values() if model.config.public]
