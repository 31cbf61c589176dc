"""
Service layer: settings, config loading and the FastAPI app factory.
"""

from .app import HealthcheckLogFilter, build_registry, configure_logging, create_app
from .config import AppSettings, load_datasource_configs, load_model_configs

__all__ = [
    "AppSettings",
    "HealthcheckLogFilter",
    "build_registry",
    "configure_logging",
    "create_app",
    "load_datasource_configs",
    "load_model_configs",
]
