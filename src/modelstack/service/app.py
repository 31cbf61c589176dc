"""
Service app factory for modelstack.

Creates a pre-configured FastAPI application with:
- Connectors for every configured datasource (connected on startup)
- A resolved model registry and the REST routes of its public models
- CORS middleware and a health check endpoint
- Logging filter to suppress noisy healthcheck logs
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Iterable, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..api.router import create_rest_router, get_registry, install_error_handlers
from ..core.defs import DataSourceConfig, ModelConfig
from ..core.registry import ModelRegistry
from ..datasource.base import Connector
from ..datasource.factory import create_connector
from .config import AppSettings, load_datasource_configs, load_model_configs

logger = logging.getLogger(__name__)


class HealthcheckLogFilter(logging.Filter):
    """Filter out noisy healthcheck logs."""

    FILTERED_PATHS = ("/health",)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        for path in self.FILTERED_PATHS:
            if f'"{path}' in message or f" {path} " in message:
                return False
        return True


def configure_logging(level: str = "INFO") -> None:
    """Basic log format plus the uvicorn access filter."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn_access = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, HealthcheckLogFilter) for f in uvicorn_access.filters):
        uvicorn_access.addFilter(HealthcheckLogFilter())


def build_registry(
    settings: AppSettings,
    model_configs: Iterable[ModelConfig],
    connectors: dict[str, Connector],
) -> ModelRegistry:
    """Load and resolve the registry for the given models and connectors."""
    registry = ModelRegistry(
        connectors,
        strict_single_related_document_check=settings.strict_single_related_document_check,
        disable_cache=settings.disable_cache,
        default_acl_permission=settings.default_acl_permission,
    )
    registry.load(model_configs)
    registry.resolve()
    return registry


async def _call_hook(hook: Optional[Callable], *args) -> None:
    if hook is None:
        return
    if asyncio.iscoroutinefunction(hook):
        await hook(*args)
    else:
        hook(*args)


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    model_configs: Optional[Iterable[ModelConfig]] = None,
    datasource_configs: Optional[dict[str, DataSourceConfig]] = None,
    connectors: Optional[dict[str, Connector]] = None,
    setup: Optional[Callable[[ModelRegistry], None]] = None,
    on_startup: Optional[Callable] = None,
    on_shutdown: Optional[Callable] = None,
) -> FastAPI:
    """
    Create the FastAPI app for a set of models.

    Args:
        settings: Service settings (defaults to environment)
        model_configs: Model definitions (defaults to ``<config_dir>/models``)
        datasource_configs: Datasource definitions (defaults to ``<config_dir>/datasources.json``)
        connectors: Pre-built connectors by datasource name, used as-is
        setup: Called with the resolved registry, e.g. to register event handlers
        on_startup: Additional startup hook
        on_shutdown: Additional shutdown hook

    Returns:
        Configured FastAPI application
    """
    settings = settings or AppSettings()
    configure_logging(settings.log_level)

    if model_configs is None:
        model_configs = load_model_configs(settings.config_dir)
    model_configs = list(model_configs)

    all_connectors: dict[str, Connector] = dict(connectors or {})
    if datasource_configs is None and connectors is None:
        datasource_configs = load_datasource_configs(settings.config_dir)
    for name, config in (datasource_configs or {}).items():
        if name not in all_connectors:
            all_connectors[name] = create_connector(config)

    registry = build_registry(settings, model_configs, all_connectors)
    if setup is not None:
        setup(registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        for connector in all_connectors.values():
            await connector.connect()
        await _call_hook(on_startup, registry)

        yield

        # Shutdown
        await _call_hook(on_shutdown, registry)
        for connector in all_connectors.values():
            try:
                await connector.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting datasource '{connector.name}': {e}")

    app = FastAPI(
        title=f"{settings.service_name.replace('_', ' ').title()} Service",
        version="1.0.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.connectors = all_connectors

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)
    app.include_router(create_rest_router(registry, settings.rest_api_root))

    @app.get("/health")
    async def health_check(registry: ModelRegistry = Depends(get_registry)):
        return {
            "status": "ok",
            "service": settings.service_name,
            "models": len(registry),
            "datasources": {
                name: connector.is_connected for name, connector in all_connectors.items()
            },
        }

    return app
