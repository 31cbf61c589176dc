"""
modelstack - declarative model-driven data service.

JSON model definitions (properties, relations, ACLs, cache policy) become a
REST API backed by a document store, with per-operation authorization and
an in-process key/value cache.

Usage:
    from modelstack import AppSettings, create_app

    app = create_app(AppSettings(config_dir="server"))
"""

from __future__ import annotations

from .core import (
    AclRule,
    CacheDef,
    DataSourceConfig,
    Filter,
    FilterCompiler,
    ModelConfig,
    ModelStackError,
    PropertyDef,
    RelationDef,
)
from .core.registry import ModelRegistry
from .datasource import (
    Connector,
    DeleteResult,
    DocumentStoreConnector,
    MemoryKVConnector,
    RedisKVConnector,
    create_connector,
)
from .kv import KVDatabase
from .runtime import EventContext, Instance, Model, Principal
from .service import AppSettings, create_app

__version__ = "0.1.0"

__all__ = [
    "AclRule",
    "AppSettings",
    "CacheDef",
    "Connector",
    "DataSourceConfig",
    "DeleteResult",
    "DocumentStoreConnector",
    "EventContext",
    "Filter",
    "FilterCompiler",
    "Instance",
    "KVDatabase",
    "MemoryKVConnector",
    "Model",
    "ModelConfig",
    "ModelRegistry",
    "ModelStackError",
    "Principal",
    "PropertyDef",
    "RedisKVConnector",
    "RelationDef",
    "create_app",
    "create_connector",
]
