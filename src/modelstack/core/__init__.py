"""
Core: configuration definitions, errors, filter types and the filter compiler.

The registry lives in ``modelstack.core.registry`` and is imported from
there; it depends on the runtime package.
"""

from .compiler import FilterCompiler
from .dates import resolve_special_date
from .defs import (
    AclRule,
    CacheDef,
    DataSourceConfig,
    ModelConfig,
    PropertyDef,
    RelationDef,
)
from .errors import (
    CacheUnsupportedError,
    DeleteManyLookupError,
    DisconnectionError,
    IncludeCycleError,
    InternalError,
    InvalidConnectorError,
    InvalidFilterError,
    InvalidInputError,
    ModelConfigError,
    ModelNotFoundError,
    ModelStackError,
    NotFoundError,
    TypeMismatchError,
    UnauthorizedError,
)
from .query_types import Filter, IncludeItem

__all__ = [
    "AclRule",
    "CacheDef",
    "CacheUnsupportedError",
    "DataSourceConfig",
    "DeleteManyLookupError",
    "DisconnectionError",
    "Filter",
    "FilterCompiler",
    "IncludeCycleError",
    "IncludeItem",
    "InternalError",
    "InvalidConnectorError",
    "InvalidFilterError",
    "InvalidInputError",
    "ModelConfig",
    "ModelConfigError",
    "ModelNotFoundError",
    "ModelStackError",
    "NotFoundError",
    "PropertyDef",
    "RelationDef",
    "TypeMismatchError",
    "UnauthorizedError",
    "resolve_special_date",
]
