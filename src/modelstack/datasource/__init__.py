"""
Datasource connectors: document store, in-process KV and Redis.
"""

from .base import Connector, Cursor, DeleteResult, ListCursor, validate_where_lookups
from .factory import create_connector
from .memorykv import MemoryKVConnector
from .mongo import DocumentStoreConnector
from .redis_kv import RedisKVConnector

__all__ = [
    "Connector",
    "Cursor",
    "DeleteResult",
    "DocumentStoreConnector",
    "ListCursor",
    "MemoryKVConnector",
    "RedisKVConnector",
    "create_connector",
    "validate_where_lookups",
]
