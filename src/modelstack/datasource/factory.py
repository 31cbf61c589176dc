"""
Connector factory keyed by the datasource ``connector`` field.
"""

from __future__ import annotations

from ..core.defs import DataSourceConfig
from ..core.errors import InvalidConnectorError
from .base import Connector
from .memorykv import MemoryKVConnector
from .mongo import DocumentStoreConnector
from .redis_kv import RedisKVConnector

CONNECTORS: dict[str, type[Connector]] = {
    "documentStore": DocumentStoreConnector,
    "mongodb": DocumentStoreConnector,
    "memorykv": MemoryKVConnector,
    "redis": RedisKVConnector,
}


def create_connector(config: DataSourceConfig) -> Connector:
    """
    Instantiate the connector for a datasource config.

    Raises:
        InvalidConnectorError: if the connector name is unknown
    """
    connector_cls = CONNECTORS.get(config.connector)
    if connector_cls is None:
        raise InvalidConnectorError(f"invalid connector {config.connector}")
    return connector_cls(config)
