"""
Cache connector backed by a Redis server.

Same contract as the memory KV connector: blobs are BSON documents stored
as a Redis list under ``<collection>:<key>``.

Usage:
    connector = RedisKVConnector(DataSourceConfig(name="cache", connector="redis", url="redis://redis:6379/0"))
    await connector.connect()
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from ..core.defs import DataSourceConfig
from ..core.errors import CacheUnsupportedError, DatasourceConnectionError, DisconnectionError
from .base import Connector, Cursor, DeleteResult, ListCursor, validate_where_lookups
from .memorykv import (
    ENTRIES_FIELD,
    KEY_FIELD,
    decode_entries,
    encode_entries,
    key_from_pipeline,
    key_to_string,
    split_entry_document,
)

logger = logging.getLogger(__name__)


def build_redis_url(config: DataSourceConfig) -> str:
    if config.url:
        return config.url
    port = config.port or 6379
    return f"redis://{config.host}:{port}/{config.database or 0}"


class RedisKVConnector(Connector):
    """Cache connector over redis.asyncio."""

    def __init__(
        self,
        config: DataSourceConfig,
        client_factory: Callable[..., Any] = aioredis.from_url,
    ):
        super().__init__(config)
        self._client_factory = client_factory
        self._redis: Optional[Any] = None

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    def _client(self) -> Any:
        if self._redis is None:
            raise DisconnectionError()
        return self._redis

    @staticmethod
    def _key(collection: str, key: str) -> str:
        return f"{collection}:{key}"

    async def connect(self) -> None:
        url = build_redis_url(self.config)
        logger.info(f"Connecting to Redis datasource '{self.name}'")
        client = self._client_factory(
            url,
            decode_responses=False,
            socket_timeout=self.config.timeout,
            socket_connect_timeout=self.config.timeout,
        )
        try:
            await client.ping()
        except RedisConnectionError as e:
            await client.aclose()
            raise DatasourceConnectionError(f"could not connect to datasource '{self.name}': {e}") from e
        self._redis = client
        logger.info(f"Redis datasource '{self.name}' connected")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info(f"Redis datasource '{self.name}' disconnected")

    async def ping(self) -> None:
        await self._client().ping()

    async def find(self, collection: str, pipeline: list[dict]) -> Cursor:
        key = self._key(collection, key_from_pipeline(pipeline))
        blobs = await self._client().lrange(key, 0, -1)
        return ListCursor(decode_entries(blobs)) if blobs else ListCursor()

    async def count(self, collection: str, pipeline: list[dict]) -> int:
        key = self._key(collection, key_from_pipeline(pipeline))
        return await self._client().llen(key)

    async def create(self, collection: str, document: dict) -> dict:
        key, entries, ttl = split_entry_document(document)
        redis_key = self._key(collection, key)
        blobs = encode_entries(entries)
        async with self._client().pipeline(transaction=True) as pipe:
            pipe.delete(redis_key)
            if blobs:
                pipe.rpush(redis_key, *blobs)
            if ttl:
                pipe.expire(redis_key, max(1, int(ttl)))
            await pipe.execute()
        return {KEY_FIELD: key, ENTRIES_FIELD: entries}

    async def update_by_id(self, collection: str, id: Any, patch: dict) -> dict:
        raise CacheUnsupportedError("update is not supported by the redis connector")

    async def delete_by_id(self, collection: str, id: Any) -> DeleteResult:
        deleted = await self._client().delete(self._key(collection, key_to_string(id)))
        return DeleteResult(deleted_count=deleted)

    async def delete_many(self, collection: str, where_lookups: Optional[list[dict]]) -> DeleteResult:
        validate_where_lookups(where_lookups)
        raise CacheUnsupportedError("deleteMany is not supported by the redis connector")
