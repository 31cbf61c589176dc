"""
Read-through cache coordination for model reads.

Lookup happens only for include-free reads whose ``where`` is an exact
equality on one of the model's configured key groups. Results are stored as
lists of documents under composite keys ``field:value[:field:value...]``.
Writes never invalidate; entries expire by TTL.

Usage:
    coordinator = CacheCoordinator("Account", CacheDef(datasource="cache", ttl=60, keys=[["_id"], ["email"]]), kv)
    docs = await coordinator.lookup(filter)
    if docs is None:
        docs = await load_from_db()
        await coordinator.populate(filter, docs)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId

from ..core.coercion import format_datetime, replace_object_ids
from ..core.defs import CacheDef
from ..core.errors import CacheUnsupportedError
from ..core.query_types import Filter
from ..datasource.base import Connector
from ..datasource.memorykv import ENTRIES_FIELD, KEY_FIELD, TTL_FIELD, MemoryKVConnector
from ..datasource.redis_kv import RedisKVConnector

logger = logging.getLogger(__name__)

ID_FIELDS = ("_id", "id")

_MISSING = object()


def _render(value: Any) -> str:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _field_value(document: dict, field: str) -> Any:
    if field in ID_FIELDS:
        for candidate in (field, *ID_FIELDS):
            if candidate in document:
                return document[candidate]
        return _MISSING
    return document.get(field, _MISSING)


def build_cache_key(group: list[str], document: dict) -> Optional[str]:
    """
    Build the composite key ``k1:v1:k2:v2`` for a key group.

    ``_id`` falls back to ``id`` and vice versa; ObjectIds render as hex.

    Returns:
        The key, or None if the document lacks a field of the group
    """
    parts: list[str] = []
    for field in group:
        value = _field_value(document, field)
        if value is _MISSING:
            return None
        parts.extend([field, _render(value)])
    return ":".join(parts)


def _is_id_group(group: list[str]) -> bool:
    return any(field in ID_FIELDS for field in group)


def _normalize_field(field: str) -> str:
    return "_id" if field in ID_FIELDS else field


class CacheCoordinator:
    """Binds a model's cache policy to a KV connector."""

    def __init__(
        self,
        model_name: str,
        cache: CacheDef,
        connector: Connector,
        disable_cache: bool = False,
    ):
        if not isinstance(connector, (MemoryKVConnector, RedisKVConnector)):
            raise CacheUnsupportedError(
                f"datasource '{connector.name}' cannot be used as a cache for model '{model_name}'"
            )
        self.model_name = model_name
        self.cache = cache
        self.connector = connector
        self.disable_cache = disable_cache

    @property
    def collection(self) -> str:
        return self.model_name

    def enabled_for(self, filter: Filter) -> bool:
        return not self.disable_cache and not filter.include

    def matching_group(self, filter: Filter) -> Optional[tuple[list[str], str]]:
        """Return (group, key) when where is an exact equality on a key group."""
        where = filter.where
        if not where or filter.order or filter.skip:
            return None
        if any(key.startswith("$") for key in where):
            return None
        if any(isinstance(value, (dict, list)) for value in where.values()):
            return None

        where_fields = {_normalize_field(key): value for key, value in where.items()}
        for group in self.cache.keys:
            if set(_normalize_field(field) for field in group) != set(where_fields):
                continue
            values = {field: replace_object_ids(where_fields[_normalize_field(field)]) for field in group}
            key = build_cache_key(group, values)
            if key is not None:
                return group, key
        return None

    async def lookup(self, filter: Filter) -> Optional[list[dict]]:
        """Return cached documents, or None on miss or when the read is not cacheable."""
        if not self.enabled_for(filter):
            return None
        match = self.matching_group(filter)
        if match is None:
            return None
        _, key = match

        try:
            cursor = await self.connector.find(self.collection, [{"$match": {KEY_FIELD: key}}])
            documents = await cursor.to_list()
        except Exception as e:
            logger.warning(f"Cache read error for {self.model_name} {key}: {e}")
            return None

        if not documents:
            logger.debug(f"Cache MISS: {self.model_name} {key}")
            return None
        logger.debug(f"Cache HIT: {self.model_name} {key}")
        if filter.limit:
            documents = documents[:filter.limit]
        return documents

    async def populate(self, filter: Filter, documents: list[dict]) -> None:
        """Store documents under every key group they can be addressed by."""
        if not documents or not self.enabled_for(filter):
            return

        match = self.matching_group(filter)
        entries: dict[str, list[dict]] = {}
        for group in self.cache.keys:
            if _is_id_group(group):
                for doc in documents:
                    key = build_cache_key(group, doc)
                    if key is not None:
                        entries[key] = [doc]
            elif match is not None and match[0] == group and not filter.limit:
                entries[match[1]] = list(documents)

        for key, docs in entries.items():
            payload = {KEY_FIELD: key, ENTRIES_FIELD: docs}
            if self.cache.ttl:
                payload[TTL_FIELD] = self.cache.ttl
            try:
                await self.connector.create(self.collection, payload)
                logger.debug(f"Cached {len(docs)} document(s) for {self.model_name} {key} (TTL: {self.cache.ttl}s)")
            except Exception as e:
                logger.warning(f"Cache write error for {self.model_name} {key}: {e}")
