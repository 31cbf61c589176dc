"""
Connector over the in-process KV store, used as a cache datasource.

Entries are lists of BSON-encoded documents stored under a key in the bucket
named after the collection.

Usage:
    connector = MemoryKVConnector(DataSourceConfig(name="cache", connector="memorykv"))
    await connector.connect()
    await connector.create("Note", {"_redId": "_id:5f9f...", "_entries": [doc], "_ttl": 60})
    docs = await (await connector.find("Note", [{"$match": {"_redId": "_id:5f9f..."}}])).to_list()
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

import bson
from bson import ObjectId

from ..core.defs import DataSourceConfig
from ..core.errors import CacheUnsupportedError, InvalidFilterError, InvalidInputError
from ..kv.store import KVDatabase
from .base import Connector, Cursor, DeleteResult, ListCursor, validate_where_lookups

logger = logging.getLogger(__name__)

KEY_FIELD = "_redId"
ENTRIES_FIELD = "_entries"
TTL_FIELD = "_ttl"


def key_from_pipeline(pipeline: list[dict]) -> str:
    """Extract the cache key from a single-field first $match stage."""
    if not pipeline:
        raise InvalidFilterError("empty query")
    stage = pipeline[0]
    if not isinstance(stage, dict) or "$match" not in stage:
        raise InvalidFilterError("invalid first stage, expected $match")
    match = stage["$match"]
    if not isinstance(match, dict) or not match:
        raise InvalidFilterError("empty $match")
    if len(match) != 1:
        raise InvalidFilterError("invalid first stage, $match must have a single key")
    return key_to_string(next(iter(match.values())))


def key_to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (ObjectId, uuid.UUID)):
        return str(value)
    raise InvalidFilterError(f"invalid key type {type(value).__name__}")


def encode_entries(entries: list[dict]) -> list[bytes]:
    return [bson.encode(entry) for entry in entries]


def decode_entries(blobs: list[bytes]) -> list[dict]:
    return [bson.decode(blob) for blob in blobs]


def split_entry_document(document: dict) -> tuple[str, list[dict], Optional[float]]:
    """Return (key, entries, ttl) from a cache write payload."""
    key = document.get(KEY_FIELD)
    key = key_to_string(key) if key is not None else str(uuid.uuid4())
    entries = document.get(ENTRIES_FIELD)
    if not isinstance(entries, list):
        raise InvalidInputError(f"{ENTRIES_FIELD} must be a list of documents")
    ttl = document.get(TTL_FIELD)
    return key, entries, ttl


class MemoryKVConnector(Connector):
    """Cache connector backed by an in-process KVDatabase."""

    def __init__(self, config: DataSourceConfig, database: Optional[KVDatabase] = None):
        super().__init__(config)
        self._database = database
        self._connected = False

    @property
    def database(self) -> KVDatabase:
        if self._database is None:
            self._database = KVDatabase(self.name)
        return self._database

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        _ = self.database
        self._connected = True
        logger.info(f"Memory KV datasource '{self.name}' ready")

    async def disconnect(self) -> None:
        if self._database is not None:
            self._database.purge()
        self._connected = False

    async def ping(self) -> None:
        return None

    async def find(self, collection: str, pipeline: list[dict]) -> Cursor:
        key = key_from_pipeline(pipeline)
        blobs = self.database.get_bucket(collection).get(key)
        if not blobs:
            return ListCursor()
        return ListCursor(decode_entries(blobs))

    async def count(self, collection: str, pipeline: list[dict]) -> int:
        key = key_from_pipeline(pipeline)
        blobs = self.database.get_bucket(collection).get(key)
        return len(blobs) if blobs else 0

    async def create(self, collection: str, document: dict) -> dict:
        key, entries, ttl = split_entry_document(document)
        bucket = self.database.get_bucket(collection)
        blobs = encode_entries(entries)
        if ttl:
            bucket.setex(key, blobs, ttl)
        else:
            bucket.set(key, blobs)
        return {KEY_FIELD: key, ENTRIES_FIELD: entries}

    async def update_by_id(self, collection: str, id: Any, patch: dict) -> dict:
        raise CacheUnsupportedError("update is not supported by the memorykv connector")

    async def delete_by_id(self, collection: str, id: Any) -> DeleteResult:
        deleted = self.database.get_bucket(collection).delete(key_to_string(id))
        return DeleteResult(deleted_count=1 if deleted else 0)

    async def delete_many(self, collection: str, where_lookups: Optional[list[dict]]) -> DeleteResult:
        validate_where_lookups(where_lookups)
        raise CacheUnsupportedError("deleteMany is not supported by the memorykv connector")
