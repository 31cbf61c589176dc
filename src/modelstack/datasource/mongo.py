"""
Document-store connector backed by MongoDB (pymongo async API).

Connects eagerly, pings with secondary-preferred read preference, and keeps
a supervisor task that pings every ``ping_interval`` seconds. A failed ping
triggers up to ``reconnect_attempts`` reconnects; when they all fail the
connector is terminally disconnected, its client is closed, and every call
raises DisconnectionError. Operations hold the read side of a reader/writer
lock while they use the client; a reconnect takes the write side, so the old
client is closed only after in-flight operations finish.

Usage:
    connector = DocumentStoreConnector(DataSourceConfig(
        name="db", connector="documentStore", host="localhost", port=27017, database="app",
    ))
    await connector.connect()
    cursor = await connector.find("Note", [{"$match": {"status": "active"}}])
    notes = await cursor.to_list()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

import pymongo
from pymongo import AsyncMongoClient, ReadPreference
from pymongo.errors import ConnectionFailure, PyMongoError

from ..core.coercion import to_object_id
from ..core.defs import DataSourceConfig
from ..core.errors import DatasourceConnectionError, DisconnectionError, NotFoundError
from ..kv.locks import AsyncRWLock
from .base import Connector, Cursor, DeleteResult, ListCursor, strip_id_keys, validate_where_lookups

logger = logging.getLogger(__name__)


def build_mongo_url(config: DataSourceConfig) -> str:
    if config.url:
        return config.url
    port = config.port or 27017
    return f"mongodb://{config.host}:{port}/{config.database}"


class DocumentStoreConnector(Connector):
    """MongoDB connector with liveness supervision and reconnection."""

    def __init__(
        self,
        config: DataSourceConfig,
        client_factory: Callable[..., Any] = AsyncMongoClient,
    ):
        super().__init__(config)
        self._client_factory = client_factory
        self._client: Any = None
        # Operations hold the read side while they use the client; swaps take the write side.
        self._swap_lock = AsyncRWLock()
        self._supervisor: Optional[asyncio.Task] = None
        self._connected = False
        self._terminal = False
        self.timeout = config.timeout

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self._connected and not self._terminal

    def _make_client(self) -> Any:
        timeout_ms = int(self.config.timeout * 1000)
        options: dict[str, Any] = {
            "connectTimeoutMS": timeout_ms,
            "socketTimeoutMS": timeout_ms,
            "serverSelectionTimeoutMS": timeout_ms,
            "minPoolSize": self.config.min_pool_size,
            "maxPoolSize": self.config.max_pool_size,
        }
        if self.config.username and self.config.password:
            options["username"] = self.config.username
            options["password"] = self.config.password
        return self._client_factory(build_mongo_url(self.config), **options)

    @staticmethod
    async def _ping_client(client: Any) -> None:
        await client.admin.command("ping", read_preference=ReadPreference.SECONDARY_PREFERRED)

    async def _swap_client(self, client: Any) -> None:
        """Install ``client`` (or None) once in-flight operations finish, then close the old one."""
        async with self._swap_lock.write():
            old, self._client = self._client, client
        if old is not None and old is not client:
            await self._close_client(old)

    async def _close_client(self, client: Any) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Closing client for datasource '{self.name}' failed: {e}")

    async def connect(self) -> None:
        """
        Create the client and verify it with a ping.

        Raises:
            DatasourceConnectionError: if the client cannot be created or the initial ping fails
        """
        try:
            client = self._make_client()
        except PyMongoError as e:
            raise DatasourceConnectionError(
                f"could not connect to datasource '{self.name}': {e}"
            ) from e
        try:
            await self._ping_client(client)
        except PyMongoError as e:
            await self._close_client(client)
            raise DatasourceConnectionError(
                f"could not connect to datasource '{self.name}': {e}"
            ) from e

        await self._swap_client(client)
        self._connected = True
        self._terminal = False

        if self.config.ping_interval > 0:
            self._supervisor = asyncio.create_task(self._supervise())
        logger.info(f"Connected to document store '{self.name}'")

    async def disconnect(self) -> None:
        if self._supervisor is not None:
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
            self._supervisor = None

        self._connected = False
        await self._swap_client(None)
        logger.info(f"Disconnected from document store '{self.name}'")

    async def ping(self) -> None:
        client = self._client
        if self._terminal or client is None:
            raise DisconnectionError()
        await self._ping_client(client)

    def set_timeout(self, seconds: float) -> None:
        """Applies to later operations and to clients created on reconnect."""
        self.timeout = seconds
        self.config = self.config.model_copy(update={"timeout": seconds})

    # =========================================================================
    # Supervision
    # =========================================================================

    async def _supervise(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.ping_interval)
                try:
                    await self.ping()
                    continue
                except DisconnectionError:
                    return
                except Exception as e:
                    logger.warning(f"Ping failed for datasource '{self.name}': {e}")

                if not await self._reconnect():
                    logger.error(
                        f"Datasource '{self.name}' is disconnected after "
                        f"{self.config.reconnect_attempts} reconnect attempts"
                    )
                    await self._give_up()
                    return
        except Exception as e:
            logger.exception(f"Supervisor for datasource '{self.name}' stopped: {e}")
            await self._give_up()

    async def _give_up(self) -> None:
        self._terminal = True
        await self._swap_client(None)

    async def _reconnect(self) -> bool:
        for attempt in range(1, self.config.reconnect_attempts + 1):
            client = None
            try:
                client = self._make_client()
                await self._ping_client(client)
            except Exception as e:
                logger.warning(
                    f"Reconnect attempt {attempt}/{self.config.reconnect_attempts} "
                    f"for datasource '{self.name}' failed: {e}"
                )
                if client is not None:
                    await self._close_client(client)
                continue

            await self._swap_client(client)
            logger.info(f"Reconnected datasource '{self.name}' on attempt {attempt}")
            return True
        return False

    # =========================================================================
    # Operations
    # =========================================================================

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[Any]:
        """Yield the current client; a swap waits until the block exits."""
        async with self._swap_lock.read():
            client = self._client
            if self._terminal or client is None:
                raise DisconnectionError()
            try:
                with pymongo.timeout(self.timeout):
                    yield client
            except ConnectionFailure as e:
                if e.timeout:
                    raise
                raise DisconnectionError(f"client is disconnected: {e}") from e

    def _collection(self, client: Any, name: str) -> Any:
        if self.config.database:
            database = client.get_database(self.config.database)
        else:
            database = client.get_default_database()
        return database[name]

    async def find(self, collection: str, pipeline: list[dict]) -> Cursor:
        # Drained under one guard so a reconnect never closes a client mid-cursor
        async with self._guard() as client:
            cursor = await self._collection(client, collection).aggregate(pipeline, allowDiskUse=True)
            documents = await cursor.to_list(None)
        return ListCursor(documents)

    async def count(self, collection: str, pipeline: list[dict]) -> int:
        cursor = await self.find(collection, [*pipeline, {"$count": "count"}])
        rows = await cursor.to_list()
        return rows[0]["count"] if rows else 0

    async def _find_by_id(self, collection: str, id: Any) -> Optional[dict]:
        async with self._guard() as client:
            return await self._collection(client, collection).find_one({"_id": to_object_id(id)})

    async def create(self, collection: str, document: dict) -> dict:
        doc = dict(document)
        async with self._guard() as client:
            result = await self._collection(client, collection).insert_one(doc)
        created = await self._find_by_id(collection, result.inserted_id)
        if created is None:
            raise NotFoundError(f"document {result.inserted_id} not found after insert")
        return created

    async def update_by_id(self, collection: str, id: Any, patch: dict) -> dict:
        object_id = to_object_id(id)
        changes = strip_id_keys(patch)
        if changes:
            async with self._guard() as client:
                result = await self._collection(client, collection).update_one(
                    {"_id": object_id}, {"$set": changes}
                )
            if result.matched_count == 0:
                raise NotFoundError()
        updated = await self._find_by_id(collection, object_id)
        if updated is None:
            raise NotFoundError()
        return updated

    async def delete_by_id(self, collection: str, id: Any) -> DeleteResult:
        async with self._guard() as client:
            result = await self._collection(client, collection).delete_one({"_id": to_object_id(id)})
        return DeleteResult(deleted_count=result.deleted_count)

    async def delete_many(self, collection: str, where_lookups: Optional[list[dict]]) -> DeleteResult:
        match = validate_where_lookups(where_lookups)
        async with self._guard() as client:
            result = await self._collection(client, collection).delete_many(match)
        return DeleteResult(deleted_count=result.deleted_count)
