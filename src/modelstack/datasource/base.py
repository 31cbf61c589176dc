"""
Connector abstraction shared by every datasource backend.

A connector executes aggregation pipelines and single-document writes
against one backend. All I/O methods are coroutines.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Optional

from ..core.defs import DataSourceConfig
from ..core.errors import DeleteManyLookupError


@dataclass
class DeleteResult:
    """Outcome of a delete operation."""
    deleted_count: int = 0

    def to_dict(self) -> dict:
        return {"deleted": self.deleted_count}


class Cursor(ABC):
    """Async iterable over result documents."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[dict]:
        ...

    async def to_list(self) -> list[dict]:
        return [doc async for doc in self]


class ListCursor(Cursor):
    """Cursor over documents already in memory."""

    def __init__(self, documents: Iterable[dict] = ()):
        self._documents = list(documents)

    async def _iterate(self) -> AsyncIterator[dict]:
        for doc in self._documents:
            yield doc

    def __aiter__(self) -> AsyncIterator[dict]:
        return self._iterate()

    async def to_list(self) -> list[dict]:
        return list(self._documents)

    def __len__(self) -> int:
        return len(self._documents)


class Connector(ABC):
    """
    Base class for datasource connectors.

    Usage:
        connector = create_connector(DataSourceConfig(name="db", connector="documentStore", ...))
        await connector.connect()
        docs = await (await connector.find("Note", [{"$match": {"status": "active"}}])).to_list()
    """

    def __init__(self, config: DataSourceConfig):
        self.config = config
        self.name = config.name
        self.timeout: Optional[float] = None

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def ping(self) -> None:
        ...

    @abstractmethod
    async def find(self, collection: str, pipeline: list[dict]) -> Cursor:
        ...

    @abstractmethod
    async def count(self, collection: str, pipeline: list[dict]) -> int:
        ...

    @abstractmethod
    async def create(self, collection: str, document: dict) -> dict:
        ...

    @abstractmethod
    async def update_by_id(self, collection: str, id: Any, patch: dict) -> dict:
        ...

    @abstractmethod
    async def delete_by_id(self, collection: str, id: Any) -> DeleteResult:
        ...

    @abstractmethod
    async def delete_many(self, collection: str, where_lookups: Optional[list[dict]]) -> DeleteResult:
        ...

    def set_timeout(self, seconds: float) -> None:
        """Set the per-operation timeout used by subsequent calls."""
        self.timeout = seconds


def validate_where_lookups(where_lookups: Optional[list[Any]]) -> dict:
    """
    Validate the single-$match lookup list accepted by delete_many.

    Returns:
        The non-empty $match predicate

    Raises:
        DeleteManyLookupError: with a message naming the first violation
    """
    if where_lookups is None:
        raise DeleteManyLookupError("whereLookups cannot be nil")
    if len(where_lookups) != 1:
        raise DeleteManyLookupError("whereLookups must have exactly one element as a $match stage")
    stage = where_lookups[0]
    if stage is None:
        raise DeleteManyLookupError("whereLookups cannot have nil elements")
    if not isinstance(stage, dict) or "$match" not in stage:
        raise DeleteManyLookupError("first element of whereLookups must be a $match stage")
    if len(stage) != 1:
        raise DeleteManyLookupError("first element of whereLookups must be a single $match stage")
    match = stage["$match"]
    if not isinstance(match, dict) or not match:
        raise DeleteManyLookupError("first element of whereLookups must be a single and non-empty $match stage")
    return match


def strip_id_keys(patch: dict) -> dict:
    """Ids are immutable: drop id/_id from update patches."""
    return {key: value for key, value in patch.items() if key not in ("id", "_id")}
