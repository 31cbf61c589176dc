"""
Instances and the builder that turns raw documents into them.

The builder renames ``_id`` to ``id``, materialises included relations
recursively, and guards against a parent receiving two documents for a
single-valued relation (the join hands single relations over as arrays).
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Protocol

from ..core.defs import ModelConfig
from ..core.errors import DuplicateRelatedDocumentError

logger = logging.getLogger(__name__)


class ConfigSource(Protocol):
    def get_config(self, name: str) -> ModelConfig:
        ...


class Instance:
    """
    A materialised document of a model.

    Usage:
        note = builder.build("Note", {"_id": oid, "title": "x", "author": {...}})
        note.id, note["title"], note.related("author")["name"]
        note.to_json()
    """

    def __init__(
        self,
        model: str,
        data: dict[str, Any],
        related: Optional[dict[str, Any]] = None,
        hidden: Iterable[str] = (),
    ):
        self.model = model
        self._data = data
        self._related: dict[str, Any] = related or {}
        self._hidden = set(hidden)
        self._hidden_applied = False

    def __repr__(self) -> str:
        return f"Instance({self.model}, id={self.id!r})"

    @property
    def id(self) -> Any:
        return self._data.get("id")

    @property
    def data(self) -> dict[str, Any]:
        return dict(self._data)

    @property
    def relations(self) -> dict[str, Any]:
        return dict(self._related)

    @property
    def hidden_applied(self) -> bool:
        return self._hidden_applied

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._related:
            return self._related[key]
        return self._data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        if key in self._related:
            return self._related[key]
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._related or key in self._data

    def related(self, name: str) -> Any:
        return self._related.get(name)

    def hide_properties(self) -> Instance:
        """Hide configured properties from to_json; sticky and recursive."""
        self._hidden_applied = True
        for value in self._related.values():
            for child in value if isinstance(value, list) else [value]:
                child.hide_properties()
        return self

    def to_json(self) -> dict[str, Any]:
        result = {
            key: value
            for key, value in self._data.items()
            if not (self._hidden_applied and key in self._hidden)
        }
        for name, value in self._related.items():
            if isinstance(value, list):
                result[name] = [child.to_json() for child in value]
            else:
                result[name] = value.to_json()
        return result

    def to_document(self) -> dict[str, Any]:
        """Persisted shape: ``id`` back to ``_id``, relations removed."""
        doc = {key: value for key, value in self._data.items() if key != "id"}
        if "id" in self._data:
            doc = {"_id": self._data["id"], **doc}
        return doc


class BuildCache:
    """Single related documents already seen on one level, keyed by parent id and relation."""

    def __init__(self):
        self._seen: set[str] = set()

    @staticmethod
    def key(parent_id: Any, relation: str) -> str:
        return f"{parent_id}:{relation}"

    def add(self, parent_id: Any, relation: str) -> bool:
        """Record a (parent, relation) pair; False if it was already present."""
        key = self.key(parent_id, relation)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True


class InstanceBuilder:
    """
    Builds Instances from raw documents.

    Args:
        registry: Source of model configurations
        strict: Raise on a duplicate single related document instead of
            logging a warning and dropping the row
    """

    def __init__(self, registry: ConfigSource, strict: bool = False):
        self._registry = registry
        self.strict = strict

    def build_many(self, model: str, documents: Iterable[dict]) -> list[Instance]:
        return self._build_level(model, list(documents), set())

    def build(
        self,
        model: str,
        document: dict,
        visited: Optional[set[tuple[str, Any]]] = None,
    ) -> Instance:
        config = self._registry.get_config(model)
        visited = visited if visited is not None else set()

        data: dict[str, Any] = {}
        for key, value in document.items():
            if key in config.relations and _relation_shaped(value):
                continue
            data["id" if key == "_id" else key] = value

        instance_id = data.get("id")
        marker = (model, str(instance_id))
        if instance_id is not None and marker in visited:
            return Instance(model, data, hidden=config.hidden)

        related: dict[str, Any] = {}
        if instance_id is not None:
            visited.add(marker)
        try:
            for name, relation in config.relations.items():
                value = document.get(name)
                if name not in document or not _relation_shaped(value):
                    continue
                if relation.is_single:
                    single = self._single_related(config, name, instance_id, value)
                    if single is not None:
                        related[name] = self.build(relation.model, single, visited)
                else:
                    rows = value if isinstance(value, list) else [value] if value else []
                    related[name] = self._build_level(relation.model, rows, visited)
        finally:
            if instance_id is not None:
                visited.discard(marker)

        return Instance(model, data, related, hidden=config.hidden)

    def _build_level(self, model: str, documents: list[dict], visited: set) -> list[Instance]:
        config = self._registry.get_config(model)
        level_cache = BuildCache()
        single_relations = [name for name, rel in config.relations.items() if rel.is_single]

        instances: list[Instance] = []
        for doc in documents:
            parent_id = doc.get("_id", doc.get("id"))
            if parent_id is not None and not self._register_row(config, doc, parent_id, single_relations, level_cache):
                continue
            instances.append(self.build(model, doc, visited))
        return instances

    def _register_row(
        self,
        config: ModelConfig,
        doc: dict,
        parent_id: Any,
        single_relations: list[str],
        level_cache: BuildCache,
    ) -> bool:
        for name in single_relations:
            if doc.get(name) is None:
                continue
            if not level_cache.add(parent_id, name):
                self._duplicate(config, name, parent_id)
                return False
        return True

    def _single_related(self, config: ModelConfig, name: str, parent_id: Any, value: Any) -> Optional[dict]:
        if value is None:
            return None
        if isinstance(value, list):
            if not value:
                return None
            if len(value) > 1:
                self._duplicate(config, name, parent_id)
            return value[0]
        return value

    def _duplicate(self, config: ModelConfig, relation: str, parent_id: Any) -> None:
        message = (
            f"more than one related document for single relation "
            f"'{config.name}.{relation}' of {config.name} {parent_id}"
        )
        if self.strict:
            raise DuplicateRelatedDocumentError(message)
        logger.warning(f"{message}, keeping the first one")


def _relation_shaped(value: Any) -> bool:
    return value is None or isinstance(value, (dict, list))
