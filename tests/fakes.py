"""
In-memory document connector evaluating the aggregation subset the filter
compiler emits: $match (incl. $expr), $lookup with let/pipeline, $unwind,
$replaceRoot, $sort, $skip, $limit and $count.
"""

import copy
import re
from typing import Any, Optional

from bson import ObjectId

from modelstack.core.defs import DataSourceConfig
from modelstack.core.errors import NotFoundError
from modelstack.datasource.base import (
    Connector,
    DeleteResult,
    ListCursor,
    strip_id_keys,
    validate_where_lookups,
)

_MISSING = object()


def get_path(doc: Any, path: str) -> Any:
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _eq(value: Any, expected: Any) -> bool:
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _compare(value: Any, operand: Any, op: str) -> bool:
    if value is _MISSING or value is None or operand is None:
        return False
    try:
        if op == "$gt":
            return value > operand
        if op == "$gte":
            return value >= operand
        if op == "$lt":
            return value < operand
        return value <= operand
    except TypeError:
        return False


def match_value(value: Any, condition: Any) -> bool:
    present = value is not _MISSING
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$eq" and not _eq(None if not present else value, operand):
                return False
            if op == "$ne" and _eq(None if not present else value, operand):
                return False
            if op in ("$gt", "$gte", "$lt", "$lte") and not _compare(value, operand, op):
                return False
            if op == "$in" and not any(_eq(None if not present else value, item) for item in operand):
                return False
            if op == "$nin" and any(_eq(None if not present else value, item) for item in operand):
                return False
            if op == "$exists" and present != bool(operand):
                return False
            if op == "$regex":
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(operand, value, flags):
                    return False
            if op == "$not" and match_value(value, operand):
                return False
        return True
    return _eq(None if not present else value, condition)


def resolve_expr(expr: Any, doc: dict, variables: dict) -> Any:
    if isinstance(expr, str) and expr.startswith("$$"):
        return variables.get(expr[2:])
    if isinstance(expr, str) and expr.startswith("$"):
        value = get_path(doc, expr[1:])
        return None if value is _MISSING else value
    return expr


def matches(doc: dict, query: dict, variables: Optional[dict] = None) -> bool:
    variables = variables or {}
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(doc, sub, variables) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches(doc, sub, variables) for sub in condition):
                return False
        elif key == "$nor":
            if any(matches(doc, sub, variables) for sub in condition):
                return False
        elif key == "$expr":
            (op, (left, right)), = condition.items()
            assert op == "$eq"
            if resolve_expr(left, doc, variables) != resolve_expr(right, doc, variables):
                return False
        elif not match_value(get_path(doc, key), condition):
            return False
    return True


def _sort_key(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


def run_pipeline(db: dict, docs: list[dict], pipeline: list[dict], variables: Optional[dict] = None) -> list[dict]:
    variables = variables or {}
    for stage in pipeline:
        (op, arg), = stage.items()
        if op == "$match":
            docs = [doc for doc in docs if matches(doc, arg, variables)]
        elif op == "$lookup":
            joined = []
            for doc in docs:
                let = {name: resolve_expr(expr, doc, variables) for name, expr in arg.get("let", {}).items()}
                foreign = copy.deepcopy(db.get(arg["from"], []))
                joined.append({**doc, arg["as"]: run_pipeline(db, foreign, arg.get("pipeline", []), let)})
            docs = joined
        elif op == "$unwind":
            path = arg if isinstance(arg, str) else arg["path"]
            preserve = isinstance(arg, dict) and arg.get("preserveNullAndEmptyArrays", False)
            field = path[1:]
            unwound = []
            for doc in docs:
                value = doc.get(field)
                if isinstance(value, list) and value:
                    unwound.extend({**doc, field: item} for item in value)
                elif isinstance(value, list) or value is None:
                    if preserve:
                        unwound.append({k: v for k, v in doc.items() if k != field})
                else:
                    unwound.append(doc)
            docs = unwound
        elif op == "$replaceRoot":
            docs = [resolve_expr(arg["newRoot"], doc, variables) for doc in docs]
        elif op == "$sort":
            for field, direction in reversed(list(arg.items())):
                docs = sorted(docs, key=lambda d: _sort_key(get_path(d, field)), reverse=direction == -1)
        elif op == "$skip":
            docs = docs[arg:]
        elif op == "$limit":
            docs = docs[:arg]
        elif op == "$count":
            docs = [{arg: len(docs)}] if docs else []
        else:
            raise AssertionError(f"unsupported stage {op}")
    return docs


class FakeDocumentConnector(Connector):
    """Document connector over in-memory collections; records every find."""

    def __init__(self, name: str = "db"):
        super().__init__(DataSourceConfig(name=name, connector="documentStore"))
        self.collections: dict[str, list[dict]] = {}
        self.find_calls: list[tuple[str, list[dict]]] = []
        self._connected = False

    def seed(self, collection: str, documents: list[dict]) -> list[dict]:
        stored = self.collections.setdefault(collection, [])
        for doc in documents:
            doc = dict(doc)
            doc.setdefault("_id", ObjectId())
            stored.append(doc)
        return stored

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def ping(self) -> None:
        return None

    async def find(self, collection, pipeline):
        self.find_calls.append((collection, copy.deepcopy(pipeline)))
        docs = copy.deepcopy(self.collections.get(collection, []))
        return ListCursor(run_pipeline(self.collections, docs, pipeline))

    async def count(self, collection, pipeline):
        rows = run_pipeline(self.collections, copy.deepcopy(self.collections.get(collection, [])),
                            [*pipeline, {"$count": "count"}])
        return rows[0]["count"] if rows else 0

    async def create(self, collection, document):
        doc = dict(document)
        doc.setdefault("_id", ObjectId())
        self.collections.setdefault(collection, []).append(doc)
        return copy.deepcopy(doc)

    async def update_by_id(self, collection, id, patch):
        for doc in self.collections.get(collection, []):
            if doc["_id"] == id:
                doc.update(strip_id_keys(patch))
                return copy.deepcopy(doc)
        raise NotFoundError()

    async def delete_by_id(self, collection, id):
        docs = self.collections.get(collection, [])
        remaining = [doc for doc in docs if doc["_id"] != id]
        self.collections[collection] = remaining
        return DeleteResult(deleted_count=len(docs) - len(remaining))

    async def delete_many(self, collection, where_lookups):
        match = validate_where_lookups(where_lookups)
        docs = self.collections.get(collection, [])
        remaining = [doc for doc in docs if not matches(doc, match)]
        self.collections[collection] = remaining
        return DeleteResult(deleted_count=len(docs) - len(remaining))
