"""
Filter compiler - converts a declarative Filter into an aggregation pipeline.

Stage order is fixed: $match, one $lookup per include, $sort, $skip, $limit.
Includes compile recursively into $lookup sub-pipelines. Single-valued
relations stay arrays capped at two rows, so a join never multiplies parent
rows ahead of $skip/$limit and the builder can still report duplicates.

Usage:
    from modelstack.core.compiler import FilterCompiler

    compiler = FilterCompiler(registry)
    pipeline = compiler.compile(
        {"where": {"status": "active"}, "include": ["author"], "limit": 10},
        "Note",
    )
    cursor = await connector.find("Note", pipeline)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

from .coercion import coerce_number, replace_object_ids
from .dates import Clock, is_special_date, resolve_special_date, utc_now
from .defs import ModelConfig, RelationDef, lower_first
from .errors import IncludeCycleError, InvalidFilterError
from .query_types import Filter, IncludeItem


COMPARISON_OPERATORS = ("$eq", "$ne", "$gt", "$gte", "$lt", "$lte")
LIST_OPERATORS = ("$in", "$nin")
LOGICAL_OPERATORS = ("$and", "$or")
FIELD_OPERATORS = COMPARISON_OPERATORS + LIST_OPERATORS + ("$regex", "$options", "$exists", "$not")


class ConfigSource(Protocol):
    def get_config(self, name: str) -> ModelConfig:
        ...


@dataclass
class _CompileState:
    """Per-call settings threaded through the recursion."""
    convert: bool
    now: Any


class FilterCompiler:
    """
    Compiles filters against model configurations from a registry.

    The clock is injectable so that special date placeholders resolve
    deterministically in tests.
    """

    def __init__(self, registry: ConfigSource, clock: Optional[Clock] = None):
        self._registry = registry
        self._clock = clock or utc_now

    def compile(
        self,
        filter: Union[Filter, dict, str, None],
        model_name: str,
        disable_type_conversions: bool = False,
    ) -> list[dict]:
        """
        Compile a filter for the given model.

        Args:
            filter: Filter object, dict or JSON text
            model_name: Root model name
            disable_type_conversions: Skip ObjectId/date/number coercion

        Returns:
            Aggregation pipeline (list of stages)

        Raises:
            InvalidFilterError: unknown operator, relation, direction or bad paging
            IncludeCycleError: include path revisits a (model, relation) pair
        """
        parsed = Filter.parse(filter)
        config = self._registry.get_config(model_name)
        state = _CompileState(convert=not disable_type_conversions, now=self._clock())
        return self._compile(parsed, config, [], state)

    def compile_where(
        self,
        where: Optional[dict],
        model_name: str,
        disable_type_conversions: bool = False,
    ) -> dict:
        """Compile a bare where clause into a $match predicate."""
        config = self._registry.get_config(model_name)
        state = _CompileState(convert=not disable_type_conversions, now=self._clock())
        return self._compile_where(where or {}, config, state)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _compile(
        self,
        filter: Filter,
        config: ModelConfig,
        path: list[str],
        state: _CompileState,
    ) -> list[dict]:
        if filter.skip < 0:
            raise InvalidFilterError(f"skip must be >= 0, got {filter.skip}")
        if filter.limit < 0:
            raise InvalidFilterError(f"limit must be >= 0, got {filter.limit}")

        stages: list[dict] = []

        if filter.where:
            stages.append({"$match": self._compile_where(filter.where, config, state)})

        for item in filter.include:
            stages.extend(self._compile_include(item, config, path, state))

        if filter.order:
            stages.append({"$sort": self._compile_order(filter.order)})

        if filter.skip > 0:
            stages.append({"$skip": filter.skip})
        if filter.limit > 0:
            stages.append({"$limit": filter.limit})

        return stages

    def _compile_order(self, order: list[str]) -> dict[str, int]:
        sort: dict[str, int] = {}
        for entry in order:
            parts = entry.split()
            if not parts or len(parts) > 2:
                raise InvalidFilterError(f"invalid order '{entry}'")
            field = "_id" if parts[0] == "id" else parts[0]
            direction = parts[1].upper() if len(parts) == 2 else "ASC"
            if direction == "ASC":
                sort[field] = 1
            elif direction == "DESC":
                sort[field] = -1
            else:
                raise InvalidFilterError(f"invalid order direction '{parts[1]}' in '{entry}'")
        return sort

    # =========================================================================
    # Where
    # =========================================================================

    def _compile_where(self, where: dict, config: ModelConfig, state: _CompileState) -> dict:
        if not isinstance(where, dict):
            raise InvalidFilterError("where must be an object")

        match: dict[str, Any] = {}
        for key, value in where.items():
            if key in LOGICAL_OPERATORS:
                if not isinstance(value, list):
                    raise InvalidFilterError(f"{key} expects a list of conditions")
                match[key] = [self._compile_where(sub, config, state) for sub in value]
            elif key == "$not":
                # Top-level negation of a whole condition
                match["$nor"] = [self._compile_where(value, config, state)]
            elif key.startswith("$"):
                raise InvalidFilterError(f"unknown operator '{key}'")
            else:
                field = "_id" if key == "id" else key
                match[field] = self._compile_value(value, self._property_type(config, key), state)
        return match

    def _compile_value(self, value: Any, prop_type: Optional[str], state: _CompileState) -> Any:
        if isinstance(value, dict) and any(k.startswith("$") for k in value):
            return self._compile_operators(value, prop_type, state)
        return self._convert(value, prop_type, state)

    def _compile_operators(self, operators: dict, prop_type: Optional[str], state: _CompileState) -> dict:
        compiled: dict[str, Any] = {}
        for op, operand in operators.items():
            if op not in FIELD_OPERATORS:
                raise InvalidFilterError(f"unknown operator '{op}'")

            if op in COMPARISON_OPERATORS:
                compiled[op] = self._convert(operand, prop_type, state)
            elif op in LIST_OPERATORS:
                if not isinstance(operand, list):
                    raise InvalidFilterError(f"{op} expects a list")
                compiled[op] = [self._convert(item, prop_type, state) for item in operand]
            elif op == "$regex":
                if not isinstance(operand, str):
                    raise InvalidFilterError("$regex expects a string")
                compiled[op] = operand
            elif op == "$options":
                if "$regex" not in operators:
                    raise InvalidFilterError("$options requires $regex")
                compiled[op] = operand
            elif op == "$exists":
                compiled[op] = bool(operand)
            elif op == "$not":
                if isinstance(operand, dict):
                    compiled[op] = self._compile_operators(operand, prop_type, state)
                elif isinstance(operand, str):
                    compiled[op] = {"$regex": operand}
                else:
                    raise InvalidFilterError("$not expects an operator object or a pattern")
        return compiled

    def _convert(self, value: Any, prop_type: Optional[str], state: _CompileState) -> Any:
        if is_special_date(value):
            return resolve_special_date(value, state.now)
        if not state.convert:
            return value
        if prop_type == "number":
            return coerce_number(value)
        if prop_type == "string":
            return value
        return replace_object_ids(value)

    @staticmethod
    def _property_type(config: ModelConfig, field: str) -> Optional[str]:
        if field in ("id", "_id"):
            return "objectId"
        prop = config.properties.get(field.split(".", 1)[0])
        if prop is None:
            return None
        if "." in field:
            return None
        return prop.type

    # =========================================================================
    # Include
    # =========================================================================

    def _compile_include(
        self,
        item: IncludeItem,
        config: ModelConfig,
        path: list[str],
        state: _CompileState,
    ) -> list[dict]:
        relation = config.relations.get(item.relation)
        if relation is None:
            raise InvalidFilterError(f"relation '{item.relation}' not found in model '{config.name}'")

        edge = f"{config.name}.{item.relation}"
        if edge in path:
            raise IncludeCycleError(path + [edge])

        target = self._registry.get_config(relation.model)
        scope = item.scope or Filter()
        sub_pipeline = self._compile(scope, target, path + [edge], state)
        if relation.is_single:
            sub_pipeline.append({"$limit": 2})

        if relation.type == "hasAndBelongsToMany":
            lookup = self._through_lookup(item.relation, relation, config, target, sub_pipeline)
        else:
            lookup = self._direct_lookup(item.relation, relation, config, target, sub_pipeline)

        return [lookup]

    @staticmethod
    def _direct_lookup(
        name: str,
        relation: RelationDef,
        config: ModelConfig,
        target: ModelConfig,
        sub_pipeline: list[dict],
    ) -> dict:
        local, foreign = join_keys(name, relation, config)
        return {
            "$lookup": {
                "from": target.collection,
                "let": {"localValue": f"${local}"},
                "pipeline": [
                    {"$match": {"$expr": {"$eq": [f"${foreign}", "$$localValue"]}}},
                    *sub_pipeline,
                ],
                "as": name,
            }
        }

    @staticmethod
    def _through_lookup(
        name: str,
        relation: RelationDef,
        config: ModelConfig,
        target: ModelConfig,
        sub_pipeline: list[dict],
    ) -> dict:
        junction = relation.through or junction_collection(config.name, target.name)
        parent_key = relation.foreign_key or f"{lower_first(config.name)}Id"
        target_key = f"{lower_first(target.name)}Id"
        local = relation.primary_key or "_id"
        return {
            "$lookup": {
                "from": junction,
                "let": {"localValue": f"${local}"},
                "pipeline": [
                    {"$match": {"$expr": {"$eq": [f"${parent_key}", "$$localValue"]}}},
                    {
                        "$lookup": {
                            "from": target.collection,
                            "let": {"targetValue": f"${target_key}"},
                            "pipeline": [{"$match": {"$expr": {"$eq": ["$_id", "$$targetValue"]}}}],
                            "as": "__target",
                        }
                    },
                    {"$unwind": "$__target"},
                    {"$replaceRoot": {"newRoot": "$__target"}},
                    *sub_pipeline,
                ],
                "as": name,
            }
        }


def join_keys(name: str, relation: RelationDef, config: ModelConfig) -> tuple[str, str]:
    """Return (local field, foreign field) for a direct relation."""
    if relation.type == "belongsTo":
        return relation.foreign_key or f"{name}Id", relation.primary_key or "_id"
    return relation.primary_key or "_id", relation.foreign_key or f"{lower_first(config.name)}Id"


def junction_collection(model_a: str, model_b: str) -> str:
    return "_".join(sorted([model_a, model_b]))
