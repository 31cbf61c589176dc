"""
Model - runtime binding of a model config to its connector, cache,
authorizer and event pipeline.

Every operation derives a child EventContext, runs the before_* handlers
(which may short-circuit with ``ctx.result``), dispatches to the connector,
builds instances and runs the after_* handlers.

Usage:
    note = registry.get("Note")
    ctx = EventContext.for_principal(principal)

    notes = await note.find_many({"where": {"status": "active"}, "include": ["author"]}, ctx)
    created = await note.create({"title": "hello", "authorId": user_id}, ctx)
    await note.delete_by_id(created.id, ctx)
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Optional, Union

from bson import ObjectId
from pydantic import BaseModel

from ..core.coercion import coerce_number, replace_object_ids, to_object_id
from ..core.defs import ModelConfig
from ..core.errors import (
    InternalError,
    InvalidInputError,
    ModelStackError,
    NotFoundError,
    OperationTimeoutError,
    RegistryNotResolvedError,
    TypeMismatchError,
)
from ..core.query_types import Filter
from ..datasource.base import Connector, DeleteResult, strip_id_keys
from .cache import CacheCoordinator
from .context import EventContext
from .events import (
    AFTER_DELETE,
    AFTER_LOAD,
    AFTER_SAVE,
    BEFORE_DELETE,
    BEFORE_LOAD,
    BEFORE_SAVE,
    EventPipeline,
)
from .instance import Instance

if TYPE_CHECKING:
    from ..core.registry import ModelRegistry
    from ..iam.service import Authorizer

logger = logging.getLogger(__name__)

FilterInput = Union[Filter, dict, str, None]


def operation(name: str):
    """
    Wrap a model operation: require a resolved registry and convert
    unexpected exceptions into InternalError.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self: Model, *args, **kwargs):
            if not self.registry.resolved:
                raise RegistryNotResolvedError(self.name)
            try:
                return await func(self, *args, **kwargs)
            except ModelStackError:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in {self.name}.{name}")
                raise InternalError(f"{self.name}.{name} failed: {e}", cause=e) from e

        return wrapper

    return decorator


class Model:
    """A registered model and its operations."""

    def __init__(self, config: ModelConfig, registry: ModelRegistry):
        self.config = config
        self.registry = registry
        self.events = EventPipeline(config.name)
        self.connector: Optional[Connector] = None
        self.cache: Optional[CacheCoordinator] = None
        self.authorizer: Optional[Authorizer] = None

    def __repr__(self) -> str:
        return f"Model({self.name})"

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def collection(self) -> str:
        return self.config.collection

    def observe(self, operation_name: str, handler=None):
        """Register a lifecycle handler, e.g. ``model.observe("before_save", fn)``."""
        return self.events.observe(operation_name, handler)

    # =========================================================================
    # Reads
    # =========================================================================

    @operation("findMany")
    async def find_many(self, filter: FilterInput = None, ctx: Optional[EventContext] = None) -> list[Instance]:
        return await self._find(Filter.parse(filter).model_copy(deep=True), ctx, "findMany")

    @operation("findOne")
    async def find_one(self, filter: FilterInput = None, ctx: Optional[EventContext] = None) -> Optional[Instance]:
        parsed = Filter.parse(filter).model_copy(deep=True)
        parsed.limit = 1
        instances = await self._find(parsed, ctx, "findOne", single=True)
        return instances[0] if instances else None

    @operation("findById")
    async def find_by_id(
        self,
        id: Any,
        filter: FilterInput = None,
        ctx: Optional[EventContext] = None,
    ) -> Instance:
        """
        Load one instance by id.

        Raises:
            NotFoundError: if no document has that id
        """
        parsed = Filter.parse(filter).model_copy(deep=True)
        disable = ctx.disable_type_conversions if ctx else False
        parsed.where = {**(parsed.where or {}), "_id": id if disable else to_object_id(id)}
        parsed.limit = 1
        instances = await self._find(parsed, ctx, "findById", single=True)
        if not instances:
            raise NotFoundError(f"{self.name} with id {id} not found")
        return instances[0]

    @operation("count")
    async def count(self, where: Optional[dict] = None, ctx: Optional[EventContext] = None) -> int:
        ctx = self._context("count", ctx, filter=Filter(where=where))
        if await self.events.run(BEFORE_LOAD, ctx):
            if isinstance(ctx.result, bool) or not isinstance(ctx.result, int):
                raise self._mismatch(ctx.result, "an integer")
            return ctx.result

        where = ctx.filter.where if ctx.filter else where
        pipeline: list[dict] = []
        if where:
            match = self.registry.compiler.compile_where(where, self.name, ctx.disable_type_conversions)
            pipeline.append({"$match": match})
        return await self._call(self.connector.count(self.collection, pipeline), ctx)

    async def _find(
        self,
        filter: Filter,
        ctx: Optional[EventContext],
        operation_name: str,
        single: bool = False,
    ) -> list[Instance]:
        ctx = self._context(operation_name, ctx, filter=filter)
        if await self.events.run(BEFORE_LOAD, ctx):
            return self._coerce_read_result(ctx.result, single)

        filter = Filter.parse(ctx.filter)
        self._authorize_includes(filter, self.config, ctx)
        documents = await self._load(filter, ctx)

        instances = self.registry.builder.build_many(self.name, documents)
        await self._after_load(instances, ctx)
        for instance in instances:
            instance.hide_properties()
        return instances

    async def _load(self, filter: Filter, ctx: EventContext) -> list[dict]:
        pipeline = self.registry.compiler.compile(filter, self.name, ctx.disable_type_conversions)

        if self.cache is not None and self.cache.enabled_for(filter):
            cached = await self.cache.lookup(filter)
            if cached is not None:
                return cached

        cursor = await self._call(self.connector.find(self.collection, pipeline), ctx)
        documents = await self._call(cursor.to_list(), ctx)

        if self.cache is not None:
            await self.cache.populate(filter, documents)
        return documents

    async def _after_load(self, instances: list[Instance], ctx: EventContext) -> None:
        if not self.events.has(AFTER_LOAD):
            return
        for instance in instances:
            load_ctx = ctx.child(ctx.operation_name, self.name, filter=ctx.filter, instance=instance)
            await self.events.run(AFTER_LOAD, load_ctx)

    def _authorize_includes(self, filter: Filter, config: ModelConfig, ctx: EventContext) -> None:
        """Check findMany on every included model not flagged skipAuth."""
        from ..iam.guard import authorize

        principal = ctx.principal
        for item in filter.include:
            relation = config.relations.get(item.relation)
            if relation is None:
                continue
            target = self.registry.get(relation.model)
            if not (ctx.skip_auth or principal.system or relation.options.skip_auth):
                if target.authorizer is not None:
                    authorize(target.authorizer, principal, "findMany")
            if item.scope is not None:
                self._authorize_includes(item.scope, target.config, ctx)

    # =========================================================================
    # Writes
    # =========================================================================

    @operation("create")
    async def create(self, data: Any, ctx: Optional[EventContext] = None) -> Instance:
        """
        Persist a new document.

        Accepts a dict, an Instance or a pydantic model. Property defaults are
        applied, required properties and property types are validated, ``id``
        maps to ``_id`` and relation keys are stripped.
        """
        doc = self._payload(data)
        ctx = self._context("create", ctx, data=doc, is_new_instance=True)
        if not ctx.disable_type_conversions:
            ctx.data = self._coerce_payload(ctx.data)

        if await self.events.run(BEFORE_SAVE, ctx):
            return self._coerce_single_result(ctx.result)

        doc = self._prepare(ctx.data, for_create=True)
        created = await self._call(self.connector.create(self.collection, doc), ctx)
        return await self._saved(created, ctx)

    @operation("updateById")
    async def update_by_id(self, id: Any, data: Any, ctx: Optional[EventContext] = None) -> Instance:
        patch = strip_id_keys(self._payload(data))
        ctx = self._context("updateById", ctx, data=patch, is_new_instance=False)
        if not ctx.disable_type_conversions:
            ctx.data = self._coerce_payload(ctx.data)
            id = to_object_id(id)

        if await self.events.run(BEFORE_SAVE, ctx):
            return self._coerce_single_result(ctx.result)

        patch = strip_id_keys(self._prepare(ctx.data, for_create=False))
        updated = await self._call(self.connector.update_by_id(self.collection, id, patch), ctx)
        return await self._saved(updated, ctx)

    async def _saved(self, document: dict, ctx: EventContext) -> Instance:
        instance = self.registry.builder.build(self.name, document)
        instance.hide_properties()
        save_ctx = ctx.child(ctx.operation_name, self.name, instance=instance, data=ctx.data,
                             is_new_instance=ctx.is_new_instance)
        await self.events.run(AFTER_SAVE, save_ctx)
        return instance

    @operation("deleteById")
    async def delete_by_id(self, id: Any, ctx: Optional[EventContext] = None) -> DeleteResult:
        """
        Delete one document by id.

        Raises:
            NotFoundError: if nothing was deleted
        """
        ctx = self._context("deleteById", ctx, data={"id": id})
        if await self.events.run(BEFORE_DELETE, ctx):
            return self._coerce_delete_result(ctx.result)

        if not ctx.disable_type_conversions:
            id = to_object_id(id)
        result = await self._call(self.connector.delete_by_id(self.collection, id), ctx)
        if result.deleted_count == 0:
            raise NotFoundError()
        await self.events.run(AFTER_DELETE, ctx.child("deleteById", self.name, data=ctx.data, ephemeral={"result": result}))
        return result

    @operation("deleteMany")
    async def delete_many(self, where: Optional[dict], ctx: Optional[EventContext] = None) -> DeleteResult:
        """
        Delete every document matching where.

        Raises:
            InvalidInputError: if where is empty
        """
        if not where:
            raise InvalidInputError("deleteMany requires a non-empty where")
        ctx = self._context("deleteMany", ctx, filter=Filter(where=where))
        if await self.events.run(BEFORE_DELETE, ctx):
            return self._coerce_delete_result(ctx.result)

        match = self.registry.compiler.compile_where(ctx.filter.where, self.name, ctx.disable_type_conversions)
        result = await self._call(self.connector.delete_many(self.collection, [{"$match": match}]), ctx)
        await self.events.run(AFTER_DELETE, ctx.child("deleteMany", self.name, filter=ctx.filter, ephemeral={"result": result}))
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _context(self, operation_name: str, ctx: Optional[EventContext], **kwargs: Any) -> EventContext:
        base = ctx if ctx is not None else EventContext()
        return base.child(operation_name, self.name, **kwargs)

    async def _call(self, awaitable: Awaitable, ctx: EventContext) -> Any:
        timeout = ctx.effective_timeout
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(f"{self.name}.{ctx.operation_name} exceeded {timeout}s")

    def _payload(self, data: Any) -> dict:
        if isinstance(data, Instance):
            return data.to_document()
        if isinstance(data, BaseModel):
            return data.model_dump(by_alias=True, exclude_unset=True)
        if isinstance(data, dict):
            return dict(data)
        raise InvalidInputError(f"invalid input type {type(data).__name__} for {self.name}")

    def _coerce_payload(self, doc: dict) -> dict:
        coerced = {}
        for key, value in doc.items():
            prop = self.config.properties.get(key)
            if prop is not None and prop.type == "string":
                coerced[key] = value
            elif prop is not None and prop.type == "number":
                coerced[key] = coerce_number(value)
            else:
                coerced[key] = replace_object_ids(value)
        return coerced

    def _prepare(self, data: Any, for_create: bool) -> dict:
        """Strip relations, map id, apply defaults and validate property types."""
        if not isinstance(data, dict):
            data = self._payload(data)
        doc = {key: value for key, value in data.items() if key not in self.config.relations}
        if "id" in doc:
            doc["_id"] = doc.pop("id")

        errors: list[str] = []
        for name, prop in self.config.properties.items():
            if for_create and doc.get(name) is None and prop.default is not None:
                doc[name] = prop.default
            if name not in doc or doc[name] is None:
                if for_create and prop.required:
                    errors.append(f"'{name}' is required")
                continue
            if not _matches_type(doc[name], prop.type):
                errors.append(f"'{name}' must be of type {prop.type}")
        if errors:
            raise InvalidInputError(f"invalid {self.name}: " + "; ".join(errors))
        return doc

    def _mismatch(self, result: Any, expected: str) -> TypeMismatchError:
        return TypeMismatchError(
            f"invalid eventContext.Result type, expected {expected}, found {type(result).__name__}"
        )

    def _as_instance(self, value: Any) -> Instance:
        if isinstance(value, Instance):
            return value
        if isinstance(value, dict):
            return self.registry.builder.build(self.name, value)
        raise self._mismatch(value, "an instance or a document")

    def _coerce_read_result(self, result: Any, single: bool) -> list[Instance]:
        if single and (result is None or isinstance(result, (Instance, dict))):
            return [] if result is None else [self._as_instance(result)]
        if not isinstance(result, list):
            raise self._mismatch(result, "a list of instances or documents")
        return [self._as_instance(item) for item in result]

    def _coerce_single_result(self, result: Any) -> Instance:
        return self._as_instance(result)

    def _coerce_delete_result(self, result: Any) -> DeleteResult:
        if isinstance(result, DeleteResult):
            return result
        if isinstance(result, int) and not isinstance(result, bool):
            return DeleteResult(deleted_count=result)
        if isinstance(result, dict):
            count = result.get("deleted", result.get("deletedCount"))
            if isinstance(count, int):
                return DeleteResult(deleted_count=count)
        raise self._mismatch(result, "a delete result")


def _matches_type(value: Any, prop_type: str) -> bool:
    if prop_type == "string":
        return isinstance(value, str)
    if prop_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if prop_type == "boolean":
        return isinstance(value, bool)
    if prop_type == "date":
        return isinstance(value, (datetime, str))
    if prop_type == "objectId":
        return isinstance(value, (ObjectId, str))
    return True
