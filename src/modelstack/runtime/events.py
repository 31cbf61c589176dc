"""
Ordered event pipeline for model lifecycle hooks.

Handlers run in registration order. A handler raising stops the chain and the
error propagates; a handler setting ``ctx.result`` stops the chain and the
operation returns that result.

Usage:
    pipeline = EventPipeline()

    @pipeline.observe("before_load")
    async def only_active(ctx):
        ctx.filter.where = {**(ctx.filter.where or {}), "status": "active"}

    await pipeline.run(BEFORE_LOAD, ctx)
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from .context import EventContext

logger = logging.getLogger(__name__)

Handler = Callable[[EventContext], Union[None, Awaitable[None]]]


def operation_event(operation: str) -> str:
    return "__operation__" + operation.strip().replace(" ", "_")


BEFORE_LOAD = operation_event("before_load")
AFTER_LOAD = operation_event("after_load")
BEFORE_SAVE = operation_event("before_save")
AFTER_SAVE = operation_event("after_save")
BEFORE_DELETE = operation_event("before_delete")
AFTER_DELETE = operation_event("after_delete")


class EventPipeline:
    """Per-model registry of event handlers."""

    def __init__(self, name: str = ""):
        self.name = name
        self._handlers: dict[str, list[Handler]] = {}

    def on(self, event: str, handler: Handler) -> Handler:
        """Append a handler; handlers registered earlier run first."""
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def observe(self, operation: str, handler: Optional[Handler] = None):
        """Register a handler for an operation event; usable as a decorator."""
        event = operation_event(operation)
        if handler is not None:
            return self.on(event, handler)

        def decorator(fn: Handler) -> Handler:
            return self.on(event, fn)

        return decorator

    def has(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def handlers(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, []))

    async def run(self, event: str, ctx: EventContext) -> bool:
        """
        Run all handlers for event.

        Returns:
            True if a handler short-circuited by setting ctx.result
        """
        for handler in self._handlers.get(event, []):
            outcome = handler(ctx)
            if inspect.isawaitable(outcome):
                await outcome
            if ctx.has_result:
                logger.debug(f"Event '{event}' on '{self.name}' short-circuited by {handler!r}")
                return True
        return False
