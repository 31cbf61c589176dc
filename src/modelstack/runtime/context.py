"""
Principal and event context passed through every model operation.

Contexts form a chain: each operation derives a child from the caller's
context, and the root carries the bearer principal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


class _NoResult:
    def __repr__(self) -> str:
        return "NO_RESULT"


NO_RESULT: Any = _NoResult()


@dataclass
class Principal:
    """
    Represents the authenticated user/service making the request.

    Used by the authorizer for access control decisions.
    """
    id: Optional[str] = None
    roles: list[str] = field(default_factory=list)
    system: bool = False
    token: Optional[str] = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.system or self.id is not None

    @classmethod
    def anonymous(cls) -> Principal:
        return cls()

    @classmethod
    def system_principal(cls) -> Principal:
        return cls(id="system", roles=["$system"], system=True)


@dataclass
class EventContext:
    """
    Context of one operation.

    Contains:
    - bearer: Principal the operation runs as (inherited from the root)
    - operation_name / model: what is being executed
    - filter / data / instance: operation inputs and the instance being built
    - result: set by a handler to short-circuit the operation
    """
    base_context: Optional[EventContext] = None
    bearer: Optional[Principal] = None
    operation_name: str = ""
    model: Optional[str] = None
    filter: Any = None
    data: Any = None
    instance: Any = None
    result: Any = NO_RESULT
    is_new_instance: bool = False
    disable_type_conversions: bool = False
    skip_auth: bool = False
    timeout: Optional[float] = None
    ephemeral: dict[str, Any] = field(default_factory=dict)

    @property
    def root(self) -> EventContext:
        ctx = self
        while ctx.base_context is not None:
            ctx = ctx.base_context
        return ctx

    @property
    def principal(self) -> Principal:
        ctx: Optional[EventContext] = self
        while ctx is not None:
            if ctx.bearer is not None:
                return ctx.bearer
            ctx = ctx.base_context
        return Principal.anonymous()

    @property
    def has_result(self) -> bool:
        return self.result is not NO_RESULT

    @property
    def effective_timeout(self) -> Optional[float]:
        ctx: Optional[EventContext] = self
        while ctx is not None:
            if ctx.timeout is not None:
                return ctx.timeout
            ctx = ctx.base_context
        return None

    def child(self, operation_name: str, model: Optional[str] = None, **kwargs: Any) -> EventContext:
        """Derive a context for a nested operation."""
        kwargs.setdefault("disable_type_conversions", self.disable_type_conversions)
        kwargs.setdefault("skip_auth", self.skip_auth)
        return EventContext(
            base_context=self,
            operation_name=operation_name,
            model=model,
            **kwargs,
        )

    @classmethod
    def for_principal(cls, principal: Optional[Principal] = None, **kwargs: Any) -> EventContext:
        return cls(bearer=principal or Principal.anonymous(), **kwargs)

    @classmethod
    def system(cls, **kwargs: Any) -> EventContext:
        return cls(bearer=Principal.system_principal(), **kwargs)
