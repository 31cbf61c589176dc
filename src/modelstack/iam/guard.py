"""
Guard installation - registers authorization handlers on a model's events.

Guards run before loads, saves and deletes. The client cannot bypass them;
only system principals and contexts flagged ``skip_auth`` pass unchecked.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.errors import UnauthorizedError
from ..runtime.context import EventContext, Principal
from ..runtime.events import BEFORE_DELETE, BEFORE_LOAD, BEFORE_SAVE
from .service import Authorizer

if TYPE_CHECKING:
    from ..runtime.model import Model


def authorize(authorizer: Authorizer, principal: Principal, operation: str) -> None:
    """
    Raise if principal may not run operation.

    Raises:
        UnauthorizedError: 401 for anonymous callers, 403 for authenticated ones
    """
    decision = authorizer.check(principal, operation)
    if decision.allowed:
        return
    status = 403 if principal.is_authenticated else 401
    raise UnauthorizedError(
        f"Access denied to {authorizer.model_name}.{operation}",
        status_code=status,
    )


def install_guards(model: Model, authorizer: Authorizer) -> None:
    """
    Register the authorization handler on the model's before_* events.

    Args:
        model: Model whose event pipeline receives the guards
        authorizer: Authorizer built from the model's ACL rules
    """

    def guard(ctx: EventContext) -> None:
        if ctx.skip_auth:
            return
        principal = ctx.principal
        if principal.system:
            return
        authorize(authorizer, principal, ctx.operation_name)

    for event in (BEFORE_LOAD, BEFORE_SAVE, BEFORE_DELETE):
        model.events.on(event, guard)
