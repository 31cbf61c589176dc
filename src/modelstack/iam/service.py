"""
Authorizer: evaluates a model's ACL rules for a principal and operation.

Rules follow the LoopBack shape (accessType, principalType, principalId,
permission, property). Among matching rules the most specific one wins;
equally specific rules resolve to DENY. With no matching rule the default
permission applies.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from ..core.defs import AclRule
from ..runtime.context import Principal

logger = logging.getLogger(__name__)

EVERYONE = "$everyone"
AUTHENTICATED = "$authenticated"
UNAUTHENTICATED = "$unauthenticated"

READ_OPERATIONS = ("count", "exists")

MAX_MEMOISED_DECISIONS = 1024


def access_type_for(operation: str) -> str:
    """find* and count are READ, every other operation is WRITE."""
    if operation.startswith("find") or operation in READ_OPERATIONS:
        return "READ"
    return "WRITE"


@dataclass
class AccessDecision:
    """Result of an authorization check."""
    allowed: bool
    rule: Optional[AclRule] = None
    reason: str = ""


@dataclass
class Policy:
    """Compiled rule set of one model."""
    model: str
    rules: list[AclRule] = field(default_factory=list)
    default_permission: str = "DENY"

    def matching(self, principal: Principal, operation: str) -> list[AclRule]:
        access_type = access_type_for(operation)
        return [
            rule for rule in self.rules
            if rule.property in ("*", operation)
            and rule.access_type in ("*", access_type)
            and _principal_matches(rule, principal)
        ]


def _principal_matches(rule: AclRule, principal: Principal) -> bool:
    if rule.principal_type == "USER":
        return principal.id is not None and str(principal.id) == rule.principal_id
    if rule.principal_id == EVERYONE:
        return True
    if rule.principal_id == AUTHENTICATED:
        return principal.is_authenticated
    if rule.principal_id == UNAUTHENTICATED:
        return not principal.is_authenticated
    return rule.principal_id in principal.roles


def _principal_rank(rule: AclRule) -> int:
    if rule.principal_type == "USER":
        return 3
    if rule.principal_id == EVERYONE:
        return 0
    if rule.principal_id in (AUTHENTICATED, UNAUTHENTICATED):
        return 1
    return 2


def _specificity(rule: AclRule) -> tuple[int, int, int]:
    return (
        0 if rule.property == "*" else 1,
        0 if rule.access_type == "*" else 1,
        _principal_rank(rule),
    )


class Authorizer:
    """
    Per-model authorizer with memoised decisions.

    Decisions are keyed on roles, authentication state and operation; the
    principal id joins the key only when the policy has USER rules. The memo
    is an LRU capped at ``max_decisions`` entries.

    Usage:
        authorizer = Authorizer("Note", config.acls, default_permission="DENY")
        decision = authorizer.check(principal, "findMany")
        if not decision.allowed:
            ...
    """

    def __init__(
        self,
        model_name: str,
        rules: list[AclRule],
        default_permission: str = "DENY",
        max_decisions: int = MAX_MEMOISED_DECISIONS,
    ):
        self.policy = Policy(model=model_name, rules=list(rules), default_permission=default_permission.upper())
        self.max_decisions = max_decisions
        self._keyed_by_user = any(rule.principal_type == "USER" for rule in self.policy.rules)
        self._decisions: OrderedDict[tuple, AccessDecision] = OrderedDict()

    @property
    def model_name(self) -> str:
        return self.policy.model

    def check(self, principal: Principal, operation: str) -> AccessDecision:
        """
        Decide whether principal may run operation on this model.

        System principals always pass.
        """
        if principal.system:
            return AccessDecision(allowed=True, reason="system principal")

        user = principal.id if self._keyed_by_user else None
        cache_key = (user, tuple(sorted(principal.roles)), principal.is_authenticated, operation)
        decision = self._decisions.get(cache_key)
        if decision is not None:
            self._decisions.move_to_end(cache_key)
            return decision

        decision = self._evaluate(principal, operation)
        self._decisions[cache_key] = decision
        if len(self._decisions) > self.max_decisions:
            self._decisions.popitem(last=False)
        return decision

    def _evaluate(self, principal: Principal, operation: str) -> AccessDecision:
        matching = self.policy.matching(principal, operation)
        if not matching:
            allowed = self.policy.default_permission == "ALLOW"
            return AccessDecision(allowed=allowed, reason=f"default {self.policy.default_permission}")

        best = max(_specificity(rule) for rule in matching)
        winners = [rule for rule in matching if _specificity(rule) == best]
        denied = [rule for rule in winners if rule.permission == "DENY"]
        rule = denied[0] if denied else winners[0]
        allowed = rule.permission == "ALLOW"
        logger.debug(
            f"ACL {self.policy.model}.{operation} for principal {principal.id!r}: "
            f"{rule.permission} ({rule.principal_type} {rule.principal_id})"
        )
        return AccessDecision(allowed=allowed, rule=rule, reason=f"{rule.principal_type} {rule.principal_id}")

    def clear_cache(self) -> None:
        self._decisions.clear()
