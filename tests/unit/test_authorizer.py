"""
Unit tests for ACL evaluation and guards.

Tests cover:
- Operation to access type mapping
- Principal matching and rule specificity
- Default permission
- Guard status codes and bypasses
"""

import pytest

from modelstack.core.defs import AclRule
from modelstack.core.errors import UnauthorizedError
from modelstack.iam.guard import authorize
from modelstack.iam.service import Authorizer, access_type_for
from modelstack.runtime.context import Principal


def rule(principal_id, permission, principal_type="ROLE", access_type="*", property="*"):
    return AclRule(
        principal_id=principal_id,
        permission=permission,
        principal_type=principal_type,
        access_type=access_type,
        property=property,
    )


ALICE = Principal(id="alice", roles=["editor"])
BOB = Principal(id="bob")
ANON = Principal.anonymous()


class TestAccessType:

    @pytest.mark.parametrize("operation,expected", [
        ("findMany", "READ"),
        ("findOne", "READ"),
        ("findById", "READ"),
        ("count", "READ"),
        ("create", "WRITE"),
        ("updateById", "WRITE"),
        ("deleteMany", "WRITE"),
    ])
    def test_mapping(self, operation, expected):
        assert access_type_for(operation) == expected


class TestAuthorizer:
    """Tests for Authorizer.check."""

    def test_default_deny(self):
        assert not Authorizer("Note", []).check(ALICE, "findMany").allowed

    def test_default_allow(self):
        assert Authorizer("Note", [], default_permission="allow").check(ANON, "create").allowed

    def test_everyone(self):
        authorizer = Authorizer("Note", [rule("$everyone", "ALLOW")])
        assert authorizer.check(ANON, "findMany").allowed

    def test_authenticated_and_unauthenticated(self):
        authorizer = Authorizer("Note", [
            rule("$authenticated", "ALLOW"),
            rule("$unauthenticated", "DENY"),
        ])
        assert authorizer.check(BOB, "findMany").allowed
        assert not authorizer.check(ANON, "findMany").allowed

    def test_custom_role(self):
        authorizer = Authorizer("Note", [rule("editor", "ALLOW", access_type="WRITE")])
        assert authorizer.check(ALICE, "create").allowed
        assert not authorizer.check(BOB, "create").allowed

    def test_user_rule_beats_role_rule(self):
        authorizer = Authorizer("Note", [
            rule("editor", "ALLOW"),
            rule("alice", "DENY", principal_type="USER"),
        ])
        assert not authorizer.check(ALICE, "findMany").allowed

    def test_property_specific_rule_wins(self):
        authorizer = Authorizer("Note", [
            rule("$everyone", "DENY"),
            rule("$everyone", "ALLOW", property="count"),
        ])
        assert authorizer.check(ANON, "count").allowed
        assert not authorizer.check(ANON, "findMany").allowed

    def test_access_type_specific_rule_wins(self):
        authorizer = Authorizer("Note", [
            rule("$everyone", "ALLOW"),
            rule("$everyone", "DENY", access_type="WRITE"),
        ])
        assert authorizer.check(ANON, "findById").allowed
        assert not authorizer.check(ANON, "deleteById").allowed

    def test_equal_specificity_resolves_to_deny(self):
        authorizer = Authorizer("Note", [
            rule("$everyone", "ALLOW"),
            rule("$everyone", "DENY"),
        ])
        decision = authorizer.check(ANON, "findMany")
        assert not decision.allowed
        assert decision.rule.permission == "DENY"

    def test_system_principal_bypasses(self):
        assert Authorizer("Note", []).check(Principal.system_principal(), "deleteMany").allowed

    def test_decisions_are_memoised(self):
        authorizer = Authorizer("Note", [rule("$everyone", "ALLOW")])
        first = authorizer.check(ANON, "findMany")
        assert authorizer.check(ANON, "findMany") is first
        authorizer.clear_cache()
        assert authorizer.check(ANON, "findMany") is not first

    def test_memo_is_shared_across_users_without_user_rules(self):
        authorizer = Authorizer("Note", [rule("$authenticated", "ALLOW")])
        for n in range(10_000):
            assert authorizer.check(Principal(id=f"user-{n}"), "findMany").allowed
        assert len(authorizer._decisions) == 1

    def test_memo_is_bounded_with_user_rules(self):
        authorizer = Authorizer(
            "Note",
            [rule("user-7", "DENY", principal_type="USER"), rule("$authenticated", "ALLOW")],
            max_decisions=100,
        )
        for n in range(10_000):
            authorizer.check(Principal(id=f"user-{n}"), "findMany")
        assert len(authorizer._decisions) == 100
        # Evicted entries are re-evaluated, not lost
        assert not authorizer.check(Principal(id="user-7"), "findMany").allowed
        assert authorizer.check(Principal(id="user-8"), "findMany").allowed

    def test_memo_evicts_least_recently_used(self):
        authorizer = Authorizer("Note", [rule("$everyone", "ALLOW")], max_decisions=2)
        find = authorizer.check(ANON, "findMany")
        authorizer.check(ANON, "count")
        assert authorizer.check(ANON, "findMany") is find
        authorizer.check(ANON, "create")
        assert authorizer.check(ANON, "findMany") is find
        assert len(authorizer._decisions) == 2


class TestAuthorize:
    """Guard status codes."""

    def test_anonymous_gets_401(self):
        with pytest.raises(UnauthorizedError) as exc:
            authorize(Authorizer("Note", []), ANON, "findMany")
        assert exc.value.status_code == 401
        assert exc.value.message == "Access denied to Note.findMany"

    def test_authenticated_gets_403(self):
        with pytest.raises(UnauthorizedError) as exc:
            authorize(Authorizer("Note", []), BOB, "create")
        assert exc.value.status_code == 403

    def test_allowed_passes(self):
        authorize(Authorizer("Note", [rule("$everyone", "ALLOW")]), ANON, "findMany")
