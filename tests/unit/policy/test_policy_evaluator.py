from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from authz_core.features.permissions.caller import CallerFacts
from authz_core.features.policy.evaluator import (
    PolicyEvaluator,
    Verdict,
    abilities_cover_all,
    abilities_cover_any,
    evaluate_permissions,
)
from authz_core.features.policy.store_context import StoreContext
from authz_core.features.rules.pathdsl import compile_path_regex
from authz_core.features.rules.selection import RuleDefinition
from authz_core.settings import Settings


@dataclass
class _FakePermissions:
    """In-memory stand-in for the effective permission resolver."""

    per_store: dict[tuple[int, int], frozenset[str]] = field(default_factory=dict)
    all_stores: set[int] = field(default_factory=set)
    calls: list[tuple[int, int]] = field(default_factory=list)

    def effective_permissions(self, user_id: int, store_id: int) -> frozenset[str]:
        self.calls.append((user_id, store_id))
        return self.per_store.get((user_id, store_id), frozenset())

    def user_has_all_active_stores(self, user_id: int) -> bool:
        return user_id in self.all_stores


def _rule(**overrides) -> RuleDefinition:
    values = {
        "id": 1,
        "service": "data",
        "method": "GET",
        "path_dsl": "/orders/*",
        "path_regex": compile_path_regex("/orders/*"),
    }
    values.update(overrides)
    return RuleDefinition(**values)


@pytest.fixture()
def permissions() -> _FakePermissions:
    return _FakePermissions()


@pytest.fixture()
def evaluator(permissions: _FakePermissions, settings: Settings) -> PolicyEvaluator:
    return PolicyEvaluator(permissions=permissions, settings=settings)


# ---------------------------------------------------------------------------
# Permission sub-algorithm
# ---------------------------------------------------------------------------


def test_permissions_any_needs_one_held_permission() -> None:
    rule = _rule(permissions_any=("orders.view", "orders.admin"))

    verdict = evaluate_permissions(rule, {"orders.admin"}, {"*"})

    assert verdict.authorized
    assert verdict.granted_by == "permissions_any"
    assert verdict.required_permissions == ("orders.view", "orders.admin")


def test_permissions_all_needs_every_permission() -> None:
    rule = _rule(permissions_all=("orders.view", "orders.export"))

    granted = evaluate_permissions(rule, {"orders.view", "orders.export"}, [])
    denied = evaluate_permissions(rule, {"orders.view"}, [])

    assert granted.authorized and granted.granted_by == "permissions_all"
    assert not denied.authorized
    assert denied.granted_by == "deny"
    assert denied.required_permissions == ("orders.view", "orders.export")


def test_deny_prefers_any_list_in_required_permissions() -> None:
    rule = _rule(permissions_any=("a",), permissions_all=("b", "c"))

    verdict = evaluate_permissions(rule, set(), [])

    assert verdict.required_permissions == ("a",)


def test_empty_abilities_are_unrestricted() -> None:
    assert abilities_cover_any([], ["orders.delete"], wildcard="*")
    assert abilities_cover_all([], ["orders.delete", "x"], wildcard="*")
    assert abilities_cover_all(["*"], ["orders.delete"], wildcard="*")


def test_restricted_token_cannot_use_broader_user_permissions() -> None:
    rule = _rule(permissions_any=("orders.delete",))

    verdict = evaluate_permissions(rule, {"orders.delete"}, ["orders.view"])

    assert not verdict.authorized
    assert verdict.granted_by == "deny"


def test_abilities_must_cover_all_for_permissions_all() -> None:
    rule = _rule(permissions_all=("a", "b"))

    assert not evaluate_permissions(rule, {"a", "b"}, ["a"]).authorized
    assert evaluate_permissions(rule, {"a", "b"}, ["a", "b", "c"]).authorized


def test_rule_without_requirements_denies() -> None:
    verdict = evaluate_permissions(_rule(), {"anything"}, [])

    assert not verdict.authorized
    assert verdict.required_permissions == ()


# ---------------------------------------------------------------------------
# Store-scope modes
# ---------------------------------------------------------------------------


def test_none_mode_allows_with_global_permission(evaluator: PolicyEvaluator) -> None:
    rule = _rule(permissions_any=("orders.view",))
    caller = CallerFacts.build(user_id=5, permissions=["orders.view"], abilities=["*"])

    verdict = evaluator.evaluate(rule, caller)

    assert verdict.authorized
    assert verdict.granted_by == "permissions_any"
    assert verdict.meta.store_mode == "none"


def test_none_mode_denies_without_permission(evaluator: PolicyEvaluator) -> None:
    rule = _rule(permissions_any=("orders.view",))
    caller = CallerFacts.build(user_id=5, abilities=["*"])

    verdict = evaluator.evaluate(rule, caller)

    assert not verdict.authorized
    assert verdict.granted_by == "deny"
    assert verdict.required_permissions == ("orders.view",)


def test_roles_any_bypasses_permissions_in_every_mode(
    evaluator: PolicyEvaluator, permissions: _FakePermissions
) -> None:
    for mode in ("none", "scoped", "all_stores"):
        rule = _rule(roles_any=("manager",), permissions_all=("x",), store_scope_mode=mode)
        caller = CallerFacts.build(user_id=5, roles=["manager"], abilities=["nothing"])

        verdict = evaluator.evaluate(rule, caller, store_ids=(1,))

        assert verdict.authorized, mode
        assert verdict.granted_by == "roles"
    assert permissions.calls == []


def test_scoped_all_policy_requires_every_store(
    evaluator: PolicyEvaluator, permissions: _FakePermissions
) -> None:
    permissions.per_store[(5, 1)] = frozenset({"orders.view"})
    rule = _rule(
        permissions_any=("orders.view",),
        store_scope_mode="scoped",
        store_match_policy="all",
    )
    caller = CallerFacts.build(user_id=5, abilities=["*"])

    verdict = evaluator.evaluate(rule, caller, store_ids=(1, 2))

    assert not verdict.authorized
    assert verdict.granted_by == "deny-store-all"
    assert verdict.meta.per_store == {1: True, 2: False}
    assert verdict.meta.store_ids == (1, 2)
    assert verdict.meta.store_mode == "scoped"


def test_scoped_all_policy_allows_when_every_store_passes(
    evaluator: PolicyEvaluator, permissions: _FakePermissions
) -> None:
    permissions.per_store[(5, 1)] = frozenset({"orders.view"})
    permissions.per_store[(5, 2)] = frozenset({"orders.view"})
    rule = _rule(permissions_any=("orders.view",), store_scope_mode="scoped")

    verdict = evaluator.evaluate(rule, CallerFacts.build(user_id=5), store_ids=(1, 2))

    assert verdict.authorized
    assert verdict.granted_by == "store-all"


def test_scoped_any_policy_needs_one_store(
    evaluator: PolicyEvaluator, permissions: _FakePermissions
) -> None:
    permissions.per_store[(5, 2)] = frozenset({"orders.view"})
    rule = _rule(
        permissions_any=("orders.view",),
        store_scope_mode="scoped",
        store_match_policy="any",
    )

    allowed = evaluator.evaluate(rule, CallerFacts.build(user_id=5), store_ids=(1, 2))
    denied = evaluator.evaluate(rule, CallerFacts.build(user_id=6), store_ids=(1, 2))

    assert allowed.authorized and allowed.granted_by == "store-any"
    assert not denied.authorized and denied.granted_by == "deny-store-any"
    assert denied.meta.per_store == {1: False, 2: False}


def test_scoped_ignores_global_permissions(evaluator: PolicyEvaluator) -> None:
    rule = _rule(permissions_any=("orders.view",), store_scope_mode="scoped")
    caller = CallerFacts.build(user_id=5, permissions=["orders.view"])

    verdict = evaluator.evaluate(rule, caller, store_ids=(3,))

    assert not verdict.authorized
    assert verdict.meta.per_store == {3: False}


def test_scoped_without_store_ids_denies(evaluator: PolicyEvaluator) -> None:
    rule = _rule(permissions_any=("orders.view",), store_scope_mode="scoped")
    caller = CallerFacts.build(user_id=5, permissions=["orders.view"])

    verdict = evaluator.evaluate(rule, caller)

    assert not verdict.authorized
    assert verdict.granted_by == "deny-no-store"


def test_scoped_empty_allowed_falls_back_to_global(evaluator: PolicyEvaluator) -> None:
    rule = _rule(
        permissions_any=("orders.view",),
        store_scope_mode="scoped",
        store_allows_empty=True,
    )
    caller = CallerFacts.build(user_id=5, permissions=["orders.view"])

    verdict = evaluator.evaluate(rule, caller)

    assert verdict.authorized
    assert verdict.granted_by == "permissions_any"
    assert verdict.meta.store_mode == "scoped-empty-allowed"


def test_scoped_caller_without_user_has_no_store_permissions(
    evaluator: PolicyEvaluator, permissions: _FakePermissions
) -> None:
    rule = _rule(permissions_any=("orders.view",), store_scope_mode="scoped")

    verdict = evaluator.evaluate(rule, CallerFacts.build(), store_ids=(1,))

    assert not verdict.authorized
    assert permissions.calls == []


def test_all_stores_bypass_roles_and_permissions(evaluator: PolicyEvaluator) -> None:
    rule = _rule(
        permissions_any=("orders.view",),
        store_scope_mode="all_stores",
        store_all_access_roles_any=("auditor",),
        store_all_access_permissions_any=("stores.all",),
    )

    by_role = evaluator.evaluate(rule, CallerFacts.build(user_id=5, roles=["auditor"]))
    by_permission = evaluator.evaluate(
        rule, CallerFacts.build(user_id=5, permissions=["stores.all"], abilities=["stores.all"])
    )
    restricted_token = evaluator.evaluate(
        rule, CallerFacts.build(user_id=5, permissions=["stores.all"], abilities=["orders.view"])
    )

    assert by_role.granted_by == "store-all-access"
    assert by_permission.granted_by == "store-all-access"
    assert by_permission.meta.store_mode == "all-stores"
    assert restricted_token.granted_by == "deny-all-stores"


def test_all_stores_requires_full_coverage(
    evaluator: PolicyEvaluator, permissions: _FakePermissions
) -> None:
    rule = _rule(permissions_any=("orders.view",), store_scope_mode="all_stores")
    caller = CallerFacts.build(user_id=5, permissions=["orders.view"])

    denied = evaluator.evaluate(rule, caller)
    permissions.all_stores.add(5)
    allowed = evaluator.evaluate(rule, caller)

    assert not denied.authorized and denied.granted_by == "deny-all-stores"
    assert allowed.authorized and allowed.granted_by == "permissions_any"
    assert allowed.meta.store_mode == "all-stores"


def test_unknown_store_mode_denies(evaluator: PolicyEvaluator) -> None:
    rule = _rule(permissions_any=("orders.view",), store_scope_mode="per_region")
    caller = CallerFacts.build(user_id=5, permissions=["orders.view"])

    verdict = evaluator.evaluate(rule, caller)

    assert not verdict.authorized
    assert verdict.granted_by == "deny-invalid-store-mode"
    assert verdict.meta.store_mode == "per_region"


def test_store_ids_only_extracted_for_scoped_rules(evaluator: PolicyEvaluator) -> None:
    context = StoreContext.from_mapping({"path": {"store_id": 4}})

    assert evaluator.store_ids_for(_rule(store_scope_mode="scoped"), context) == (4,)
    assert evaluator.store_ids_for(_rule(store_scope_mode="none"), context) == ()
    assert evaluator.store_ids_for(_rule(store_scope_mode="scoped"), None) == ()


# ---------------------------------------------------------------------------
# Verdict rendering
# ---------------------------------------------------------------------------


def test_verdict_payload_and_cache_round_trip(
    evaluator: PolicyEvaluator, permissions: _FakePermissions
) -> None:
    permissions.per_store[(5, 1)] = frozenset({"orders.view"})
    rule = _rule(permissions_any=("orders.view",), store_scope_mode="scoped")
    verdict = evaluator.evaluate(rule, CallerFacts.build(user_id=5), store_ids=(1, 2))

    payload = verdict.to_payload()
    restored = Verdict.from_dict(verdict.to_dict())

    assert payload == {
        "authorized": False,
        "required_permissions": ["orders.view"],
        "granted_by": "deny-store-all",
        "store": {"store_ids": [1, 2], "store_mode": "scoped", "per_store": {1: True, 2: False}},
    }
    assert restored == verdict


def test_payload_omits_per_store_outside_scoped_checks(evaluator: PolicyEvaluator) -> None:
    verdict = evaluator.evaluate(_rule(permissions_any=("a",)), CallerFacts.build(user_id=1))

    assert "per_store" not in verdict.to_payload()["store"]
