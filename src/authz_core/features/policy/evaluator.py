"""Evaluate a selected rule against caller facts under its store-scope mode.

Every outcome, including misconfiguration of the rule itself, is a
:class:`Verdict`; nothing in here raises for authorization reasons.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from authz_core.features.permissions.caller import CallerFacts
from authz_core.settings import Settings, get_settings
from authz_db.models import StoreMatchPolicy, StoreScopeMode

from .store_context import StoreContext, extract_store_ids

if TYPE_CHECKING:
    from authz_core.features.rules.selection import RuleDefinition

logger = logging.getLogger(__name__)


class GrantReason(str, Enum):
    """Machine-readable ``granted_by`` codes."""

    SUPER_ROLE = "super-role"
    NO_RULE = "no-rule"
    ROLES = "roles"
    PERMISSIONS_ANY = "permissions_any"
    PERMISSIONS_ALL = "permissions_all"
    DENY = "deny"
    STORE_ALL_ACCESS = "store-all-access"
    STORE_ALL = "store-all"
    STORE_ANY = "store-any"
    DENY_STORE_ALL = "deny-store-all"
    DENY_STORE_ANY = "deny-store-any"
    DENY_NO_STORE = "deny-no-store"
    DENY_ALL_STORES = "deny-all-stores"
    DENY_INVALID_STORE_MODE = "deny-invalid-store-mode"


MODE_LABELS: dict[str, str] = {
    StoreScopeMode.NONE.value: "none",
    StoreScopeMode.SCOPED.value: "scoped",
    StoreScopeMode.ALL_STORES.value: "all-stores",
}
SCOPED_EMPTY_ALLOWED = "scoped-empty-allowed"


class StorePermissionSource(Protocol):
    def effective_permissions(self, user_id: int, store_id: int) -> frozenset[str]: ...

    def user_has_all_active_stores(self, user_id: int) -> bool: ...


@dataclass(frozen=True, slots=True)
class StoreMeta:
    store_ids: tuple[int, ...] = ()
    store_mode: str = "none"
    per_store: Mapping[int, bool] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "store_ids": list(self.store_ids),
            "store_mode": self.store_mode,
        }
        if self.per_store is not None:
            payload["per_store"] = dict(self.per_store)
        return payload


@dataclass(frozen=True, slots=True)
class Verdict:
    """Authorization outcome plus the reasoning behind it."""

    authorized: bool
    granted_by: str
    required_permissions: tuple[str, ...] = ()
    meta: StoreMeta = field(default_factory=StoreMeta)
    rule_id: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """Wire shape embedded in the token verification response."""

        return {
            "authorized": self.authorized,
            "required_permissions": list(self.required_permissions),
            "granted_by": self.granted_by,
            "store": self.meta.to_payload(),
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.to_payload()
        data["rule_id"] = self.rule_id
        if self.meta.per_store is not None:
            # JSON object keys are strings.
            data["store"]["per_store"] = {
                str(store_id): allowed for store_id, allowed in self.meta.per_store.items()
            }
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Verdict:
        store = data.get("store") or {}
        per_store = store.get("per_store")
        return cls(
            authorized=bool(data["authorized"]),
            granted_by=str(data["granted_by"]),
            required_permissions=tuple(data.get("required_permissions") or ()),
            meta=StoreMeta(
                store_ids=tuple(int(store_id) for store_id in store.get("store_ids") or ()),
                store_mode=str(store.get("store_mode", "none")),
                per_store=(
                    {int(store_id): bool(allowed) for store_id, allowed in per_store.items()}
                    if per_store is not None
                    else None
                ),
            ),
            rule_id=data.get("rule_id"),
        )


# ---------------------------------------------------------------------------
# Coverage helpers
# ---------------------------------------------------------------------------


def abilities_cover_any(
    abilities: Iterable[str],
    permissions: Iterable[str],
    *,
    wildcard: str,
) -> bool:
    abilities = frozenset(abilities)
    if not abilities or wildcard in abilities:
        return True
    return not abilities.isdisjoint(permissions)


def abilities_cover_all(
    abilities: Iterable[str],
    permissions: Iterable[str],
    *,
    wildcard: str,
) -> bool:
    abilities = frozenset(abilities)
    if not abilities or wildcard in abilities:
        return True
    return abilities.issuperset(permissions)


def evaluate_permissions(
    rule: RuleDefinition,
    permissions: Iterable[str],
    abilities: Iterable[str],
    *,
    wildcard: str = "*",
) -> Verdict:
    """Check ``permissions_any`` then ``permissions_all`` against one permission set."""

    held = frozenset(permissions)
    abilities = frozenset(abilities)
    if rule.permissions_any and not held.isdisjoint(rule.permissions_any):
        if abilities_cover_any(abilities, rule.permissions_any, wildcard=wildcard):
            return Verdict(
                authorized=True,
                granted_by=GrantReason.PERMISSIONS_ANY.value,
                required_permissions=rule.permissions_any,
                rule_id=rule.id,
            )
    if rule.permissions_all and held.issuperset(rule.permissions_all):
        if abilities_cover_all(abilities, rule.permissions_all, wildcard=wildcard):
            return Verdict(
                authorized=True,
                granted_by=GrantReason.PERMISSIONS_ALL.value,
                required_permissions=rule.permissions_all,
                rule_id=rule.id,
            )
    return Verdict(
        authorized=False,
        granted_by=GrantReason.DENY.value,
        required_permissions=rule.permissions_any or rule.permissions_all,
        rule_id=rule.id,
    )


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class PolicyEvaluator:
    """Dispatch a rule on its store-scope mode and produce a :class:`Verdict`."""

    def __init__(
        self,
        *,
        permissions: StorePermissionSource,
        settings: Settings | None = None,
    ) -> None:
        self._permissions = permissions
        self._settings = settings or get_settings()

    @property
    def wildcard(self) -> str:
        return self._settings.wildcard_ability

    def store_ids_for(self, rule: RuleDefinition, context: StoreContext | None) -> tuple[int, ...]:
        """Candidate store ids for ``rule``; only scoped rules look at the context."""

        if rule.store_scope_mode != StoreScopeMode.SCOPED.value or context is None:
            return ()
        return extract_store_ids(context, rule.store_id_sources)

    def evaluate(
        self,
        rule: RuleDefinition,
        caller: CallerFacts,
        *,
        store_ids: Sequence[int] = (),
    ) -> Verdict:
        store_ids = tuple(store_ids)
        mode = rule.store_scope_mode

        if rule.roles_any and not caller.roles.isdisjoint(rule.roles_any):
            return Verdict(
                authorized=True,
                granted_by=GrantReason.ROLES.value,
                meta=StoreMeta(store_ids=store_ids, store_mode=MODE_LABELS.get(mode, mode)),
                rule_id=rule.id,
            )

        if mode == StoreScopeMode.NONE.value:
            verdict = evaluate_permissions(
                rule, caller.permissions, caller.abilities, wildcard=self.wildcard
            )
            return replace(verdict, meta=StoreMeta(store_mode=MODE_LABELS[mode]))
        if mode == StoreScopeMode.SCOPED.value:
            return self._evaluate_scoped(rule, caller, store_ids)
        if mode == StoreScopeMode.ALL_STORES.value:
            return self._evaluate_all_stores(rule, caller)

        logger.warning(
            "authz.policy.store_mode.invalid",
            extra={"rule_id": rule.id, "store_scope_mode": mode},
        )
        return Verdict(
            authorized=False,
            granted_by=GrantReason.DENY_INVALID_STORE_MODE.value,
            required_permissions=rule.permissions_any or rule.permissions_all,
            meta=StoreMeta(store_ids=store_ids, store_mode=str(mode)),
            rule_id=rule.id,
        )

    def _evaluate_scoped(
        self,
        rule: RuleDefinition,
        caller: CallerFacts,
        store_ids: tuple[int, ...],
    ) -> Verdict:
        if not store_ids:
            if rule.store_allows_empty:
                verdict = evaluate_permissions(
                    rule, caller.permissions, caller.abilities, wildcard=self.wildcard
                )
                return replace(verdict, meta=StoreMeta(store_mode=SCOPED_EMPTY_ALLOWED))
            return Verdict(
                authorized=False,
                granted_by=GrantReason.DENY_NO_STORE.value,
                required_permissions=rule.permissions_any or rule.permissions_all,
                meta=StoreMeta(store_mode=MODE_LABELS[StoreScopeMode.SCOPED.value]),
                rule_id=rule.id,
            )

        per_store: dict[int, bool] = {}
        for store_id in store_ids:
            if caller.user_id is None:
                held: frozenset[str] = frozenset()
            else:
                held = self._permissions.effective_permissions(caller.user_id, store_id)
            per_store[store_id] = evaluate_permissions(
                rule, held, caller.abilities, wildcard=self.wildcard
            ).authorized

        if rule.store_match_policy == StoreMatchPolicy.ANY.value:
            authorized = any(per_store.values())
            reason = GrantReason.STORE_ANY if authorized else GrantReason.DENY_STORE_ANY
        else:
            # Unknown policies get the strictest treatment.
            authorized = all(per_store.values())
            reason = GrantReason.STORE_ALL if authorized else GrantReason.DENY_STORE_ALL

        return Verdict(
            authorized=authorized,
            granted_by=reason.value,
            required_permissions=rule.permissions_any or rule.permissions_all,
            meta=StoreMeta(
                store_ids=store_ids,
                store_mode=MODE_LABELS[StoreScopeMode.SCOPED.value],
                per_store=per_store,
            ),
            rule_id=rule.id,
        )

    def _evaluate_all_stores(self, rule: RuleDefinition, caller: CallerFacts) -> Verdict:
        meta = StoreMeta(store_mode=MODE_LABELS[StoreScopeMode.ALL_STORES.value])

        bypass_roles = rule.store_all_access_roles_any
        bypass_permissions = rule.store_all_access_permissions_any
        if (bypass_roles and not caller.roles.isdisjoint(bypass_roles)) or (
            bypass_permissions
            and not caller.permissions.isdisjoint(bypass_permissions)
            and abilities_cover_any(caller.abilities, bypass_permissions, wildcard=self.wildcard)
        ):
            return Verdict(
                authorized=True,
                granted_by=GrantReason.STORE_ALL_ACCESS.value,
                required_permissions=bypass_permissions,
                meta=meta,
                rule_id=rule.id,
            )

        if caller.user_id is None or not self._permissions.user_has_all_active_stores(
            caller.user_id
        ):
            return Verdict(
                authorized=False,
                granted_by=GrantReason.DENY_ALL_STORES.value,
                required_permissions=rule.permissions_any or rule.permissions_all,
                meta=meta,
                rule_id=rule.id,
            )

        verdict = evaluate_permissions(
            rule, caller.permissions, caller.abilities, wildcard=self.wildcard
        )
        return replace(verdict, meta=meta)


__all__ = [
    "GrantReason",
    "MODE_LABELS",
    "PolicyEvaluator",
    "StoreMeta",
    "StorePermissionSource",
    "Verdict",
    "abilities_cover_all",
    "abilities_cover_any",
    "evaluate_permissions",
]
