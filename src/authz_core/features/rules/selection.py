"""Rule snapshots and the two-phase rule selection algorithm."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from authz_core.features.policy.store_context import StoreIdSources
from authz_db.models import AuthRule, StoreMatchPolicy, StoreScopeMode

from .pathdsl import regex_matches

logger = logging.getLogger(__name__)

_LIST_FIELDS = (
    "roles_any",
    "permissions_any",
    "permissions_all",
    "store_all_access_roles_any",
    "store_all_access_permissions_any",
)


def _names(values: Iterable[Any] | None) -> tuple[str, ...]:
    if not values:
        return ()
    return tuple(dict.fromkeys(str(value) for value in values if str(value).strip()))


def _sources(rule_id: int, raw: Mapping[str, Any] | None) -> StoreIdSources:
    try:
        return StoreIdSources.from_mapping(raw)
    except (TypeError, ValueError):
        logger.warning("authz.rules.store_sources.invalid", extra={"rule_id": rule_id})
        return StoreIdSources(path=(), query=(), body=())


@dataclass(frozen=True, slots=True)
class RuleDefinition:
    """Immutable, cacheable snapshot of an active :class:`AuthRule`."""

    id: int
    service: str
    method: str
    priority: int = 0
    route_name: str | None = None
    path_dsl: str | None = None
    path_regex: str | None = None
    roles_any: tuple[str, ...] = ()
    permissions_any: tuple[str, ...] = ()
    permissions_all: tuple[str, ...] = ()
    store_scope_mode: str = StoreScopeMode.NONE.value
    store_id_sources: StoreIdSources = field(default_factory=StoreIdSources)
    store_match_policy: str = StoreMatchPolicy.ALL.value
    store_allows_empty: bool = False
    store_all_access_roles_any: tuple[str, ...] = ()
    store_all_access_permissions_any: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, rule: AuthRule) -> RuleDefinition:
        return cls(
            id=rule.id,
            service=rule.service,
            method=rule.method,
            priority=rule.priority,
            route_name=rule.route_name or None,
            path_dsl=rule.path_dsl or None,
            path_regex=rule.path_regex or None,
            store_scope_mode=rule.store_scope_mode,
            store_id_sources=_sources(rule.id, rule.store_id_sources),
            store_match_policy=rule.store_match_policy,
            store_allows_empty=bool(rule.store_allows_empty),
            **{name: _names(getattr(rule, name)) for name in _LIST_FIELDS},
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RuleDefinition:
        values = dict(data)
        for name in _LIST_FIELDS:
            values[name] = _names(values.get(name))
        values["store_id_sources"] = _sources(values["id"], values.get("store_id_sources"))
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "service": self.service,
            "method": self.method,
            "priority": self.priority,
            "route_name": self.route_name,
            "path_dsl": self.path_dsl,
            "path_regex": self.path_regex,
            "store_scope_mode": self.store_scope_mode,
            "store_id_sources": self.store_id_sources.to_dict(),
            "store_match_policy": self.store_match_policy,
            "store_allows_empty": self.store_allows_empty,
            **{name: list(getattr(self, name)) for name in _LIST_FIELDS},
        }

    @property
    def target(self) -> str:
        return self.route_name or self.path_dsl or ""

    def matches_path(self, path: str) -> bool:
        # A route-bound rule is never matched by path.
        if self.route_name:
            return False
        return regex_matches(self.path_regex, path)


def order_rules(rules: Iterable[RuleDefinition]) -> list[RuleDefinition]:
    """Priority descending, then id ascending."""

    return sorted(rules, key=lambda rule: (-rule.priority, rule.id))


def select_rule(
    rules: Iterable[RuleDefinition],
    *,
    path: str,
    route_name: str | None = None,
) -> RuleDefinition | None:
    """Pick the single rule governing a request.

    An exact route-name binding always wins, even over a higher-priority path
    rule. Otherwise the first path match in priority order is selected.
    """

    ordered = order_rules(rules)
    if route_name:
        for rule in ordered:
            if rule.route_name == route_name:
                return rule
    for rule in ordered:
        if rule.matches_path(path):
            return rule
    return None


__all__ = ["RuleDefinition", "order_rules", "select_rule"]
