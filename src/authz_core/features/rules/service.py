"""Authorization rule store: CRUD, compile-on-write and cached active lookups."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from authz_core.cache.decisions import DecisionCache
from authz_core.common.errors import PathPatternError, RuleNotFoundError, RuleValidationError
from authz_core.common.logging import log_context
from authz_core.settings import Settings, get_settings
from authz_db import enum_values
from authz_db.models import AuthRule, HttpMethod, StoreMatchPolicy, StoreScopeMode

from .pathdsl import compile_path_pattern
from .schemas import AuthRuleCreate, AuthRuleUpdate, PathPreview
from .selection import RuleDefinition

logger = logging.getLogger(__name__)

_METHODS = frozenset(enum_values(HttpMethod))
_SCOPE_MODES = frozenset(enum_values(StoreScopeMode))
_MATCH_POLICIES = frozenset(enum_values(StoreMatchPolicy))

_NAME_LIST_FIELDS = (
    "roles_any",
    "permissions_any",
    "permissions_all",
    "store_all_access_roles_any",
    "store_all_access_permissions_any",
)
_NOT_NULL_FIELDS = (
    "method",
    "store_scope_mode",
    "store_match_policy",
    "store_allows_empty",
    "is_active",
    "priority",
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def _normalize_method(value: str | None) -> str:
    candidate = (value or "").strip().upper()
    return candidate or HttpMethod.ANY.value


def _normalize_names(values: Sequence[str] | None) -> list[str] | None:
    if values is None:
        return None
    cleaned = [value.strip() for value in values if value and value.strip()]
    return list(dict.fromkeys(cleaned)) or None


def _normalize_sources(value: Any) -> dict[str, list[str]] | None:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        value = value.model_dump(exclude_none=True)
    cleaned = {
        bucket: list(dict.fromkeys(key.strip() for key in keys if key and key.strip()))
        for bucket, keys in value.items()
        if keys is not None
    }
    return cleaned or None


def _rule_state(rule: AuthRule) -> dict[str, Any]:
    return {
        "service": rule.service,
        "method": rule.method,
        "path_dsl": rule.path_dsl,
        "route_name": rule.route_name,
        "store_scope_mode": rule.store_scope_mode,
        "store_match_policy": rule.store_match_policy,
        "store_allows_empty": rule.store_allows_empty,
        "is_active": rule.is_active,
        "priority": rule.priority,
    }


def _validate(state: dict[str, Any]) -> tuple[list[str], str | None]:
    """Collect every problem with a merged rule state; also compile the path."""

    errors: list[str] = []
    path_regex: str | None = None

    nulls = [name for name in _NOT_NULL_FIELDS if state.get(name) is None]
    errors.extend(f"{name} must not be null" for name in nulls)

    if not state.get("service"):
        errors.append("service is required")
    if "method" not in nulls and state["method"] not in _METHODS:
        errors.append(f"method must be one of: {', '.join(sorted(_METHODS))}")
    if "store_scope_mode" not in nulls and state["store_scope_mode"] not in _SCOPE_MODES:
        errors.append(f"store_scope_mode must be one of: {', '.join(sorted(_SCOPE_MODES))}")
    if (
        "store_match_policy" not in nulls
        and state["store_match_policy"] not in _MATCH_POLICIES
    ):
        errors.append(
            f"store_match_policy must be one of: {', '.join(sorted(_MATCH_POLICIES))}"
        )

    if state.get("route_name"):
        return errors, None
    if not state.get("path_dsl"):
        errors.append("route_name or path_dsl is required")
        return errors, None
    try:
        matcher = compile_path_pattern(state["path_dsl"])
    except PathPatternError as exc:
        errors.append(str(exc))
    else:
        path_regex = matcher.regex if matcher is not None else None
    return errors, path_regex


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuthRuleService:
    """Rule CRUD plus the cached ``(service, method)`` lookup used at decision time.

    Every mutation bumps the ruleset version so cached rule lists and
    decisions computed from the previous rules are never served again.
    """

    def __init__(
        self,
        *,
        session: Session,
        cache: DecisionCache,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._cache = cache
        self._settings = settings or get_settings()

    # ------------- queries -----------------

    def get_rule(self, rule_id: int) -> AuthRule:
        rule = self._session.get(AuthRule, rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    def list_rules(
        self,
        *,
        service: str | None = None,
        search: str | None = None,
    ) -> list[AuthRule]:
        stmt = select(AuthRule)
        if service:
            stmt = stmt.where(func.lower(AuthRule.service) == service.strip().lower())
        term = _normalize_text(search)
        if term:
            like = f"%{term}%"
            stmt = stmt.where(
                or_(
                    AuthRule.service.ilike(like),
                    AuthRule.path_dsl.ilike(like),
                    AuthRule.route_name.ilike(like),
                )
            )
        stmt = stmt.order_by(AuthRule.service, AuthRule.priority.desc(), AuthRule.id)
        return list(self._session.execute(stmt).scalars())

    def list_services(self) -> list[str]:
        stmt = select(AuthRule.service).distinct().order_by(AuthRule.service)
        return list(self._session.execute(stmt).scalars())

    def _load_active_rules(self, service: str, method: str) -> list[RuleDefinition]:
        stmt = (
            select(AuthRule)
            .where(
                func.lower(AuthRule.service) == service.lower(),
                AuthRule.is_active.is_(True),
                AuthRule.method.in_((method, HttpMethod.ANY.value)),
            )
            .order_by(AuthRule.priority.desc(), AuthRule.id)
        )
        return [RuleDefinition.from_model(rule) for rule in self._session.execute(stmt).scalars()]

    def find_active_rules(
        self,
        service: str,
        method: str,
        *,
        version: int | None = None,
    ) -> list[RuleDefinition]:
        """Active rules for ``service`` bound to ``method`` or ``ANY``.

        Ordered by priority descending, then id ascending. Cached under the
        current ruleset version, or under ``version`` when the caller already
        read it for the same request.
        """

        service = service.strip()
        method = _normalize_method(method)
        if version is None:
            version = self._cache.ruleset_version()
        key = self._cache.rules_key(version, service.lower(), method)
        payload = self._cache.get_or_compute(
            key,
            self._settings.ttl_seconds(self._settings.ruleset_cache_ttl),
            lambda: [rule.to_dict() for rule in self._load_active_rules(service, method)],
            label="ruleset",
        )
        return [RuleDefinition.from_dict(item) for item in payload]

    def preview_path(self, path_pattern: str, test_path: str) -> PathPreview:
        """Compile ``path_pattern`` and test it against ``test_path`` without storing."""

        try:
            matcher = compile_path_pattern(path_pattern)
        except PathPatternError as exc:
            return PathPreview(
                path_pattern=path_pattern,
                path_regex=None,
                test_path=test_path,
                matches=False,
                compiled=False,
                error=str(exc),
            )
        return PathPreview(
            path_pattern=path_pattern,
            path_regex=matcher.regex if matcher else None,
            test_path=test_path,
            matches=bool(matcher and matcher.matches(test_path)),
            compiled=matcher is not None,
        )

    # ------------- mutations -----------------

    def _apply(self, rule: AuthRule, changes: dict[str, Any]) -> None:
        for name, value in changes.items():
            if name in _NAME_LIST_FIELDS:
                value = _normalize_names(value)
            elif name == "store_id_sources":
                value = _normalize_sources(value)
            elif name in ("service", "path_dsl", "route_name"):
                value = _normalize_text(value)
            elif value is None:
                pass
            elif name == "method":
                value = _normalize_method(value)
            elif name in ("store_scope_mode", "store_match_policy"):
                value = value.strip().lower()
            setattr(rule, name, value)

    def _validate_and_compile(self, rule: AuthRule, *, path_changed: bool) -> None:
        errors, path_regex = _validate(_rule_state(rule))
        if errors:
            logger.debug(
                "authz.rules.validation.failed",
                extra=log_context(service=rule.service, rule_id=rule.id, errors=errors),
            )
            raise RuleValidationError(errors)
        if rule.route_name:
            rule.path_dsl = None
            rule.path_regex = None
        elif path_changed or rule.path_regex is None:
            rule.path_regex = path_regex

    def create_rule(self, payload: AuthRuleCreate) -> AuthRule:
        rule = AuthRule()
        changes = payload.model_dump(exclude={"store_id_sources"})
        changes["store_id_sources"] = payload.store_id_sources
        self._apply(rule, changes)
        self._validate_and_compile(rule, path_changed=True)

        self._session.add(rule)
        self._session.flush([rule])
        self._cache.bump_version()
        logger.info(
            "authz.rules.create.success",
            extra=log_context(service=rule.service, rule_id=rule.id, method=rule.method),
        )
        return rule

    def create_rules(self, payload: AuthRuleCreate, methods: Sequence[str]) -> list[AuthRule]:
        """Create one rule per method from a shared payload."""

        normalized = list(dict.fromkeys(_normalize_method(method) for method in methods))
        if not normalized:
            return [self.create_rule(payload)]
        invalid = [method for method in normalized if method not in _METHODS]
        if invalid:
            raise RuleValidationError(
                [f"method must be one of: {', '.join(sorted(_METHODS))}"]
            )
        return [
            self.create_rule(payload.model_copy(update={"method": method}))
            for method in normalized
        ]

    def update_rule(self, rule_id: int, payload: AuthRuleUpdate) -> AuthRule:
        rule = self.get_rule(rule_id)
        changes = payload.model_dump(exclude_unset=True, exclude={"store_id_sources"})
        if "store_id_sources" in payload.model_fields_set:
            changes["store_id_sources"] = payload.store_id_sources
        path_changed = "path_dsl" in changes and (
            _normalize_text(changes["path_dsl"]) != rule.path_dsl
        )
        self._apply(rule, changes)
        try:
            self._validate_and_compile(rule, path_changed=path_changed)
        except RuleValidationError:
            self._session.expire(rule)
            raise

        self._session.flush([rule])
        self._cache.bump_version()
        logger.info(
            "authz.rules.update.success",
            extra=log_context(
                service=rule.service,
                rule_id=rule.id,
                fields=sorted(changes),
            ),
        )
        return rule

    def delete_rule(self, rule_id: int) -> None:
        rule = self.get_rule(rule_id)
        service = rule.service
        self._session.delete(rule)
        self._session.flush()
        self._cache.bump_version()
        logger.info(
            "authz.rules.delete.success",
            extra=log_context(service=service, rule_id=rule_id),
        )

    def toggle_active(self, rule_id: int, is_active: bool | None = None) -> AuthRule:
        """Flip (or set) the active flag."""

        rule = self.get_rule(rule_id)
        rule.is_active = (not rule.is_active) if is_active is None else is_active
        self._session.flush([rule])
        self._cache.bump_version()
        logger.info(
            "authz.rules.toggle.success",
            extra=log_context(service=rule.service, rule_id=rule.id, is_active=rule.is_active),
        )
        return rule


__all__ = ["AuthRuleService"]
