"""Authorization entry point: super roles, rule selection, decision cache, evaluation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from authz_core.cache.decisions import DecisionCache
from authz_core.common.logging import log_context
from authz_core.features.permissions import CallerFacts, EffectivePermissionResolver
from authz_core.features.policy import (
    GrantReason,
    PolicyEvaluator,
    StoreContext,
    Verdict,
)
from authz_core.features.rules import AuthRuleService, RuleDefinition, select_rule
from authz_core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthorizationRequest:
    """What the caller service wants to do, as forwarded by the verification endpoint."""

    service: str
    method: str = "GET"
    path: str = "/"
    route_name: str | None = None
    store_context: StoreContext = field(default_factory=StoreContext)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> AuthorizationRequest:
        route_name = str(data.get("route_name") or "").strip()
        return cls(
            service=str(data.get("service") or "").strip(),
            method=str(data.get("method") or "GET").strip().upper(),
            path=str(data.get("path") or "/"),
            route_name=route_name or None,
            store_context=StoreContext.from_mapping(data.get("store_context")),
        )

    @property
    def target(self) -> str:
        if self.route_name:
            return f"route:{self.route_name}"
        return f"path:{self.path}"


class AuthorizationService:
    """Answer "may this caller perform METHOD on PATH/ROUTE of SERVICE?"."""

    def __init__(
        self,
        *,
        session: Session,
        cache: DecisionCache,
        settings: Settings | None = None,
        rules: AuthRuleService | None = None,
        resolver: EffectivePermissionResolver | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._cache = cache
        self._rules = rules or AuthRuleService(
            session=session,
            cache=cache,
            settings=self._settings,
        )
        self._resolver = resolver or EffectivePermissionResolver(
            session=session,
            cache=cache,
            settings=self._settings,
        )
        self._evaluator = PolicyEvaluator(permissions=self._resolver, settings=self._settings)

    def authorize(self, request: AuthorizationRequest, caller: CallerFacts) -> Verdict:
        method = (request.method or "GET").strip().upper()

        if not caller.roles.isdisjoint(self._settings.super_roles):
            return self._log(
                request,
                caller,
                Verdict(authorized=True, granted_by=GrantReason.SUPER_ROLE.value),
            )

        version = self._cache.ruleset_version()
        rules = self._rules.find_active_rules(request.service, method, version=version)
        rule = select_rule(rules, path=request.path, route_name=request.route_name)
        if rule is None:
            return self._log(
                request,
                caller,
                Verdict(
                    authorized=self._settings.allow_if_no_rule,
                    granted_by=GrantReason.NO_RULE.value,
                ),
            )

        store_ids = self._evaluator.store_ids_for(rule, request.store_context)
        if caller.user_id is None:
            verdict = self._evaluator.evaluate(rule, caller, store_ids=store_ids)
            return self._log(request, caller, verdict)

        key = self._cache.decision_key(
            version,
            rule_id=rule.id,
            service=request.service.lower(),
            method=method,
            target=request.target,
            user_id=caller.user_id,
            store_ids=store_ids,
            abilities=caller.abilities,
            roles=caller.roles,
            permissions=caller.permissions,
        )
        payload = self._cache.get_or_compute(
            key,
            self._settings.ttl_seconds(self._settings.decision_cache_ttl),
            lambda: self._evaluate(rule, caller, store_ids),
            label="decision",
        )
        return self._log(request, caller, Verdict.from_dict(payload))

    def _evaluate(
        self,
        rule: RuleDefinition,
        caller: CallerFacts,
        store_ids: tuple[int, ...],
    ) -> dict[str, Any]:
        return self._evaluator.evaluate(rule, caller, store_ids=store_ids).to_dict()

    def _log(
        self,
        request: AuthorizationRequest,
        caller: CallerFacts,
        verdict: Verdict,
    ) -> Verdict:
        logger.debug(
            "authz.decision",
            extra=log_context(
                service=request.service,
                rule_id=verdict.rule_id,
                user_id=caller.user_id,
                target=request.target,
                authorized=verdict.authorized,
                granted_by=verdict.granted_by,
            ),
        )
        return verdict


__all__ = ["AuthorizationRequest", "AuthorizationService"]
