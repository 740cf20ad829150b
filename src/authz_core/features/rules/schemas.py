from __future__ import annotations

from datetime import datetime
from typing import Any

from authz_core.common.schema import BaseSchema
from authz_db.models import HttpMethod, StoreMatchPolicy, StoreScopeMode


class StoreIdSourcesIn(BaseSchema):
    """Dotted keys per store-context bucket; omitted buckets are not searched."""

    path: list[str] | None = None
    query: list[str] | None = None
    body: list[str] | None = None


class AuthRuleCreate(BaseSchema):
    """Payload for creating an authorization rule."""

    service: str
    method: str = HttpMethod.ANY.value
    path_dsl: str | None = None
    route_name: str | None = None
    roles_any: list[str] | None = None
    permissions_any: list[str] | None = None
    permissions_all: list[str] | None = None
    store_scope_mode: str = StoreScopeMode.NONE.value
    store_id_sources: StoreIdSourcesIn | None = None
    store_match_policy: str = StoreMatchPolicy.ALL.value
    store_allows_empty: bool = False
    store_all_access_roles_any: list[str] | None = None
    store_all_access_permissions_any: list[str] | None = None
    is_active: bool = True
    priority: int = 100


class AuthRuleUpdate(BaseSchema):
    """Partial update; only fields present in the payload are applied."""

    service: str | None = None
    method: str | None = None
    path_dsl: str | None = None
    route_name: str | None = None
    roles_any: list[str] | None = None
    permissions_any: list[str] | None = None
    permissions_all: list[str] | None = None
    store_scope_mode: str | None = None
    store_id_sources: StoreIdSourcesIn | None = None
    store_match_policy: str | None = None
    store_allows_empty: bool | None = None
    store_all_access_roles_any: list[str] | None = None
    store_all_access_permissions_any: list[str] | None = None
    is_active: bool | None = None
    priority: int | None = None


class AuthRuleOut(BaseSchema):
    """Representation of a stored rule."""

    id: int
    service: str
    method: str
    path_dsl: str | None
    path_regex: str | None
    route_name: str | None
    roles_any: list[str] | None
    permissions_any: list[str] | None
    permissions_all: list[str] | None
    store_scope_mode: str
    store_id_sources: dict[str, Any] | None
    store_match_policy: str
    store_allows_empty: bool
    store_all_access_roles_any: list[str] | None
    store_all_access_permissions_any: list[str] | None
    is_active: bool
    priority: int
    created_at: datetime
    updated_at: datetime


class PathPreview(BaseSchema):
    """Result of compiling a pattern against a sample path without storing it."""

    path_pattern: str
    path_regex: str | None
    test_path: str
    matches: bool
    compiled: bool
    error: str | None = None


__all__ = [
    "AuthRuleCreate",
    "AuthRuleOut",
    "AuthRuleUpdate",
    "PathPreview",
    "StoreIdSourcesIn",
]
