"""Authorization rule table and the value sets its string columns accept."""

from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, String, false, true
from sqlalchemy.orm import Mapped, mapped_column

from authz_db.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class HttpMethod(str, Enum):
    """Methods a rule can be bound to; ``ANY`` matches every method."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    ANY = "ANY"


class StoreScopeMode(str, Enum):
    """How a rule treats store (tenant) context."""

    NONE = "none"
    SCOPED = "scoped"
    ALL_STORES = "all_stores"


class StoreMatchPolicy(str, Enum):
    """Combination rule for scoped checks spanning several stores."""

    ALL = "all"
    ANY = "any"


class AuthRule(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Data-driven authorization rule for one (service, method, target).

    Mode and policy columns are plain strings: values are validated on write,
    and a value the evaluator does not recognise must still load so that it
    can be denied instead of crashing the lookup.
    """

    __tablename__ = "auth_rules"

    service: Mapped[str] = mapped_column(String(190), nullable=False)
    method: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=HttpMethod.ANY.value,
        server_default=HttpMethod.ANY.value,
    )

    path_dsl: Mapped[str | None] = mapped_column(String(190), nullable=True)
    path_regex: Mapped[str | None] = mapped_column(String(600), nullable=True)
    route_name: Mapped[str | None] = mapped_column(String(190), nullable=True)

    roles_any: Mapped[list[str] | None] = mapped_column(JSON(), nullable=True)
    permissions_any: Mapped[list[str] | None] = mapped_column(JSON(), nullable=True)
    permissions_all: Mapped[list[str] | None] = mapped_column(JSON(), nullable=True)

    store_scope_mode: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=StoreScopeMode.NONE.value,
        server_default=StoreScopeMode.NONE.value,
    )
    store_id_sources: Mapped[dict[str, Any] | None] = mapped_column(JSON(), nullable=True)
    store_match_policy: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=StoreMatchPolicy.ALL.value,
        server_default=StoreMatchPolicy.ALL.value,
    )
    store_allows_empty: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    store_all_access_roles_any: Mapped[list[str] | None] = mapped_column(JSON(), nullable=True)
    store_all_access_permissions_any: Mapped[list[str] | None] = mapped_column(
        JSON(), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (
        Index("ix_auth_rules_service", "service"),
        Index("ix_auth_rules_route_name", "route_name"),
        Index("ix_auth_rules_lookup", "service", "method", "is_active", "priority"),
    )


__all__ = ["AuthRule", "HttpMethod", "StoreMatchPolicy", "StoreScopeMode"]
