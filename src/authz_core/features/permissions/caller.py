"""Caller facts: the verified identity the oracle evaluates rules against."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from authz_db.models import Permission, Role, RolePermission, UserPermission, UserRole


def _frozen(values: Iterable[str] | None) -> frozenset[str]:
    if not values:
        return frozenset()
    return frozenset(value.strip() for value in values if value and value.strip())


@dataclass(frozen=True, slots=True)
class CallerFacts:
    """Global roles, global permissions and token abilities of one caller.

    Built once at the boundary, whether the caller is a user token or a
    service credential. ``abilities`` empty means the token is unrestricted.
    """

    user_id: int | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)
    abilities: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        *,
        user_id: int | None = None,
        roles: Iterable[str] | None = None,
        permissions: Iterable[str] | None = None,
        abilities: Iterable[str] | None = None,
    ) -> CallerFacts:
        return cls(
            user_id=user_id,
            roles=_frozen(roles),
            permissions=_frozen(permissions),
            abilities=_frozen(abilities),
        )


def load_caller_facts(
    session: Session,
    user_id: int,
    abilities: Iterable[str] | None = None,
) -> CallerFacts:
    """Load a user's global roles and permissions (role-derived plus direct)."""

    role_rows = session.execute(
        select(Role.id, Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
    ).all()
    role_ids = [role_id for role_id, _ in role_rows]

    permissions: set[str] = set()
    if role_ids:
        permissions.update(
            session.execute(
                select(Permission.name)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .where(RolePermission.role_id.in_(role_ids))
            ).scalars()
        )
    permissions.update(
        session.execute(
            select(Permission.name)
            .join(UserPermission, UserPermission.permission_id == Permission.id)
            .where(UserPermission.user_id == user_id)
        ).scalars()
    )

    return CallerFacts.build(
        user_id=user_id,
        roles=[name for _, name in role_rows],
        permissions=permissions,
        abilities=abilities,
    )


__all__ = ["CallerFacts", "load_caller_facts"]
