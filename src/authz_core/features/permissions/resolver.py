"""Per-store effective roles and permissions derived from the role hierarchy."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from authz_core.cache.decisions import DecisionCache
from authz_core.features.hierarchy import RoleHierarchyService
from authz_core.settings import Settings, get_settings
from authz_db.models import Permission, Role, RolePermission, Store, UserRoleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EffectiveRole:
    """Role a user holds in a store, directly or through a role they manage."""

    role_id: int
    name: str
    inherited: bool


class EffectivePermissionResolver:
    """Resolve what a user can do inside a store.

    Effective roles are the user's direct active roles in the store plus every
    role those roles transitively manage there. Effective permissions are the
    union of the permissions attached to the effective roles.
    """

    def __init__(
        self,
        *,
        session: Session,
        cache: DecisionCache | None = None,
        settings: Settings | None = None,
        hierarchy: RoleHierarchyService | None = None,
    ) -> None:
        self._session = session
        self._cache = cache
        self._settings = settings or get_settings()
        self._hierarchy = hierarchy or RoleHierarchyService(
            session=session,
            cache=cache,
            settings=self._settings,
        )

    # ------------- roles -----------------

    def _direct_role_ids(self, user_id: int, store_id: int) -> list[int]:
        stmt = (
            select(UserRoleStore.role_id)
            .where(
                UserRoleStore.user_id == user_id,
                UserRoleStore.store_id == store_id,
                UserRoleStore.is_active.is_(True),
            )
            .order_by(UserRoleStore.role_id)
        )
        return list(self._session.execute(stmt).scalars())

    def store_roles(self, user_id: int, store_id: int) -> list[Role]:
        """Direct active roles of the user in the store."""

        role_ids = self._direct_role_ids(user_id, store_id)
        if not role_ids:
            return []
        stmt = select(Role).where(Role.id.in_(role_ids)).order_by(Role.name)
        return list(self._session.execute(stmt).scalars())

    def _effective_role_ids(self, user_id: int, store_id: int) -> tuple[set[int], set[int]]:
        direct = set(self._direct_role_ids(user_id, store_id))
        inherited: set[int] = set()
        for role_id in direct:
            inherited |= self._hierarchy.transitive_lower_role_ids(role_id, store_id)
        return direct, inherited - direct

    def effective_roles(self, user_id: int, store_id: int) -> list[EffectiveRole]:
        direct, inherited = self._effective_role_ids(user_id, store_id)
        role_ids = direct | inherited
        if not role_ids:
            return []
        stmt = select(Role.id, Role.name).where(Role.id.in_(role_ids)).order_by(Role.name)
        return [
            EffectiveRole(role_id=role_id, name=name, inherited=role_id in inherited)
            for role_id, name in self._session.execute(stmt).all()
        ]

    # ------------- permissions -----------------

    def _compute_permissions(self, user_id: int, store_id: int) -> list[str]:
        direct, inherited = self._effective_role_ids(user_id, store_id)
        role_ids = direct | inherited
        if not role_ids:
            return []
        stmt = (
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id.in_(role_ids))
            .distinct()
            .order_by(Permission.name)
        )
        return list(self._session.execute(stmt).scalars())

    def effective_permissions(self, user_id: int, store_id: int) -> frozenset[str]:
        if self._cache is None:
            return frozenset(self._compute_permissions(user_id, store_id))
        names = self._cache.get_or_compute(
            self._cache.effective_permissions_key(user_id, store_id),
            self._settings.ttl_seconds(self._settings.effective_permissions_cache_ttl),
            lambda: self._compute_permissions(user_id, store_id),
            label="effective_permissions",
        )
        return frozenset(names)

    def has_permission_in_store(self, user_id: int, permission: str, store_id: int) -> bool:
        return permission in self.effective_permissions(user_id, store_id)

    # ------------- store coverage -----------------

    def _compute_has_all_active_stores(self, user_id: int) -> bool:
        active_stores = set(
            self._session.execute(select(Store.id).where(Store.is_active.is_(True))).scalars()
        )
        if not active_stores:
            return True
        assigned = set(
            self._session.execute(
                select(func.distinct(UserRoleStore.store_id)).where(
                    UserRoleStore.user_id == user_id,
                    UserRoleStore.is_active.is_(True),
                )
            ).scalars()
        )
        return active_stores <= assigned

    def user_has_all_active_stores(self, user_id: int) -> bool:
        """True iff the user holds an active assignment in every active store."""

        if self._cache is None:
            return self._compute_has_all_active_stores(user_id)
        return bool(
            self._cache.get_or_compute(
                self._cache.all_stores_key(user_id),
                self._settings.ttl_seconds(self._settings.all_stores_cache_ttl),
                lambda: self._compute_has_all_active_stores(user_id),
                label="all_stores",
            )
        )

    # ------------- relative standing -----------------

    def can_act_on_user_in_store(self, actor_id: int, target_id: int, store_id: int) -> bool:
        """True iff one of the actor's effective roles manages one of the target's."""

        actor_direct, actor_inherited = self._effective_role_ids(actor_id, store_id)
        target_direct, target_inherited = self._effective_role_ids(target_id, store_id)
        target_roles = target_direct | target_inherited
        if not target_roles:
            return False
        for role_id in actor_direct | actor_inherited:
            if self._hierarchy.transitive_lower_role_ids(role_id, store_id) & target_roles:
                return True
        return False


__all__ = ["EffectivePermissionResolver", "EffectiveRole"]
