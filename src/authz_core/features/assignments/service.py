"""User role assignments per store (the data behind effective permissions)."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authz_core.cache.decisions import DecisionCache
from authz_core.common.errors import AssignmentValidationError
from authz_core.common.logging import log_context
from authz_db.models import Role, Store, User, UserRoleStore

from .schemas import StoreAssignmentIn

logger = logging.getLogger(__name__)


class StoreAssignmentService:
    """Grant, revoke and list store-scoped role assignments.

    Each mutation drops the affected user's cached effective permissions for
    the store and their cached "has all active stores" answer.
    """

    def __init__(self, *, session: Session, cache: DecisionCache | None = None) -> None:
        self._session = session
        self._cache = cache

    def _invalidate(self, user_id: int, store_id: int) -> None:
        if self._cache is not None:
            self._cache.invalidate_user_store(user_id, store_id)

    def _find(self, user_id: int, role_id: int, store_id: int) -> UserRoleStore | None:
        stmt = select(UserRoleStore).where(
            UserRoleStore.user_id == user_id,
            UserRoleStore.role_id == role_id,
            UserRoleStore.store_id == store_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def validate_assignment(self, user_id: int, role_id: int, store_id: int) -> list[str]:
        errors: list[str] = []
        if self._session.get(User, user_id) is None:
            errors.append("User does not exist")
        if self._session.get(Role, role_id) is None:
            errors.append("Role does not exist")
        if self._session.get(Store, store_id) is None:
            errors.append("Store does not exist")
        if not errors and self._find(user_id, role_id, store_id) is not None:
            errors.append("User already has this role in this store")
        return errors

    def assign(
        self,
        user_id: int,
        role_id: int,
        store_id: int,
        *,
        metadata: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> UserRoleStore:
        errors = self.validate_assignment(user_id, role_id, store_id)
        if errors:
            raise AssignmentValidationError(errors)

        assignment = UserRoleStore(
            user_id=user_id,
            role_id=role_id,
            store_id=store_id,
            metadata_payload=metadata,
            is_active=is_active,
        )
        self._session.add(assignment)
        try:
            self._session.flush([assignment])
        except IntegrityError as exc:
            logger.debug(
                "authz.assignments.assign.conflict",
                extra=log_context(user_id=user_id, store_id=store_id, role_id=role_id),
            )
            raise AssignmentValidationError("User already has this role in this store") from exc

        self._invalidate(user_id, store_id)
        logger.info(
            "authz.assignments.assign.success",
            extra=log_context(user_id=user_id, store_id=store_id, role_id=role_id),
        )
        return assignment

    def bulk_assign(
        self,
        user_id: int,
        assignments: Sequence[StoreAssignmentIn],
    ) -> list[UserRoleStore]:
        """Assign several roles at once; nothing is written if any entry is invalid."""

        errors: list[str] = []
        seen: set[tuple[int, int]] = set()
        for index, item in enumerate(assignments):
            key = (item.role_id, item.store_id)
            if key in seen:
                errors.append(f"assignments[{index}]: duplicate role/store pair")
                continue
            seen.add(key)
            errors.extend(
                f"assignments[{index}]: {message}"
                for message in self.validate_assignment(user_id, item.role_id, item.store_id)
            )
        if errors:
            raise AssignmentValidationError(errors)

        return [
            self.assign(
                user_id,
                item.role_id,
                item.store_id,
                metadata=item.metadata,
                is_active=item.is_active,
            )
            for item in assignments
        ]

    def remove(self, user_id: int, role_id: int, store_id: int) -> bool:
        stmt = delete(UserRoleStore).where(
            UserRoleStore.user_id == user_id,
            UserRoleStore.role_id == role_id,
            UserRoleStore.store_id == store_id,
        )
        removed = self._session.execute(stmt).rowcount > 0
        if removed:
            self._invalidate(user_id, store_id)
            logger.info(
                "authz.assignments.remove.success",
                extra=log_context(user_id=user_id, store_id=store_id, role_id=role_id),
            )
        return removed

    def toggle(self, user_id: int, role_id: int, store_id: int) -> bool:
        """Flip the active flag; ``False`` when no such assignment exists."""

        assignment = self._find(user_id, role_id, store_id)
        if assignment is None:
            return False
        assignment.is_active = not assignment.is_active
        self._session.flush([assignment])
        self._invalidate(user_id, store_id)
        return True

    def user_assignments(self, user_id: int, store_id: int | None = None) -> list[UserRoleStore]:
        stmt = select(UserRoleStore).where(
            UserRoleStore.user_id == user_id,
            UserRoleStore.is_active.is_(True),
        )
        if store_id is not None:
            stmt = stmt.where(UserRoleStore.store_id == store_id)
        stmt = stmt.order_by(UserRoleStore.store_id, UserRoleStore.role_id)
        return list(self._session.execute(stmt).scalars())

    def store_assignments(self, store_id: int, role_id: int | None = None) -> list[UserRoleStore]:
        stmt = select(UserRoleStore).where(
            UserRoleStore.store_id == store_id,
            UserRoleStore.is_active.is_(True),
        )
        if role_id is not None:
            stmt = stmt.where(UserRoleStore.role_id == role_id)
        stmt = stmt.order_by(UserRoleStore.user_id, UserRoleStore.role_id)
        return list(self._session.execute(stmt).scalars())


__all__ = ["StoreAssignmentService"]
