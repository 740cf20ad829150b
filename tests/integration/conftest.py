"""In-memory SQLite fixtures and seed helpers for service-level tests."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from itertools import count

import pytest
from sqlalchemy.orm import Session

from authz_core.settings import Settings
from authz_db.engine import build_engine, build_session_factory, create_schema
from authz_db.models import (
    Permission,
    Role,
    RolePermission,
    Store,
    User,
    UserPermission,
    UserRole,
    UserRoleStore,
)


@pytest.fixture()
def db_session(settings: Settings) -> Iterator[Session]:
    engine = build_engine(settings)
    create_schema(engine)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        engine.dispose()


class Seeder:
    """Create catalog rows with minimal ceremony."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._seq = count(1)
        self._permissions: dict[str, Permission] = {}

    def _flush(self, *rows: object) -> None:
        self.session.add_all(rows)
        self.session.flush()

    def permission(self, name: str) -> Permission:
        permission = self._permissions.get(name)
        if permission is None:
            permission = Permission(name=name)
            self._flush(permission)
            self._permissions[name] = permission
        return permission

    def role(self, name: str, permissions: Iterable[str] = ()) -> Role:
        role = Role(name=name)
        self._flush(role)
        for permission_name in permissions:
            self._flush(
                RolePermission(role_id=role.id, permission_id=self.permission(permission_name).id)
            )
        self.session.refresh(role)
        return role

    def user(self, name: str | None = None) -> User:
        n = next(self._seq)
        user = User(name=name or f"User {n}", email=f"user{n}@example.com")
        self._flush(user)
        return user

    def store(self, code: str | None = None, *, is_active: bool = True) -> Store:
        n = next(self._seq)
        code = code or f"store-{n}"
        store = Store(code=code, name=f"Store {code}", is_active=is_active)
        self._flush(store)
        return store

    def grant_global_role(self, user: User, role: Role) -> None:
        self._flush(UserRole(user_id=user.id, role_id=role.id))

    def grant_permission(self, user: User, name: str) -> None:
        self._flush(UserPermission(user_id=user.id, permission_id=self.permission(name).id))

    def assign(self, user: User, role: Role, store: Store, *, is_active: bool = True) -> None:
        self._flush(
            UserRoleStore(
                user_id=user.id,
                role_id=role.id,
                store_id=store.id,
                is_active=is_active,
            )
        )


@pytest.fixture()
def seed(db_session: Session) -> Seeder:
    return Seeder(db_session)
