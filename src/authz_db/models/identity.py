"""Users, roles and permissions (global, non-store-scoped catalog)."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authz_db.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class User(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Account whose bearer tokens are introspected by the oracle."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(190), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    global_roles: Mapped[list[UserRole]] = relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    direct_permissions: Mapped[list[UserPermission]] = relationship(
        "UserPermission",
        back_populates="user",
        cascade="all, delete-orphan",
    )


class Permission(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Named capability such as ``orders.view``."""

    __tablename__ = "permissions"

    name: Mapped[str] = mapped_column(String(190), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    role_permissions: Mapped[list[RolePermission]] = relationship(
        "RolePermission",
        back_populates="permission",
        cascade="all, delete-orphan",
    )


class Role(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Role definition that aggregates permissions."""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(190), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    permissions: Mapped[list[RolePermission]] = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
    )

    @property
    def permission_names(self) -> list[str]:
        return sorted(rp.permission.name for rp in self.permissions if rp.permission is not None)


class RolePermission(Base):
    """Bridge table linking roles and permissions."""

    __tablename__ = "role_permissions"

    role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    permission_id: Mapped[int] = mapped_column(
        ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
    )

    role: Mapped[Role] = relationship("Role", back_populates="permissions")
    permission: Mapped[Permission] = relationship(
        "Permission",
        back_populates="role_permissions",
        lazy="joined",
    )


class UserRole(Base):
    """Global (store-independent) role held by a user."""

    __tablename__ = "user_roles"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )

    user: Mapped[User] = relationship("User", back_populates="global_roles")
    role: Mapped[Role] = relationship("Role", lazy="joined")

    __table_args__ = (Index("ix_user_roles_role_id", "role_id"),)


class UserPermission(Base):
    """Permission granted to a user directly, outside any role."""

    __tablename__ = "user_permissions"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    permission_id: Mapped[int] = mapped_column(
        ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
    )

    user: Mapped[User] = relationship("User", back_populates="direct_permissions")
    permission: Mapped[Permission] = relationship("Permission", lazy="joined")


__all__ = ["Permission", "Role", "RolePermission", "User", "UserPermission", "UserRole"]
