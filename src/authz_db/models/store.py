"""Stores and the store-scoped tables: role assignments and role hierarchy."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, UniqueConstraint, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authz_db.base import Base, IntegerPrimaryKeyMixin, TimestampMixin

from .identity import Role, User


class Store(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Tenant unit. ``id`` is what requests carry; ``code`` is the external identifier."""

    __tablename__ = "stores"

    code: Mapped[str] = mapped_column(String(190), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(190), nullable=False, unique=True)
    metadata_payload: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON(),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    __table_args__ = (Index("ix_stores_is_active", "is_active"),)


class UserRoleStore(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Role held by a user inside one store."""

    __tablename__ = "user_role_store"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    metadata_payload: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON(),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    user: Mapped[User] = relationship("User")
    role: Mapped[Role] = relationship("Role", lazy="joined")
    store: Mapped[Store] = relationship("Store", lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", "store_id", name="uq_user_role_store_triple"),
        Index("ix_user_role_store_store_role", "store_id", "role_id"),
        Index("ix_user_role_store_user_store", "user_id", "store_id"),
    )


class RoleHierarchy(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Directed edge: ``higher_role`` manages ``lower_role`` within ``store``."""

    __tablename__ = "role_hierarchy"

    higher_role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    lower_role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    metadata_payload: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON(),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    higher_role: Mapped[Role] = relationship("Role", foreign_keys=[higher_role_id])
    lower_role: Mapped[Role] = relationship("Role", foreign_keys=[lower_role_id])
    store: Mapped[Store] = relationship("Store")

    __table_args__ = (
        UniqueConstraint(
            "higher_role_id",
            "lower_role_id",
            "store_id",
            name="uq_role_hierarchy_triple",
        ),
        Index("ix_role_hierarchy_store_higher", "store_id", "higher_role_id"),
    )


__all__ = ["RoleHierarchy", "Store", "UserRoleStore"]
