"""Central exports for the oracle's SQLAlchemy models."""

from .identity import Permission, Role, RolePermission, User, UserPermission, UserRole
from .rule import AuthRule, HttpMethod, StoreMatchPolicy, StoreScopeMode
from .store import RoleHierarchy, Store, UserRoleStore

__all__ = [
    "AuthRule",
    "HttpMethod",
    "Permission",
    "Role",
    "RoleHierarchy",
    "RolePermission",
    "Store",
    "StoreMatchPolicy",
    "StoreScopeMode",
    "User",
    "UserPermission",
    "UserRole",
    "UserRoleStore",
]
