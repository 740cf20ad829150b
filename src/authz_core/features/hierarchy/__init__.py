"""Store-scoped role hierarchy graph and service."""

from .graph import RoleGraph
from .service import RoleHierarchyService

__all__ = ["RoleGraph", "RoleHierarchyService"]
