"""Store-scoped role assignments."""

from .schemas import StoreAssignmentIn, StoreAssignmentOut
from .service import StoreAssignmentService

__all__ = ["StoreAssignmentIn", "StoreAssignmentOut", "StoreAssignmentService"]
