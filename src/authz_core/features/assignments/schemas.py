from __future__ import annotations

from datetime import datetime
from typing import Any

from authz_core.common.schema import BaseSchema


class StoreAssignmentIn(BaseSchema):
    """One role-in-store grant inside a bulk assignment."""

    role_id: int
    store_id: int
    metadata: dict[str, Any] | None = None
    is_active: bool = True


class StoreAssignmentOut(BaseSchema):
    id: int
    user_id: int
    role_id: int
    store_id: int
    is_active: bool
    created_at: datetime


__all__ = ["StoreAssignmentIn", "StoreAssignmentOut"]
