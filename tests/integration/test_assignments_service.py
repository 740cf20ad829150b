from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from authz_core.cache.decisions import DecisionCache
from authz_core.common.errors import AssignmentValidationError
from authz_core.features.assignments import (
    StoreAssignmentIn,
    StoreAssignmentOut,
    StoreAssignmentService,
)
from authz_core.features.permissions import EffectivePermissionResolver
from authz_core.settings import Settings


@pytest.fixture()
def assignments(db_session: Session, decision_cache: DecisionCache) -> StoreAssignmentService:
    return StoreAssignmentService(session=db_session, cache=decision_cache)


@pytest.fixture()
def resolver(
    db_session: Session,
    decision_cache: DecisionCache,
    settings: Settings,
) -> EffectivePermissionResolver:
    return EffectivePermissionResolver(session=db_session, cache=decision_cache, settings=settings)


def test_assign_and_list(assignments: StoreAssignmentService, seed) -> None:
    clerk, auditor = seed.role("clerk"), seed.role("auditor")
    s1, s2 = seed.store(), seed.store()
    user = seed.user()

    created = assignments.assign(user.id, clerk.id, s1.id, metadata={"source": "hr"})
    assignments.assign(user.id, auditor.id, s2.id)

    assert created.metadata_payload == {"source": "hr"}
    assert StoreAssignmentOut.model_validate(created).store_id == s1.id
    assert [(a.store_id, a.role_id) for a in assignments.user_assignments(user.id)] == [
        (s1.id, clerk.id),
        (s2.id, auditor.id),
    ]
    assert [a.role_id for a in assignments.user_assignments(user.id, store_id=s2.id)] == [
        auditor.id
    ]
    assert [a.user_id for a in assignments.store_assignments(s1.id)] == [user.id]
    assert assignments.store_assignments(s1.id, role_id=auditor.id) == []


def test_assign_validates_references_and_duplicates(
    assignments: StoreAssignmentService, seed
) -> None:
    clerk = seed.role("clerk")
    store = seed.store()
    user = seed.user()

    with pytest.raises(AssignmentValidationError) as excinfo:
        assignments.assign(9999, 8888, 7777)
    assert excinfo.value.errors == [
        "User does not exist",
        "Role does not exist",
        "Store does not exist",
    ]

    assignments.assign(user.id, clerk.id, store.id)
    with pytest.raises(AssignmentValidationError) as excinfo:
        assignments.assign(user.id, clerk.id, store.id)
    assert excinfo.value.errors == ["User already has this role in this store"]


def test_bulk_assign_is_all_or_nothing(assignments: StoreAssignmentService, seed) -> None:
    clerk, auditor = seed.role("clerk"), seed.role("auditor")
    store = seed.store()
    user = seed.user()

    with pytest.raises(AssignmentValidationError) as excinfo:
        assignments.bulk_assign(
            user.id,
            [
                StoreAssignmentIn(role_id=clerk.id, store_id=store.id),
                StoreAssignmentIn(role_id=clerk.id, store_id=store.id),
                StoreAssignmentIn(role_id=auditor.id, store_id=9999),
            ],
        )
    assert excinfo.value.errors == [
        "assignments[1]: duplicate role/store pair",
        "assignments[2]: Store does not exist",
    ]
    assert assignments.user_assignments(user.id) == []

    created = assignments.bulk_assign(
        user.id,
        [
            StoreAssignmentIn(role_id=clerk.id, store_id=store.id),
            StoreAssignmentIn(role_id=auditor.id, store_id=store.id, is_active=False),
        ],
    )
    assert [a.is_active for a in created] == [True, False]
    assert [a.role_id for a in assignments.user_assignments(user.id)] == [clerk.id]


def test_remove_and_toggle(assignments: StoreAssignmentService, seed) -> None:
    clerk = seed.role("clerk")
    store = seed.store()
    user = seed.user()
    assignments.assign(user.id, clerk.id, store.id)

    assert assignments.toggle(user.id, clerk.id, store.id) is True
    assert assignments.user_assignments(user.id) == []
    assert assignments.toggle(user.id, clerk.id, store.id) is True
    assert len(assignments.user_assignments(user.id)) == 1

    assert assignments.remove(user.id, clerk.id, store.id) is True
    assert assignments.remove(user.id, clerk.id, store.id) is False
    assert assignments.toggle(user.id, clerk.id, store.id) is False


def test_assignment_changes_refresh_cached_permissions(
    assignments: StoreAssignmentService, resolver: EffectivePermissionResolver, seed
) -> None:
    clerk = seed.role("clerk", ["orders.view"])
    store = seed.store()
    user = seed.user()

    assert resolver.effective_permissions(user.id, store.id) == frozenset()
    assert resolver.user_has_all_active_stores(user.id) is False

    assignments.assign(user.id, clerk.id, store.id)
    assert resolver.effective_permissions(user.id, store.id) == {"orders.view"}
    assert resolver.user_has_all_active_stores(user.id) is True

    assignments.toggle(user.id, clerk.id, store.id)
    assert resolver.effective_permissions(user.id, store.id) == frozenset()
    assert resolver.user_has_all_active_stores(user.id) is False
