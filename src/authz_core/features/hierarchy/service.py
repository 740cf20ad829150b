"""Store-scoped role hierarchy: edge validation, mutation and closure queries."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from authz_core.cache.decisions import DecisionCache
from authz_core.common.errors import HierarchyValidationError, NotFoundError
from authz_core.common.logging import log_context
from authz_core.settings import Settings, get_settings
from authz_db.models import Role, RoleHierarchy, Store

from .graph import RoleGraph

logger = logging.getLogger(__name__)


class RoleHierarchyService:
    """Manage "role A manages role B in store S" edges.

    Graphs are rebuilt per call from the store's active edges, and cached on
    ``session.info`` for the lifetime of the session. Any mutation through
    this service drops the session cache and bumps the store's epoch, which
    retires cached effective permissions for that store.
    """

    def __init__(
        self,
        *,
        session: Session,
        cache: DecisionCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._cache = cache
        self._settings = settings or get_settings()
        self._graphs: dict[int, RoleGraph] = session.info.setdefault("authz_role_graphs", {})

    # ------------- graph loading -----------------

    def _active_edges(self, store_id: int) -> list[tuple[int, int]]:
        stmt = (
            select(RoleHierarchy.higher_role_id, RoleHierarchy.lower_role_id)
            .where(RoleHierarchy.store_id == store_id, RoleHierarchy.is_active.is_(True))
            .order_by(RoleHierarchy.id)
        )
        return [(higher, lower) for higher, lower in self._session.execute(stmt).all()]

    def graph(self, store_id: int) -> RoleGraph:
        graph = self._graphs.get(store_id)
        if graph is None:
            graph = RoleGraph(self._active_edges(store_id))
            self._graphs[store_id] = graph
        return graph

    def _changed(self, store_id: int) -> None:
        self._graphs.pop(store_id, None)
        if self._cache is not None:
            self._cache.bump_store_epoch(store_id)

    def _edge(
        self, higher_role_id: int, lower_role_id: int, store_id: int
    ) -> RoleHierarchy | None:
        stmt = select(RoleHierarchy).where(
            RoleHierarchy.higher_role_id == higher_role_id,
            RoleHierarchy.lower_role_id == lower_role_id,
            RoleHierarchy.store_id == store_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    # ------------- validation -----------------

    def _cycle_errors(self, higher_role_id: int, lower_role_id: int, store_id: int) -> list[str]:
        candidate = RoleGraph(self._active_edges(store_id))
        candidate.add_edge(higher_role_id, lower_role_id)
        cycle = candidate.find_cycle()
        if cycle is None:
            return []
        return [f"This would create a circular hierarchy ({' -> '.join(map(str, cycle))})"]

    def validate_edge(self, higher_role_id: int, lower_role_id: int, store_id: int) -> list[str]:
        """Return every reason the edge cannot be added (empty when it can)."""

        errors: list[str] = []
        higher = self._session.get(Role, higher_role_id)
        lower = self._session.get(Role, lower_role_id)
        if higher is None:
            errors.append("Higher role does not exist")
        if lower is None:
            errors.append("Lower role does not exist")
        if self._session.get(Store, store_id) is None:
            errors.append("Store does not exist")
        if higher_role_id == lower_role_id:
            errors.append("A role cannot manage itself")
            return errors
        if self._edge(higher_role_id, lower_role_id, store_id) is not None:
            errors.append("This hierarchy relationship already exists")
        if higher is not None and lower is not None:
            errors.extend(self._cycle_errors(higher_role_id, lower_role_id, store_id))
        return errors

    # ------------- mutations -----------------

    def add_edge(
        self,
        higher_role_id: int,
        lower_role_id: int,
        store_id: int,
        *,
        metadata: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> RoleHierarchy:
        errors = self.validate_edge(higher_role_id, lower_role_id, store_id)
        if errors:
            logger.info(
                "authz.hierarchy.edge.rejected",
                extra=log_context(
                    store_id=store_id,
                    higher_role_id=higher_role_id,
                    lower_role_id=lower_role_id,
                    errors=errors,
                ),
            )
            raise HierarchyValidationError(errors)

        edge = RoleHierarchy(
            higher_role_id=higher_role_id,
            lower_role_id=lower_role_id,
            store_id=store_id,
            metadata_payload=metadata,
            is_active=is_active,
        )
        self._session.add(edge)
        self._session.flush([edge])
        self._changed(store_id)
        logger.info(
            "authz.hierarchy.edge.created",
            extra=log_context(
                store_id=store_id,
                higher_role_id=higher_role_id,
                lower_role_id=lower_role_id,
            ),
        )
        return edge

    def remove_edge(self, higher_role_id: int, lower_role_id: int, store_id: int) -> bool:
        stmt = delete(RoleHierarchy).where(
            RoleHierarchy.higher_role_id == higher_role_id,
            RoleHierarchy.lower_role_id == lower_role_id,
            RoleHierarchy.store_id == store_id,
        )
        removed = self._session.execute(stmt).rowcount > 0
        if removed:
            self._changed(store_id)
            logger.info(
                "authz.hierarchy.edge.removed",
                extra=log_context(
                    store_id=store_id,
                    higher_role_id=higher_role_id,
                    lower_role_id=lower_role_id,
                ),
            )
        return removed

    def set_edge_active(
        self,
        higher_role_id: int,
        lower_role_id: int,
        store_id: int,
        is_active: bool,
    ) -> RoleHierarchy:
        """Enable or disable an existing edge; enabling re-runs cycle validation."""

        edge = self._edge(higher_role_id, lower_role_id, store_id)
        if edge is None:
            raise NotFoundError("Hierarchy relationship not found")
        if edge.is_active == is_active:
            return edge
        if is_active:
            errors = self._cycle_errors(higher_role_id, lower_role_id, store_id)
            if errors:
                logger.info(
                    "authz.hierarchy.edge.rejected",
                    extra=log_context(store_id=store_id, errors=errors),
                )
                raise HierarchyValidationError(errors)
        edge.is_active = is_active
        self._session.flush([edge])
        self._changed(store_id)
        return edge

    # ------------- queries -----------------

    def store_edges(self, store_id: int) -> list[RoleHierarchy]:
        stmt = (
            select(RoleHierarchy)
            .where(RoleHierarchy.store_id == store_id, RoleHierarchy.is_active.is_(True))
            .order_by(RoleHierarchy.id)
        )
        return list(self._session.execute(stmt).scalars())

    def transitive_lower_role_ids(self, role_id: int, store_id: int) -> set[int]:
        return self.graph(store_id).descendants(
            role_id,
            max_depth=self._settings.hierarchy_max_depth,
        )

    def transitive_lower_roles(self, role_id: int, store_id: int) -> list[Role]:
        """All roles transitively managed by ``role_id`` in ``store_id``, by name."""

        role_ids = self.transitive_lower_role_ids(role_id, store_id)
        if not role_ids:
            return []
        stmt = select(Role).where(Role.id.in_(role_ids)).order_by(Role.name)
        return list(self._session.execute(stmt).scalars())

    def is_higher_than(self, role_id: int, other_role_id: int, store_id: int) -> bool:
        return other_role_id in self.transitive_lower_role_ids(role_id, store_id)

    def hierarchy_tree(self, store_id: int) -> list[dict[str, Any]]:
        """Nested ``{role_id, name, permissions, children}`` trees from the root roles.

        Each role is expanded once; a later occurrence is rendered without
        children.
        """

        graph = self.graph(store_id)
        roles = {
            role.id: role
            for role in self._session.execute(
                select(Role).where(Role.id.in_(graph.nodes))
            ).scalars()
        }
        expanded: set[int] = set()

        def build(role_id: int) -> dict[str, Any]:
            role = roles.get(role_id)
            node: dict[str, Any] = {
                "role_id": role_id,
                "name": role.name if role is not None else None,
                "permissions": role.permission_names if role is not None else [],
                "children": [],
            }
            if role_id in expanded:
                return node
            expanded.add(role_id)
            node["children"] = [build(child) for child in graph.children(role_id)]
            return node

        return [build(root) for root in graph.roots()]


__all__ = ["RoleHierarchyService"]
