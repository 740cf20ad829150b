"""In-memory role hierarchy graph for a single store.

Edges point from the managing (higher) role to the managed (lower) role.
Graphs are built from a bulk-loaded edge list and never touch the database.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

_ON_STACK = 1
_DONE = 2


class RoleGraph:
    """Adjacency-list digraph keyed by role id."""

    def __init__(self, edges: Iterable[tuple[int, int]] = ()) -> None:
        self._adjacency: dict[int, list[int]] = {}
        for higher, lower in edges:
            self.add_edge(higher, lower)

    def add_edge(self, higher: int, lower: int) -> None:
        children = self._adjacency.setdefault(higher, [])
        if lower not in children:
            children.append(lower)
        self._adjacency.setdefault(lower, [])

    def has_edge(self, higher: int, lower: int) -> bool:
        return lower in self._adjacency.get(higher, ())

    @property
    def nodes(self) -> frozenset[int]:
        return frozenset(self._adjacency)

    def children(self, role: int) -> tuple[int, ...]:
        return tuple(self._adjacency.get(role, ()))

    def roots(self) -> list[int]:
        """Roles that manage others and are managed by none, in insertion order."""

        managed = {lower for children in self._adjacency.values() for lower in children}
        return [
            role
            for role, children in self._adjacency.items()
            if children and role not in managed
        ]

    def find_cycle(self) -> list[int] | None:
        """Return one cycle as a closed path (``[a, b, a]``) or ``None``.

        Iterative depth-first search from every node, tracking the nodes on
        the current recursion stack; reaching one of them again is a back-edge.
        Runs in O(V + E).
        """

        state: dict[int, int] = {}
        for start in self._adjacency:
            if start in state:
                continue
            state[start] = _ON_STACK
            path = [start]
            stack = [(start, iter(self._adjacency[start]))]
            while stack:
                node, pending = stack[-1]
                for child in pending:
                    mark = state.get(child)
                    if mark == _ON_STACK:
                        return path[path.index(child) :] + [child]
                    if mark is None:
                        state[child] = _ON_STACK
                        path.append(child)
                        stack.append((child, iter(self._adjacency[child])))
                        break
                else:
                    state[node] = _DONE
                    path.pop()
                    stack.pop()
        return None

    def has_cycle(self) -> bool:
        return self.find_cycle() is not None

    def descendants(self, role: int, *, max_depth: int | None = None) -> set[int]:
        """Every role transitively managed by ``role`` (excluding ``role`` itself).

        Breadth-first with a visited set, so cycles terminate; ``max_depth``
        caps how many edges away from ``role`` the walk goes.
        """

        found: set[int] = set()
        visited = {role}
        queue: deque[tuple[int, int]] = deque([(role, 0)])
        while queue:
            node, depth = queue.popleft()
            if max_depth is not None and depth >= max_depth:
                continue
            for child in self._adjacency.get(node, ()):
                if child != role:
                    found.add(child)
                if child not in visited:
                    visited.add(child)
                    queue.append((child, depth + 1))
        return found

    def reaches(self, source: int, target: int, *, max_depth: int | None = None) -> bool:
        return target in self.descendants(source, max_depth=max_depth)


__all__ = ["RoleGraph"]
