"""Pure traversal primitives over the summary DAG.

Nothing here touches the database: callers load nodes and edges, then use
these functions to find roots, walk ancestors and order nodes for copying.
Every walk keeps its own visited set, so a corrupted (cyclic) graph can slow a
walk down but never make it loop forever.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol, TypeVar


class _Sortable(Protocol):
    @property
    def created_at(self) -> str: ...


class _Ordered(Protocol):
    @property
    def summary_id(self) -> str: ...

    @property
    def depth(self) -> int: ...

    @property
    def created_at(self) -> str: ...


_T = TypeVar("_T", bound=_Ordered)


def sort_ids(ids: list[str], nodes: Mapping[str, _Sortable]) -> None:
    """
    Sort summary ids in place by ``(created_at, id)``.

    Ids missing from ``nodes`` sort first, by id, so the result stays
    deterministic when the node map is incomplete.
    """

    def key(summary_id: str) -> tuple[str, str]:
        node = nodes.get(summary_id)
        return (node.created_at if node is not None else "", summary_id)

    ids.sort(key=key)


def find_roots(node_ids: Iterable[str], child_ids: set[str]) -> tuple[list[str], bool]:
    """
    Return the nodes that never appear as a child, and whether the fallback fired.

    When every node is somebody's child the graph is fully cyclic. Rather than
    return nothing, every node is treated as a root so the structure stays
    inspectable; the second element of the result is then ``True``.
    """
    all_ids = list(node_ids)
    roots = [node_id for node_id in all_ids if node_id not in child_ids]
    if not roots and all_ids:
        return all_ids, True
    return roots, False


def ancestor_closure(
    start_ids: Sequence[str],
    parent_map: Mapping[str, Sequence[str]],
) -> list[str]:
    """
    Every summary reachable from ``start_ids`` by following parent edges.

    The start ids themselves are included. Each id appears once, in
    breadth-first discovery order.

    Args:
        start_ids: The starting set (e.g. a conversation's top-level summaries).
        parent_map: ``summary_id -> parent ids`` in edge order.

    Returns:
        The deduplicated closure.
    """
    seen: set[str] = set()
    order: list[str] = []
    queue: deque[str] = deque()
    for summary_id in start_ids:
        if summary_id not in seen:
            seen.add(summary_id)
            order.append(summary_id)
            queue.append(summary_id)
    while queue:
        current = queue.popleft()
        for parent_id in parent_map.get(current, ()):
            if parent_id not in seen:
                seen.add(parent_id)
                order.append(parent_id)
                queue.append(parent_id)
    return order


def order_by_depth(summaries: Iterable[_T]) -> list[_T]:
    """
    Order summaries parents-first: depth ascending, then creation time, then id.

    With well-formed depths (``depth = 1 + max(parent depth)``) every parent
    precedes its children, which is what a copy that remaps parent ids needs.
    """
    return sorted(summaries, key=lambda s: (s.depth, s.created_at, s.summary_id))


def count_by_depth(summaries: Iterable[_Ordered]) -> dict[int, int]:
    """Histogram of summaries per depth, keys ascending."""
    counts: dict[int, int] = {}
    for summary in summaries:
        counts[summary.depth] = counts.get(summary.depth, 0) + 1
    return dict(sorted(counts.items()))
