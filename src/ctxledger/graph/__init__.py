"""Summary DAG reconstruction and traversal."""

from ctxledger.graph.reader import (
    GraphNode,
    GraphReader,
    SessionCounts,
    SummaryGraph,
    SummaryRow,
)
from ctxledger.graph.traversal import (
    ancestor_closure,
    count_by_depth,
    find_roots,
    order_by_depth,
    sort_ids,
)

__all__ = [
    "GraphReader",
    "GraphNode",
    "SessionCounts",
    "SummaryGraph",
    "SummaryRow",
    "ancestor_closure",
    "count_by_depth",
    "find_roots",
    "order_by_depth",
    "sort_ids",
]
