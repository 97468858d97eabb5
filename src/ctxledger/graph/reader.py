"""Read-side reconstruction of a conversation's summary DAG."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field

import structlog

from ctxledger.graph.traversal import find_roots, sort_ids
from ctxledger.models.ledger import ContextEntry, LargeFile, Message
from ctxledger.store.ledger import LedgerStore


@dataclass
class GraphNode:
    """One summary in the reconstructed DAG, with its children in display order."""

    id: str
    kind: str
    content: str
    depth: int
    token_count: int
    created_at: str
    children: list[str] = field(default_factory=list)


@dataclass
class SummaryGraph:
    """
    The in-memory summary DAG of one conversation.

    ``roots`` are the summaries that never appear as a child. When corruption
    leaves no such node, ``roots_fallback`` is set and every node is a root.
    """

    conversation_id: int
    roots: list[str]
    nodes: dict[str, GraphNode]
    roots_fallback: bool = False


@dataclass
class SessionCounts:
    """How many summaries and large files a session holds across its conversations."""

    summaries: int = 0
    files: int = 0


@dataclass
class SummaryRow:
    """One visible row of a flattened graph: a summary id and its indentation depth."""

    summary_id: str
    depth: int


class GraphReader:
    """
    Loads summary DAGs and related read models from a :class:`LedgerStore`.

    This is the only read surface inspection tools need: node map and roots
    from :meth:`load_graph`, display rows from :meth:`flatten`, and the detail
    views :meth:`load_summary_sources`, :meth:`load_context_entries` and
    :meth:`load_large_files`. :meth:`load_session_counts` gives per-session totals.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store
        self._logger = structlog.get_logger("ctxledger.graph")

    async def load_graph(self, conversation_id: int) -> SummaryGraph:
        """
        Reconstruct the summary DAG of a conversation.

        For every parent edge whose endpoints both belong to the conversation,
        the child (the condensed summary) is attached to the parent node's
        ``children``. Child lists and roots are sorted by ``(created_at, id)``.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
        """
        await self._store.get_conversation(conversation_id)
        summaries = await self._store.get_summaries(conversation_id)
        if not summaries:
            return SummaryGraph(conversation_id=conversation_id, roots=[], nodes={})

        nodes = {
            s.summary_id: GraphNode(
                id=s.summary_id,
                kind=s.kind,
                content=s.content,
                depth=s.depth,
                token_count=s.token_count,
                created_at=s.created_at,
            )
            for s in summaries
        }

        child_ids: set[str] = set()
        for edge in await self._store.get_conversation_edges(conversation_id):
            parent = nodes.get(edge.parent_summary_id)
            if parent is None or edge.summary_id not in nodes:
                continue
            parent.children.append(edge.summary_id)
            child_ids.add(edge.summary_id)

        roots, fallback = find_roots(nodes, child_ids)
        if fallback:
            self._logger.warning(
                "graph_roots_fallback",
                conversation_id=conversation_id,
                node_count=len(nodes),
            )
        sort_ids(roots, nodes)
        for node in nodes.values():
            sort_ids(node.children, nodes)

        return SummaryGraph(
            conversation_id=conversation_id,
            roots=roots,
            nodes=nodes,
            roots_fallback=fallback,
        )

    async def load_graph_for_session(self, session_id: str) -> SummaryGraph:
        """Load the graph of the most recently updated conversation of a session."""
        conversation = await self._store.find_conversation(session_id)
        return await self.load_graph(conversation.conversation_id)

    @staticmethod
    def flatten(
        graph: SummaryGraph,
        expanded: Collection[str] | None = None,
    ) -> list[SummaryRow]:
        """
        Flatten the graph into depth-first display rows.

        Args:
            graph: The graph to walk.
            expanded: Ids whose children are shown. ``None`` expands every node.

        Returns:
            Rows in display order. A node that is already on the current path
            is skipped instead of descended into again, so an injected cycle
            still yields a finite list.
        """
        rows: list[SummaryRow] = []

        def walk(summary_id: str, depth: int, path: set[str]) -> None:
            if summary_id in path:
                return
            node = graph.nodes.get(summary_id)
            if node is None:
                return
            rows.append(SummaryRow(summary_id=summary_id, depth=depth))
            if expanded is not None and summary_id not in expanded:
                return
            path.add(summary_id)
            for child_id in node.children:
                walk(child_id, depth + 1, path)
            path.discard(summary_id)

        for root_id in graph.roots:
            walk(root_id, 0, set())
        return rows

    async def load_summary_sources(self, summary_id: str) -> list[Message]:
        """
        The source messages of a leaf summary in edge order.

        Condensed summaries have no message edges and return an empty list.

        Raises:
            SummaryNotFoundError: If the summary does not exist.
        """
        await self._store.get_summary(summary_id)
        return await self._store.get_source_messages(summary_id)

    async def load_context_entries(self, conversation_id: int) -> list[ContextEntry]:
        """
        The active context of a conversation joined with what each item points at.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
        """
        await self._store.get_conversation(conversation_id)
        items = await self._store.get_context_items(conversation_id)
        summaries = await self._store.get_summaries_by_id(
            [i.summary_id for i in items if i.summary_id is not None]
        )

        entries: list[ContextEntry] = []
        for item in items:
            if item.item_type == "summary":
                summary = summaries.get(item.summary_id or "")
                entries.append(
                    ContextEntry(
                        ordinal=item.ordinal,
                        item_type="summary",
                        ref_id=item.ref_id,
                        kind=summary.kind if summary else "missing",
                        token_count=summary.token_count if summary else 0,
                        content=summary.content if summary else "",
                        created_at=summary.created_at if summary else item.created_at,
                    )
                )
                continue
            message = await self._store.get_message(item.message_id or 0)
            entries.append(
                ContextEntry(
                    ordinal=item.ordinal,
                    item_type="message",
                    ref_id=item.ref_id,
                    kind=message.role if message else "missing",
                    token_count=message.token_count if message else 0,
                    content=message.content if message else "",
                    created_at=message.created_at if message else item.created_at,
                )
            )
        return entries

    async def load_large_files(self, session_id: str) -> list[LargeFile]:
        """
        Large files of the most recently updated conversation of a session, oldest first.

        Raises:
            ConversationNotFoundError: If the session has no conversation.
        """
        conversation = await self._store.find_conversation(session_id)
        return await self._store.get_large_files(conversation.conversation_id)

    async def load_session_counts(self, session_ids: Sequence[str]) -> dict[str, SessionCounts]:
        """Summary and large-file totals per session id. Unknown sessions count zero."""
        summaries = await self._store.count_summaries_by_session(session_ids)
        files = await self._store.count_large_files_by_session(session_ids)
        return {
            session_id: SessionCounts(summaries=summaries[session_id], files=files[session_id])
            for session_id in summaries
        }
