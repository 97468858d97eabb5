"""Transplant: deep-copy a conversation's summary footprint into another conversation.

The source's summary-type context items (the top set ``T``, in ordinal order)
and every summary reachable from them through parent edges are copied into
the target as new summaries owned by the target. Copies are made parents
first, so each copied parent edge can be rewritten through the old -> new id
map. The copies of ``T`` are then placed at the front of the target's active
context; ancestors are copied but occupy no context slot.

Source messages are not copied. A copied leaf points at the same message rows
as its original, which is valid because messages are write-once.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import aiosqlite
import structlog

from ctxledger.errors import (
    LedgerIntegrityError,
    NothingToTransplantError,
    SameConversationError,
    TransplantConflictError,
)
from ctxledger.events.bus import EventBus, LedgerEvent
from ctxledger.graph.traversal import ancestor_closure, count_by_depth, order_by_depth
from ctxledger.models.config import LedgerConfig
from ctxledger.models.ledger import Summary, SummaryParentEdge
from ctxledger.models.reports import TransplantReport
from ctxledger.operations.ids import IdGenerator, content_fingerprint, summary_id_generator
from ctxledger.store.ledger import (
    LedgerStore,
    assert_contiguous_ordinals,
    insert_context_item,
    insert_message_edge_row,
    insert_parent_edge_row,
    insert_summary_row,
    shift_context_ordinals,
    touch_conversation,
)


@dataclass
class _TransplantPlan:
    top_level_ids: list[str]
    closure: list[Summary]
    """Ancestor closure of the top set, parents first."""
    parent_edges: dict[str, list[SummaryParentEdge]] = field(default_factory=dict)
    token_overhead: int = 0
    target_items_before: int = 0


class TransplantEngine:
    """
    Validates and executes transplants against a :class:`LedgerStore`.

    Example::

        engine = TransplantEngine(store)
        report = await engine.plan(source_id, target_id)   # dry run
        report = await engine.apply(source_id, target_id)  # commit
        print(report.closure_by_depth)  # {0: 58, 1: 18, 2: 4}
    """

    def __init__(
        self,
        store: LedgerStore,
        event_bus: EventBus | None = None,
        config: LedgerConfig | None = None,
        id_generator: IdGenerator | None = None,
    ) -> None:
        self._store = store
        self._event_bus = event_bus or EventBus()
        self._config = config or LedgerConfig(store=store.config)
        self._id_generator = id_generator or summary_id_generator(
            self._config.transplant.summary_id_prefix
        )
        self._logger = structlog.get_logger("ctxledger.transplant")

    # ── Public API ─────────────────────────────────────────────────────────────

    async def plan(self, source_id: int, target_id: int) -> TransplantReport:
        """
        Compute what a transplant would copy, without writing anything.

        The conflict guard runs here too, so a plan that succeeds predicts an
        apply that succeeds against unchanged state.

        Raises:
            ConversationNotFoundError, SameConversationError,
            NothingToTransplantError, TransplantConflictError,
            LedgerIntegrityError
        """
        try:
            plan = await self._load_plan(source_id, target_id)
            if self._config.transplant.conflict_check:
                await self._check_conflicts(source_id, target_id, plan)
        except Exception as exc:
            self._report_failure(source_id, target_id, exc, applied=False)
            raise

        report = self._build_report(source_id, target_id, plan, id_map={}, applied=False)
        self._logger.info(
            "transplant_planned",
            source_conversation_id=source_id,
            target_conversation_id=target_id,
            top_level_count=report.top_level_count,
            closure_size=report.closure_size,
        )
        self._event_bus.publish(LedgerEvent.TRANSPLANT_PLANNED, report.model_dump())
        return report

    async def apply(self, source_id: int, target_id: int) -> TransplantReport:
        """
        Copy the source's summary footprint into the target in one transaction.

        The top set and its closure are re-read inside the transaction. Either
        every summary, edge and context item is written, or none is; the source
        conversation is only read.

        Returns:
            The report with ``applied=True`` and the old -> new ``id_map``.

        Raises:
            ConversationNotFoundError, SameConversationError,
            NothingToTransplantError, TransplantConflictError,
            LedgerIntegrityError
        """
        try:
            async with self._store.transaction() as conn:
                plan = await self._load_plan(source_id, target_id)
                if self._config.transplant.conflict_check:
                    await self._check_conflicts(source_id, target_id, plan)

                id_map = await self._copy_closure(conn, target_id, plan)

                top_count = len(plan.top_level_ids)
                await shift_context_ordinals(
                    conn,
                    target_id,
                    from_ordinal=0,
                    shift=top_count,
                    staging_offset=self._config.store.staging_offset,
                )
                now = self._store.now()
                for ordinal, source_summary_id in enumerate(plan.top_level_ids):
                    await insert_context_item(
                        conn, target_id, ordinal, "summary", id_map[source_summary_id], now
                    )

                items_after = await assert_contiguous_ordinals(conn, target_id)
                expected = plan.target_items_before + top_count
                if items_after != expected:
                    raise LedgerIntegrityError(
                        f"Transplant into {target_id} left {items_after} context items, "
                        f"expected {expected}"
                    )
                await touch_conversation(conn, target_id, now)
        except Exception as exc:
            self._report_failure(source_id, target_id, exc, applied=True)
            raise

        report = self._build_report(source_id, target_id, plan, id_map=id_map, applied=True)
        self._logger.info(
            "transplant_applied",
            source_conversation_id=source_id,
            target_conversation_id=target_id,
            top_level_count=report.top_level_count,
            closure_size=report.closure_size,
            closure_by_depth=report.closure_by_depth,
            target_items_after=report.target_items_after,
        )
        self._event_bus.publish(LedgerEvent.TRANSPLANT_COMPLETED, report.model_dump())
        return report

    # ── Private Helpers ────────────────────────────────────────────────────────

    async def _load_plan(self, source_id: int, target_id: int) -> _TransplantPlan:
        if source_id == target_id:
            raise SameConversationError(source_id)
        await self._store.get_conversation(source_id)
        await self._store.get_conversation(target_id)

        items = await self._store.get_context_items(source_id)
        top_level_ids = [
            item.summary_id
            for item in items
            if item.item_type == "summary" and item.summary_id is not None
        ]
        if not top_level_ids:
            raise NothingToTransplantError(source_id)

        parent_edges = await self._load_parent_edges(top_level_ids)
        parent_map = {
            child_id: [e.parent_summary_id for e in edges]
            for child_id, edges in parent_edges.items()
        }
        closure_ids = ancestor_closure(top_level_ids, parent_map)
        rows = await self._store.get_summaries_by_id(closure_ids)
        missing = [summary_id for summary_id in closure_ids if summary_id not in rows]
        if missing:
            raise LedgerIntegrityError(
                f"Ancestor closure of conversation {source_id} references "
                f"{len(missing)} missing summaries: {', '.join(missing[:5])}"
            )

        return _TransplantPlan(
            top_level_ids=top_level_ids,
            closure=order_by_depth(rows[summary_id] for summary_id in closure_ids),
            parent_edges=parent_edges,
            token_overhead=sum(rows[summary_id].token_count for summary_id in top_level_ids),
            target_items_before=await self._store.count_context_items(target_id),
        )

    async def _load_parent_edges(
        self, start_ids: list[str]
    ) -> dict[str, list[SummaryParentEdge]]:
        """Parent edges of every summary reachable from ``start_ids``, one query per level."""
        edges_by_child: dict[str, list[SummaryParentEdge]] = {}
        seen = set(start_ids)
        frontier = list(dict.fromkeys(start_ids))
        while frontier:
            next_frontier: list[str] = []
            for edge in await self._store.get_parent_edges_for(frontier):
                edges_by_child.setdefault(edge.summary_id, []).append(edge)
                if edge.parent_summary_id not in seen:
                    seen.add(edge.parent_summary_id)
                    next_frontier.append(edge.parent_summary_id)
            frontier = next_frontier
        return edges_by_child

    async def _check_conflicts(
        self, source_id: int, target_id: int, plan: _TransplantPlan
    ) -> None:
        existing = {
            content_fingerprint(s.content): s.summary_id
            for s in await self._store.get_summaries(target_id)
        }
        if not existing:
            return
        closure = {s.summary_id: s for s in plan.closure}
        matches: dict[str, str] = {}
        for summary_id in plan.top_level_ids:
            match = existing.get(content_fingerprint(closure[summary_id].content))
            if match is not None:
                matches[summary_id] = match
        if matches:
            self._logger.warning(
                "transplant_conflict",
                source_conversation_id=source_id,
                target_conversation_id=target_id,
                match_count=len(matches),
            )
            raise TransplantConflictError(source_id, target_id, matches)

    async def _copy_closure(
        self, conn: aiosqlite.Connection, target_id: int, plan: _TransplantPlan
    ) -> dict[str, str]:
        id_map: dict[str, str] = {}
        for summary in plan.closure:
            new_id = await self._mint_id(set(id_map.values()))
            await insert_summary_row(
                conn,
                summary.model_copy(update={"summary_id": new_id, "conversation_id": target_id}),
            )

            for message_edge in await self._store.get_message_edges(summary.summary_id):
                await insert_message_edge_row(
                    conn, new_id, message_edge.message_id, message_edge.ordinal
                )
            for parent_edge in plan.parent_edges.get(summary.summary_id, []):
                new_parent_id = id_map.get(parent_edge.parent_summary_id)
                if new_parent_id is None:
                    raise LedgerIntegrityError(
                        f"Cannot remap parent {parent_edge.parent_summary_id} of "
                        f"{summary.summary_id}: parent not copied before its child "
                        f"(depth {summary.depth})"
                    )
                await insert_parent_edge_row(conn, new_id, new_parent_id, parent_edge.ordinal)
            # Mapped only after its own edges, so a self-loop never resolves.
            id_map[summary.summary_id] = new_id
        return id_map

    async def _mint_id(self, minted: set[str]) -> str:
        attempts = self._config.transplant.max_id_attempts
        for _ in range(attempts):
            candidate = self._id_generator()
            if candidate in minted or await self._store.summary_exists(candidate):
                self._logger.debug("summary_id_collision", summary_id=candidate)
                continue
            return candidate
        raise LedgerIntegrityError(
            f"Could not mint a unique summary id after {attempts} attempts"
        )

    def _build_report(
        self,
        source_id: int,
        target_id: int,
        plan: _TransplantPlan,
        *,
        id_map: dict[str, str],
        applied: bool,
    ) -> TransplantReport:
        return TransplantReport(
            source_conversation_id=source_id,
            target_conversation_id=target_id,
            top_level_summary_ids=plan.top_level_ids,
            closure_size=len(plan.closure),
            closure_by_depth=count_by_depth(plan.closure),
            token_overhead=plan.token_overhead,
            target_items_before=plan.target_items_before,
            target_items_after=plan.target_items_before + len(plan.top_level_ids),
            id_map=id_map,
            applied=applied,
        )

    def _report_failure(
        self, source_id: int, target_id: int, exc: Exception, *, applied: bool
    ) -> None:
        self._logger.error(
            "transplant_failed",
            source_conversation_id=source_id,
            target_conversation_id=target_id,
            apply=applied,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        self._event_bus.publish(
            LedgerEvent.TRANSPLANT_FAILED,
            {
                "source_conversation_id": source_id,
                "target_conversation_id": target_id,
                "error": str(exc),
            },
        )
