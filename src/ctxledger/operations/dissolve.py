"""Dissolve: expand one condensed summary in the active context back into its parents.

A dissolve reverses a single condensation step. The condensed summary's
context item at ordinal ``o`` is replaced, in place, by its ``k`` parent
summaries at ``o … o+k-1`` (in parent-edge order), and every later item moves
up by ``k - 1``. The summary row and its DAG edges are kept unless a purge is
requested.

Every write happens in one transaction; the ledger is never observably
half-renumbered.
"""

from __future__ import annotations

from dataclasses import dataclass

import aiosqlite
import structlog

from ctxledger.errors import (
    LedgerIntegrityError,
    NotCondensableError,
    NothingToDissolveError,
    NotInActiveContextError,
    PurgeBlockedError,
    RowCountMismatchError,
)
from ctxledger.events.bus import EventBus, LedgerEvent
from ctxledger.models.config import LedgerConfig
from ctxledger.models.ledger import Summary
from ctxledger.models.reports import DissolveReport, ParentSummaryInfo
from ctxledger.store.ledger import (
    LedgerStore,
    assert_contiguous_ordinals,
    insert_context_item,
    shift_context_ordinals,
    touch_conversation,
)

_PREVIEW_CHARS = 80


@dataclass
class _DissolveTarget:
    summary: Summary
    ordinal: int


def _preview(text: str, width: int = _PREVIEW_CHARS) -> str:
    line = " ".join(text.split())
    if len(line) <= width:
        return line
    return line[: width - 3] + "..."


class DissolveEngine:
    """
    Validates and executes dissolves against a :class:`LedgerStore`.

    Preconditions, each a distinct error:

    - the summary occupies exactly one ordinal of the conversation's active
      context (:class:`NotInActiveContextError`),
    - it is ``condensed`` (:class:`NotCondensableError`),
    - it has at least one parent edge (:class:`NothingToDissolveError`).

    Example::

        engine = DissolveEngine(store)
        report = await engine.plan(conversation_id, "sum_abc123...")   # dry run
        report = await engine.apply(conversation_id, "sum_abc123...")  # commit
    """

    def __init__(
        self,
        store: LedgerStore,
        event_bus: EventBus | None = None,
        config: LedgerConfig | None = None,
    ) -> None:
        self._store = store
        self._event_bus = event_bus or EventBus()
        self._config = config or LedgerConfig(store=store.config)
        self._logger = structlog.get_logger("ctxledger.dissolve")

    # ── Public API ─────────────────────────────────────────────────────────────

    async def plan(
        self,
        conversation_id: int,
        summary_id: str,
        *,
        purge: bool = False,
    ) -> DissolveReport:
        """
        Validate a dissolve and compute its effects without writing anything.

        With ``purge=True`` the purge referent check runs as well, so a blocked
        purge is reported by the dry run rather than by :meth:`apply`.

        Returns:
            The report an :meth:`apply` would produce, with ``applied=False``.

        Raises:
            ConversationNotFoundError, NotInActiveContextError,
            NotCondensableError, NothingToDissolveError, PurgeBlockedError
        """
        try:
            target = await self._load_target(conversation_id, summary_id)
            parents = await self._load_parents(target.summary)
            items_before = await self._store.count_context_items(conversation_id)
            shifted = await self._store.count_context_items(
                conversation_id, after_ordinal=target.ordinal
            )
            if purge:
                await self._check_purge(target)
        except Exception as exc:
            self._report_failure(conversation_id, summary_id, exc, applied=False)
            raise

        report = self._build_report(
            conversation_id,
            target,
            parents,
            items_before=items_before,
            shifted_item_count=shifted,
            purge_requested=purge,
            purged=False,
            applied=False,
        )
        self._logger.info(
            "dissolve_planned",
            conversation_id=conversation_id,
            summary_id=summary_id,
            parent_count=len(parents),
            token_delta=report.token_delta,
        )
        self._event_bus.publish(LedgerEvent.DISSOLVE_PLANNED, report.model_dump())
        return report

    async def apply(
        self,
        conversation_id: int,
        summary_id: str,
        *,
        purge: bool = False,
    ) -> DissolveReport:
        """
        Dissolve a condensed summary in one transaction.

        All preconditions are re-read inside the transaction, so a plan made
        earlier cannot be acted on against stale state.

        Args:
            conversation_id: Conversation whose active context is rewritten.
            summary_id: The condensed summary to dissolve.
            purge: Also delete the summary row and its parent edges. Refused
                with :class:`PurgeBlockedError` while any other summary lists
                it as a parent or any other context item references it.

        Returns:
            The report of what was changed, with ``applied=True``.

        Raises:
            ConversationNotFoundError, NotInActiveContextError,
            NotCondensableError, NothingToDissolveError, PurgeBlockedError,
            RowCountMismatchError, LedgerIntegrityError
        """
        try:
            async with self._store.transaction() as conn:
                target = await self._load_target(conversation_id, summary_id)
                parents = await self._load_parents(target.summary)
                items_before = await self._store.count_context_items(conversation_id)
                shifted = await self._store.count_context_items(
                    conversation_id, after_ordinal=target.ordinal
                )
                if purge:
                    await self._check_purge(target)

                deleted = await conn.execute(
                    "DELETE FROM context_items"
                    " WHERE conversation_id = ? AND ordinal = ? AND summary_id = ?",
                    (conversation_id, target.ordinal, summary_id),
                )
                if deleted.rowcount != 1:
                    raise RowCountMismatchError(
                        f"delete context item {summary_id} at ordinal {target.ordinal}",
                        expected=1,
                        actual=deleted.rowcount,
                    )

                shift = len(parents) - 1
                if shift > 0:
                    await shift_context_ordinals(
                        conn,
                        conversation_id,
                        from_ordinal=target.ordinal + 1,
                        shift=shift,
                        staging_offset=self._config.store.staging_offset,
                    )

                now = self._store.now()
                for offset, parent in enumerate(parents):
                    await insert_context_item(
                        conn,
                        conversation_id,
                        target.ordinal + offset,
                        "summary",
                        parent.summary_id,
                        now,
                    )

                if purge:
                    await self._purge(conn, summary_id)

                items_after = await assert_contiguous_ordinals(conn, conversation_id)
                if items_after != items_before + shift:
                    raise LedgerIntegrityError(
                        f"Dissolve of {summary_id} left {items_after} context items, "
                        f"expected {items_before + shift}"
                    )
                await touch_conversation(conn, conversation_id, now)
        except Exception as exc:
            self._report_failure(conversation_id, summary_id, exc, applied=True)
            raise

        report = self._build_report(
            conversation_id,
            target,
            parents,
            items_before=items_before,
            shifted_item_count=shifted,
            purge_requested=purge,
            purged=purge,
            applied=True,
        )
        self._logger.info(
            "dissolve_applied",
            conversation_id=conversation_id,
            summary_id=summary_id,
            ordinal=target.ordinal,
            parent_count=len(parents),
            items_before=report.items_before,
            items_after=report.items_after,
            purged=purge,
        )
        self._event_bus.publish(LedgerEvent.DISSOLVE_COMPLETED, report.model_dump())
        return report

    # ── Private Helpers ────────────────────────────────────────────────────────

    async def _load_target(self, conversation_id: int, summary_id: str) -> _DissolveTarget:
        await self._store.get_conversation(conversation_id)
        ordinals = await self._store.get_summary_ordinals(conversation_id, summary_id)
        if len(ordinals) != 1:
            raise NotInActiveContextError(summary_id, conversation_id, occurrences=len(ordinals))
        summary = await self._store.get_summary(summary_id)
        if summary.conversation_id != conversation_id:
            raise NotInActiveContextError(summary_id, conversation_id)
        if summary.kind != "condensed":
            raise NotCondensableError(summary_id, summary.kind, summary.depth)
        return _DissolveTarget(summary=summary, ordinal=ordinals[0])

    async def _load_parents(self, target: Summary) -> list[ParentSummaryInfo]:
        edges = await self._store.get_parent_edges(target.summary_id)
        if not edges:
            raise NothingToDissolveError(target.summary_id)
        rows = await self._store.get_summaries_by_id([e.parent_summary_id for e in edges])
        parents: list[ParentSummaryInfo] = []
        for edge in edges:
            parent = rows.get(edge.parent_summary_id)
            if parent is None:
                raise LedgerIntegrityError(
                    f"Summary {target.summary_id} lists missing parent {edge.parent_summary_id}"
                )
            parents.append(
                ParentSummaryInfo(
                    summary_id=parent.summary_id,
                    edge_ordinal=edge.ordinal,
                    kind=parent.kind,
                    depth=parent.depth,
                    token_count=parent.token_count,
                    preview=_preview(parent.content),
                )
            )
        return parents

    async def _check_purge(self, target: _DissolveTarget) -> None:
        summary_id = target.summary.summary_id
        children = await self._store.get_child_ids(summary_id)
        # The target's own context item is about to be deleted.
        other_references = await self._store.count_summary_references(summary_id) - 1
        if children or other_references > 0:
            raise PurgeBlockedError(summary_id, children, max(other_references, 0))

    async def _purge(self, conn: aiosqlite.Connection, summary_id: str) -> None:
        await conn.execute("DELETE FROM summary_parents WHERE summary_id = ?", (summary_id,))
        await conn.execute("DELETE FROM summary_messages WHERE summary_id = ?", (summary_id,))
        deleted = await conn.execute("DELETE FROM summaries WHERE summary_id = ?", (summary_id,))
        if deleted.rowcount != 1:
            raise RowCountMismatchError(
                f"purge summary {summary_id}", expected=1, actual=deleted.rowcount
            )

    def _build_report(
        self,
        conversation_id: int,
        target: _DissolveTarget,
        parents: list[ParentSummaryInfo],
        *,
        items_before: int,
        shifted_item_count: int,
        purge_requested: bool,
        purged: bool,
        applied: bool,
    ) -> DissolveReport:
        restored = sum(p.token_count for p in parents)
        shift = len(parents) - 1
        return DissolveReport(
            conversation_id=conversation_id,
            summary_id=target.summary.summary_id,
            kind=target.summary.kind,
            depth=target.summary.depth,
            token_count=target.summary.token_count,
            target_ordinal=target.ordinal,
            parents=parents,
            items_before=items_before,
            items_after=items_before + shift,
            shift=shift,
            shifted_item_count=shifted_item_count,
            inserted_ordinal_start=target.ordinal,
            inserted_ordinal_end=target.ordinal + len(parents) - 1,
            restored_token_count=restored,
            token_delta=restored - target.summary.token_count,
            purge_requested=purge_requested,
            purged=purged,
            applied=applied,
        )

    def _report_failure(
        self,
        conversation_id: int,
        summary_id: str,
        exc: Exception,
        *,
        applied: bool,
    ) -> None:
        self._logger.error(
            "dissolve_failed",
            conversation_id=conversation_id,
            summary_id=summary_id,
            apply=applied,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        self._event_bus.publish(
            LedgerEvent.DISSOLVE_FAILED,
            {"conversation_id": conversation_id, "summary_id": summary_id, "error": str(exc)},
        )
