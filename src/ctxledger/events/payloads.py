"""Typed payload definitions for each LedgerEvent.

Usage example::

    from ctxledger.events.bus import EventBus, LedgerEvent
    from ctxledger.events.payloads import TransplantCompletedPayload

    def on_transplant(event: LedgerEvent, payload: TransplantCompletedPayload) -> None:
        print(
            f"Copied {payload['closure_size']} summaries into "
            f"conversation {payload['target_conversation_id']}"
        )

    bus.subscribe(LedgerEvent.TRANSPLANT_COMPLETED, on_transplant)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import Any, TypedDict

# ── Dissolve ──────────────────────────────────────────────────────────────────


class DissolveCompletedPayload(TypedDict):
    """Payload for ``DISSOLVE_PLANNED`` and ``DISSOLVE_COMPLETED``.

    The ``model_dump()`` of a :class:`ctxledger.models.reports.DissolveReport`.
    """

    conversation_id: int
    summary_id: str
    kind: str
    depth: int
    token_count: int
    target_ordinal: int
    parents: list[dict[str, Any]]
    items_before: int
    items_after: int
    shift: int
    shifted_item_count: int
    inserted_ordinal_start: int
    inserted_ordinal_end: int
    restored_token_count: int
    token_delta: int
    purge_requested: bool
    purged: bool
    applied: bool


class DissolveFailedPayload(TypedDict):
    """Payload for ``DISSOLVE_FAILED``."""

    conversation_id: int
    summary_id: str
    error: str


# ── Transplant ────────────────────────────────────────────────────────────────


class TransplantCompletedPayload(TypedDict):
    """Payload for ``TRANSPLANT_PLANNED`` and ``TRANSPLANT_COMPLETED``.

    The ``model_dump()`` of a :class:`ctxledger.models.reports.TransplantReport`.
    """

    source_conversation_id: int
    target_conversation_id: int
    top_level_summary_ids: list[str]
    closure_size: int
    closure_by_depth: dict[int, int]
    token_overhead: int
    target_items_before: int
    target_items_after: int
    id_map: dict[str, str]
    applied: bool


class TransplantFailedPayload(TypedDict):
    """Payload for ``TRANSPLANT_FAILED``."""

    source_conversation_id: int
    target_conversation_id: int
    error: str
