"""Result models returned by the dissolve and transplant engines.

A dry-run ``plan()`` and an ``apply()`` return the same report type; the
``applied`` flag tells them apart, so a plan shows exactly what a real run
would do.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ParentSummaryInfo(BaseModel):
    """One parent restored by a dissolve, in parent-edge order."""

    summary_id: str
    edge_ordinal: int
    kind: str
    depth: int
    token_count: int
    preview: str = ""


class DissolveReport(BaseModel):
    """Effect of dissolving one condensed summary back into its parents."""

    conversation_id: int
    summary_id: str
    kind: str
    depth: int
    token_count: int
    target_ordinal: int
    """The ordinal the condensed summary occupied (and the first parent now occupies)."""
    parents: list[ParentSummaryInfo]
    items_before: int
    items_after: int
    shift: int = Field(description="Ordinal shift applied to items after the target (k - 1).")
    shifted_item_count: int
    inserted_ordinal_start: int
    inserted_ordinal_end: int
    restored_token_count: int
    token_delta: int = Field(description="Restored parents' tokens minus the target's tokens.")
    purge_requested: bool = False
    purged: bool = False
    applied: bool = False


class TransplantReport(BaseModel):
    """Effect of deep-copying a source conversation's summary footprint into a target."""

    source_conversation_id: int
    target_conversation_id: int
    top_level_summary_ids: list[str]
    """Source summaries occupying context slots, in source ordinal order."""
    closure_size: int
    closure_by_depth: dict[int, int]
    token_overhead: int = Field(
        description="Tokens added to the target's active context by the top-level items."
    )
    target_items_before: int
    target_items_after: int
    id_map: dict[str, str] = Field(
        default_factory=dict,
        description="Source summary id -> newly minted target summary id (apply only).",
    )
    applied: bool = False

    @property
    def top_level_count(self) -> int:
        return len(self.top_level_summary_ids)
