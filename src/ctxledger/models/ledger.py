"""Ledger entities: conversations, messages, summaries, DAG edges and context items."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

SummaryKind = Literal["leaf", "condensed"]
ContextItemType = Literal["message", "summary"]


def utc_now() -> str:
    """Default clock: the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat(timespec="milliseconds")


class Conversation(BaseModel):
    """One agent conversation. Created by the runtime, never by the engines."""

    conversation_id: int
    session_id: str
    created_at: str
    updated_at: str


class Message(BaseModel):
    """
    A raw chat message. Write-once.

    Once a summary covering it is transplanted, a message is referenced from
    more than one conversation; that is valid because it never changes.
    """

    message_id: int
    conversation_id: int
    role: str
    content: str = ""
    token_count: int = Field(default=0, ge=0)
    created_at: str


class Summary(BaseModel):
    """A compacted representation of messages (leaf) or of other summaries (condensed)."""

    summary_id: str
    conversation_id: int
    kind: SummaryKind
    content: str = ""
    token_count: int = Field(default=0, ge=0)
    depth: int = Field(default=0, ge=0)
    """0 for leaves; by convention 1 + max(parent depth) for condensed nodes."""
    file_ids: list[str] = Field(default_factory=list)
    created_at: str


class SummaryParentEdge(BaseModel):
    """``summary_id`` was condensed from ``parent_summary_id``; ``ordinal`` orders the parents."""

    summary_id: str
    parent_summary_id: str
    ordinal: int = Field(ge=0)


class SummaryMessageEdge(BaseModel):
    """A leaf summary's source message, in display order."""

    summary_id: str
    message_id: int
    ordinal: int = Field(ge=0)


class ContextItem(BaseModel):
    """One slot of the active context ledger."""

    conversation_id: int
    ordinal: int = Field(ge=0)
    item_type: ContextItemType
    message_id: int | None = None
    summary_id: str | None = None
    created_at: str

    @model_validator(mode="after")
    def validate_reference(self) -> ContextItem:
        if self.item_type == "summary" and (self.summary_id is None or self.message_id is not None):
            raise ValueError("summary context items must reference exactly one summary_id")
        if self.item_type == "message" and (self.message_id is None or self.summary_id is not None):
            raise ValueError("message context items must reference exactly one message_id")
        return self

    @property
    def ref_id(self) -> str:
        """The referenced id as a string, whichever type it is."""
        return str(self.summary_id if self.item_type == "summary" else self.message_id)


class ContextEntry(BaseModel):
    """A context item joined with the summary or message it points at (read model)."""

    ordinal: int
    item_type: ContextItemType
    ref_id: str
    kind: str
    """Summary kind for summaries, message role for messages."""
    token_count: int = 0
    content: str = ""
    created_at: str = ""


class LargeFile(BaseModel):
    """A large file the runtime stored out of band, with its exploration summary."""

    file_id: str
    conversation_id: int
    file_name: str = ""
    mime_type: str = ""
    byte_size: int = Field(default=0, ge=0)
    storage_uri: str
    exploration_summary: str = ""
    created_at: str

    @property
    def display_name(self) -> str:
        return self.file_name or "(unnamed)"
