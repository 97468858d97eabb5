"""Exception hierarchy for ledger reads and maintenance operations.

Four families mirror how a failure is detected:

- :class:`NotFoundError`: a conversation or summary does not exist.
- :class:`PreconditionError`: the request is well-formed but the ledger is not
  in a state that allows it (wrong kind, no parents, stale row counts, ...).
- :class:`TransplantConflictError`: a transplant looks like it already happened.
- :class:`LedgerIntegrityError`: an invariant check failed mid-transaction; the
  transaction has been rolled back.

All of them derive from :class:`LedgerError` so callers (the CLI, an agent tool)
can catch a single type and report ``str(exc)``.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by ctxledger."""


# ── Not found ──────────────────────────────────────────────────────────────────


class NotFoundError(LedgerError):
    """A referenced ledger entity does not exist."""


class ConversationNotFoundError(NotFoundError):
    """Raised when a conversation id (or session id) has no conversation row."""

    def __init__(self, conversation: int | str) -> None:
        if isinstance(conversation, str):
            message = f"No conversation found for session {conversation!r}"
        else:
            message = f"Conversation not found: {conversation}"
        super().__init__(message)
        self.conversation = conversation


class SummaryNotFoundError(NotFoundError):
    """Raised when a summary id does not exist."""

    def __init__(self, summary_id: str) -> None:
        super().__init__(f"Summary not found: {summary_id!r}")
        self.summary_id = summary_id


# ── Preconditions ──────────────────────────────────────────────────────────────


class PreconditionError(LedgerError):
    """The ledger is not in a state that permits the requested operation."""


class NotInActiveContextError(PreconditionError):
    """The summary does not occupy exactly one ordinal of the active context."""

    def __init__(self, summary_id: str, conversation_id: int, occurrences: int = 0) -> None:
        if occurrences == 0:
            detail = "not in active context"
        else:
            detail = f"not in active context (occupies {occurrences} ordinals, expected 1)"
        super().__init__(f"Summary {summary_id} {detail} for conversation {conversation_id}")
        self.summary_id = summary_id
        self.conversation_id = conversation_id
        self.occurrences = occurrences


class NotCondensableError(PreconditionError):
    """Only condensed summaries can be dissolved."""

    def __init__(self, summary_id: str, kind: str, depth: int) -> None:
        super().__init__(
            f"Summary {summary_id} is a {kind} (depth {depth}), not condensable: "
            "only condensed summaries can be dissolved"
        )
        self.summary_id = summary_id
        self.kind = kind
        self.depth = depth


class NothingToDissolveError(PreconditionError):
    """The condensed summary has no parent edges."""

    def __init__(self, summary_id: str) -> None:
        super().__init__(f"Summary {summary_id} has no parent summaries: nothing to dissolve")
        self.summary_id = summary_id


class PurgeBlockedError(PreconditionError):
    """Purging would orphan references held by other summaries or context items."""

    def __init__(
        self,
        summary_id: str,
        child_summary_ids: list[str],
        context_references: int,
    ) -> None:
        parts: list[str] = []
        if child_summary_ids:
            parts.append(f"listed as a parent by {', '.join(child_summary_ids)}")
        if context_references:
            parts.append(f"still referenced by {context_references} context item(s)")
        super().__init__(f"Cannot purge summary {summary_id}: {'; '.join(parts)}")
        self.summary_id = summary_id
        self.child_summary_ids = child_summary_ids
        self.context_references = context_references


class RowCountMismatchError(PreconditionError):
    """A statement that must touch an exact number of rows touched a different number."""

    def __init__(self, action: str, expected: int, actual: int) -> None:
        super().__init__(f"{action}: expected {expected} row(s), affected {actual}")
        self.action = action
        self.expected = expected
        self.actual = actual


class SameConversationError(PreconditionError):
    """Source and target of a transplant are the same conversation."""

    def __init__(self, conversation_id: int) -> None:
        super().__init__(
            f"Cannot transplant conversation {conversation_id} into itself"
        )
        self.conversation_id = conversation_id


class NothingToTransplantError(PreconditionError):
    """The source conversation has no summary-type context items."""

    def __init__(self, conversation_id: int) -> None:
        super().__init__(
            f"Conversation {conversation_id} has no summaries in its active context: "
            "nothing to transplant"
        )
        self.conversation_id = conversation_id


# ── Conflict ───────────────────────────────────────────────────────────────────


class TransplantConflictError(LedgerError):
    """The target already holds summaries whose content matches the source's top set."""

    def __init__(self, source_id: int, target_id: int, matches: dict[str, str]) -> None:
        pairs = ", ".join(f"{src} ~ {dst}" for src, dst in sorted(matches.items()))
        super().__init__(
            f"Conversation {target_id} already contains content from conversation "
            f"{source_id} ({len(matches)} match(es): {pairs}); refusing to transplant twice"
        )
        self.source_id = source_id
        self.target_id = target_id
        self.matches = matches


# ── Integrity ──────────────────────────────────────────────────────────────────


class LedgerIntegrityError(LedgerError):
    """An invariant check failed inside a write transaction (which was rolled back)."""
