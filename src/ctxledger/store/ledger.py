"""SQLite-backed context ledger store."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from ctxledger.errors import (
    ConversationNotFoundError,
    LedgerError,
    LedgerIntegrityError,
    SummaryNotFoundError,
)
from ctxledger.models.config import StoreConfig
from ctxledger.models.ledger import (
    ContextItem,
    ContextItemType,
    Conversation,
    LargeFile,
    Message,
    Summary,
    SummaryMessageEdge,
    SummaryParentEdge,
    utc_now,
)

_logger = structlog.get_logger("ctxledger.store")

# ── Exceptions ─────────────────────────────────────────────────────────────────


class LedgerStoreError(LedgerError):
    """Base class for store errors."""


class DuplicateIDError(LedgerStoreError):
    """Raised when attempting to insert a record with a duplicate primary key."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Duplicate ID: {record_id!r}")
        self.record_id = record_id


class DanglingReferenceError(LedgerStoreError):
    """Raised when a row references a conversation, message or summary that does not exist."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Dangling reference: {detail}")
        self.detail = detail


# ── Ordinal primitives (run inside LedgerStore.transaction()) ──────────────────


async def shift_context_ordinals(
    conn: aiosqlite.Connection,
    conversation_id: int,
    *,
    from_ordinal: int,
    shift: int,
    staging_offset: int = 10_000_000,
) -> int:
    """
    Shift every context item with ``ordinal >= from_ordinal`` by ``shift``.

    ``(conversation_id, ordinal)`` is unique, and SQLite checks that per row
    while an UPDATE runs, so a single ``ordinal = ordinal + shift`` can collide
    with a row that has not moved yet. The rows are therefore moved twice:

    1. into a staging range strictly above every ordinal in the conversation,
    2. from the staging range to their final ordinals.

    Neither pass can collide: pass 1 writes only values above the current
    maximum, pass 2 writes only values below the staging range.

    Does not commit. Call it inside :meth:`LedgerStore.transaction`.

    Args:
        conn: The connection holding the open transaction.
        conversation_id: The conversation whose ledger is renumbered.
        from_ordinal: First ordinal of the suffix to move.
        shift: Amount to add. Zero is a no-op. A negative shift must not move
            rows onto ordinals below ``from_ordinal`` that are still occupied.
        staging_offset: Minimum distance of the staging range.

    Returns:
        The number of context items moved.
    """
    if shift == 0:
        return 0
    if from_ordinal + shift < 0:
        raise LedgerIntegrityError(
            f"Shifting ordinals >= {from_ordinal} by {shift} would produce negative ordinals"
        )

    async with conn.execute(
        "SELECT COUNT(*), COALESCE(MAX(ordinal), -1) FROM context_items"
        " WHERE conversation_id = ? AND ordinal >= ?",
        (conversation_id, from_ordinal),
    ) as cursor:
        row = await cursor.fetchone()
    count, max_ordinal = (row[0], row[1]) if row else (0, -1)
    if count == 0:
        return 0

    offset = max(staging_offset, max_ordinal + abs(shift) + 1)

    staged = await conn.execute(
        "UPDATE context_items SET ordinal = ordinal + ?"
        " WHERE conversation_id = ? AND ordinal >= ? AND ordinal < ?",
        (offset, conversation_id, from_ordinal, offset),
    )
    moved = await conn.execute(
        "UPDATE context_items SET ordinal = ordinal - ? + ?"
        " WHERE conversation_id = ? AND ordinal >= ?",
        (offset, shift, conversation_id, offset),
    )
    if staged.rowcount != count or moved.rowcount != count:
        raise LedgerIntegrityError(
            f"Ordinal shift for conversation {conversation_id} moved "
            f"{staged.rowcount}/{moved.rowcount} rows, expected {count}"
        )

    _logger.debug(
        "context_ordinals_shifted",
        conversation_id=conversation_id,
        from_ordinal=from_ordinal,
        shift=shift,
        moved=count,
        staging_offset=offset,
    )
    return count


async def assert_contiguous_ordinals(conn: aiosqlite.Connection, conversation_id: int) -> int:
    """
    Verify that the conversation's context ordinals are exactly ``[0, N)``.

    Returns:
        ``N``, the number of context items.

    Raises:
        LedgerIntegrityError: If there is a gap or the range does not start at 0.
    """
    async with conn.execute(
        "SELECT COUNT(*), MIN(ordinal), MAX(ordinal) FROM context_items WHERE conversation_id = ?",
        (conversation_id,),
    ) as cursor:
        row = await cursor.fetchone()
    count = row[0] if row else 0
    if count == 0:
        return 0
    lowest, highest = row[1], row[2]
    if lowest != 0 or highest != count - 1:
        raise LedgerIntegrityError(
            f"Context ordinals for conversation {conversation_id} are not contiguous: "
            f"{count} items span [{lowest}, {highest}]"
        )
    return count


# ── LedgerStore ────────────────────────────────────────────────────────────────


class LedgerStore:
    """
    SQLite-backed context ledger.

    Holds conversations, write-once messages, the summary DAG and the ordered
    ``context_items`` of every conversation. The CRUD methods below commit on
    their own and are what the surrounding agent runtime (and the tests) use to
    populate the ledger. Maintenance operations that must be atomic open
    :meth:`transaction` and issue their statements on the yielded connection;
    read methods are safe to call inside that transaction because they share the
    connection and never commit.

    Usage::

        store = LedgerStore(StoreConfig(db_path="~/.openclaw/lcm.db"))
        await store.initialize()
        try:
            conversation = await store.create_conversation("session-123")
            async with store.transaction() as conn:
                await conn.execute(...)
        finally:
            await store.close()
    """

    def __init__(
        self,
        config: StoreConfig,
        *,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._clock = clock or utc_now
        self._conn: aiosqlite.Connection | None = None
        self._logger = _logger

    @property
    def config(self) -> StoreConfig:
        return self._config

    def now(self) -> str:
        """Current timestamp from the injected clock."""
        return self._clock()

    async def initialize(self) -> None:
        """
        Open the database connection and apply the schema.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path, timeout=self._config.connection_timeout)
        try:
            conn.row_factory = aiosqlite.Row
            if self._config.wal_mode:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute("PRAGMA synchronous=NORMAL")

            schema = (Path(__file__).parent / "schema.sql").read_text()
            await conn.executescript(schema)
            await conn.commit()
        except Exception:
            await conn.close()
            raise

        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection. Safe to call more than once."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise LedgerStoreError("Store is not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block as one write transaction.

        ``BEGIN IMMEDIATE`` takes SQLite's write lock up front, so reads inside
        the block see the state the writes will be applied to. The transaction
        commits when the block exits normally and rolls back on any exception,
        which is then re-raised.
        """
        conn = self._conn_or_raise()
        if conn.in_transaction:
            raise LedgerStoreError("A transaction is already open on this store.")
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException as exc:
            await conn.rollback()
            self._logger.warning("transaction_rolled_back", error=str(exc) or type(exc).__name__)
            raise
        else:
            await conn.commit()

    # ── Conversation Methods ───────────────────────────────────────────────────

    async def create_conversation(self, session_id: str) -> Conversation:
        """
        Insert a new conversation for an external session id.

        Conversations belong to the agent runtime; the maintenance engines only
        ever read them and bump ``updated_at``.
        """
        conn = self._conn_or_raise()
        now = self.now()
        cursor = await conn.execute(
            "INSERT INTO conversations (session_id, created_at, updated_at) VALUES (?, ?, ?)",
            (session_id, now, now),
        )
        await conn.commit()
        conversation_id = cursor.lastrowid
        assert conversation_id is not None
        return Conversation(
            conversation_id=conversation_id,
            session_id=session_id,
            created_at=now,
            updated_at=now,
        )

    async def get_conversation(self, conversation_id: int) -> Conversation:
        """
        Fetch a conversation by id.

        Raises:
            ConversationNotFoundError: If no conversation with this id exists.
        """
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM conversations WHERE conversation_id = ?", (conversation_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return self._row_to_conversation(row)

    async def find_conversation(self, session_id: str) -> Conversation:
        """
        Return the most recently updated conversation for a session id.

        Raises:
            ConversationNotFoundError: If the session has no conversation.
        """
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM conversations WHERE session_id = ?"
            " ORDER BY updated_at DESC, conversation_id DESC LIMIT 1",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise ConversationNotFoundError(session_id)
        return self._row_to_conversation(row)

    # ── Message Methods ────────────────────────────────────────────────────────

    async def append_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        *,
        token_count: int = 0,
        in_context: bool = True,
    ) -> Message:
        """
        Append a message and, by default, a context item for it at the end of the ledger.

        Both rows are written in one transaction.

        Raises:
            ConversationNotFoundError: If the conversation does not exist.
        """
        conn = self._conn_or_raise()
        now = self.now()
        try:
            cursor = await conn.execute(
                "INSERT INTO messages (conversation_id, role, content, token_count, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (conversation_id, role, content, token_count, now),
            )
            message_id = cursor.lastrowid
            assert message_id is not None
            if in_context:
                await self._insert_context_item_at_end(
                    conn, conversation_id, "message", message_id, now
                )
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            raise ConversationNotFoundError(conversation_id) from exc

        return Message(
            message_id=message_id,
            conversation_id=conversation_id,
            role=role,
            content=content,
            token_count=token_count,
            created_at=now,
        )

    async def get_message(self, message_id: int) -> Message | None:
        """Fetch a message by id, or None."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM messages WHERE message_id = ?", (message_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_message(row) if row is not None else None

    # ── Summary Methods ────────────────────────────────────────────────────────

    async def insert_summary(
        self,
        summary: Summary,
        *,
        parent_ids: Sequence[str] = (),
        message_ids: Sequence[int] = (),
        in_context: bool = False,
    ) -> Summary:
        """
        Persist a summary together with its DAG edges.

        This is the write path of the external compaction process. Parent and
        message edges receive ordinals in the order given.

        Args:
            summary: The summary row to insert.
            parent_ids: Summaries this one was condensed from, in order.
            message_ids: Source messages of a leaf summary, in order.
            in_context: Also append a context item for it at the end of the ledger.

        Raises:
            DuplicateIDError: If the summary id (or an edge) already exists.
        """
        conn = self._conn_or_raise()
        try:
            await insert_summary_row(conn, summary)
            for ordinal, parent_id in enumerate(parent_ids):
                await insert_parent_edge_row(conn, summary.summary_id, parent_id, ordinal)
            for ordinal, message_id in enumerate(message_ids):
                await insert_message_edge_row(conn, summary.summary_id, message_id, ordinal)
            if in_context:
                await self._insert_context_item_at_end(
                    conn, summary.conversation_id, "summary", summary.summary_id, self.now()
                )
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            raise DuplicateIDError(summary.summary_id) from exc

        self._logger.debug(
            "summary_inserted",
            conversation_id=summary.conversation_id,
            summary_id=summary.summary_id,
            kind=summary.kind,
            depth=summary.depth,
            parent_count=len(parent_ids),
            message_count=len(message_ids),
        )
        return summary

    async def add_parent_edge(self, summary_id: str, parent_summary_id: str, ordinal: int) -> None:
        """Insert one parent edge. Used by repair tooling and to build fixtures."""
        conn = self._conn_or_raise()
        try:
            await insert_parent_edge_row(conn, summary_id, parent_summary_id, ordinal)
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            if "UNIQUE" in str(exc):
                raise DuplicateIDError(f"{summary_id} -> {parent_summary_id}") from exc
            raise DanglingReferenceError(
                f"parent edge {summary_id} -> {parent_summary_id}"
            ) from exc

    async def get_summary(self, summary_id: str) -> Summary:
        """
        Fetch a summary by id.

        Raises:
            SummaryNotFoundError: If no summary with this id exists.
        """
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM summaries WHERE summary_id = ?", (summary_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise SummaryNotFoundError(summary_id)
        return self._row_to_summary(row)

    async def summary_exists(self, summary_id: str) -> bool:
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT 1 FROM summaries WHERE summary_id = ?", (summary_id,)
        ) as cursor:
            return await cursor.fetchone() is not None

    async def get_summaries(self, conversation_id: int) -> list[Summary]:
        """All summaries owned by a conversation, ordered by (created_at, summary_id)."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM summaries WHERE conversation_id = ? ORDER BY created_at, summary_id",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_summary(r) for r in rows]

    async def get_summaries_by_id(self, summary_ids: Sequence[str]) -> dict[str, Summary]:
        """Batch-fetch summaries by id. Missing ids are absent from the result."""
        if not summary_ids:
            return {}
        conn = self._conn_or_raise()
        ids = list(dict.fromkeys(summary_ids))
        placeholders = ",".join("?" * len(ids))
        async with conn.execute(
            f"SELECT * FROM summaries WHERE summary_id IN ({placeholders})", ids
        ) as cursor:
            rows = await cursor.fetchall()
        return {row["summary_id"]: self._row_to_summary(row) for row in rows}

    async def get_parent_edges(self, summary_id: str) -> list[SummaryParentEdge]:
        """Parent edges of one summary, ordered by edge ordinal."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM summary_parents WHERE summary_id = ? ORDER BY ordinal ASC",
            (summary_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_parent_edge(r) for r in rows]

    async def get_parent_edges_for(self, summary_ids: Sequence[str]) -> list[SummaryParentEdge]:
        """Parent edges of many summaries, ordered by (summary_id, ordinal)."""
        if not summary_ids:
            return []
        conn = self._conn_or_raise()
        ids = list(dict.fromkeys(summary_ids))
        placeholders = ",".join("?" * len(ids))
        async with conn.execute(
            f"SELECT * FROM summary_parents WHERE summary_id IN ({placeholders})"
            " ORDER BY summary_id, ordinal ASC",
            ids,
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_parent_edge(r) for r in rows]

    async def get_child_ids(self, parent_summary_id: str) -> list[str]:
        """Summaries that list ``parent_summary_id`` as a parent."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT summary_id FROM summary_parents WHERE parent_summary_id = ?"
            " ORDER BY summary_id",
            (parent_summary_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [r["summary_id"] for r in rows]

    async def get_conversation_edges(self, conversation_id: int) -> list[SummaryParentEdge]:
        """Parent edges whose child and parent both belong to the conversation."""
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT sp.summary_id, sp.parent_summary_id, sp.ordinal
            FROM summary_parents sp
            JOIN summaries child ON child.summary_id = sp.summary_id
            JOIN summaries parent ON parent.summary_id = sp.parent_summary_id
            WHERE child.conversation_id = ? AND parent.conversation_id = ?
            ORDER BY sp.summary_id, sp.ordinal
            """,
            (conversation_id, conversation_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_parent_edge(r) for r in rows]

    async def get_message_edges(self, summary_id: str) -> list[SummaryMessageEdge]:
        """Source-message edges of a summary, ordered by edge ordinal."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM summary_messages WHERE summary_id = ? ORDER BY ordinal ASC",
            (summary_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            SummaryMessageEdge(
                summary_id=r["summary_id"], message_id=r["message_id"], ordinal=r["ordinal"]
            )
            for r in rows
        ]

    async def get_source_messages(self, summary_id: str) -> list[Message]:
        """The messages a summary was built from, in edge order."""
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT m.*
            FROM summary_messages sm
            JOIN messages m ON m.message_id = sm.message_id
            WHERE sm.summary_id = ?
            ORDER BY sm.ordinal ASC
            """,
            (summary_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in rows]

    # ── Large File Methods ─────────────────────────────────────────────────────

    async def insert_large_file(self, large_file: LargeFile) -> LargeFile:
        """
        Persist a large-file record. This is the write path of the runtime's file interceptor.

        Raises:
            DuplicateIDError: If the file id already exists.
            DanglingReferenceError: If the conversation does not exist.
        """
        conn = self._conn_or_raise()
        try:
            await conn.execute(
                """
                INSERT INTO large_files (
                    file_id, conversation_id, file_name, mime_type, byte_size,
                    storage_uri, exploration_summary, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    large_file.file_id,
                    large_file.conversation_id,
                    large_file.file_name,
                    large_file.mime_type,
                    large_file.byte_size,
                    large_file.storage_uri,
                    large_file.exploration_summary,
                    large_file.created_at,
                ),
            )
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            if "UNIQUE" in str(exc):
                raise DuplicateIDError(large_file.file_id) from exc
            raise DanglingReferenceError(
                f"large file {large_file.file_id} in conversation {large_file.conversation_id}"
            ) from exc
        return large_file

    async def get_large_files(self, conversation_id: int) -> list[LargeFile]:
        """Large files of a conversation, oldest first."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM large_files WHERE conversation_id = ? ORDER BY created_at, file_id",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_large_file(r) for r in rows]

    async def count_summaries_by_session(self, session_ids: Sequence[str]) -> dict[str, int]:
        """Summaries per session id, across every conversation of the session."""
        return await self._count_by_session("summaries", "summary_id", session_ids)

    async def count_large_files_by_session(self, session_ids: Sequence[str]) -> dict[str, int]:
        """Large files per session id, across every conversation of the session."""
        return await self._count_by_session("large_files", "file_id", session_ids)

    # ── Context Items Methods ──────────────────────────────────────────────────

    async def append_context_item(
        self,
        conversation_id: int,
        item_type: ContextItemType,
        ref_id: int | str,
    ) -> ContextItem:
        """Append a context item at ordinal ``N`` (the end of the ledger)."""
        conn = self._conn_or_raise()
        now = self.now()
        try:
            ordinal = await self._insert_context_item_at_end(
                conn, conversation_id, item_type, ref_id, now
            )
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            raise DanglingReferenceError(
                f"context item {item_type} {ref_id!r} in conversation {conversation_id}"
            ) from exc
        return ContextItem(
            conversation_id=conversation_id,
            ordinal=ordinal,
            item_type=item_type,
            message_id=int(ref_id) if item_type == "message" else None,
            summary_id=str(ref_id) if item_type == "summary" else None,
            created_at=now,
        )

    async def get_context_items(self, conversation_id: int) -> list[ContextItem]:
        """The conversation's active context, ordered by ordinal ASC."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM context_items WHERE conversation_id = ? ORDER BY ordinal ASC",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_context_item(r) for r in rows]

    async def count_context_items(self, conversation_id: int, *, after_ordinal: int = -1) -> int:
        """Number of context items with ``ordinal > after_ordinal``."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT COUNT(*) FROM context_items WHERE conversation_id = ? AND ordinal > ?",
            (conversation_id, after_ordinal),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_summary_ordinals(self, conversation_id: int, summary_id: str) -> list[int]:
        """Ordinals at which a summary occupies the conversation's active context."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT ordinal FROM context_items"
            " WHERE conversation_id = ? AND summary_id = ? ORDER BY ordinal",
            (conversation_id, summary_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [r["ordinal"] for r in rows]

    async def count_summary_references(self, summary_id: str) -> int:
        """Number of context items, in any conversation, referencing a summary."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT COUNT(*) FROM context_items WHERE summary_id = ?", (summary_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    # ── Private Helpers ────────────────────────────────────────────────────────

    async def _insert_context_item_at_end(
        self,
        conn: aiosqlite.Connection,
        conversation_id: int,
        item_type: ContextItemType,
        ref_id: int | str,
        created_at: str,
    ) -> int:
        async with conn.execute(
            "SELECT COALESCE(MAX(ordinal), -1) FROM context_items WHERE conversation_id = ?",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        ordinal = (row[0] if row else -1) + 1
        await insert_context_item(conn, conversation_id, ordinal, item_type, ref_id, created_at)
        return ordinal

    async def _count_by_session(
        self, table: str, id_column: str, session_ids: Sequence[str]
    ) -> dict[str, int]:
        # Every requested session appears in the result; sessions without rows count 0.
        counts = dict.fromkeys(session_ids, 0)
        if not counts:
            return counts
        conn = self._conn_or_raise()
        placeholders = ",".join("?" * len(counts))
        async with conn.execute(
            f"SELECT c.session_id, COUNT(t.{id_column})"
            f" FROM conversations c JOIN {table} t ON t.conversation_id = c.conversation_id"
            f" WHERE c.session_id IN ({placeholders})"
            " GROUP BY c.session_id",
            list(counts),
        ) as cursor:
            rows = await cursor.fetchall()
        for row in rows:
            counts[row[0]] = row[1]
        return counts

    def _row_to_conversation(self, row: aiosqlite.Row) -> Conversation:
        return Conversation(
            conversation_id=row["conversation_id"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        return Message(
            message_id=row["message_id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"] or "",
            token_count=row["token_count"] or 0,
            created_at=row["created_at"],
        )

    def _row_to_summary(self, row: aiosqlite.Row) -> Summary:
        return Summary(
            summary_id=row["summary_id"],
            conversation_id=row["conversation_id"],
            kind=row["kind"],
            content=row["content"] or "",
            token_count=row["token_count"] or 0,
            depth=row["depth"] or 0,
            file_ids=json.loads(row["file_ids"] or "[]"),
            created_at=row["created_at"],
        )

    def _row_to_parent_edge(self, row: aiosqlite.Row) -> SummaryParentEdge:
        return SummaryParentEdge(
            summary_id=row["summary_id"],
            parent_summary_id=row["parent_summary_id"],
            ordinal=row["ordinal"],
        )

    def _row_to_context_item(self, row: aiosqlite.Row) -> ContextItem:
        return ContextItem(
            conversation_id=row["conversation_id"],
            ordinal=row["ordinal"],
            item_type=row["item_type"],
            message_id=row["message_id"],
            summary_id=row["summary_id"],
            created_at=row["created_at"],
        )

    def _row_to_large_file(self, row: aiosqlite.Row) -> LargeFile:
        return LargeFile(
            file_id=row["file_id"],
            conversation_id=row["conversation_id"],
            file_name=row["file_name"] or "",
            mime_type=row["mime_type"] or "",
            byte_size=row["byte_size"] or 0,
            storage_uri=row["storage_uri"],
            exploration_summary=row["exploration_summary"] or "",
            created_at=row["created_at"],
        )


# ── Statement helpers shared with the engines ─────────────────────────────────


async def insert_summary_row(conn: aiosqlite.Connection, summary: Summary) -> None:
    """Insert one ``summaries`` row. Does not commit."""
    await conn.execute(
        """
        INSERT INTO summaries (
            summary_id, conversation_id, kind, content, token_count, depth, file_ids, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            summary.summary_id,
            summary.conversation_id,
            summary.kind,
            summary.content,
            summary.token_count,
            summary.depth,
            json.dumps(summary.file_ids),
            summary.created_at,
        ),
    )


async def insert_parent_edge_row(
    conn: aiosqlite.Connection, summary_id: str, parent_summary_id: str, ordinal: int
) -> None:
    """Insert one ``summary_parents`` row. Does not commit."""
    await conn.execute(
        "INSERT INTO summary_parents (summary_id, parent_summary_id, ordinal) VALUES (?, ?, ?)",
        (summary_id, parent_summary_id, ordinal),
    )


async def insert_message_edge_row(
    conn: aiosqlite.Connection, summary_id: str, message_id: int, ordinal: int
) -> None:
    """Insert one ``summary_messages`` row. Does not commit."""
    await conn.execute(
        "INSERT INTO summary_messages (summary_id, message_id, ordinal) VALUES (?, ?, ?)",
        (summary_id, message_id, ordinal),
    )


async def insert_context_item(
    conn: aiosqlite.Connection,
    conversation_id: int,
    ordinal: int,
    item_type: ContextItemType,
    ref_id: Any,
    created_at: str,
) -> None:
    """Insert one ``context_items`` row at an explicit ordinal. Does not commit."""
    await conn.execute(
        """
        INSERT INTO context_items
            (conversation_id, ordinal, item_type, message_id, summary_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            conversation_id,
            ordinal,
            item_type,
            ref_id if item_type == "message" else None,
            ref_id if item_type == "summary" else None,
            created_at,
        ),
    )


async def touch_conversation(
    conn: aiosqlite.Connection, conversation_id: int, updated_at: str
) -> None:
    """Bump a conversation's ``updated_at``. Does not commit."""
    await conn.execute(
        "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
        (updated_at, conversation_id),
    )
