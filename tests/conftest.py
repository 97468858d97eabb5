"""Shared fixtures for ctxledger tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio

from ctxledger.events.bus import EventBus, LedgerEvent
from ctxledger.models.config import LedgerConfig, StoreConfig
from ctxledger.models.ledger import LargeFile, Summary, SummaryKind
from ctxledger.store.ledger import LedgerStore

BASE_TIME = "2026-01-01T00:00:00.000+00:00"


@pytest.fixture
def config(tmp_path):
    """LedgerConfig with a temp database path."""
    return LedgerConfig(store=StoreConfig(db_path=str(tmp_path / "lcm.db")))


@pytest_asyncio.fixture
async def store(config):
    """Initialized LedgerStore backed by a temp SQLite database."""
    s = LedgerStore(config.store)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[LedgerEvent, dict[str, Any]]] = []

    def _collect(event: LedgerEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


def sid(n: int) -> str:
    """Deterministic summary id: ``sum_`` + 16 hex chars."""
    return f"sum_{n:016x}"


def stamp(seconds: int) -> str:
    """A timestamp ``seconds`` after BASE_TIME (seconds < 60)."""
    return f"2026-01-01T00:00:{seconds:02d}.000+00:00"


def make_summary(
    conversation_id: int,
    summary_id: str,
    *,
    kind: SummaryKind = "leaf",
    depth: int = 0,
    content: str | None = None,
    token_count: int = 100,
    created_at: str = BASE_TIME,
) -> Summary:
    """Helper to create a test Summary."""
    return Summary(
        summary_id=summary_id,
        conversation_id=conversation_id,
        kind=kind,
        depth=depth,
        content=content if content is not None else f"summary {summary_id}",
        token_count=token_count,
        created_at=created_at,
    )


def make_large_file(
    conversation_id: int,
    file_id: str,
    *,
    file_name: str = "",
    created_at: str = BASE_TIME,
) -> LargeFile:
    """Helper to create a test LargeFile."""
    return LargeFile(
        file_id=file_id,
        conversation_id=conversation_id,
        file_name=file_name,
        mime_type="text/plain",
        byte_size=2048,
        storage_uri=f"file:///var/lcm/files/{file_id}",
        exploration_summary=f"exploration of {file_id}",
        created_at=created_at,
    )


async def add_leaf(
    store: LedgerStore,
    conversation_id: int,
    summary_id: str,
    *,
    created_at: str = BASE_TIME,
    token_count: int = 100,
    in_context: bool = False,
) -> Summary:
    """Insert a leaf summary built from one fresh (out-of-context) message."""
    message = await store.append_message(
        conversation_id, "user", f"source of {summary_id}", in_context=False
    )
    return await store.insert_summary(
        make_summary(
            conversation_id, summary_id, created_at=created_at, token_count=token_count
        ),
        message_ids=[message.message_id],
        in_context=in_context,
    )


async def add_condensed(
    store: LedgerStore,
    conversation_id: int,
    summary_id: str,
    parent_ids: list[str],
    *,
    depth: int = 1,
    created_at: str = BASE_TIME,
    token_count: int = 120,
    in_context: bool = False,
) -> Summary:
    """Insert a condensed summary with parent edges in the given order."""
    return await store.insert_summary(
        make_summary(
            conversation_id,
            summary_id,
            kind="condensed",
            depth=depth,
            created_at=created_at,
            token_count=token_count,
        ),
        parent_ids=parent_ids,
        in_context=in_context,
    )


async def snapshot(store: LedgerStore) -> dict[str, list[tuple[Any, ...]]]:
    """Every row of every ledger table, for before/after comparisons."""
    conn = store._conn_or_raise()
    tables = {
        "conversations": "conversation_id",
        "messages": "message_id",
        "summaries": "summary_id",
        "summary_parents": "summary_id, parent_summary_id",
        "summary_messages": "summary_id, message_id",
        "context_items": "conversation_id, ordinal",
        "large_files": "file_id",
    }
    result: dict[str, list[tuple[Any, ...]]] = {}
    for table, order in tables.items():
        async with conn.execute(f"SELECT * FROM {table} ORDER BY {order}") as cursor:
            result[table] = [tuple(row) for row in await cursor.fetchall()]
    return result


# ── Ledger builders ────────────────────────────────────────────────────────────


@dataclass
class DissolveLedger:
    """A conversation with 10 context items; ordinal 5 is a 3-parent condensed summary."""

    conversation_id: int
    target_id: str
    parent_ids: list[str]
    """In parent-edge order (deliberately not creation order)."""
    refs_before: list[str] = field(default_factory=list)
    """``ref_id`` of each context item by ordinal, before any dissolve."""


async def build_dissolve_ledger(store: LedgerStore) -> DissolveLedger:
    conversation = await store.create_conversation("sess_dissolve")
    cid = conversation.conversation_id
    for i in range(5):
        await store.append_message(cid, "user", f"message {i}", token_count=10)

    for n, seconds in ((1, 1), (2, 2), (3, 3)):
        await add_leaf(store, cid, sid(n), created_at=stamp(seconds), token_count=100)
    parent_ids = [sid(2), sid(1), sid(3)]
    await add_condensed(
        store, cid, sid(10), parent_ids, created_at=stamp(10), token_count=120, in_context=True
    )

    for i in range(5, 9):
        await store.append_message(cid, "user", f"message {i}", token_count=10)

    items = await store.get_context_items(cid)
    return DissolveLedger(
        conversation_id=cid,
        target_id=sid(10),
        parent_ids=parent_ids,
        refs_before=[item.ref_id for item in items],
    )


@dataclass
class TransplantLedger:
    """
    Source DAG (children listed under their parents)::

        L1 L2 L3 L4 L5      depth 0
        C1(L1,L2) C2(L3,L4) C3(L2,L5)      depth 1
        D(C1,C2)      depth 2

    Source context: [msg, D, msg, C3]  -> top set T = [D, C3]
    Target context: three messages.
    """

    source_id: int
    target_id: int
    top_level_ids: list[str]
    closure_ids: set[str]


async def build_transplant_ledger(store: LedgerStore) -> TransplantLedger:
    source = (await store.create_conversation("sess_source")).conversation_id
    target = (await store.create_conversation("sess_target")).conversation_id

    for n in range(1, 6):
        await add_leaf(store, source, sid(n), created_at=stamp(n), token_count=50)
    await add_condensed(store, source, sid(11), [sid(1), sid(2)], created_at=stamp(11))
    await add_condensed(store, source, sid(12), [sid(3), sid(4)], created_at=stamp(12))
    await add_condensed(store, source, sid(13), [sid(2), sid(5)], created_at=stamp(13))
    await add_condensed(
        store, source, sid(20), [sid(11), sid(12)], depth=2, created_at=stamp(20), token_count=200
    )

    await store.append_message(source, "user", "source message 0")
    await store.append_context_item(source, "summary", sid(20))
    await store.append_message(source, "user", "source message 1")
    await store.append_context_item(source, "summary", sid(13))

    for i in range(3):
        await store.append_message(target, "user", f"target message {i}")

    return TransplantLedger(
        source_id=source,
        target_id=target,
        top_level_ids=[sid(20), sid(13)],
        closure_ids={sid(n) for n in (1, 2, 3, 4, 5, 11, 12, 13, 20)},
    )


@pytest_asyncio.fixture
async def dissolve_ledger(store):
    """The 10-item dissolve scenario."""
    return await build_dissolve_ledger(store)


@pytest_asyncio.fixture
async def transplant_ledger(store):
    """A two-conversation transplant scenario."""
    return await build_transplant_ledger(store)
