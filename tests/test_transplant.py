"""Tests for TransplantEngine."""

from __future__ import annotations

import pytest

from ctxledger.errors import (
    ConversationNotFoundError,
    LedgerIntegrityError,
    NothingToTransplantError,
    SameConversationError,
    TransplantConflictError,
)
from ctxledger.events.bus import LedgerEvent
from ctxledger.models.config import LedgerConfig, TransplantConfig
from ctxledger.operations.ids import is_summary_id
from ctxledger.operations.transplant import TransplantEngine
from tests.conftest import BASE_TIME, add_condensed, add_leaf, sid, snapshot, stamp


async def _refs(store, conversation_id: int) -> list[str]:
    return [i.ref_id for i in await store.get_context_items(conversation_id)]


class TestTransplantPlan:
    async def test_plan_reports_closure(self, store, transplant_ledger):
        """plan() reports the top set, closure size and depth breakdown."""
        report = await TransplantEngine(store).plan(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        assert report.applied is False
        assert report.top_level_summary_ids == transplant_ledger.top_level_ids
        assert report.top_level_count == 2
        assert report.closure_size == 9
        assert report.closure_by_depth == {0: 5, 1: 3, 2: 1}
        assert report.token_overhead == 200 + 120
        assert report.target_items_before == 3
        assert report.target_items_after == 5
        assert report.id_map == {}

    async def test_plan_writes_nothing(self, store, transplant_ledger):
        """A dry run leaves every table unchanged."""
        before = await snapshot(store)
        await TransplantEngine(store).plan(transplant_ledger.source_id, transplant_ledger.target_id)
        assert await snapshot(store) == before

    async def test_plan_publishes_event(self, store, transplant_ledger, event_bus):
        """plan() publishes TRANSPLANT_PLANNED."""
        await TransplantEngine(store, event_bus).plan(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        assert [e for e, _ in event_bus.collected] == [LedgerEvent.TRANSPLANT_PLANNED]


class TestTransplantApply:
    async def test_target_gains_top_set_at_front(self, store, transplant_ledger):
        """Copies of T occupy ordinals 0..|T|-1 in source order; old items follow."""
        target = transplant_ledger.target_id
        before = await _refs(store, target)

        report = await TransplantEngine(store).apply(transplant_ledger.source_id, target)

        items = await store.get_context_items(target)
        assert [i.ordinal for i in items] == list(range(5))
        assert [i.ref_id for i in items[:2]] == [
            report.id_map[old] for old in transplant_ledger.top_level_ids
        ]
        assert [i.ref_id for i in items[2:]] == before
        assert report.target_items_after == 5

    async def test_copies_entire_closure_owned_by_target(self, store, transplant_ledger):
        """Exactly the ancestor closure is copied, as new rows owned by the target."""
        report = await TransplantEngine(store).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        assert set(report.id_map) == transplant_ledger.closure_ids
        copies = await store.get_summaries(transplant_ledger.target_id)
        assert len(copies) == 9
        assert {s.summary_id for s in copies} == set(report.id_map.values())
        assert not set(report.id_map.values()) & transplant_ledger.closure_ids

    async def test_copies_preserve_fields(self, store, transplant_ledger):
        """Copies keep content, kind, depth, token count and created_at."""
        report = await TransplantEngine(store).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        for old_id, new_id in report.id_map.items():
            original = await store.get_summary(old_id)
            copy = await store.get_summary(new_id)
            assert copy.conversation_id == transplant_ledger.target_id
            assert copy.model_dump(exclude={"summary_id", "conversation_id"}) == (
                original.model_dump(exclude={"summary_id", "conversation_id"})
            )

    async def test_minted_ids_have_summary_format(self, store, transplant_ledger):
        """New ids are the prefix plus 16 hex characters."""
        report = await TransplantEngine(store).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        assert all(is_summary_id(new_id) for new_id in report.id_map.values())
        assert len(set(report.id_map.values())) == len(report.id_map)

    async def test_parent_edges_remapped(self, store, transplant_ledger):
        """Every copied parent edge points at the copy of the original parent, in order."""
        report = await TransplantEngine(store).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        for old_id, new_id in report.id_map.items():
            old_edges = await store.get_parent_edges(old_id)
            new_edges = await store.get_parent_edges(new_id)
            assert [(report.id_map[e.parent_summary_id], e.ordinal) for e in old_edges] == [
                (e.parent_summary_id, e.ordinal) for e in new_edges
            ]

    async def test_message_edges_shared(self, store, transplant_ledger):
        """Copied leaves reference the same source messages as the originals."""
        report = await TransplantEngine(store).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        original = await store.get_source_messages(sid(1))
        copied = await store.get_source_messages(report.id_map[sid(1)])
        assert [m.message_id for m in copied] == [m.message_id for m in original]
        assert copied[0].conversation_id == transplant_ledger.source_id

    async def test_source_unchanged(self, store, transplant_ledger):
        """The source's summaries, edges and context items are untouched."""
        source = transplant_ledger.source_id
        before = await snapshot(store)
        await TransplantEngine(store).apply(source, transplant_ledger.target_id)
        after = await snapshot(store)

        assert set(before["summaries"]) <= set(after["summaries"])
        assert set(before["summary_parents"]) <= set(after["summary_parents"])
        assert set(before["summary_messages"]) <= set(after["summary_messages"])
        assert [r for r in after["context_items"] if r[0] == source] == [
            r for r in before["context_items"] if r[0] == source
        ]
        assert after["messages"] == before["messages"]

    async def test_into_empty_target(self, store, transplant_ledger):
        """A target with no context items receives exactly the top set."""
        empty = (await store.create_conversation("sess_fresh")).conversation_id
        report = await TransplantEngine(store).apply(transplant_ledger.source_id, empty)
        assert report.target_items_before == 0
        assert await _refs(store, empty) == [
            report.id_map[old] for old in transplant_ledger.top_level_ids
        ]

    async def test_apply_publishes_completed(self, store, transplant_ledger, event_bus):
        """apply() publishes TRANSPLANT_COMPLETED with the id map."""
        await TransplantEngine(store, event_bus).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        event, payload = event_bus.collected[-1]
        assert event == LedgerEvent.TRANSPLANT_COMPLETED
        assert payload["closure_size"] == 9
        assert len(payload["id_map"]) == 9

    async def test_broken_subscriber_does_not_fail_apply(
        self, store, transplant_ledger, event_bus
    ):
        """A subscriber that raises on TRANSPLANT_COMPLETED still gets the committed report back."""

        def broken(event, payload):
            raise RuntimeError("subscriber bug")

        event_bus.subscribe(LedgerEvent.TRANSPLANT_COMPLETED, broken)
        report = await TransplantEngine(store, event_bus).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        assert report.applied is True
        assert await store.count_context_items(transplant_ledger.target_id) == 5
        assert [e for e, _ in event_bus.collected] == [LedgerEvent.TRANSPLANT_COMPLETED]


class TestTransplantScenario:
    async def test_fourteen_top_level_eighty_closure(self, store):
        """14 top-level items, closure 58/18/4, 145 target items -> 159 items, 80 new rows."""
        source = (await store.create_conversation("sess_big_source")).conversation_id
        target = (await store.create_conversation("sess_big_target")).conversation_id

        for n in range(1, 59):
            await add_leaf(store, source, sid(n), created_at=BASE_TIME, token_count=10)
        leaf = iter(range(1, 49))
        for n in range(101, 119):
            width = 3 if n <= 112 else 2
            parents = [sid(next(leaf)) for _ in range(width)]
            await add_condensed(store, source, sid(n), parents, created_at=stamp(1))
        groups = [range(101, 106), range(106, 111), range(111, 115), range(115, 119)]
        for n, group in zip(range(201, 205), groups, strict=True):
            await add_condensed(
                store, source, sid(n), [sid(p) for p in group], depth=2, created_at=stamp(2)
            )

        top_level = [sid(n) for n in range(201, 205)] + [sid(n) for n in range(49, 59)]
        for summary_id in top_level:
            await store.append_context_item(source, "summary", summary_id)
        for i in range(145):
            await store.append_message(target, "user", f"target message {i}")

        report = await TransplantEngine(store).apply(source, target)

        assert report.top_level_count == 14
        assert report.closure_size == 80
        assert report.closure_by_depth == {0: 58, 1: 18, 2: 4}
        assert report.target_items_after == 159
        assert len(await store.get_summaries(target)) == 80

        items = await store.get_context_items(target)
        assert [i.ordinal for i in items] == list(range(159))
        assert [i.ref_id for i in items[:14]] == [report.id_map[s] for s in top_level]
        assert all(i.item_type == "message" for i in items[14:])


class TestTransplantGuards:
    async def test_same_conversation(self, store, transplant_ledger):
        """Transplanting a conversation into itself is rejected."""
        with pytest.raises(SameConversationError):
            await TransplantEngine(store).apply(
                transplant_ledger.source_id, transplant_ledger.source_id
            )

    async def test_nothing_to_transplant(self, store, transplant_ledger):
        """A source without summary context items has nothing to transplant."""
        with pytest.raises(NothingToTransplantError):
            await TransplantEngine(store).plan(
                transplant_ledger.target_id, transplant_ledger.source_id
            )

    async def test_missing_conversation(self, store, transplant_ledger):
        """Unknown source or target raises ConversationNotFoundError."""
        engine = TransplantEngine(store)
        with pytest.raises(ConversationNotFoundError):
            await engine.plan(999, transplant_ledger.target_id)
        with pytest.raises(ConversationNotFoundError):
            await engine.plan(transplant_ledger.source_id, 999)

    async def test_second_transplant_conflicts(self, store, transplant_ledger, event_bus):
        """Repeating a transplant aborts with a conflict and writes nothing."""
        engine = TransplantEngine(store, event_bus)
        await engine.apply(transplant_ledger.source_id, transplant_ledger.target_id)
        before = await snapshot(store)

        with pytest.raises(TransplantConflictError) as excinfo:
            await engine.apply(transplant_ledger.source_id, transplant_ledger.target_id)
        assert set(excinfo.value.matches) == set(transplant_ledger.top_level_ids)
        assert await snapshot(store) == before

        event, payload = event_bus.collected[-1]
        assert event == LedgerEvent.TRANSPLANT_FAILED
        assert payload["target_conversation_id"] == transplant_ledger.target_id

    async def test_plan_detects_conflict(self, store, transplant_ledger):
        """plan() runs the conflict guard too."""
        engine = TransplantEngine(store)
        await engine.apply(transplant_ledger.source_id, transplant_ledger.target_id)
        with pytest.raises(TransplantConflictError):
            await engine.plan(transplant_ledger.source_id, transplant_ledger.target_id)

    async def test_conflict_check_can_be_disabled(self, store, config, transplant_ledger):
        """With conflict_check off, a second transplant copies again."""
        relaxed = LedgerConfig(store=config.store, transplant=TransplantConfig(conflict_check=False))
        engine = TransplantEngine(store, config=relaxed)
        await engine.apply(transplant_ledger.source_id, transplant_ledger.target_id)
        report = await engine.apply(transplant_ledger.source_id, transplant_ledger.target_id)
        assert report.target_items_after == 7
        assert len(await store.get_summaries(transplant_ledger.target_id)) == 18


class TestTransplantIds:
    async def test_collisions_are_regenerated(self, store, transplant_ledger):
        """Ids colliding with existing or already-minted ids are skipped."""
        candidates = iter(
            [sid(1), sid(900), sid(900)] + [sid(n) for n in range(901, 1000)]
        )
        engine = TransplantEngine(store, id_generator=lambda: next(candidates))
        report = await engine.apply(transplant_ledger.source_id, transplant_ledger.target_id)
        minted = sorted(report.id_map.values())
        assert minted == [sid(n) for n in range(900, 909)]

    async def test_exhausted_attempts_roll_back(self, store, transplant_ledger):
        """A generator that only collides fails with LedgerIntegrityError and writes nothing."""
        before = await snapshot(store)
        engine = TransplantEngine(store, id_generator=lambda: sid(1))
        with pytest.raises(LedgerIntegrityError, match="unique summary id"):
            await engine.apply(transplant_ledger.source_id, transplant_ledger.target_id)
        assert await snapshot(store) == before

    async def test_custom_prefix(self, store, config, transplant_ledger):
        """The configured prefix is used for minted ids."""
        custom = LedgerConfig(
            store=config.store, transplant=TransplantConfig(summary_id_prefix="tsum_")
        )
        report = await TransplantEngine(store, config=custom).apply(
            transplant_ledger.source_id, transplant_ledger.target_id
        )
        assert all(is_summary_id(v, prefix="tsum_") for v in report.id_map.values())


class TestTransplantIntegrity:
    async def test_unresolvable_parent_rolls_back(self, store):
        """A child ordered before its parent (corrupt depths) aborts the whole copy."""
        source = (await store.create_conversation("sess_corrupt")).conversation_id
        target = (await store.create_conversation("sess_corrupt_target")).conversation_id
        await add_leaf(store, source, sid(1), created_at=stamp(0))
        await add_condensed(store, source, sid(10), [sid(1)], depth=1, created_at=stamp(5))
        await add_condensed(store, source, sid(20), [sid(10)], depth=1, created_at=stamp(1))
        await store.append_context_item(source, "summary", sid(20))
        await store.append_message(target, "user", "existing")
        before = await snapshot(store)

        with pytest.raises(LedgerIntegrityError, match="Cannot remap parent"):
            await TransplantEngine(store).apply(source, target)
        assert await snapshot(store) == before

    async def test_self_referencing_edge_rolls_back(self, store):
        """A summary listed as its own parent is an integrity failure, not a copied loop."""
        source = (await store.create_conversation("sess_loop")).conversation_id
        target = (await store.create_conversation("sess_loop_target")).conversation_id
        await add_leaf(store, source, sid(1), created_at=stamp(0))
        await add_condensed(store, source, sid(10), [sid(1)], created_at=stamp(1))
        await store.add_parent_edge(sid(10), sid(10), 1)
        await store.append_context_item(source, "summary", sid(10))
        before = await snapshot(store)

        with pytest.raises(LedgerIntegrityError, match=f"Cannot remap parent {sid(10)}"):
            await TransplantEngine(store).apply(source, target)
        assert await snapshot(store) == before
