"""
Tests for the recommendation stores and the append-only audit log.
"""

import sqlite3
import threading

import pytest

from config.constants import AuditEventType, LifecycleState
from core.domain.lifecycle import TradeLifecycle
from core.exceptions import (
    ConcurrentModificationError,
    DuplicateRecommendationError,
    RecommendationNotFoundError,
)
from execution.decision import DecisionEngine
from execution.lifecycle_manager import LifecycleManager
from execution.lifecycle_store import InMemoryRecommendationStore, SQLiteRecommendationStore
from observability.audit_log import InMemoryAuditLog, SQLiteAuditLog
from factories import make_context, make_recommendation


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        store = InMemoryRecommendationStore()
    else:
        store = SQLiteRecommendationStore(tmp_path / "recommendations.db")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_audit_log(request, tmp_path):
    if request.param == "memory":
        log = InMemoryAuditLog()
    else:
        log = SQLiteAuditLog(tmp_path / "audit.db")
    yield log
    log.close()


def registered(store):
    rec = make_recommendation()
    lifecycle = TradeLifecycle.start(rec.recommendation_id, rec.created_at)
    return rec, lifecycle, store.add(rec, lifecycle)


class TestRecommendationStore:
    def test_add_and_find(self, any_store):
        rec, lifecycle, record = registered(any_store)
        found = any_store.find(rec.recommendation_id)
        assert found.recommendation == rec.with_lifecycle(lifecycle)
        assert found.lifecycle == lifecycle
        assert found.decision is None
        assert found.version == 0

    def test_find_missing(self, any_store):
        assert any_store.find("rec_missing") is None
        with pytest.raises(RecommendationNotFoundError):
            any_store.get("rec_missing")

    def test_duplicate(self, any_store):
        rec, lifecycle, _ = registered(any_store)
        with pytest.raises(DuplicateRecommendationError):
            any_store.add(rec, lifecycle)

    def test_compare_and_swap(self, any_store):
        rec, lifecycle, _ = registered(any_store)
        approved = lifecycle.transition_to(LifecycleState.APPROVED, "test")
        record = any_store.compare_and_swap(rec.recommendation_id, 0, approved)
        assert record.state == LifecycleState.APPROVED
        assert record.recommendation.lifecycle_version == 1
        assert any_store.get(rec.recommendation_id).lifecycle == approved

    def test_compare_and_swap_loses_on_stale_version(self, any_store):
        rec, lifecycle, _ = registered(any_store)
        approved = lifecycle.transition_to(LifecycleState.APPROVED, "first")
        any_store.compare_and_swap(rec.recommendation_id, 0, approved)

        cancelled = lifecycle.transition_to(LifecycleState.CANCELLED, "second")
        with pytest.raises(ConcurrentModificationError) as exc:
            any_store.compare_and_swap(rec.recommendation_id, 0, cancelled)
        assert exc.value.actual_version == 1
        assert any_store.get(rec.recommendation_id).state == LifecycleState.APPROVED

    def test_compare_and_swap_unknown(self, any_store):
        with pytest.raises(RecommendationNotFoundError):
            any_store.compare_and_swap("rec_missing", 0, TradeLifecycle.start("rec_missing"))

    def test_set_decision(self, any_store):
        rec, _, _ = registered(any_store)
        decision = DecisionEngine().evaluate(rec, make_context())
        any_store.set_decision(rec.recommendation_id, decision)
        stored = any_store.get(rec.recommendation_id).decision
        assert stored == decision
        assert stored.structural_problems() == []

    def test_list_records_by_state(self, any_store):
        rec, lifecycle, _ = registered(any_store)
        other = make_recommendation(recommendation_id="rec-other")
        any_store.add(other, TradeLifecycle.start("rec-other"))
        any_store.compare_and_swap(rec.recommendation_id, 0, lifecycle.transition_to("APPROVED", "t"))

        assert len(any_store.list_records()) == 2
        approved = any_store.list_records(LifecycleState.APPROVED)
        assert [r.recommendation_id for r in approved] == [rec.recommendation_id]

    @pytest.mark.asyncio
    async def test_async_access(self, any_store):
        rec, lifecycle, _ = registered(any_store)
        found = await any_store.find_async(rec.recommendation_id)
        assert found.version == 0
        updated = await any_store.compare_and_swap_async(
            rec.recommendation_id, 0, lifecycle.transition_to("APPROVED", "t")
        )
        assert updated.version == 1

    def test_threaded_writers_single_winner(self, tmp_path):
        store = SQLiteRecommendationStore(tmp_path / "race.db")
        rec, lifecycle, _ = registered(store)
        approved = lifecycle.transition_to("APPROVED", "race")
        wins, losses = [], []

        def attempt():
            try:
                wins.append(store.compare_and_swap(rec.recommendation_id, 0, approved))
            except ConcurrentModificationError:
                losses.append(1)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        store.close()

        assert len(wins) == 1
        assert len(losses) == 7

    def test_sqlite_survives_reopen(self, tmp_path):
        path = tmp_path / "recommendations.db"
        store = SQLiteRecommendationStore(path)
        rec, _, _ = registered(store)
        store.close()

        reopened = SQLiteRecommendationStore(path)
        assert reopened.get(rec.recommendation_id).recommendation.recommendation_id == rec.recommendation_id
        reopened.close()


class TestAuditLog:
    def test_sequence_per_recommendation(self, any_audit_log):
        first = any_audit_log.append("rec-a", AuditEventType.DECISION, {"approved": True})
        second = any_audit_log.append("rec-a", AuditEventType.EXECUTION, {"status": "submitted"})
        other = any_audit_log.append("rec-b", AuditEventType.DECISION, {"approved": False})
        assert (first.sequence, second.sequence, other.sequence) == (1, 2, 1)
        assert [e.sequence for e in any_audit_log.entries("rec-a")] == [1, 2]
        assert set(any_audit_log.recommendation_ids()) == {"rec-a", "rec-b"}

    def test_entries_are_copies(self, any_audit_log):
        payload = {"gates": ["decision_engine"]}
        any_audit_log.append("rec-a", AuditEventType.EXECUTION, payload)
        payload["gates"].append("tampered")
        any_audit_log.entries("rec-a")[0].payload["gates"].append("tampered again")
        assert any_audit_log.entries("rec-a")[0].payload == {"gates": ["decision_engine"]}

    @pytest.mark.asyncio
    async def test_decision_entry_contents(self, any_audit_log):
        rec, ctx = make_recommendation(), make_context()
        decision = DecisionEngine().evaluate(rec, ctx)
        entry = await any_audit_log.record_decision_async(rec, decision, ctx)
        payload = entry.payload
        assert payload["facts"]["symbol"] == "RELIANCE"
        assert payload["intent"]["bias"] == "long"
        assert payload["approved"] is True
        assert [o["check"] for o in payload["decision_path"]] == [
            "validator",
            "risk_rules",
            "setup_quality",
            "portfolio_constraints",
        ]
        assert payload["system_context"]["equity"] == 100_000.0
        assert payload["decision_digest"] == decision.digest
        assert payload["advisory_review"] is None

    def test_sqlite_blocks_update_and_delete(self, tmp_path):
        path = tmp_path / "audit.db"
        log = SQLiteAuditLog(path)
        log.append("rec-a", AuditEventType.DECISION, {"approved": True})

        conn = sqlite3.connect(path)
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            conn.execute("UPDATE audit_entries SET payload = '{}'")
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            conn.execute("DELETE FROM audit_entries")
        conn.close()

        assert log.entries("rec-a")[0].payload == {"approved": True}
        log.close()


class TestEndToEndPersistence:
    @pytest.mark.asyncio
    async def test_manager_on_sqlite(self, tmp_path):
        store = SQLiteRecommendationStore(tmp_path / "recommendations.db")
        audit = SQLiteAuditLog(tmp_path / "audit.db")
        manager = LifecycleManager(store, audit)
        rec = make_recommendation()

        await manager.register(rec)
        await manager.approve(rec.recommendation_id, DecisionEngine().evaluate(rec, None))
        await manager.cancel(rec.recommendation_id, cause="operator_cancelled")

        record = store.get(rec.recommendation_id)
        assert record.state == LifecycleState.CANCELLED
        assert record.version == 2
        assert [r.cause for r in record.lifecycle.history] == [
            "created",
            "decision_engine_approved",
            "operator_cancelled",
        ]
        assert [e.payload["to_state"] for e in audit.entries(rec.recommendation_id)] == [
            "PROPOSED",
            "APPROVED",
            "CANCELLED",
        ]
        store.close()
        audit.close()
