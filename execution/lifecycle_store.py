"""
Recommendation store: one row per recommendation.

Each row carries the current recommendation revision, its lifecycle
snapshot and the latest decision result. Lifecycle changes go through
``compare_and_swap`` keyed on the lifecycle version, so two writers racing
on the same recommendation cannot both win.

Schema (SQLite):
    recommendations(id, version, state, payload, decision, updated_at)
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from config.constants import LifecycleState
from config.logging_config import LogCategory
from core.domain.base import now_utc
from core.domain.lifecycle import TradeLifecycle
from core.domain.recommendation import TradeRecommendation
from core.exceptions import (
    ConcurrentModificationError,
    DuplicateRecommendationError,
    RecommendationNotFoundError,
)
from execution.decision.types import DecisionResult
from execution.sqlite_mixin import SQLiteTransactionMixin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecommendationRecord:
    recommendation: TradeRecommendation
    lifecycle: TradeLifecycle
    decision: Optional[DecisionResult] = None
    updated_at: Optional[datetime] = None

    @property
    def recommendation_id(self) -> str:
        return self.recommendation.recommendation_id

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    @property
    def version(self) -> int:
        return self.lifecycle.version


class RecommendationStore(ABC):
    """Interface shared by the in-memory and SQLite stores."""

    @abstractmethod
    def add(self, recommendation: TradeRecommendation, lifecycle: TradeLifecycle) -> RecommendationRecord:
        """Insert a new row. Raises DuplicateRecommendationError if the id exists."""

    @abstractmethod
    def find(self, recommendation_id: str) -> Optional[RecommendationRecord]:
        ...

    @abstractmethod
    def compare_and_swap(
        self,
        recommendation_id: str,
        expected_version: int,
        lifecycle: TradeLifecycle,
        decision: Optional[DecisionResult] = None,
    ) -> RecommendationRecord:
        """
        Replace the lifecycle if the stored version still equals ``expected_version``.

        ``decision`` replaces the stored decision when given.

        Raises:
            RecommendationNotFoundError: Unknown id
            ConcurrentModificationError: Stored version moved on
        """

    @abstractmethod
    def set_decision(self, recommendation_id: str, decision: DecisionResult) -> RecommendationRecord:
        ...

    @abstractmethod
    def list_records(self, state: Optional[LifecycleState] = None) -> list[RecommendationRecord]:
        ...

    def get(self, recommendation_id: str) -> RecommendationRecord:
        record = self.find(recommendation_id)
        if record is None:
            raise RecommendationNotFoundError(f"Unknown recommendation: {recommendation_id}")
        return record

    async def add_async(self, recommendation: TradeRecommendation, lifecycle: TradeLifecycle) -> RecommendationRecord:
        return self.add(recommendation, lifecycle)

    async def find_async(self, recommendation_id: str) -> Optional[RecommendationRecord]:
        return self.find(recommendation_id)

    async def compare_and_swap_async(
        self,
        recommendation_id: str,
        expected_version: int,
        lifecycle: TradeLifecycle,
        decision: Optional[DecisionResult] = None,
    ) -> RecommendationRecord:
        return self.compare_and_swap(recommendation_id, expected_version, lifecycle, decision)

    async def set_decision_async(self, recommendation_id: str, decision: DecisionResult) -> RecommendationRecord:
        return self.set_decision(recommendation_id, decision)

    def close(self) -> None:
        pass


class InMemoryRecommendationStore(RecommendationStore):
    """Dict-backed store for tests and single-process runs."""

    def __init__(self):
        self._rows: dict[str, RecommendationRecord] = {}
        self._lock = threading.Lock()

    def add(self, recommendation, lifecycle):
        with self._lock:
            if recommendation.recommendation_id in self._rows:
                raise DuplicateRecommendationError(
                    f"Recommendation already registered: {recommendation.recommendation_id}"
                )
            record = RecommendationRecord(
                recommendation=recommendation.with_lifecycle(lifecycle),
                lifecycle=lifecycle,
                updated_at=now_utc(),
            )
            self._rows[recommendation.recommendation_id] = record
            return record

    def find(self, recommendation_id):
        with self._lock:
            return self._rows.get(recommendation_id)

    def compare_and_swap(self, recommendation_id, expected_version, lifecycle, decision=None):
        with self._lock:
            current = self._rows.get(recommendation_id)
            if current is None:
                raise RecommendationNotFoundError(f"Unknown recommendation: {recommendation_id}")
            if current.version != expected_version:
                raise ConcurrentModificationError(recommendation_id, expected_version, current.version)
            record = RecommendationRecord(
                recommendation=current.recommendation.with_lifecycle(lifecycle),
                lifecycle=lifecycle,
                decision=decision if decision is not None else current.decision,
                updated_at=now_utc(),
            )
            self._rows[recommendation_id] = record
            return record

    def set_decision(self, recommendation_id, decision):
        with self._lock:
            current = self._rows.get(recommendation_id)
            if current is None:
                raise RecommendationNotFoundError(f"Unknown recommendation: {recommendation_id}")
            record = RecommendationRecord(
                recommendation=current.recommendation,
                lifecycle=current.lifecycle,
                decision=decision,
                updated_at=now_utc(),
            )
            self._rows[recommendation_id] = record
            return record

    def list_records(self, state=None):
        with self._lock:
            records = list(self._rows.values())
        if state is not None:
            records = [r for r in records if r.state == state]
        return records


class SQLiteRecommendationStore(SQLiteTransactionMixin, RecommendationStore):
    """
    SQLite-backed store.

    The optimistic check is a single ``UPDATE ... WHERE version = ?`` so it
    also holds across processes sharing the database file.
    """

    def __init__(self, db_path: str | Path):
        super().__init__(db_path)
        self._init_db()
        logger.info(f"{LogCategory.LIFECYCLE} Recommendation store initialized at {self._db_path}")

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS recommendations (
                    id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    decision TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_recommendations_state ON recommendations(state)")

    @staticmethod
    def _payload(recommendation: TradeRecommendation, lifecycle: TradeLifecycle) -> str:
        return json.dumps(
            {
                "recommendation": recommendation.with_lifecycle(lifecycle).to_dict(),
                "lifecycle": lifecycle.to_dict(),
            }
        )

    @staticmethod
    def _row_to_record(row) -> RecommendationRecord:
        payload = json.loads(row["payload"])
        decision = row["decision"]
        return RecommendationRecord(
            recommendation=TradeRecommendation.model_validate(payload["recommendation"]),
            lifecycle=TradeLifecycle.model_validate(payload["lifecycle"]),
            decision=DecisionResult.model_validate_json(decision) if decision else None,
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def add(self, recommendation, lifecycle):
        updated_at = now_utc()
        with self._transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM recommendations WHERE id = ?",
                (recommendation.recommendation_id,),
            ).fetchone()
            if exists:
                raise DuplicateRecommendationError(
                    f"Recommendation already registered: {recommendation.recommendation_id}"
                )
            conn.execute(
                """
                INSERT INTO recommendations (id, version, state, payload, decision, updated_at)
                VALUES (?, ?, ?, ?, NULL, ?)
                """,
                (
                    recommendation.recommendation_id,
                    lifecycle.version,
                    lifecycle.state.value,
                    self._payload(recommendation, lifecycle),
                    updated_at.isoformat(),
                ),
            )
        return RecommendationRecord(
            recommendation=recommendation.with_lifecycle(lifecycle),
            lifecycle=lifecycle,
            updated_at=updated_at,
        )

    def find(self, recommendation_id):
        rows = self._query("SELECT * FROM recommendations WHERE id = ?", (recommendation_id,))
        return self._row_to_record(rows[0]) if rows else None

    def compare_and_swap(self, recommendation_id, expected_version, lifecycle, decision=None):
        updated_at = now_utc()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM recommendations WHERE id = ?", (recommendation_id,)
            ).fetchone()
            if row is None:
                raise RecommendationNotFoundError(f"Unknown recommendation: {recommendation_id}")
            current = self._row_to_record(row)
            decision_json = decision.model_dump_json() if decision is not None else row["decision"]
            cursor = conn.execute(
                """
                UPDATE recommendations
                SET version = ?, state = ?, payload = ?, decision = ?, updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    lifecycle.version,
                    lifecycle.state.value,
                    self._payload(current.recommendation, lifecycle),
                    decision_json,
                    updated_at.isoformat(),
                    recommendation_id,
                    expected_version,
                ),
            )
            if cursor.rowcount == 0:
                raise ConcurrentModificationError(recommendation_id, expected_version, row["version"])
        return RecommendationRecord(
            recommendation=current.recommendation.with_lifecycle(lifecycle),
            lifecycle=lifecycle,
            decision=decision if decision is not None else current.decision,
            updated_at=updated_at,
        )

    def set_decision(self, recommendation_id, decision):
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE recommendations SET decision = ?, updated_at = ? WHERE id = ?",
                (decision.model_dump_json(), now_utc().isoformat(), recommendation_id),
            )
            if cursor.rowcount == 0:
                raise RecommendationNotFoundError(f"Unknown recommendation: {recommendation_id}")
        return self.get(recommendation_id)

    def list_records(self, state=None):
        if state is None:
            rows = self._query("SELECT * FROM recommendations ORDER BY updated_at")
        else:
            rows = self._query(
                "SELECT * FROM recommendations WHERE state = ? ORDER BY updated_at",
                (LifecycleState(state).value,),
            )
        return [self._row_to_record(row) for row in rows]

    async def add_async(self, recommendation, lifecycle):
        return await self._in_thread(self.add, recommendation, lifecycle)

    async def find_async(self, recommendation_id):
        return await self._in_thread(self.find, recommendation_id)

    async def compare_and_swap_async(self, recommendation_id, expected_version, lifecycle, decision=None):
        return await self._in_thread(
            self.compare_and_swap, recommendation_id, expected_version, lifecycle, decision
        )

    async def set_decision_async(self, recommendation_id, decision):
        return await self._in_thread(self.set_decision, recommendation_id, decision)
