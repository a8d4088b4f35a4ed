"""
Append-only audit log keyed by recommendation id.

Every decision, Executor outcome and lifecycle transition is recorded
with the inputs it used. Entries are never updated or deleted: the
in-memory log hands out copies, and the SQLite log installs triggers
that abort any UPDATE or DELETE on the table.

Schema (SQLite):
    audit_entries(recommendation_id, sequence, event_type, payload, recorded_at)
    PRIMARY KEY (recommendation_id, sequence)
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import Field

from config.constants import AuditEventType
from config.logging_config import LogCategory
from core.domain.base import DomainEntity, now_utc
from core.domain.context import SystemContext
from core.domain.lifecycle import TradeLifecycle
from core.domain.recommendation import TradeRecommendation
from execution.sqlite_mixin import SQLiteTransactionMixin

if TYPE_CHECKING:
    from execution.decision.types import DecisionResult

logger = logging.getLogger(__name__)


class AuditEntry(DomainEntity):
    recommendation_id: str
    sequence: int = Field(..., ge=1)
    event_type: AuditEventType
    payload: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime


class AuditLog(ABC):
    """
    Append-only record of what the pipeline decided and did.

    Sequence numbers start at 1 and increase by one per recommendation.
    """

    @abstractmethod
    def append(
        self,
        recommendation_id: str,
        event_type: AuditEventType,
        payload: dict[str, Any],
    ) -> AuditEntry:
        ...

    @abstractmethod
    def entries(self, recommendation_id: str) -> list[AuditEntry]:
        """All entries for one recommendation in sequence order."""

    @abstractmethod
    def recommendation_ids(self) -> list[str]:
        ...

    async def append_async(
        self,
        recommendation_id: str,
        event_type: AuditEventType,
        payload: dict[str, Any],
    ) -> AuditEntry:
        return self.append(recommendation_id, event_type, payload)

    async def record_decision_async(
        self,
        recommendation: TradeRecommendation,
        decision: "DecisionResult",
        context: Optional[SystemContext],
    ) -> AuditEntry:
        return await self.append_async(
            recommendation.recommendation_id,
            AuditEventType.DECISION,
            self.decision_payload(recommendation, decision, context),
        )

    @staticmethod
    def decision_payload(
        recommendation: TradeRecommendation,
        decision: "DecisionResult",
        context: Optional[SystemContext],
    ) -> dict[str, Any]:
        return {
            "facts": recommendation.facts.to_dict(),
            "intent": recommendation.intent.to_dict(),
            "approved": decision.approved,
            "reason": decision.reason,
            "decision_path": [outcome.to_dict() for outcome in decision.decision_path],
            "advisory_review": (
                decision.advisory_review.to_dict() if decision.advisory_review is not None else None
            ),
            "adjusted_confidence": decision.adjusted_confidence,
            "evaluated_at": decision.evaluated_at.isoformat(),
            "decision_digest": decision.digest,
            "system_context": context.to_dict() if context is not None else None,
        }

    @staticmethod
    def transition_payload(lifecycle: TradeLifecycle) -> dict[str, Any]:
        record = lifecycle.last_transition
        return {
            "from_state": record.previous_state.value if record and record.previous_state else None,
            "to_state": lifecycle.state.value,
            "cause": record.cause if record else None,
            "at": record.at.isoformat() if record else None,
            "version": lifecycle.version,
        }

    async def record_transition_async(self, lifecycle: TradeLifecycle) -> AuditEntry:
        return await self.append_async(
            lifecycle.recommendation_id,
            AuditEventType.TRANSITION,
            self.transition_payload(lifecycle),
        )

    async def record_execution_async(self, recommendation_id: str, payload: dict[str, Any]) -> AuditEntry:
        return await self.append_async(recommendation_id, AuditEventType.EXECUTION, payload)

    def close(self) -> None:
        pass


class InMemoryAuditLog(AuditLog):
    def __init__(self):
        self._entries: dict[str, list[AuditEntry]] = {}
        self._lock = threading.Lock()

    def append(self, recommendation_id, event_type, payload):
        # Round-trip through JSON so later edits to the caller's dict
        # cannot reach the stored entry.
        frozen_payload = json.loads(json.dumps(payload, default=str))
        with self._lock:
            bucket = self._entries.setdefault(recommendation_id, [])
            entry = AuditEntry(
                recommendation_id=recommendation_id,
                sequence=len(bucket) + 1,
                event_type=AuditEventType(event_type),
                payload=frozen_payload,
                recorded_at=now_utc(),
            )
            bucket.append(entry)
        logger.debug(f"{LogCategory.AUDIT} {recommendation_id}#{entry.sequence} {entry.event_type.value}")
        return entry.model_copy(deep=True)

    def entries(self, recommendation_id):
        with self._lock:
            return [e.model_copy(deep=True) for e in self._entries.get(recommendation_id, [])]

    def recommendation_ids(self):
        with self._lock:
            return list(self._entries)


class SQLiteAuditLog(SQLiteTransactionMixin, AuditLog):
    """SQLite-backed audit log. UPDATE and DELETE are rejected by triggers."""

    def __init__(self, db_path: str | Path):
        super().__init__(db_path)
        self._init_db()
        logger.info(f"{LogCategory.AUDIT} Audit log initialized at {self._db_path}")

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_entries (
                    recommendation_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    event_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    recorded_at TEXT NOT NULL,
                    PRIMARY KEY (recommendation_id, sequence)
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS audit_entries_no_update
                BEFORE UPDATE ON audit_entries
                BEGIN
                    SELECT RAISE(ABORT, 'audit entries are append-only');
                END
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete
                BEFORE DELETE ON audit_entries
                BEGIN
                    SELECT RAISE(ABORT, 'audit entries are append-only');
                END
                """
            )

    def append(self, recommendation_id, event_type, payload):
        recorded_at = now_utc()
        event = AuditEventType(event_type)
        encoded = json.dumps(payload, default=str)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) AS last FROM audit_entries WHERE recommendation_id = ?",
                (recommendation_id,),
            ).fetchone()
            sequence = row["last"] + 1
            conn.execute(
                """
                INSERT INTO audit_entries (recommendation_id, sequence, event_type, payload, recorded_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (recommendation_id, sequence, event.value, encoded, recorded_at.isoformat()),
            )
        logger.debug(f"{LogCategory.AUDIT} {recommendation_id}#{sequence} {event.value}")
        return AuditEntry(
            recommendation_id=recommendation_id,
            sequence=sequence,
            event_type=event,
            payload=json.loads(encoded),
            recorded_at=recorded_at,
        )

    async def append_async(self, recommendation_id, event_type, payload):
        return await self._in_thread(self.append, recommendation_id, event_type, payload)

    def entries(self, recommendation_id):
        rows = self._query(
            "SELECT * FROM audit_entries WHERE recommendation_id = ? ORDER BY sequence",
            (recommendation_id,),
        )
        return [
            AuditEntry(
                recommendation_id=row["recommendation_id"],
                sequence=row["sequence"],
                event_type=AuditEventType(row["event_type"]),
                payload=json.loads(row["payload"]),
                recorded_at=datetime.fromisoformat(row["recorded_at"]),
            )
            for row in rows
        ]

    def recommendation_ids(self):
        rows = self._query(
            "SELECT recommendation_id FROM audit_entries GROUP BY recommendation_id "
            "ORDER BY MIN(recorded_at)"
        )
        return [row["recommendation_id"] for row in rows]
