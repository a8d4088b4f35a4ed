"""
Lifecycle Manager - applies lifecycle transitions atomically.

Every transition is:
1. Checked against the state machine (illegal moves raise and change nothing)
2. Written with a compare-and-swap on the stored lifecycle version
3. Logged, audited and pushed to listeners

Per-recommendation ``asyncio.Lock`` objects serialize transitions within
the process; the version check covers writers outside it. A lock is
dropped once its lifecycle reaches a terminal state. Store and audit
writes go through their async variants so SQLite I/O runs off the event
loop.
"""

import asyncio
import inspect
import logging
from collections.abc import Sequence
from typing import Any, Optional

from config.constants import LifecycleState
from config.logging_config import LogCategory
from core.domain.lifecycle import TradeLifecycle
from core.domain.recommendation import TradeRecommendation
from core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    MalformedDecisionError,
    RecommendationNotFoundError,
)
from core.interfaces import ILifecycleListener
from execution.decision.types import DecisionResult
from execution.lifecycle_store import RecommendationRecord, RecommendationStore
from observability.audit_log import AuditLog
from observability.execution_logging import execution_logger

logger = logging.getLogger(__name__)


class LifecycleManager:
    """
    Owns every lifecycle change of every recommendation.

    Example:
        >>> manager = LifecycleManager(InMemoryRecommendationStore(), InMemoryAuditLog())
        >>> await manager.register(recommendation)
        >>> await manager.approve(recommendation.recommendation_id, decision)
    """

    def __init__(
        self,
        store: RecommendationStore,
        audit_log: Optional[AuditLog] = None,
        listeners: Sequence[ILifecycleListener] = (),
    ):
        self.store = store
        self.audit_log = audit_log
        self.listeners: list[ILifecycleListener] = list(listeners)
        self._locks: dict[str, asyncio.Lock] = {}

    def add_listener(self, listener: ILifecycleListener) -> None:
        self.listeners.append(listener)

    def lock_for(self, recommendation_id: str) -> asyncio.Lock:
        """The lock serializing transitions of one recommendation."""
        lock = self._locks.get(recommendation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[recommendation_id] = lock
        return lock

    def discard_lock(self, recommendation_id: str) -> None:
        """
        Forget the lock of a finished recommendation.

        Only called for terminal lifecycles: no transition leaves a terminal
        state, so a caller still holding or awaiting the old lock cannot race
        one that gets a fresh lock.
        """
        self._locks.pop(recommendation_id, None)

    async def get(self, recommendation_id: str) -> RecommendationRecord:
        record = await self.store.find_async(recommendation_id)
        if record is None:
            raise RecommendationNotFoundError(f"Unknown recommendation: {recommendation_id}")
        return record

    async def register(self, recommendation: TradeRecommendation) -> RecommendationRecord:
        """Start a PROPOSED lifecycle for a new recommendation."""
        lifecycle = TradeLifecycle.start(recommendation.recommendation_id, recommendation.created_at)
        record = await self.store.add_async(recommendation, lifecycle)
        logger.info(
            f"{LogCategory.LIFECYCLE} Registered {recommendation.recommendation_id} "
            f"({recommendation.symbol}) in {lifecycle.state.value}"
        )
        await self._audit_transition(lifecycle)
        return record

    async def transition(
        self,
        recommendation_id: str,
        target: Any,
        cause: str,
        expected_version: Optional[int] = None,
        decision: Optional[DecisionResult] = None,
    ) -> RecommendationRecord:
        """Lock, then apply one transition. See ``apply_locked``."""
        async with self.lock_for(recommendation_id):
            record = await self.apply_locked(recommendation_id, target, cause, expected_version, decision)
        if record.lifecycle.is_terminal:
            self.discard_lock(recommendation_id)
        return record

    async def apply_locked(
        self,
        recommendation_id: str,
        target: Any,
        cause: str,
        expected_version: Optional[int] = None,
        decision: Optional[DecisionResult] = None,
    ) -> RecommendationRecord:
        """
        Apply one transition. The caller must hold ``lock_for(recommendation_id)``.

        Raises:
            RecommendationNotFoundError: Unknown id
            InvalidStateError: Unknown target label
            InvalidTransitionError: Move not allowed; nothing is written
            ConcurrentModificationError: ``expected_version`` or the stored
                version moved on; nothing is written
        """
        record = await self.get(recommendation_id)
        if expected_version is not None and record.version != expected_version:
            raise ConcurrentModificationError(recommendation_id, expected_version, record.version)

        try:
            lifecycle = record.lifecycle.transition_to(target, cause)
        except InvalidTransitionError as e:
            logger.warning(f"{LogCategory.LIFECYCLE} {recommendation_id}: {e}")
            raise

        updated = await self.store.compare_and_swap_async(
            recommendation_id, record.version, lifecycle, decision
        )
        transition = lifecycle.last_transition
        logger.info(
            f"{LogCategory.LIFECYCLE} {recommendation_id}: {transition.previous_state.value} -> "
            f"{transition.state.value} (cause: {cause}, v{lifecycle.version})"
        )
        execution_logger.log_transition(
            recommendation_id,
            transition.previous_state.value,
            transition.state.value,
            cause,
            lifecycle.version,
        )
        await self._audit_transition(lifecycle)
        await self._notify(lifecycle)
        return updated

    async def approve(self, recommendation_id: str, decision: DecisionResult) -> RecommendationRecord:
        """PROPOSED -> APPROVED. Only an approved decision for this id may do this."""
        if decision.recommendation_id != recommendation_id:
            raise InvalidTransitionError(
                LifecycleState.PROPOSED.value,
                LifecycleState.APPROVED.value,
                f"Decision for {decision.recommendation_id} cannot approve {recommendation_id}",
            )
        if not decision.approved:
            raise InvalidTransitionError(
                LifecycleState.PROPOSED.value,
                LifecycleState.APPROVED.value,
                f"Decision Engine rejected {recommendation_id}: {decision.reason}",
            )
        problems = decision.structural_problems()
        if problems:
            raise MalformedDecisionError(f"Refusing to approve {recommendation_id}: {'; '.join(problems)}")
        return await self.transition(
            recommendation_id, LifecycleState.APPROVED, "decision_engine_approved", decision=decision
        )

    async def queue_locked(
        self, recommendation_id: str, expected_version: int, cause: str = "submission_admitted"
    ) -> RecommendationRecord:
        """APPROVED -> QUEUED. Called by the Executor while it holds the recommendation lock."""
        return await self.apply_locked(recommendation_id, LifecycleState.QUEUED, cause, expected_version)

    async def record_fill(self, recommendation_id: str, auto_manage: bool = True) -> RecommendationRecord:
        """QUEUED -> ENTERED on confirmed fill, then MANAGING when ``auto_manage``."""
        async with self.lock_for(recommendation_id):
            record = await self.apply_locked(recommendation_id, LifecycleState.ENTERED, "fill_confirmed")
            if auto_manage:
                record = await self.apply_locked(
                    recommendation_id, LifecycleState.MANAGING, "position_management_started"
                )
            return record

    async def begin_management(self, recommendation_id: str) -> RecommendationRecord:
        return await self.transition(
            recommendation_id, LifecycleState.MANAGING, "position_management_started"
        )

    async def record_exit(self, recommendation_id: str, cause: str = "exit_confirmed") -> RecommendationRecord:
        return await self.transition(recommendation_id, LifecycleState.EXITED, cause)

    async def cancel(self, recommendation_id: str, cause: str = "cancelled") -> RecommendationRecord:
        return await self.transition(recommendation_id, LifecycleState.CANCELLED, cause)

    async def invalidate(self, recommendation_id: str, cause: str = "setup_invalidated") -> RecommendationRecord:
        return await self.transition(recommendation_id, LifecycleState.INVALIDATED, cause)

    async def _audit_transition(self, lifecycle: TradeLifecycle) -> None:
        if self.audit_log is None:
            return
        try:
            await self.audit_log.record_transition_async(lifecycle)
        except Exception as e:
            logger.error(
                f"{LogCategory.AUDIT} Failed to audit transition of {lifecycle.recommendation_id} "
                f"to {lifecycle.state.value}: {e}",
                exc_info=True,
            )

    async def _notify(self, lifecycle: TradeLifecycle) -> None:
        record = lifecycle.last_transition
        for listener in self.listeners:
            try:
                result = listener.on_transition(lifecycle, record)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    f"{LogCategory.LIFECYCLE} Listener {type(listener).__name__} failed for "
                    f"{lifecycle.recommendation_id}: {e}"
                )
