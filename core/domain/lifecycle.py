"""
Trade lifecycle finite-state machine.

Each lifecycle is an immutable, versioned snapshot keyed by recommendation
id. ``transition_to`` returns the next revision; an illegal move raises
InvalidTransitionError and the original snapshot is untouched.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from config.constants import ACTIVE_STATES, TERMINAL_STATES, TRANSITIONS, LifecycleState
from core.domain.base import DomainEntity, ensure_aware, now_utc
from core.exceptions import InvalidStateError, InvalidTransitionError


def parse_state(label: Any) -> LifecycleState:
    """Map a state label to LifecycleState, raising InvalidStateError if unknown."""
    if isinstance(label, LifecycleState):
        return label
    try:
        return LifecycleState(str(label).upper())
    except ValueError as e:
        raise InvalidStateError(f"Unknown lifecycle state: {label!r}") from e


class TransitionRecord(DomainEntity):
    state: LifecycleState
    previous_state: Optional[LifecycleState] = None
    cause: str
    at: datetime

    @field_validator("at")
    @classmethod
    def aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)


class TradeLifecycle(DomainEntity):
    recommendation_id: str = Field(..., min_length=1)
    state: LifecycleState = LifecycleState.PROPOSED
    version: int = Field(default=0, ge=0)
    history: tuple[TransitionRecord, ...] = ()

    @classmethod
    def start(
        cls, recommendation_id: str, created_at: Optional[datetime] = None
    ) -> "TradeLifecycle":
        """New lifecycle in PROPOSED at version 0."""
        at = created_at or now_utc()
        return cls(
            recommendation_id=recommendation_id,
            history=(
                TransitionRecord(state=LifecycleState.PROPOSED, cause="created", at=at),
            ),
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def allowed_transitions(self) -> frozenset[LifecycleState]:
        return TRANSITIONS[self.state]

    @property
    def last_transition(self) -> Optional[TransitionRecord]:
        return self.history[-1] if self.history else None

    def can_transition_to(self, target: LifecycleState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition_to(
        self, target: Any, cause: str, at: Optional[datetime] = None
    ) -> "TradeLifecycle":
        """
        Return the next revision in ``target``.

        Raises:
            InvalidStateError: If ``target`` is not a known state
            InvalidTransitionError: If the move is not allowed from the
                current state
        """
        target_state = parse_state(target)
        if not self.can_transition_to(target_state):
            raise InvalidTransitionError(self.state.value, target_state.value)

        record = TransitionRecord(
            state=target_state,
            previous_state=self.state,
            cause=cause,
            at=at or now_utc(),
        )
        return self.model_copy(
            update={
                "state": target_state,
                "version": self.version + 1,
                "history": self.history + (record,),
            }
        )

    def visited(self) -> list[LifecycleState]:
        return [record.state for record in self.history]
