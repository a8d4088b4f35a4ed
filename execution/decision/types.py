"""
Decision Engine result types.

A DecisionResult is sealed by the engine with a content digest. The
Executor recomputes the digest and re-checks the decision path structure
before trusting ``approved``, so a hand-built or edited result is refused.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from config.constants import DEFAULT_CHECK_ORDER, Reason
from core.domain.base import DomainEntity, digest_of, ensure_aware
from execution.advisory import AdvisoryContract


class CheckOutcome(DomainEntity):
    """
    Outcome of one check.

    Attributes:
        check: Check name
        passed: Whether the check passed
        reason: Machine-readable reason code (first violation when failed)
        message: Human-readable explanation
        details: Offending or computed values, plus every violation found
    """
    check: str = Field(..., min_length=1)
    passed: bool
    reason: str = Field(..., min_length=1)
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class DecisionResult(DomainEntity):
    """
    Immutable outcome of one Decision Engine evaluation.

    ``decision_path`` holds every check that ran, in order. On rejection
    the last entry is the first failing check and nothing after it ran.
    """
    recommendation_id: str
    approved: bool
    reason: str
    decision_path: tuple[CheckOutcome, ...] = Field(..., min_length=1)
    advisory_review: Optional[AdvisoryContract] = None
    adjusted_confidence: Optional[float] = None
    engine_enabled: bool = True
    evaluated_at: datetime
    digest: str = ""

    @field_validator("evaluated_at")
    @classmethod
    def aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @classmethod
    def seal(cls, **fields: Any) -> "DecisionResult":
        """Build a result and stamp its content digest."""
        unsealed = cls(**fields)
        return unsealed.model_copy(update={"digest": unsealed.compute_digest()})

    def with_advisory(self, contract: AdvisoryContract, adjusted_confidence: float) -> "DecisionResult":
        """Attach an advisory review and re-seal. ``approved`` is untouched."""
        annotated = self.model_copy(
            update={"advisory_review": contract, "adjusted_confidence": adjusted_confidence}
        )
        return annotated.model_copy(update={"digest": annotated.compute_digest()})

    def compute_digest(self) -> str:
        payload = self.model_dump(mode="json", exclude={"digest"})
        return digest_of(payload)

    @property
    def failed_check(self) -> Optional[str]:
        if self.approved:
            return None
        return self.decision_path[-1].check

    @property
    def blocks_automation(self) -> bool:
        return self.advisory_review is not None and self.advisory_review.blocks_automation

    def structural_problems(self) -> list[str]:
        """
        Describe every way this result deviates from what the engine produces.

        An empty list means the result is well formed and untampered.
        """
        problems: list[str] = []
        if not self.digest or self.digest != self.compute_digest():
            problems.append("digest mismatch")

        path = self.decision_path
        if not self.engine_enabled:
            if len(path) != 1 or path[0].reason != Reason.DECISION_ENGINE_DISABLED:
                problems.append("disabled-engine result with unexpected decision path")
            return problems

        names = [outcome.check for outcome in path]
        expected = [name.value for name in DEFAULT_CHECK_ORDER]
        if names[: len(expected)] != expected[: len(names)]:
            problems.append(f"decision path out of order: {names}")

        if self.approved:
            if len(names) < len(expected):
                problems.append(f"approved with incomplete decision path: {names}")
            if not all(outcome.passed for outcome in path):
                problems.append("approved but a check failed")
        else:
            if path[-1].passed:
                problems.append("rejected but the last check passed")
            if not all(outcome.passed for outcome in path[:-1]):
                problems.append("a check ran after a failing check")
            if self.reason != path[-1].reason:
                problems.append("reason does not match the failing check")
        return problems
