"""
Advisory Review boundary.

The reviewer (a scoring subsystem) may annotate an already-approved
decision but never decide it. Its raw output is forced through
AdvisoryContract: one level, a clamped confidence adjustment and notes.
Anything that looks like an approve/reject verdict, any parse failure,
exception or timeout yields the default contract, and the deterministic
decision stands unchanged.
"""

import asyncio
import inspect
import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import Field

from config.constants import (
    FORBIDDEN_ADVISORY_KEYS,
    FORBIDDEN_ADVISORY_LEVELS,
    AdvisoryLevel,
)
from config.logging_config import LogCategory
from config.settings import AdvisoryConfig
from core.domain.base import DomainEntity
from core.domain.context import SystemContext
from core.domain.recommendation import TradeRecommendation
from core.interfaces import IAdvisoryReviewer

logger = logging.getLogger(__name__)

DEFAULT_NOTES = "advisory review unavailable - using deterministic decision"

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_BARE_JSON = re.compile(r"(\{.*\})", re.DOTALL)

_LEVEL_ALIASES = {
    "block_auto": AdvisoryLevel.BLOCK_FOR_AUTOMATION,
    "block": AdvisoryLevel.BLOCK_FOR_AUTOMATION,
}


class AdvisoryContract(DomainEntity):
    """Sanitized advisory output. Carries no approve/reject field by construction."""
    level: AdvisoryLevel = AdvisoryLevel.INFO
    confidence_adjustment: int = 0
    notes: str = ""
    is_default: bool = False

    @classmethod
    def default(cls, notes: str = DEFAULT_NOTES) -> "AdvisoryContract":
        return cls(level=AdvisoryLevel.INFO, confidence_adjustment=0, notes=notes, is_default=True)

    @property
    def blocks_automation(self) -> bool:
        return self.level == AdvisoryLevel.BLOCK_FOR_AUTOMATION


def _parse_level(raw: Any) -> AdvisoryLevel:
    label = str(raw).strip().lower()
    if label in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[label]
    try:
        return AdvisoryLevel(label)
    except ValueError:
        logger.warning(f"{LogCategory.ADVISORY} Unknown advisory level {raw!r}, defaulting to info")
        return AdvisoryLevel.INFO


def _clamp_adjustment(raw: Any, limit: int) -> int:
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"{LogCategory.ADVISORY} Unusable confidence adjustment {raw!r}, using 0")
        return 0
    return max(-limit, min(limit, value))


def _extract_mapping(raw: Any) -> Optional[Mapping]:
    if isinstance(raw, AdvisoryContract):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or not raw.strip():
        return None

    match = _FENCED_JSON.search(raw) or _BARE_JSON.search(raw)
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning(f"{LogCategory.ADVISORY} Failed to parse advisory JSON: {e}")
        return None
    return parsed if isinstance(parsed, Mapping) else None


def parse_advisory(raw: Any, max_adjustment: int = 10) -> AdvisoryContract:
    """
    Coerce raw reviewer output into an AdvisoryContract.

    Accepts a mapping, a JSON string or JSON inside a fenced code block.
    Output that tries to approve or reject is discarded whole.
    """
    data = _extract_mapping(raw)
    if data is None:
        return AdvisoryContract.default()

    verdict_keys = sorted(str(key) for key in data if str(key).lower() in FORBIDDEN_ADVISORY_KEYS)
    if verdict_keys:
        logger.warning(
            f"{LogCategory.ADVISORY} Reviewer attempted a verdict via {verdict_keys}; discarding output"
        )
        return AdvisoryContract.default("advisory output discarded: verdict not permitted")

    raw_level = data.get("level", data.get("advisory_level", AdvisoryLevel.INFO.value))
    if str(raw_level).strip().lower() in FORBIDDEN_ADVISORY_LEVELS:
        logger.warning(
            f"{LogCategory.ADVISORY} Reviewer returned verdict level {raw_level!r}; discarding output"
        )
        return AdvisoryContract.default("advisory output discarded: verdict not permitted")

    return AdvisoryContract(
        level=_parse_level(raw_level),
        confidence_adjustment=_clamp_adjustment(data.get("confidence_adjustment", 0), max_adjustment),
        notes=str(data.get("notes", "") or ""),
    )


class AdvisoryReviewService:
    """
    Runs the optional reviewer under a hard timeout.

    ``review()`` never raises: every failure path returns the default
    contract and logs a warning naming the reviewer.
    """

    def __init__(self, reviewer: Optional[IAdvisoryReviewer], config: Optional[AdvisoryConfig] = None):
        self.reviewer = reviewer
        self.config = config or AdvisoryConfig()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self.reviewer is not None

    @property
    def reviewer_name(self) -> str:
        return type(self.reviewer).__name__ if self.reviewer is not None else "none"

    async def _call_reviewer(
        self, recommendation: TradeRecommendation, context: Optional[SystemContext]
    ) -> Any:
        review = self.reviewer.review
        if inspect.iscoroutinefunction(review):
            return await review(recommendation, context)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, lambda: review(recommendation, context))
        if inspect.isawaitable(result):
            return await result
        return result

    async def review(
        self, recommendation: TradeRecommendation, context: Optional[SystemContext]
    ) -> AdvisoryContract:
        if not self.enabled:
            return AdvisoryContract.default("advisory review disabled")

        try:
            raw = await asyncio.wait_for(
                self._call_reviewer(recommendation, context),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"{LogCategory.ADVISORY} Reviewer {self.reviewer_name} timed out after "
                f"{self.config.timeout_seconds}s for {recommendation.recommendation_id}"
            )
            return AdvisoryContract.default()
        except Exception as e:
            logger.warning(
                f"{LogCategory.ADVISORY} Reviewer {self.reviewer_name} failed for "
                f"{recommendation.recommendation_id}: {e}"
            )
            return AdvisoryContract.default()

        contract = parse_advisory(raw, self.config.max_confidence_adjustment)
        logger.info(
            f"{LogCategory.ADVISORY} {recommendation.recommendation_id}: level={contract.level.value} "
            f"adjustment={contract.confidence_adjustment:+d}"
        )
        return contract
