"""
Tests for the Advisory Review boundary.
"""

import asyncio

import pytest

from config.constants import AdvisoryLevel
from config.settings import AdvisoryConfig
from execution.advisory import DEFAULT_NOTES, AdvisoryContract, AdvisoryReviewService, parse_advisory
from factories import make_context, make_recommendation


class TestParseAdvisory:
    def test_mapping(self):
        contract = parse_advisory({"level": "warning", "confidence_adjustment": 5, "notes": "gap risk"})
        assert contract == AdvisoryContract(level=AdvisoryLevel.WARNING, confidence_adjustment=5, notes="gap risk")
        assert not contract.is_default

    def test_json_string(self):
        contract = parse_advisory('{"level": "info", "confidence_adjustment": -3}')
        assert contract.level == AdvisoryLevel.INFO
        assert contract.confidence_adjustment == -3

    def test_fenced_json_with_prose(self):
        raw = 'Here is my review:\n```json\n{"level": "block_auto", "notes": "news pending"}\n```\nThanks.'
        contract = parse_advisory(raw)
        assert contract.level == AdvisoryLevel.BLOCK_FOR_AUTOMATION
        assert contract.blocks_automation
        assert contract.notes == "news pending"

    @pytest.mark.parametrize("adjustment,expected", [(25, 10), (-40, -10), (7.9, 7), ("3", 3), ("lots", 0)])
    def test_adjustment_clamped(self, adjustment, expected):
        assert parse_advisory({"confidence_adjustment": adjustment}).confidence_adjustment == expected

    def test_custom_clamp(self):
        assert parse_advisory({"confidence_adjustment": 9}, max_adjustment=5).confidence_adjustment == 5

    def test_unknown_level_is_info(self):
        assert parse_advisory({"level": "panic"}).level == AdvisoryLevel.INFO

    @pytest.mark.parametrize(
        "raw",
        [
            {"approved": True},
            {"level": "info", "decision": "reject"},
            {"Reject": True},
            {"level": "approve"},
            {"level": "REJECTED"},
        ],
    )
    def test_verdict_attempts_discarded(self, raw):
        contract = parse_advisory(raw)
        assert contract.is_default
        assert contract.level == AdvisoryLevel.INFO
        assert contract.confidence_adjustment == 0
        assert "verdict not permitted" in contract.notes

    @pytest.mark.parametrize("raw", [None, "", "no json here", "{not json}", "[1, 2]", 42])
    def test_unparseable_gives_default(self, raw):
        contract = parse_advisory(raw)
        assert contract.is_default
        assert contract.notes == DEFAULT_NOTES

    def test_contract_has_no_verdict_field(self):
        with pytest.raises(ValueError):
            AdvisoryContract(level="info", approved=True)


class TestAdvisoryReviewService:
    @pytest.mark.asyncio
    async def test_disabled_without_reviewer(self):
        service = AdvisoryReviewService(None, AdvisoryConfig(enabled=True))
        assert not service.enabled
        assert (await service.review(make_recommendation(), None)).is_default

    @pytest.mark.asyncio
    async def test_sync_reviewer_supported(self):
        class SyncReviewer:
            def review(self, recommendation, context):
                return {"level": "warning", "notes": recommendation.symbol}

        service = AdvisoryReviewService(SyncReviewer(), AdvisoryConfig(enabled=True))
        contract = await service.review(make_recommendation(), make_context())
        assert contract.level == AdvisoryLevel.WARNING
        assert contract.notes == "RELIANCE"

    @pytest.mark.asyncio
    async def test_reviewer_exception_gives_default(self):
        class BrokenReviewer:
            async def review(self, recommendation, context):
                raise RuntimeError("model unavailable")

        service = AdvisoryReviewService(BrokenReviewer(), AdvisoryConfig(enabled=True))
        assert (await service.review(make_recommendation(), None)).is_default

    @pytest.mark.asyncio
    async def test_timeout_gives_default(self):
        class SlowReviewer:
            async def review(self, recommendation, context):
                await asyncio.sleep(5)
                return {"level": "warning"}

        service = AdvisoryReviewService(SlowReviewer(), AdvisoryConfig(enabled=True, timeout_seconds=0.05))
        contract = await service.review(make_recommendation(), None)
        assert contract.is_default
        assert contract.notes == DEFAULT_NOTES
