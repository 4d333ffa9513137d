"""Tests for the data models."""

import pytest
from pydantic import ValidationError

from ad_studio.models import (
    AdCopy,
    AdTemplate,
    CreditSummary,
    GeneratedAd,
    JobEvent,
    JobStatus,
    TrialStatus,
)
from ad_studio.errors import ErrorKind


class TestCreditSummary:
    """Tests for CreditSummary derived flags."""

    @pytest.mark.parametrize("credits", [0, 1, 2, 50, 10_000])
    def test_has_credits_iff_positive(self, credits):
        """Test hasCredits is true exactly when credits > 0."""
        summary = CreditSummary(credits=credits)
        assert summary.has_credits is (credits > 0)

    @pytest.mark.parametrize(
        "trial_credits,status,expected",
        [
            (0, TrialStatus.ACTIVE, False),
            (3, TrialStatus.ACTIVE, True),
            (3, TrialStatus.NOT_STARTED, False),
            (3, TrialStatus.EXHAUSTED, False),
            (0, TrialStatus.EXHAUSTED, False),
        ],
    )
    def test_has_trial_credits(self, trial_credits, status, expected):
        """Test hasTrialCredits requires a balance and an active trial."""
        summary = CreditSummary(trial_credits=trial_credits, trial_status=status)
        assert summary.has_trial_credits is expected

    def test_derived_flags_ignore_backend_values(self):
        """Test derived flags are computed, not copied from the payload."""
        summary = CreditSummary.model_validate(
            {"credits": 0, "trialCredits": 0, "trialStatus": "ACTIVE", "hasCredits": True}
        )
        assert summary.has_credits is False
        assert summary.can_generate is False

    def test_negative_credits_rejected(self):
        """Test credits can't go below zero."""
        with pytest.raises(ValidationError):
            CreditSummary(credits=-1)

    def test_dump_uses_wire_names(self):
        """Test serialization includes the derived flags in camelCase."""
        data = CreditSummary(credits=2).model_dump(by_alias=True)
        assert data["credits"] == 2
        assert data["hasCredits"] is True
        assert data["hasTrialCredits"] is False
        assert data["trialStatus"] == TrialStatus.NOT_STARTED


class TestAdModels:
    """Tests for ad copy, templates and generated ads."""

    def test_ad_copy_is_immutable(self):
        """Test AdCopy can't be edited in place."""
        copy = AdCopy(template_id="tpl-1", headline="Hello")
        with pytest.raises(ValidationError):
            copy.headline = "Changed"

    def test_template_from_camel_case(self):
        """Test catalog payloads parse from camelCase."""
        template = AdTemplate.model_validate(
            {"id": "t", "image": "i.png", "subNiche": "Trail", "isCustom": True, "tags": ["a"]}
        )
        assert template.sub_niche == "Trail"
        assert template.is_custom is True
        assert template.tags == ("a",)

    def test_current_image_prefers_final_render(self):
        """Test the final render wins over the base image."""
        ad = GeneratedAd(
            id="ad-1",
            template_id="tpl-1",
            image_url="base.png",
            ad_copy=AdCopy(template_id="tpl-1"),
        )
        assert ad.current_image_url == "base.png"

        ad.final_image_url = "final.png"
        assert ad.current_image_url == "final.png"


class TestJobEvent:
    """Tests for the realtime job event schema."""

    def test_parse_completion(self):
        """Test a completion event parses from the wire format."""
        event = JobEvent.model_validate(
            {
                "correlationId": "c-1",
                "adId": "ad-1",
                "status": "completed",
                "payload": {"imageUrl": "x.png"},
            }
        )
        assert event.correlation_id == "c-1"
        assert event.status == JobStatus.COMPLETED
        assert event.payload["imageUrl"] == "x.png"

    def test_parse_failure(self):
        """Test a failure event carries its error kind."""
        event = JobEvent.model_validate(
            {"correlationId": "c-2", "error": {"kind": "Timeout", "message": "slow"}}
        )
        assert event.status is None
        assert event.error.kind == ErrorKind.TIMEOUT

    def test_missing_correlation_id_rejected(self):
        with pytest.raises(ValidationError):
            JobEvent.model_validate({"status": "completed"})
