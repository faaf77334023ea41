"""Classifier output is untrusted: validated strictly, never clamped or coerced."""

from __future__ import annotations

import pytest

from pulsecheck.core.exceptions import ValidationError
from pulsecheck.models.escalation import Classification, EscalationCategory, EscalationTier
from tests.fakes import classification


class TestValidClassification:
    def test_parses_camel_case_wire_shape(self):
        parsed = Classification.parse(classification(2, "anxiety-indicators"))
        assert parsed.tier is EscalationTier.ELEVATED_RISK
        assert parsed.category is EscalationCategory.ANXIETY_INDICATORS
        assert parsed.should_escalate is True

    def test_accepts_snake_case_keys(self):
        parsed = Classification.parse(
            {"tier": 1, "category": "fatigue", "confidence": 0.4, "should_escalate": True}
        )
        assert parsed.tier is EscalationTier.MONITOR_ONLY

    def test_category_defaults_to_general(self):
        raw = classification(1)
        del raw["category"]
        assert Classification.parse(raw).category is EscalationCategory.GENERAL

    def test_confidence_bounds_are_inclusive(self):
        assert Classification.parse(classification(1, confidence=0.0)).confidence == 0.0
        assert Classification.parse(classification(1, confidence=1.0)).confidence == 1.0

    def test_passes_through_parsed_instance(self):
        parsed = Classification.parse(classification(3))
        assert Classification.parse(parsed) is parsed


class TestRejectedClassification:
    @pytest.mark.parametrize("tier", [4, -1, True, "2", 2.0, None])
    def test_rejects_bad_tier(self, tier):
        with pytest.raises(ValidationError):
            Classification.parse(classification(1, tier=tier))

    @pytest.mark.parametrize("confidence", [1.5, -0.1, float("nan"), "0.5"])
    def test_rejects_bad_confidence(self, confidence):
        with pytest.raises(ValidationError):
            Classification.parse(classification(1, confidence=confidence))

    def test_rejects_unknown_category(self):
        with pytest.raises(ValidationError):
            Classification.parse(classification(1, category="panic-attack"))

    def test_rejects_non_boolean_should_escalate(self):
        with pytest.raises(ValidationError):
            Classification.parse(classification(1, shouldEscalate="yes"))

    def test_rejects_missing_should_escalate(self):
        raw = classification(1)
        del raw["shouldEscalate"]
        with pytest.raises(ValidationError):
            Classification.parse(raw)

    def test_error_lists_offending_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            Classification.parse(classification(9, confidence=7))
        locs = {e["loc"][0] for e in exc_info.value.errors}
        assert {"tier", "confidence"} <= locs
