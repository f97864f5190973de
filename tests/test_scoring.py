"""
Tests for Pattern Scoring
=========================

Tests for the confidence function and the auto-apply gate.
"""

import pytest

from sessionlens.scoring import (
    AUTO_APPLY_CONFIDENCE,
    AUTO_APPLY_MIN_SAMPLES,
    AGENT_PERFORMANCE,
    PROJECT_CONTEXT,
    SESSION_DURATION,
    TOOL_ERROR,
    TOOL_SEQUENCE,
    confidence,
    may_auto_apply,
    passes_auto_apply_gate,
    running_success_rate,
)
from sessionlens.records import PatternType


# =============================================================================
# Confidence Tests
# =============================================================================

class TestConfidence:
    """Tests for confidence(n)."""

    def test_zero_samples(self):
        assert confidence(0) == 0.0

    def test_half_point(self):
        assert confidence(10) == pytest.approx(0.5)

    def test_six_samples(self):
        assert confidence(6) == pytest.approx(0.375)

    def test_forty_samples_reaches_gate(self):
        assert confidence(40) == pytest.approx(0.8)

    def test_strictly_increasing_and_below_one(self):
        previous = confidence(0)
        for n in range(1, 2000):
            current = confidence(n)
            assert previous < current < 1.0
            previous = current

    def test_large_sample_never_reaches_one(self):
        assert confidence(10**9) < 1.0

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            confidence(-1)


# =============================================================================
# Auto-Apply Gate Tests
# =============================================================================

class TestAutoApplyGate:
    """Tests for passes_auto_apply_gate."""

    def test_thresholds(self):
        assert AUTO_APPLY_CONFIDENCE == 0.8
        assert AUTO_APPLY_MIN_SAMPLES == 10

    def test_both_conditions_met(self):
        assert passes_auto_apply_gate(0.8, 10) is True

    def test_low_confidence(self):
        assert passes_auto_apply_gate(0.79, 100) is False

    def test_small_sample(self):
        assert passes_auto_apply_gate(0.95, 9) is False

    def test_gate_on_confidence_function(self):
        # Confidence only clears 0.8 at n=40, so the sample gate never binds alone
        assert passes_auto_apply_gate(confidence(39), 39) is False
        assert passes_auto_apply_gate(confidence(40), 40) is True


class TestCategoryPolicy:
    """Tests for may_auto_apply."""

    @pytest.mark.parametrize("category", [TOOL_ERROR, PROJECT_CONTEXT, SESSION_DURATION])
    def test_review_only_categories(self, category):
        for pattern_type in PatternType:
            assert may_auto_apply(category, pattern_type, 0.99, 1000) is False

    def test_agent_needs_success_type(self):
        assert may_auto_apply(AGENT_PERFORMANCE, PatternType.SUCCESS, 0.8, 40) is True
        assert may_auto_apply(AGENT_PERFORMANCE, PatternType.FAILURE, 0.8, 40) is False
        assert may_auto_apply(AGENT_PERFORMANCE, PatternType.BEHAVIORAL, 0.8, 40) is False

    def test_sequences_gate_on_statistics_only(self):
        for pattern_type in PatternType:
            assert may_auto_apply(TOOL_SEQUENCE, pattern_type, 0.8, 40) is True
        assert may_auto_apply(TOOL_SEQUENCE, PatternType.SUCCESS, 0.79, 39) is False


# =============================================================================
# Running Success Rate Tests
# =============================================================================

class TestRunningSuccessRate:
    """Tests for running_success_rate."""

    def test_first_observation(self):
        assert running_success_rate(None, 0, True) == 1.0
        assert running_success_rate(None, 0, False) == 0.0

    def test_folds_in_success(self):
        # 3/4 successes, then one more success -> 4/5
        assert running_success_rate(0.75, 4, True) == pytest.approx(0.8)

    def test_folds_in_failure(self):
        assert running_success_rate(1.0, 4, False) == pytest.approx(0.8)
