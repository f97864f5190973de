"""
Pattern Scoring
===============

Confidence and auto-apply rules shared by batch pattern detection and the
store's running-statistics update. Both paths must use these functions so
their thresholds cannot drift apart.
"""

from typing import Optional

from sessionlens.records import PatternType

# Pattern categories
TOOL_SEQUENCE = "tool_sequence"
TOOL_ERROR = "tool_error"
AGENT_PERFORMANCE = "agent_performance"
PROJECT_CONTEXT = "project_context"
SESSION_DURATION = "session_duration"

# Surfaced for review only, whatever their statistics
REVIEW_ONLY_CATEGORIES = frozenset({TOOL_ERROR, PROJECT_CONTEXT, SESSION_DURATION})

# Auto-apply gate
AUTO_APPLY_CONFIDENCE = 0.8
AUTO_APPLY_MIN_SAMPLES = 10

# Sample size at which confidence reaches 0.5
CONFIDENCE_HALF_POINT = 10


def confidence(sample_size: int) -> float:
    """
    Confidence earned by a sample of the given size.

    1 - 1/(1 + n/10): 0 for no samples, 0.5 at ten, never reaching 1.
    """
    if sample_size < 0:
        raise ValueError(f"sample_size must be non-negative, got {sample_size}")
    return 1.0 - 1.0 / (1.0 + sample_size / CONFIDENCE_HALF_POINT)


def passes_auto_apply_gate(confidence_score: float, sample_size: int) -> bool:
    """True when a pattern is trusted enough to surface without review."""
    return confidence_score >= AUTO_APPLY_CONFIDENCE and sample_size >= AUTO_APPLY_MIN_SAMPLES


def may_auto_apply(
    category: str,
    pattern_type: PatternType,
    confidence_score: float,
    sample_size: int,
) -> bool:
    """
    Auto-apply decision for a pattern of the given category.

    Review-only categories never auto-apply. Agent patterns auto-apply only
    when classified as successes. Tool sequences pass on the gate alone,
    whatever their type.
    """
    if category in REVIEW_ONLY_CATEGORIES:
        return False
    if category == AGENT_PERFORMANCE and pattern_type is not PatternType.SUCCESS:
        return False
    return passes_auto_apply_gate(confidence_score, sample_size)


def running_success_rate(old_rate: Optional[float], old_sample_size: int, observed: bool) -> float:
    """Fold one more observed outcome into a success rate."""
    previous = (old_rate or 0.0) * old_sample_size
    return (previous + (1 if observed else 0)) / (old_sample_size + 1)
