"""
Analytics Records
=================

Typed records exchanged with the analytics store. The ETL produces the
session/detail records, pattern detection produces Pattern records, and
external hooks produce verdicts, metrics and feedback.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Optional


@dataclass
class SessionRecord:
    """A reconstructed session."""
    session_id: str
    start_time: int
    end_time: Optional[int] = None
    project_path: Optional[str] = None
    project_name: Optional[str] = None
    success: Optional[bool] = None
    completion_quality: Optional[float] = None
    compaction_count: int = 0
    compaction_times: list[int] = field(default_factory=list)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def merged_with(self, newer: "SessionRecord") -> "SessionRecord":
        """
        Combine a stored session with a freshly reconstructed portion of it.

        Boundaries widen and known values are never replaced by unknown ones.
        Compactions are the union of their timestamps, so portions read from
        different files add up while a portion seen twice counts once. A
        count with no timestamps behind it is kept as a lower bound.
        """
        ends = [t for t in (self.end_time, newer.end_time) if t is not None]
        times = sorted(set(self.compaction_times) | set(newer.compaction_times))
        return SessionRecord(
            session_id=self.session_id,
            start_time=min(self.start_time, newer.start_time),
            end_time=max(ends) if ends else None,
            project_path=newer.project_path or self.project_path,
            project_name=newer.project_name or self.project_name,
            success=newer.success if newer.success is not None else self.success,
            completion_quality=(
                newer.completion_quality if newer.completion_quality is not None
                else self.completion_quality
            ),
            compaction_count=max(len(times), self.compaction_count, newer.compaction_count),
            compaction_times=times,
        )


@dataclass
class ToolUsageRecord:
    """One completed tool call (or a post event with no matching pre)."""
    session_id: str
    tool_name: str
    timestamp: int
    tool_use_id: Optional[str] = None
    duration_ms: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None
    input_summary: str = ""


@dataclass
class AgentSpawnRecord:
    """A subagent run. duration_ms/success are not derivable from hooks."""
    session_id: str
    agent_type: str
    timestamp: int
    agent_id: Optional[str] = None
    duration_ms: Optional[int] = None
    success: Optional[bool] = None


@dataclass
class ToolSequenceRecord:
    """A three-tool sliding window."""
    session_id: str
    tools: list[str]
    content_hash: str
    timestamp: int
    success: Optional[bool] = None


@dataclass
class SkillUsageRecord:
    """A skill invocation."""
    session_id: str
    skill_name: str
    timestamp: int
    success: Optional[bool] = None
    duration_ms: Optional[int] = None


class Verdict(Enum):
    """Judge verdict outcomes."""
    PASS = "pass"
    REVISE = "revise"
    REJECT = "reject"


@dataclass
class JudgeVerdictRecord:
    verdict: Verdict
    timestamp: int
    session_id: Optional[str] = None
    skill_name: Optional[str] = None
    score: Optional[float] = None
    failure_modes: list[str] = field(default_factory=list)
    feedback: Optional[str] = None


@dataclass
class MetricRecord:
    metric_name: str
    metric_value: float
    timestamp: int
    session_id: Optional[str] = None
    unit: Optional[str] = None
    tags: dict[str, Any] = field(default_factory=dict)


@dataclass
class UserFeedbackRecord:
    timestamp: int
    session_id: Optional[str] = None
    pattern_id: Optional[str] = None
    rating: Optional[int] = None
    sentiment: Optional[str] = None
    comment: Optional[str] = None


# =============================================================================
# Patterns
# =============================================================================

class PatternType(Enum):
    """Classification of a detected pattern."""
    SUCCESS = "success"        # Something that works; safe to repeat
    FAILURE = "failure"        # Something that tends to fail; avoid
    BEHAVIORAL = "behavioral"  # Common, but neither good nor bad


@dataclass
class Pattern:
    """A statistically derived behavioural observation."""
    pattern_id: str
    pattern_type: PatternType
    category: str
    name: str
    trigger_conditions: dict[str, Any] = field(default_factory=dict)
    observed_frequency: int = 0
    confidence_score: float = 0.0
    applicable_to: list[str] = field(default_factory=list)
    success_rate: Optional[float] = None  # None = not applicable
    sample_size: int = 0
    recommendation: str = ""
    auto_apply: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data["pattern_type"] = self.pattern_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Pattern":
        """Create from dictionary."""
        return cls(
            pattern_id=data["pattern_id"],
            pattern_type=PatternType(data["pattern_type"]),
            category=data["category"],
            name=data.get("name", ""),
            trigger_conditions=data.get("trigger_conditions", {}),
            observed_frequency=data.get("observed_frequency", 0),
            confidence_score=data.get("confidence_score", 0.0),
            applicable_to=data.get("applicable_to", []),
            success_rate=data.get("success_rate"),
            sample_size=data.get("sample_size", 0),
            recommendation=data.get("recommendation", ""),
            auto_apply=data.get("auto_apply", False),
        )
