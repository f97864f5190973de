"""
Database Models for SessionLens
===============================

SQLAlchemy models for the analytics store: reconstructed sessions, their
detail rows, derived patterns, and the verdict/metric/feedback tables
written by external collaborators.

Timestamps taken from hook events are stored as epoch milliseconds so that
trailing-window queries are plain integer comparisons. Columns holding
lists or mappings are stored as JSON text and decoded by the store.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, Float, DateTime, Text, Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


# =============================================================================
# Ingested Tables (written by the ETL)
# =============================================================================

class SessionModel(Base):
    """One reconstructed interactive session."""
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    start_time: Mapped[int] = mapped_column(BigInteger, index=True)
    end_time: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # None = still open
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    project_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    project_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Outcome (written by the verdict hook, never derived by the ETL)
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    completion_quality: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    compaction_count: Mapped[int] = mapped_column(Integer, default=0)
    compaction_times: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of PreCompact timestamps
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ToolUsageModel(Base):
    """A completed (or orphaned post) tool invocation. Append-only."""
    __tablename__ = "tool_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), index=True)
    tool_name: Mapped[str] = mapped_column(String(100), index=True)
    tool_use_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    input_summary: Mapped[str] = mapped_column(String(200), default="")


class AgentSpawnModel(Base):
    """
    A subagent run, derived from SubagentStop.

    duration_ms and success are not derivable from the hook stream and stay
    NULL unless written by another producer.
    """
    __tablename__ = "agent_spawns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), index=True)
    agent_type: Mapped[str] = mapped_column(String(100), index=True)
    agent_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class ToolSequenceModel(Base):
    """A sliding three-tool window. Append-only."""
    __tablename__ = "tool_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), index=True)
    tools: Mapped[str] = mapped_column(Text)  # JSON list of three tool names
    content_hash: Mapped[str] = mapped_column(String(16), index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class SkillUsageModel(Base):
    """A skill invocation with its outcome when known."""
    __tablename__ = "skill_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), index=True)
    skill_name: Mapped[str] = mapped_column(String(100), index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)


# =============================================================================
# Derived Tables (written by pattern detection)
# =============================================================================

class PatternModel(Base):
    """A detected behavioural pattern. Upserted by pattern_id."""
    __tablename__ = "patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pattern_id: Mapped[str] = mapped_column(String(50), unique=True, index=True)  # "SEQ-001"
    pattern_type: Mapped[str] = mapped_column(String(20), index=True)  # success, failure, behavioral
    category: Mapped[str] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(String(255))

    trigger_conditions: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    observed_frequency: Mapped[int] = mapped_column(Integer, default=0)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0)
    applicable_to: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of tags
    success_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sample_size: Mapped[int] = mapped_column(Integer, default=0)
    recommendation: Mapped[str] = mapped_column(Text, default="")
    auto_apply: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# =============================================================================
# Collaborator Tables (written outside the ETL)
# =============================================================================

class JudgeVerdictModel(Base):
    """A pass/revise/reject verdict captured from a judge review."""
    __tablename__ = "judge_verdicts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    skill_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    verdict: Mapped[str] = mapped_column(String(20), index=True)  # pass, revise, reject
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    failure_modes: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of tags
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)


class MetricModel(Base):
    """A free-form numeric measurement."""
    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    metric_name: Mapped[str] = mapped_column(String(100), index=True)
    metric_value: Mapped[float] = mapped_column(Float)
    unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tags: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)


class UserFeedbackModel(Base):
    """A rating or comment left by the user about a session or pattern."""
    __tablename__ = "user_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    pattern_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 1-5
    sentiment: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # positive, neutral, negative
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)


# Table name -> model, in schema order. Used for row counts.
ALL_TABLES = {
    "sessions": SessionModel,
    "tool_usage": ToolUsageModel,
    "agent_spawns": AgentSpawnModel,
    "tool_sequences": ToolSequenceModel,
    "skill_usage": SkillUsageModel,
    "patterns": PatternModel,
    "judge_verdicts": JudgeVerdictModel,
    "metrics": MetricModel,
    "user_feedback": UserFeedbackModel,
}
