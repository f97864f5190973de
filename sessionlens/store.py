"""
Analytics Store
===============

Durable storage for reconstructed sessions, their detail rows, derived
patterns, and the verdict/metric/feedback tables written by external hooks.

The store is an explicit object: open it once and pass it to the ingestor
and the pattern detector. Every insert commits on its own; there are no
cross-table transactions. Ingestion and detection are the only writers and
should not run against the same database at the same time; read-only
consumers may run alongside either.

Usage:
    from sessionlens.store import AnalyticsStore

    async with await AnalyticsStore.open(db_path) as store:
        stats = await store.tool_error_rate("Bash", days=7)
        patterns = await store.get_auto_apply_patterns()
"""

import json
import logging
import math
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import select, func, case, cast, Float
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from sessionlens.db.connection import init_db
from sessionlens.db.models import (
    ALL_TABLES,
    SessionModel,
    ToolUsageModel,
    AgentSpawnModel,
    ToolSequenceModel,
    SkillUsageModel,
    PatternModel,
    JudgeVerdictModel,
    MetricModel,
    UserFeedbackModel,
)
from sessionlens.records import (
    SessionRecord,
    ToolUsageRecord,
    AgentSpawnRecord,
    ToolSequenceRecord,
    SkillUsageRecord,
    JudgeVerdictRecord,
    MetricRecord,
    UserFeedbackRecord,
    Pattern,
    PatternType,
    Verdict,
)
from sessionlens.scoring import (
    AUTO_APPLY_CONFIDENCE,
    confidence,
    may_auto_apply,
    running_success_rate,
)

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000


class SchemaInitError(RuntimeError):
    """The analytics database could not be opened or its schema created."""


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def _cutoff_ms(days: int) -> int:
    return now_ms() - days * MS_PER_DAY


# =============================================================================
# Aggregate Results
# =============================================================================

@dataclass
class ToolErrorStats:
    tool_name: str
    total: int = 0
    errors: int = 0

    @property
    def error_rate(self) -> float:
        return self.errors / self.total if self.total else 0.0


@dataclass
class SkillSuccessStats:
    skill_name: str
    total_known: int = 0  # rows with a non-null outcome
    successes: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.total_known if self.total_known else 0.0


@dataclass
class VerdictStats:
    total: int = 0
    passed: int = 0
    revised: int = 0
    rejected: int = 0

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total if self.total else 0.0


@dataclass
class SequenceStats:
    content_hash: str
    tools: list
    support: int
    known_outcomes: int = 0
    successes: int = 0

    @property
    def success_rate(self) -> Optional[float]:
        """None when no window in the group has a known outcome."""
        if not self.known_outcomes:
            return None
        return self.successes / self.known_outcomes


@dataclass
class AgentTypeStats:
    agent_type: str
    total: int
    successes: int = 0
    known_outcomes: int = 0
    avg_duration_ms: Optional[float] = None

    @property
    def success_rate(self) -> Optional[float]:
        if not self.known_outcomes:
            return None
        return self.successes / self.known_outcomes


@dataclass
class ProjectStats:
    project_name: str
    project_path: Optional[str]
    session_count: int
    tool_usage_count: int = 0
    avg_duration_ms: Optional[float] = None
    compaction_total: int = 0

    @property
    def compactions_per_session(self) -> float:
        return self.compaction_total / self.session_count if self.session_count else 0.0


@dataclass
class DurationStats:
    count: int = 0
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0
    stddev: float = 0.0


@dataclass
class MetricSummary:
    metric_name: str
    count: int = 0
    mean: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class FeedbackSummary:
    count: int = 0
    avg_rating: Optional[float] = None
    by_sentiment: dict = field(default_factory=dict)


# =============================================================================
# JSON Column Decoding
# =============================================================================

def _decode_json(raw: Optional[str], expected: type, column: str) -> Any:
    """Decode a JSON text column, treating anything unusable as empty."""
    if raw is None or raw == "":
        return expected()
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        logger.warning("Could not decode %s value %r: %s", column, raw[:80], e)
        return expected()
    if not isinstance(value, expected):
        logger.warning("Expected %s in %s, got %s", expected.__name__, column, type(value).__name__)
        return expected()
    return value


def _encode_json(value: Any) -> str:
    return json.dumps(value, default=str)


# =============================================================================
# Store
# =============================================================================

class AnalyticsStore:
    """
    Typed access to the analytics database.

    Construct with AnalyticsStore.open(); close with close() or by using
    the store as an async context manager.
    """

    def __init__(self, engine: AsyncEngine, session_maker: async_sessionmaker[AsyncSession], db_path: Path):
        self._engine = engine
        self._session_maker = session_maker
        self.db_path = Path(db_path)

    @classmethod
    async def open(cls, db_path: Path) -> "AnalyticsStore":
        """
        Open (and if needed create) the database at db_path.

        Raises:
            SchemaInitError: the database or its schema could not be created
        """
        try:
            engine, session_maker = await init_db(Path(db_path))
        except (SQLAlchemyError, OSError) as e:
            raise SchemaInitError(f"Failed to initialize analytics store at {db_path}: {e}") from e
        return cls(engine, session_maker, db_path)

    async def close(self) -> None:
        await self._engine.dispose()

    async def __aenter__(self) -> "AnalyticsStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _add(self, row) -> None:
        async with self._session_maker() as session:
            session.add(row)
            await session.commit()

    # =========================================================================
    # Sessions
    # =========================================================================

    async def upsert_session(self, record: SessionRecord) -> SessionRecord:
        """
        Insert a session, or merge it into the stored row for the same id.

        The merge widens the session's boundaries instead of replacing
        them, so a session whose events span several daily files keeps
        everything learned from earlier files. Re-upserting an identical
        record leaves the row unchanged.

        Returns:
            The session as stored
        """
        async with self._session_maker() as session:
            result = await session.execute(
                select(SessionModel).where(SessionModel.session_id == record.session_id)
            )
            row = result.scalar_one_or_none()

            if row is None:
                merged = record
                row = SessionModel(session_id=record.session_id)
                session.add(row)
            else:
                merged = self._session_from_row(row).merged_with(record)

            row.start_time = merged.start_time
            row.end_time = merged.end_time
            row.duration_ms = merged.duration_ms
            row.project_path = merged.project_path
            row.project_name = merged.project_name
            row.success = merged.success
            row.completion_quality = merged.completion_quality
            row.compaction_count = merged.compaction_count
            row.compaction_times = _encode_json(merged.compaction_times)

            await session.commit()
            return merged

    async def record_session_outcome(
        self,
        session_id: str,
        success: Optional[bool],
        completion_quality: Optional[float] = None,
    ) -> bool:
        """
        Set a session's outcome (written by the verdict hook).

        Returns:
            True if the session exists
        """
        async with self._session_maker() as session:
            result = await session.execute(
                select(SessionModel).where(SessionModel.session_id == session_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            row.success = success
            row.completion_quality = completion_quality
            await session.commit()
            return True

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(SessionModel).where(SessionModel.session_id == session_id)
            )
            row = result.scalar_one_or_none()
            return self._session_from_row(row) if row else None

    @staticmethod
    def _session_from_row(row: SessionModel) -> SessionRecord:
        return SessionRecord(
            session_id=row.session_id,
            start_time=row.start_time,
            end_time=row.end_time,
            project_path=row.project_path,
            project_name=row.project_name,
            success=row.success,
            completion_quality=row.completion_quality,
            compaction_count=row.compaction_count or 0,
            compaction_times=_decode_json(row.compaction_times, list, "sessions.compaction_times"),
        )

    # =========================================================================
    # Detail Rows (append-only)
    # =========================================================================

    async def insert_tool_usage(self, record: ToolUsageRecord) -> None:
        await self._add(ToolUsageModel(
            session_id=record.session_id,
            tool_name=record.tool_name,
            tool_use_id=record.tool_use_id,
            timestamp=record.timestamp,
            duration_ms=record.duration_ms,
            success=record.success,
            error_message=record.error_message,
            input_summary=record.input_summary[:200],
        ))

    async def insert_agent_spawn(self, record: AgentSpawnRecord) -> None:
        await self._add(AgentSpawnModel(
            session_id=record.session_id,
            agent_type=record.agent_type,
            agent_id=record.agent_id,
            timestamp=record.timestamp,
            duration_ms=record.duration_ms,
            success=record.success,
        ))

    async def insert_tool_sequence(self, record: ToolSequenceRecord) -> None:
        await self._add(ToolSequenceModel(
            session_id=record.session_id,
            tools=_encode_json(record.tools),
            content_hash=record.content_hash,
            timestamp=record.timestamp,
            success=record.success,
        ))

    async def insert_skill_usage(self, record: SkillUsageRecord) -> None:
        await self._add(SkillUsageModel(
            session_id=record.session_id,
            skill_name=record.skill_name,
            timestamp=record.timestamp,
            success=record.success,
            duration_ms=record.duration_ms,
        ))

    async def get_tool_usages(self, session_id: str) -> list[ToolUsageRecord]:
        """Tool usages for a session in timestamp order."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(ToolUsageModel)
                .where(ToolUsageModel.session_id == session_id)
                .order_by(ToolUsageModel.timestamp, ToolUsageModel.id)
            )
            return [
                ToolUsageRecord(
                    session_id=row.session_id,
                    tool_name=row.tool_name,
                    timestamp=row.timestamp,
                    tool_use_id=row.tool_use_id,
                    duration_ms=row.duration_ms,
                    success=row.success,
                    error_message=row.error_message,
                    input_summary=row.input_summary or "",
                )
                for row in result.scalars().all()
            ]

    # =========================================================================
    # Collaborator Tables
    # =========================================================================

    async def insert_judge_verdict(self, record: JudgeVerdictRecord) -> None:
        verdict = record.verdict.value if isinstance(record.verdict, Verdict) else str(record.verdict)
        await self._add(JudgeVerdictModel(
            session_id=record.session_id,
            skill_name=record.skill_name,
            verdict=verdict,
            score=record.score,
            failure_modes=_encode_json(list(record.failure_modes)),
            feedback=record.feedback,
            timestamp=record.timestamp,
        ))

    async def insert_metric(self, record: MetricRecord) -> None:
        await self._add(MetricModel(
            session_id=record.session_id,
            metric_name=record.metric_name,
            metric_value=record.metric_value,
            unit=record.unit,
            tags=_encode_json(record.tags),
            timestamp=record.timestamp,
        ))

    async def insert_user_feedback(self, record: UserFeedbackRecord) -> None:
        await self._add(UserFeedbackModel(
            session_id=record.session_id,
            pattern_id=record.pattern_id,
            rating=record.rating,
            sentiment=record.sentiment,
            comment=record.comment,
            timestamp=record.timestamp,
        ))

    # =========================================================================
    # Aggregate Queries
    # =========================================================================

    async def tool_error_rate(self, tool_name: str, days: int = 7) -> ToolErrorStats:
        """Error rate for one tool over the trailing window."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(
                    func.count(ToolUsageModel.id),
                    func.sum(case((ToolUsageModel.success.is_(False), 1), else_=0)),
                ).where(
                    ToolUsageModel.tool_name == tool_name,
                    ToolUsageModel.timestamp >= _cutoff_ms(days),
                )
            )
            total, errors = result.one()
            return ToolErrorStats(tool_name=tool_name, total=total or 0, errors=errors or 0)

    async def tool_error_stats(self, days: Optional[int] = None) -> list[ToolErrorStats]:
        """Per-tool totals and errors, busiest first. days=None covers all rows."""
        stmt = select(
            ToolUsageModel.tool_name,
            func.count(ToolUsageModel.id).label("total"),
            func.sum(case((ToolUsageModel.success.is_(False), 1), else_=0)),
        ).group_by(ToolUsageModel.tool_name).order_by(func.count(ToolUsageModel.id).desc(), ToolUsageModel.tool_name)
        if days is not None:
            stmt = stmt.where(ToolUsageModel.timestamp >= _cutoff_ms(days))

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [
                ToolErrorStats(tool_name=name, total=total or 0, errors=errors or 0)
                for name, total, errors in result.all()
            ]

    async def skill_success_rate(self, skill_name: str, days: int = 30) -> SkillSuccessStats:
        """Success rate for one skill, counting only rows with a known outcome."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(
                    func.count(SkillUsageModel.success),
                    func.sum(case((SkillUsageModel.success.is_(True), 1), else_=0)),
                ).where(
                    SkillUsageModel.skill_name == skill_name,
                    SkillUsageModel.success.is_not(None),
                    SkillUsageModel.timestamp >= _cutoff_ms(days),
                )
            )
            known, successes = result.one()
            return SkillSuccessStats(skill_name=skill_name, total_known=known or 0, successes=successes or 0)

    async def verdict_stats(self, days: int = 30, skill_name: Optional[str] = None) -> VerdictStats:
        """Pass/revise/reject counts over the trailing window."""
        stmt = (
            select(JudgeVerdictModel.verdict, func.count(JudgeVerdictModel.id))
            .where(JudgeVerdictModel.timestamp >= _cutoff_ms(days))
            .group_by(JudgeVerdictModel.verdict)
        )
        if skill_name is not None:
            stmt = stmt.where(JudgeVerdictModel.skill_name == skill_name)

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            counts = dict(result.all())

        passed = counts.get(Verdict.PASS.value, 0)
        revised = counts.get(Verdict.REVISE.value, 0)
        rejected = counts.get(Verdict.REJECT.value, 0)
        return VerdictStats(
            total=sum(counts.values()),
            passed=passed,
            revised=revised,
            rejected=rejected,
        )

    async def failure_mode_frequency(self, days: int = 30, skill_name: Optional[str] = None) -> dict[str, int]:
        """
        How often each failure-mode tag appears on verdicts, most common first.

        Rows whose tag list cannot be decoded are skipped.
        """
        stmt = select(JudgeVerdictModel.failure_modes).where(JudgeVerdictModel.timestamp >= _cutoff_ms(days))
        if skill_name is not None:
            stmt = stmt.where(JudgeVerdictModel.skill_name == skill_name)

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        tally = Counter()
        for raw in rows:
            for mode in _decode_json(raw, list, "judge_verdicts.failure_modes"):
                tally[str(mode)] += 1
        return dict(tally.most_common())

    async def common_sequences(self, min_support: int = 5, limit: int = 50) -> list[SequenceStats]:
        """Tool windows grouped by content hash, most frequent first."""
        support = func.count(ToolSequenceModel.id)
        stmt = (
            select(
                ToolSequenceModel.content_hash,
                func.min(ToolSequenceModel.tools),
                support,
                func.count(ToolSequenceModel.success),
                func.sum(case((ToolSequenceModel.success.is_(True), 1), else_=0)),
            )
            .group_by(ToolSequenceModel.content_hash)
            .having(support >= min_support)
            .order_by(support.desc(), ToolSequenceModel.content_hash)
            .limit(limit)
        )

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [
                SequenceStats(
                    content_hash=content_hash,
                    tools=_decode_json(tools, list, "tool_sequences.tools"),
                    support=count,
                    known_outcomes=known or 0,
                    successes=successes or 0,
                )
                for content_hash, tools, count, known, successes in result.all()
            ]

    async def agent_type_stats(self) -> list[AgentTypeStats]:
        """Per-agent-type spawn totals, successes and mean duration."""
        total = func.count(AgentSpawnModel.id)
        stmt = (
            select(
                AgentSpawnModel.agent_type,
                total,
                func.sum(case((AgentSpawnModel.success.is_(True), 1), else_=0)),
                func.count(AgentSpawnModel.success),
                func.avg(AgentSpawnModel.duration_ms),
            )
            .group_by(AgentSpawnModel.agent_type)
            .order_by(total.desc(), AgentSpawnModel.agent_type)
        )

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [
                AgentTypeStats(
                    agent_type=agent_type,
                    total=count,
                    successes=successes or 0,
                    known_outcomes=known or 0,
                    avg_duration_ms=avg_duration,
                )
                for agent_type, count, successes, known, avg_duration in result.all()
            ]

    async def project_stats(self) -> list[ProjectStats]:
        """Per-project session count, linked tool usage, mean duration, compactions."""
        usage_counts = (
            select(
                ToolUsageModel.session_id.label("session_id"),
                func.count(ToolUsageModel.id).label("n"),
            )
            .group_by(ToolUsageModel.session_id)
            .subquery()
        )
        session_count = func.count(SessionModel.session_id.distinct())
        stmt = (
            select(
                SessionModel.project_name,
                func.max(SessionModel.project_path),
                session_count,
                func.coalesce(func.sum(usage_counts.c.n), 0),
                func.avg(SessionModel.duration_ms),
                func.coalesce(func.sum(SessionModel.compaction_count), 0),
            )
            .outerjoin(usage_counts, usage_counts.c.session_id == SessionModel.session_id)
            .where(SessionModel.project_name.is_not(None))
            .group_by(SessionModel.project_name)
            .order_by(session_count.desc(), SessionModel.project_name)
        )

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [
                ProjectStats(
                    project_name=name,
                    project_path=path,
                    session_count=sessions,
                    tool_usage_count=int(usages or 0),
                    avg_duration_ms=avg_duration,
                    compaction_total=int(compactions or 0),
                )
                for name, path, sessions, usages, avg_duration, compactions in result.all()
            ]

    async def session_duration_stats(self) -> DurationStats:
        """
        Count, mean, min, max and population standard deviation of session
        durations, over sessions with a known duration.

        stddev = sqrt(E[x^2] - E[x]^2)
        """
        duration = cast(SessionModel.duration_ms, Float)
        async with self._session_maker() as session:
            result = await session.execute(
                select(
                    func.count(SessionModel.duration_ms),
                    func.avg(duration),
                    func.min(SessionModel.duration_ms),
                    func.max(SessionModel.duration_ms),
                    func.avg(duration * duration),
                ).where(SessionModel.duration_ms.is_not(None))
            )
            count, mean, low, high, mean_sq = result.one()

        if not count:
            return DurationStats()

        variance = max(0.0, mean_sq - mean * mean)
        return DurationStats(
            count=count,
            mean=mean,
            min=float(low),
            max=float(high),
            stddev=math.sqrt(variance),
        )

    async def metric_summary(self, metric_name: str, days: int = 30) -> MetricSummary:
        async with self._session_maker() as session:
            result = await session.execute(
                select(
                    func.count(MetricModel.id),
                    func.avg(MetricModel.metric_value),
                    func.min(MetricModel.metric_value),
                    func.max(MetricModel.metric_value),
                ).where(
                    MetricModel.metric_name == metric_name,
                    MetricModel.timestamp >= _cutoff_ms(days),
                )
            )
            count, mean, low, high = result.one()
            return MetricSummary(metric_name=metric_name, count=count or 0, mean=mean, min=low, max=high)

    async def feedback_summary(self, days: int = 30) -> FeedbackSummary:
        cutoff = _cutoff_ms(days)
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count(UserFeedbackModel.id), func.avg(UserFeedbackModel.rating))
                .where(UserFeedbackModel.timestamp >= cutoff)
            )
            count, avg_rating = result.one()

            result = await session.execute(
                select(UserFeedbackModel.sentiment, func.count(UserFeedbackModel.id))
                .where(UserFeedbackModel.timestamp >= cutoff, UserFeedbackModel.sentiment.is_not(None))
                .group_by(UserFeedbackModel.sentiment)
            )
            by_sentiment = dict(result.all())

        return FeedbackSummary(count=count or 0, avg_rating=avg_rating, by_sentiment=by_sentiment)

    async def table_counts(self) -> dict[str, int]:
        """Row count for every table."""
        counts = {}
        async with self._session_maker() as session:
            for table_name, model in ALL_TABLES.items():
                result = await session.execute(select(func.count()).select_from(model))
                counts[table_name] = result.scalar_one()
        return counts

    # =========================================================================
    # Patterns
    # =========================================================================

    async def upsert_pattern(self, pattern: Pattern) -> None:
        """Insert a pattern, or overwrite the stored pattern with the same id."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(PatternModel).where(PatternModel.pattern_id == pattern.pattern_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = PatternModel(pattern_id=pattern.pattern_id)
                session.add(row)

            row.pattern_type = pattern.pattern_type.value
            row.category = pattern.category
            row.name = pattern.name
            row.trigger_conditions = _encode_json(pattern.trigger_conditions)
            row.observed_frequency = pattern.observed_frequency
            row.confidence_score = pattern.confidence_score
            row.applicable_to = _encode_json(list(pattern.applicable_to))
            row.success_rate = pattern.success_rate
            row.sample_size = pattern.sample_size
            row.recommendation = pattern.recommendation
            row.auto_apply = pattern.auto_apply

            await session.commit()

    async def record_pattern_outcome(self, pattern_id: str, observed: bool) -> Optional[Pattern]:
        """
        Fold one new outcome into a stored pattern's running statistics.

        Sample size grows by one, the success rate is re-averaged, and
        confidence and auto-apply are recomputed with the same rules used
        during detection, including the per-category auto-apply policy.

        Returns:
            The updated pattern, or None if it does not exist
        """
        async with self._session_maker() as session:
            result = await session.execute(
                select(PatternModel).where(PatternModel.pattern_id == pattern_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            old_n = row.sample_size or 0
            new_n = old_n + 1
            row.success_rate = running_success_rate(row.success_rate, old_n, observed)
            row.sample_size = new_n
            row.confidence_score = confidence(new_n)
            row.auto_apply = may_auto_apply(
                row.category, PatternType(row.pattern_type), row.confidence_score, new_n
            )

            await session.commit()
            return self._pattern_from_row(row)

    async def get_pattern(self, pattern_id: str) -> Optional[Pattern]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(PatternModel).where(PatternModel.pattern_id == pattern_id)
            )
            row = result.scalar_one_or_none()
            return self._pattern_from_row(row) if row else None

    async def list_patterns(
        self,
        pattern_type: Optional[PatternType] = None,
        limit: Optional[int] = None,
    ) -> list[Pattern]:
        """Patterns ordered by confidence, highest first."""
        stmt = select(PatternModel).order_by(PatternModel.confidence_score.desc(), PatternModel.pattern_id)
        if pattern_type is not None:
            stmt = stmt.where(PatternModel.pattern_type == pattern_type.value)
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._select_patterns(stmt)

    async def get_patterns_by_type(self, pattern_type: PatternType) -> list[Pattern]:
        return await self.list_patterns(pattern_type=pattern_type)

    async def get_auto_apply_patterns(self) -> list[Pattern]:
        """Patterns flagged for auto-apply whose confidence still clears the gate."""
        stmt = (
            select(PatternModel)
            .where(
                PatternModel.auto_apply.is_(True),
                PatternModel.confidence_score >= AUTO_APPLY_CONFIDENCE,
            )
            .order_by(PatternModel.confidence_score.desc(), PatternModel.pattern_id)
        )
        return await self._select_patterns(stmt)

    async def get_patterns_by_tag(self, tag: str) -> list[Pattern]:
        """Patterns whose applicable_to list contains the exact tag."""
        needle = _encode_json(tag)  # quoted, so "project:a" does not match "project:ab"
        stmt = (
            select(PatternModel)
            .where(PatternModel.applicable_to.contains(needle))
            .order_by(PatternModel.confidence_score.desc(), PatternModel.pattern_id)
        )
        patterns = await self._select_patterns(stmt)
        return [p for p in patterns if tag in p.applicable_to]

    async def get_patterns_for_project(self, project_name: str) -> list[Pattern]:
        return await self.get_patterns_by_tag(f"project:{project_name}")

    async def get_patterns_for_skill(self, skill_name: str) -> list[Pattern]:
        return await self.get_patterns_by_tag(f"skill:{skill_name}")

    async def _select_patterns(self, stmt) -> list[Pattern]:
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [self._pattern_from_row(row) for row in result.scalars().all()]

    @staticmethod
    def _pattern_from_row(row: PatternModel) -> Pattern:
        return Pattern(
            pattern_id=row.pattern_id,
            pattern_type=PatternType(row.pattern_type),
            category=row.category,
            name=row.name,
            trigger_conditions=_decode_json(row.trigger_conditions, dict, "patterns.trigger_conditions"),
            observed_frequency=row.observed_frequency or 0,
            confidence_score=row.confidence_score or 0.0,
            applicable_to=_decode_json(row.applicable_to, list, "patterns.applicable_to"),
            success_rate=row.success_rate,
            sample_size=row.sample_size or 0,
            recommendation=row.recommendation or "",
            auto_apply=bool(row.auto_apply),
        )
