"""
Pattern Detection
=================

Batch detection of behavioural patterns from the analytics store.

Five independent detectors run every cycle and their results are
concatenated in a fixed order:

1. tool sequences     (SEQ)  recurring three-tool windows and their outcomes
2. tool errors        (ERR)  tools that fail often enough to warrant care
3. agent performance  (AGT)  how well each subagent type does
4. project context    (PRJ)  per-project baselines, flagging complex projects
5. session duration   (DUR)  a single global duration baseline

Each pattern carries a confidence derived from its sample size and an
auto-apply flag. Error, project and duration patterns are never
auto-applied; they are surfaced for review only.

Pattern ids are assigned in emission order per category (SEQ-001, SEQ-002,
...), so the same id can point at a different pattern after a re-run that
changes the ranking. Pass stable_ids=True to derive ids from each
pattern's defining attributes instead.

Usage:
    from sessionlens.patterns import PatternDetector, get_priming_patterns

    detector = PatternDetector(store, export_dir=patterns_dir)
    patterns = await detector.run()

    primer = await get_priming_patterns(store, project_path="/work/my-app")
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Optional

from sessionlens.records import Pattern, PatternType
from sessionlens.reconstruction import project_name_from_path
from sessionlens.scoring import (
    AGENT_PERFORMANCE,
    PROJECT_CONTEXT,
    SESSION_DURATION,
    TOOL_ERROR,
    TOOL_SEQUENCE,
    confidence,
    may_auto_apply,
)
from sessionlens.store import AnalyticsStore

logger = logging.getLogger(__name__)

# Id prefix per category
CATEGORY_PREFIXES = {
    TOOL_SEQUENCE: "SEQ",
    TOOL_ERROR: "ERR",
    AGENT_PERFORMANCE: "AGT",
    PROJECT_CONTEXT: "PRJ",
    SESSION_DURATION: "DUR",
}

# Detector thresholds
MIN_SEQUENCE_SUPPORT = 5
MAX_SEQUENCES = 50
SEQUENCE_SUCCESS_RATE = 0.7
SEQUENCE_FAILURE_RATE = 0.3

MIN_TOOL_USES = 5
MIN_TOOL_ERROR_RATE = 0.05

MIN_AGENT_SPAWNS = 5
AGENT_SUCCESS_RATE = 0.8
AGENT_FAILURE_RATE = 0.3

MIN_PROJECT_SESSIONS = 5
COMPLEX_COMPACTIONS_PER_SESSION = 0.5

MIN_DURATION_SAMPLES = 5

UNKNOWN_AGENT = "unknown"


def _classify(rate: Optional[float], success_at: float, failure_at: float) -> PatternType:
    if rate is None:
        return PatternType.BEHAVIORAL
    if rate >= success_at:
        return PatternType.SUCCESS
    if rate <= failure_at:
        return PatternType.FAILURE
    return PatternType.BEHAVIORAL


def _minutes(ms: Optional[float]) -> float:
    return (ms or 0.0) / 60_000


class PatternDetector:
    """Runs the detectors against a store and persists what they find."""

    def __init__(
        self,
        store: AnalyticsStore,
        *,
        export_dir: Optional[Path] = None,
        stable_ids: bool = False,
    ):
        self.store = store
        self.export_dir = Path(export_dir) if export_dir else None
        self.stable_ids = stable_ids

    # =========================================================================
    # Entry Points
    # =========================================================================

    async def detect(self) -> list[Pattern]:
        """Run every detector. Nothing is written."""
        patterns: list[Pattern] = []
        patterns.extend(await self.detect_tool_sequences())
        patterns.extend(await self.detect_tool_errors())
        patterns.extend(await self.detect_agent_performance())
        patterns.extend(await self.detect_project_context())
        patterns.extend(await self.detect_session_duration())
        return patterns

    async def run(self) -> list[Pattern]:
        """
        Detect, upsert each pattern by id, and export pattern documents
        when an export directory is configured.
        """
        patterns = await self.detect()
        for pattern in patterns:
            await self.store.upsert_pattern(pattern)

        if self.export_dir is not None:
            self.export_documents(patterns)

        auto = sum(1 for p in patterns if p.auto_apply)
        logger.info("Detected %d pattern(s), %d auto-apply", len(patterns), auto)
        return patterns

    def export_documents(self, patterns: list[Pattern]) -> list[Path]:
        """
        Write one JSON document per pattern, named by pattern id.

        Documents left by an earlier export that this one does not rewrite
        are removed, so the directory always mirrors the latest detection.
        Files without a pattern id prefix are left alone.
        """
        if self.export_dir is None:
            raise ValueError("No export directory configured")

        self.export_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for pattern in patterns:
            path = self.export_dir / f"{pattern.pattern_id}.json"
            path.write_text(json.dumps(pattern.to_dict(), indent=2), encoding="utf-8")
            written.append(path)

        current = set(written)
        for prefix in CATEGORY_PREFIXES.values():
            for stale in self.export_dir.glob(f"{prefix}-*.json"):
                if stale not in current:
                    stale.unlink()
                    logger.info("Removed stale pattern document %s", stale.name)
        return written

    def pattern_id(self, category: str, index: int, trigger_key: str) -> str:
        """
        Id for the index-th pattern (1-based) emitted by a category.

        With stable ids the index is ignored and the id depends only on
        the category and the trigger key.
        """
        prefix = CATEGORY_PREFIXES[category]
        if self.stable_ids:
            digest = hashlib.sha256(f"{category}|{trigger_key}".encode()).hexdigest()[:10]
            return f"{prefix}-{digest}"
        return f"{prefix}-{index:03d}"

    # =========================================================================
    # Detectors
    # =========================================================================

    async def detect_tool_sequences(self) -> list[Pattern]:
        """Recurring three-tool windows, most frequent first."""
        patterns = []
        groups = await self.store.common_sequences(min_support=MIN_SEQUENCE_SUPPORT, limit=MAX_SEQUENCES)

        for index, group in enumerate(groups, start=1):
            rate = group.success_rate
            pattern_type = _classify(rate, SEQUENCE_SUCCESS_RATE, SEQUENCE_FAILURE_RATE)
            chain = " -> ".join(group.tools)
            score = confidence(group.support)

            if pattern_type is PatternType.SUCCESS:
                recommendation = f"Use {chain}: it succeeds {rate:.0%} of the time."
            elif pattern_type is PatternType.FAILURE:
                recommendation = f"Avoid {chain}: it succeeds only {rate:.0%} of the time."
            else:
                recommendation = f"{chain} is a common workflow with no clear effect on outcomes."

            patterns.append(Pattern(
                pattern_id=self.pattern_id(TOOL_SEQUENCE, index, group.content_hash),
                pattern_type=pattern_type,
                category=TOOL_SEQUENCE,
                name=f"Tool sequence: {chain}",
                trigger_conditions={"tools": group.tools, "content_hash": group.content_hash},
                observed_frequency=group.support,
                confidence_score=score,
                applicable_to=[f"tool:{tool}" for tool in dict.fromkeys(group.tools)],
                success_rate=rate,
                sample_size=group.support,
                recommendation=recommendation,
                auto_apply=may_auto_apply(TOOL_SEQUENCE, pattern_type, score, group.support),
            ))

        return patterns

    async def detect_tool_errors(self) -> list[Pattern]:
        """Tools whose error rate is high enough to call out. Never auto-applied."""
        patterns = []
        index = 0

        for stats in await self.store.tool_error_stats():
            if stats.total < MIN_TOOL_USES or stats.errors == 0:
                continue
            if stats.error_rate < MIN_TOOL_ERROR_RATE:
                continue

            index += 1
            patterns.append(Pattern(
                pattern_id=self.pattern_id(TOOL_ERROR, index, stats.tool_name),
                pattern_type=PatternType.FAILURE,
                category=TOOL_ERROR,
                name=f"{stats.tool_name} errors",
                trigger_conditions={"tool_name": stats.tool_name, "error_rate": stats.error_rate},
                observed_frequency=stats.errors,
                confidence_score=confidence(stats.total),
                applicable_to=[f"tool:{stats.tool_name}"],
                success_rate=1.0 - stats.error_rate,
                sample_size=stats.total,
                recommendation=(
                    f"{stats.tool_name} fails {stats.error_rate:.0%} of the time "
                    f"({stats.errors}/{stats.total}). Verify its inputs before calling it."
                ),
                auto_apply=False,
            ))

        return patterns

    async def detect_agent_performance(self) -> list[Pattern]:
        """Per-agent-type outcomes. Only successful agent types may auto-apply."""
        patterns = []
        index = 0

        for stats in await self.store.agent_type_stats():
            if stats.agent_type == UNKNOWN_AGENT or stats.total < MIN_AGENT_SPAWNS:
                continue

            index += 1
            rate = stats.success_rate
            pattern_type = _classify(rate, AGENT_SUCCESS_RATE, AGENT_FAILURE_RATE)
            score = confidence(stats.total)

            if pattern_type is PatternType.SUCCESS:
                recommendation = f"Delegate to {stats.agent_type}: it succeeds {rate:.0%} of the time."
            elif pattern_type is PatternType.FAILURE:
                recommendation = f"Avoid delegating to {stats.agent_type}: it succeeds only {rate:.0%} of the time."
            else:
                recommendation = f"{stats.agent_type} is spawned often ({stats.total} times)."
            if stats.avg_duration_ms is not None:
                recommendation += f" Typical run: {_minutes(stats.avg_duration_ms):.1f} min."

            patterns.append(Pattern(
                pattern_id=self.pattern_id(AGENT_PERFORMANCE, index, stats.agent_type),
                pattern_type=pattern_type,
                category=AGENT_PERFORMANCE,
                name=f"Agent performance: {stats.agent_type}",
                trigger_conditions={
                    "agent_type": stats.agent_type,
                    "avg_duration_ms": stats.avg_duration_ms,
                },
                observed_frequency=stats.total,
                confidence_score=score,
                applicable_to=[f"agent:{stats.agent_type}"],
                success_rate=rate,
                sample_size=stats.total,
                recommendation=recommendation,
                auto_apply=may_auto_apply(AGENT_PERFORMANCE, pattern_type, score, stats.total),
            ))

        return patterns

    async def detect_project_context(self) -> list[Pattern]:
        """Per-project baselines. Never auto-applied."""
        patterns = []
        index = 0

        for stats in await self.store.project_stats():
            if stats.session_count < MIN_PROJECT_SESSIONS:
                continue

            index += 1
            ratio = stats.compactions_per_session
            complex_project = ratio > COMPLEX_COMPACTIONS_PER_SESSION

            if complex_project:
                recommendation = (
                    f"{stats.project_name} is complex: {ratio:.1f} compactions per session. "
                    f"Break work into smaller tasks and save progress often."
                )
            else:
                recommendation = (
                    f"{stats.project_name} sessions average "
                    f"{_minutes(stats.avg_duration_ms):.1f} min with {stats.tool_usage_count} tool calls in total."
                )

            patterns.append(Pattern(
                pattern_id=self.pattern_id(PROJECT_CONTEXT, index, stats.project_name),
                pattern_type=PatternType.BEHAVIORAL,
                category=PROJECT_CONTEXT,
                name=f"Project context: {stats.project_name}",
                trigger_conditions={
                    "project_name": stats.project_name,
                    "project_path": stats.project_path,
                    "complex": complex_project,
                    "compactions_per_session": ratio,
                    "avg_duration_ms": stats.avg_duration_ms,
                    "tool_usage_count": stats.tool_usage_count,
                },
                observed_frequency=stats.session_count,
                confidence_score=confidence(stats.session_count),
                applicable_to=[f"project:{stats.project_name}"],
                success_rate=None,
                sample_size=stats.session_count,
                recommendation=recommendation,
                auto_apply=False,
            ))

        return patterns

    async def detect_session_duration(self) -> list[Pattern]:
        """One global duration baseline. Never auto-applied."""
        stats = await self.store.session_duration_stats()
        if stats.count < MIN_DURATION_SAMPLES:
            return []

        mean_minutes = _minutes(stats.mean)
        return [Pattern(
            pattern_id=self.pattern_id(SESSION_DURATION, 1, "global"),
            pattern_type=PatternType.BEHAVIORAL,
            category=SESSION_DURATION,
            name="Session duration baseline",
            trigger_conditions={
                "mean_ms": stats.mean,
                "stddev_ms": stats.stddev,
                "min_ms": stats.min,
                "max_ms": stats.max,
            },
            observed_frequency=stats.count,
            confidence_score=confidence(stats.count),
            applicable_to=[],
            success_rate=None,
            sample_size=stats.count,
            recommendation=f"Sessions last {mean_minutes:.1f} min on average.",
            auto_apply=False,
        )]


# =============================================================================
# Priming
# =============================================================================

async def get_priming_patterns(
    store: AnalyticsStore,
    project_path: Optional[str] = None,
) -> list[Pattern]:
    """
    Patterns to hand a new session as guidance.

    Auto-apply-eligible patterns come first, followed by patterns tagged
    for the session's project. Each pattern appears once.
    """
    selected: dict[str, Pattern] = {}
    for pattern in await store.get_auto_apply_patterns():
        selected.setdefault(pattern.pattern_id, pattern)

    project_name = project_name_from_path(project_path)
    if project_name:
        for pattern in await store.get_patterns_for_project(project_name):
            selected.setdefault(pattern.pattern_id, pattern)

    return list(selected.values())
