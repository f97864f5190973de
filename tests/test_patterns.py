"""
Tests for Pattern Detection
===========================

Tests for the five detectors, id assignment, persistence, document export
and priming retrieval.
"""

import json
import re
import tempfile
from pathlib import Path

import pytest

from sessionlens.patterns import (
    PatternDetector,
    get_priming_patterns,
    TOOL_SEQUENCE,
    TOOL_ERROR,
    AGENT_PERFORMANCE,
    PROJECT_CONTEXT,
    SESSION_DURATION,
)
from sessionlens.reconstruction import sequence_hash
from sessionlens.records import (
    AgentSpawnRecord,
    Pattern,
    PatternType,
    SessionRecord,
    ToolSequenceRecord,
    ToolUsageRecord,
)
from sessionlens.store import AnalyticsStore


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
async def store(temp_dir):
    """Open a store on a fresh database."""
    store = await AnalyticsStore.open(temp_dir / "analytics.db")
    yield store
    await store.close()


@pytest.fixture
def detector(store):
    return PatternDetector(store)


async def add_sequences(store, tools, outcomes):
    for i, success in enumerate(outcomes):
        await store.insert_tool_sequence(ToolSequenceRecord(
            session_id=f"s{i}", tools=tools, content_hash=sequence_hash(tools), timestamp=i, success=success,
        ))


async def add_tool_usages(store, tool_name, total, errors):
    for i in range(total):
        await store.insert_tool_usage(ToolUsageRecord(
            session_id="s1", tool_name=tool_name, timestamp=i, success=i >= errors,
        ))


async def add_spawns(store, agent_type, outcomes):
    for i, success in enumerate(outcomes):
        await store.insert_agent_spawn(AgentSpawnRecord(
            session_id=f"s{i}", agent_type=agent_type, timestamp=i, duration_ms=60_000, success=success,
        ))


async def add_project_sessions(store, project, count, compacted=0):
    for i in range(count):
        await store.upsert_session(SessionRecord(
            session_id=f"{project}-{i}", start_time=0, end_time=120_000,
            project_path=f"/work/{project}", project_name=project,
            compaction_count=1 if i < compacted else 0,
        ))


# =============================================================================
# Tool Sequence Detector Tests
# =============================================================================

class TestToolSequenceDetector:
    """Tests for the tool-sequence detector."""

    @pytest.mark.asyncio
    async def test_six_session_example(self, store, detector):
        await add_sequences(store, ["Read", "Edit", "Bash"], [True, True, True, True, False, True])

        patterns = await detector.detect_tool_sequences()
        assert len(patterns) == 1
        pattern = patterns[0]

        assert pattern.pattern_id == "SEQ-001"
        assert pattern.category == TOOL_SEQUENCE
        assert pattern.sample_size == 6
        assert pattern.success_rate == pytest.approx(0.833, abs=1e-3)
        assert pattern.pattern_type is PatternType.SUCCESS
        assert pattern.confidence_score == pytest.approx(0.375)
        assert pattern.auto_apply is False
        assert pattern.trigger_conditions["tools"] == ["Read", "Edit", "Bash"]
        assert pattern.recommendation.startswith("Use")

    @pytest.mark.asyncio
    async def test_below_support_ignored(self, store, detector):
        await add_sequences(store, ["Read", "Edit", "Bash"], [True] * 4)
        assert await detector.detect_tool_sequences() == []

    @pytest.mark.asyncio
    async def test_failure_classification(self, store, detector):
        await add_sequences(store, ["Bash", "Bash", "Bash"], [False] * 5 + [True])
        pattern = (await detector.detect_tool_sequences())[0]
        assert pattern.pattern_type is PatternType.FAILURE
        assert pattern.recommendation.startswith("Avoid")

    @pytest.mark.asyncio
    async def test_middling_and_unknown_rates_are_behavioral(self, store, detector):
        await add_sequences(store, ["Read", "Read", "Read"], [True, False] * 3)
        await add_sequences(store, ["Grep", "Read", "Edit"], [None] * 5)

        patterns = {tuple(p.trigger_conditions["tools"]): p for p in await detector.detect_tool_sequences()}
        assert patterns[("Read", "Read", "Read")].pattern_type is PatternType.BEHAVIORAL
        unknown = patterns[("Grep", "Read", "Edit")]
        assert unknown.pattern_type is PatternType.BEHAVIORAL
        assert unknown.success_rate is None

    @pytest.mark.asyncio
    async def test_gate_applies_regardless_of_type(self, store, detector):
        await add_sequences(store, ["Bash", "Bash", "Bash"], [False] * 40)
        pattern = (await detector.detect_tool_sequences())[0]
        assert pattern.pattern_type is PatternType.FAILURE
        assert pattern.sample_size == 40
        assert pattern.auto_apply is True

    @pytest.mark.asyncio
    async def test_ids_follow_support_order(self, store, detector):
        await add_sequences(store, ["A", "B", "C"], [True] * 5)
        await add_sequences(store, ["X", "Y", "Z"], [True] * 7)

        patterns = await detector.detect_tool_sequences()
        assert [p.pattern_id for p in patterns] == ["SEQ-001", "SEQ-002"]
        assert patterns[0].trigger_conditions["tools"] == ["X", "Y", "Z"]


# =============================================================================
# Tool Error Detector Tests
# =============================================================================

class TestToolErrorDetector:
    """Tests for the tool-error detector."""

    @pytest.mark.asyncio
    async def test_error_prone_tool(self, store, detector):
        await add_tool_usages(store, "Bash", total=20, errors=4)

        patterns = await detector.detect_tool_errors()
        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.pattern_id == "ERR-001"
        assert pattern.category == TOOL_ERROR
        assert pattern.pattern_type is PatternType.FAILURE
        assert pattern.sample_size == 20
        assert pattern.observed_frequency == 4
        assert pattern.trigger_conditions["error_rate"] == pytest.approx(0.2)
        assert "Bash" in pattern.recommendation

    @pytest.mark.asyncio
    async def test_never_auto_applied(self, store, detector):
        await add_tool_usages(store, "Bash", total=200, errors=150)
        pattern = (await detector.detect_tool_errors())[0]
        assert pattern.confidence_score >= 0.8
        assert pattern.auto_apply is False

    @pytest.mark.asyncio
    async def test_thresholds(self, store, detector):
        await add_tool_usages(store, "Rare", total=4, errors=4)      # too few uses
        await add_tool_usages(store, "Clean", total=50, errors=0)    # no errors
        await add_tool_usages(store, "Solid", total=100, errors=4)   # under 5%
        await add_tool_usages(store, "Edge", total=20, errors=1)     # exactly 5%

        names = [p.trigger_conditions["tool_name"] for p in await detector.detect_tool_errors()]
        assert names == ["Edge"]


# =============================================================================
# Agent Performance Detector Tests
# =============================================================================

class TestAgentPerformanceDetector:
    """Tests for the agent-performance detector."""

    @pytest.mark.asyncio
    async def test_successful_agent_auto_applies_past_gate(self, store, detector):
        await add_spawns(store, "reviewer", [True] * 40)
        pattern = (await detector.detect_agent_performance())[0]

        assert pattern.pattern_id == "AGT-001"
        assert pattern.category == AGENT_PERFORMANCE
        assert pattern.pattern_type is PatternType.SUCCESS
        assert pattern.success_rate == 1.0
        assert pattern.auto_apply is True
        assert pattern.applicable_to == ["agent:reviewer"]

    @pytest.mark.asyncio
    async def test_failing_agent_never_auto_applies(self, store, detector):
        await add_spawns(store, "flaky", [False] * 40)
        pattern = (await detector.detect_agent_performance())[0]
        assert pattern.pattern_type is PatternType.FAILURE
        assert pattern.auto_apply is False

    @pytest.mark.asyncio
    async def test_unknown_outcomes_are_behavioral(self, store, detector):
        await add_spawns(store, "explorer", [None] * 6)
        pattern = (await detector.detect_agent_performance())[0]
        assert pattern.pattern_type is PatternType.BEHAVIORAL
        assert pattern.success_rate is None
        assert pattern.auto_apply is False

    @pytest.mark.asyncio
    async def test_unknown_type_and_small_samples_excluded(self, store, detector):
        await add_spawns(store, "unknown", [True] * 50)
        await add_spawns(store, "rare", [True] * 4)
        assert await detector.detect_agent_performance() == []


# =============================================================================
# Project Context Detector Tests
# =============================================================================

class TestProjectContextDetector:
    """Tests for the project-context detector."""

    @pytest.mark.asyncio
    async def test_complex_project(self, store, detector):
        await add_project_sessions(store, "app", count=10, compacted=6)
        pattern = (await detector.detect_project_context())[0]

        assert pattern.pattern_id == "PRJ-001"
        assert pattern.category == PROJECT_CONTEXT
        assert pattern.pattern_type is PatternType.BEHAVIORAL
        assert pattern.trigger_conditions["complex"] is True
        assert pattern.trigger_conditions["compactions_per_session"] == pytest.approx(0.6)
        assert "complex" in pattern.recommendation
        assert pattern.applicable_to == ["project:app"]
        assert pattern.success_rate is None

    @pytest.mark.asyncio
    async def test_simple_project(self, store, detector):
        await add_project_sessions(store, "app", count=10, compacted=5)
        pattern = (await detector.detect_project_context())[0]
        assert pattern.trigger_conditions["complex"] is False

    @pytest.mark.asyncio
    async def test_never_auto_applied(self, store, detector):
        await add_project_sessions(store, "big", count=100)
        pattern = (await detector.detect_project_context())[0]
        assert pattern.confidence_score > 0.8
        assert pattern.auto_apply is False

    @pytest.mark.asyncio
    async def test_small_project_excluded(self, store, detector):
        await add_project_sessions(store, "tiny", count=4)
        assert await detector.detect_project_context() == []


# =============================================================================
# Session Duration Detector Tests
# =============================================================================

class TestSessionDurationDetector:
    """Tests for the session-duration detector."""

    @pytest.mark.asyncio
    async def test_baseline(self, store, detector):
        await add_project_sessions(store, "app", count=5)
        patterns = await detector.detect_session_duration()

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.pattern_id == "DUR-001"
        assert pattern.category == SESSION_DURATION
        assert pattern.pattern_type is PatternType.BEHAVIORAL
        assert pattern.sample_size == 5
        assert pattern.auto_apply is False
        assert "2.0 min" in pattern.recommendation

    @pytest.mark.asyncio
    async def test_needs_five_known_durations(self, store, detector):
        await add_project_sessions(store, "app", count=4)
        await store.upsert_session(SessionRecord(session_id="open", start_time=0))
        assert await detector.detect_session_duration() == []

    @pytest.mark.asyncio
    async def test_never_auto_applied(self, store, detector):
        await add_project_sessions(store, "app", count=100)
        assert (await detector.detect_session_duration())[0].auto_apply is False


# =============================================================================
# Detector Run Tests
# =============================================================================

class TestDetectorRun:
    """Tests for detect(), run(), ids and export."""

    @pytest.mark.asyncio
    async def test_empty_store(self, detector):
        assert await detector.detect() == []
        assert await detector.run() == []

    @pytest.mark.asyncio
    async def test_detect_order_and_no_writes(self, store, detector):
        await add_sequences(store, ["Read", "Edit", "Bash"], [True] * 6)
        await add_tool_usages(store, "Bash", total=10, errors=5)
        await add_spawns(store, "reviewer", [True] * 5)
        await add_project_sessions(store, "app", count=5)

        patterns = await detector.detect()
        prefixes = [p.pattern_id.split("-")[0] for p in patterns]
        assert prefixes == ["SEQ", "ERR", "AGT", "PRJ", "DUR"]
        assert (await store.table_counts())["patterns"] == 0

    @pytest.mark.asyncio
    async def test_run_persists(self, store, detector):
        await add_sequences(store, ["Read", "Edit", "Bash"], [True] * 6)
        patterns = await detector.run()

        stored = await store.get_pattern("SEQ-001")
        assert stored == patterns[0]

    @pytest.mark.asyncio
    async def test_rerun_replaces_by_id(self, store, detector):
        await add_sequences(store, ["Read", "Edit", "Bash"], [True] * 6)
        await detector.run()
        await add_sequences(store, ["Read", "Edit", "Bash"], [False] * 30)
        await detector.run()

        stored = await store.get_pattern("SEQ-001")
        assert stored.sample_size == 36
        assert stored.pattern_type is PatternType.FAILURE
        assert (await store.table_counts())["patterns"] == 1

    @pytest.mark.asyncio
    async def test_export_documents(self, store, temp_dir):
        await add_sequences(store, ["Read", "Edit", "Bash"], [True] * 6)
        export_dir = temp_dir / "patterns"
        detector = PatternDetector(store, export_dir=export_dir)

        patterns = await detector.run()

        path = export_dir / "SEQ-001.json"
        assert path.exists()
        document = json.loads(path.read_text())
        assert document["pattern_type"] == "success"
        assert Pattern.from_dict(document) == patterns[0]

    def test_export_removes_stale_documents(self, store, temp_dir):
        export_dir = temp_dir / "patterns"
        detector = PatternDetector(store, export_dir=export_dir)

        def seq(pattern_id):
            return Pattern(
                pattern_id=pattern_id, pattern_type=PatternType.SUCCESS, category=TOOL_SEQUENCE, name=pattern_id,
            )

        detector.export_documents([seq("SEQ-001"), seq("SEQ-002")])
        (export_dir / "notes.json").write_text("{}")

        detector.export_documents([seq("SEQ-001")])

        assert sorted(p.name for p in export_dir.iterdir()) == ["SEQ-001.json", "notes.json"]

    def test_export_requires_directory(self, detector):
        with pytest.raises(ValueError):
            detector.export_documents([])

    @pytest.mark.asyncio
    async def test_stable_ids(self, store):
        await add_sequences(store, ["A", "B", "C"], [True] * 5)
        await add_sequences(store, ["X", "Y", "Z"], [True] * 7)
        detector = PatternDetector(store, stable_ids=True)

        first = {tuple(p.trigger_conditions["tools"]): p.pattern_id for p in await detector.detect()}
        # Reverse the ranking; stable ids must not move
        await add_sequences(store, ["A", "B", "C"], [True] * 10)
        second = {tuple(p.trigger_conditions["tools"]): p.pattern_id for p in await detector.detect()}

        assert first == second
        assert all(re.fullmatch(r"SEQ-[0-9a-f]{10}", pid) for pid in first.values())
        assert len(set(first.values())) == 2


# =============================================================================
# Priming Tests
# =============================================================================

class TestPriming:
    """Tests for get_priming_patterns."""

    @pytest.mark.asyncio
    async def test_auto_apply_first_then_project(self, store):
        await store.upsert_pattern(Pattern(
            pattern_id="SEQ-001", pattern_type=PatternType.SUCCESS, category=TOOL_SEQUENCE, name="auto",
            confidence_score=0.9, sample_size=90, auto_apply=True,
        ))
        await store.upsert_pattern(Pattern(
            pattern_id="PRJ-001", pattern_type=PatternType.BEHAVIORAL, category=PROJECT_CONTEXT, name="app",
            confidence_score=0.5, sample_size=10, applicable_to=["project:app"],
        ))
        await store.upsert_pattern(Pattern(
            pattern_id="PRJ-002", pattern_type=PatternType.BEHAVIORAL, category=PROJECT_CONTEXT, name="other",
            confidence_score=0.95, sample_size=200, applicable_to=["project:other"],
        ))

        primed = await get_priming_patterns(store, project_path="/home/me/app")
        assert [p.pattern_id for p in primed] == ["SEQ-001", "PRJ-001"]

    @pytest.mark.asyncio
    async def test_deduplicated(self, store):
        await store.upsert_pattern(Pattern(
            pattern_id="AGT-001", pattern_type=PatternType.SUCCESS, category=AGENT_PERFORMANCE, name="both",
            confidence_score=0.9, sample_size=90, auto_apply=True, applicable_to=["project:app"],
        ))
        primed = await get_priming_patterns(store, project_path="/work/app")
        assert [p.pattern_id for p in primed] == ["AGT-001"]

    @pytest.mark.asyncio
    async def test_without_project(self, store):
        await store.upsert_pattern(Pattern(
            pattern_id="PRJ-001", pattern_type=PatternType.BEHAVIORAL, category=PROJECT_CONTEXT, name="app",
            applicable_to=["project:app"],
        ))
        assert await get_priming_patterns(store) == []
