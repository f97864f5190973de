"""
Session Ingestion
=================

Batch ETL from the daily hook-event logs into the analytics store.

Log files are named by day (``2025-01-31.jsonl`` by default). A multi-day
run reads every file in the range before writing anything, so a session
that crosses midnight is rebuilt once from all of its events. Sessions are
then merged into the store cumulatively, so ingesting a later day on its
own never discards what an earlier day contributed.

Re-ingesting the same file is safe for sessions but duplicates detail rows.

Usage:
    from sessionlens.ingestion import SessionIngestor

    ingestor = SessionIngestor(store, Path("~/.sessionlens/logs").expanduser())
    result = await ingestor.ingest_days(7)
    print(result.sessions, result.tool_usages)
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

from sessionlens.events import HookEvent, read_event_file, group_by_session
from sessionlens.reconstruction import SessionBundle, reconstruct_session
from sessionlens.store import AnalyticsStore

logger = logging.getLogger(__name__)

DEFAULT_FILENAME_FORMAT = "%Y-%m-%d.jsonl"


@dataclass
class IngestionResult:
    """Counts for one ingestion run."""
    files_read: int = 0
    files_missing: int = 0
    lines_skipped: int = 0
    sessions: int = 0
    tool_usages: int = 0
    agent_spawns: int = 0
    sequences: int = 0
    skill_usages: int = 0

    def merge(self, other: "IngestionResult") -> "IngestionResult":
        """Sum of two results."""
        mine, theirs = asdict(self), asdict(other)
        return IngestionResult(**{key: mine[key] + theirs[key] for key in mine})

    def to_dict(self) -> dict:
        return asdict(self)


class SessionIngestor:
    """Reads daily event logs and writes reconstructed sessions to a store."""

    def __init__(
        self,
        store: AnalyticsStore,
        log_dir: Path,
        *,
        filename_format: str = DEFAULT_FILENAME_FORMAT,
    ):
        self.store = store
        self.log_dir = Path(log_dir)
        self.filename_format = filename_format

    def log_file_for(self, day: date) -> Path:
        """Path of the log file holding a given day's events."""
        return self.log_dir / day.strftime(self.filename_format)

    async def ingest_file(self, path: Path) -> IngestionResult:
        """
        Ingest a single log file.

        A missing file is reported as "no data" rather than an error.
        """
        result = IngestionResult()
        events = self._read(Path(path), result)
        if events:
            await self._write_sessions(events, result)
        return result

    async def ingest_days(self, days: int, *, today: Optional[date] = None) -> IngestionResult:
        """
        Ingest the trailing window of ``days`` daily files ending today.

        All files are read and their events pooled before any session is
        written.
        """
        if days < 1:
            raise ValueError(f"days must be at least 1, got {days}")

        today = today or date.today()
        result = IngestionResult()
        events: list[HookEvent] = []

        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            events.extend(self._read(self.log_file_for(day), result))

        if events:
            await self._write_sessions(events, result)

        logger.info(
            "Ingested %d session(s) from %d file(s) (%d missing, %d bad line(s))",
            result.sessions, result.files_read, result.files_missing, result.lines_skipped,
        )
        return result

    async def ingest_today(self, today: Optional[date] = None) -> IngestionResult:
        return await self.ingest_days(1, today=today)

    # =========================================================================
    # Internals
    # =========================================================================

    def _read(self, path: Path, result: IngestionResult) -> list[HookEvent]:
        if not path.exists():
            logger.info("No data: %s does not exist", path)
            result.files_missing += 1
            return []

        events, skipped = read_event_file(path)
        result.files_read += 1
        result.lines_skipped += skipped
        logger.debug("Read %d event(s) from %s", len(events), path)
        return events

    async def _write_sessions(self, events: list[HookEvent], result: IngestionResult) -> None:
        for session_id, session_events in group_by_session(events).items():
            bundle = reconstruct_session(session_id, session_events)
            await self._write_bundle(bundle)

            result.sessions += 1
            result.tool_usages += len(bundle.tool_usages)
            result.agent_spawns += len(bundle.agent_spawns)
            result.sequences += len(bundle.sequences)
            result.skill_usages += len(bundle.skill_usages)

    async def _write_bundle(self, bundle: SessionBundle) -> None:
        await self.store.upsert_session(bundle.session)
        for usage in bundle.tool_usages:
            await self.store.insert_tool_usage(usage)
        for spawn in bundle.agent_spawns:
            await self.store.insert_agent_spawn(spawn)
        for window in bundle.sequences:
            await self.store.insert_tool_sequence(window)
        for skill in bundle.skill_usages:
            await self.store.insert_skill_usage(skill)
