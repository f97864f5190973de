"""
Hook Event Model
================

Typed representation of the raw hook events written to the daily log files.

Each line of a log file is one JSON object:

    {"source_app": "...", "session_id": "...", "hook_event_type": "PreToolUse",
     "timestamp": 1717000000000, "timestamp_pst": "...", "payload": {...}}

hook_event_type selects one of seven event classes. Unknown kinds are
ignored, and malformed lines are skipped with a warning so a single bad
line never aborts a file.

Usage:
    from sessionlens.events import read_event_file, group_by_session

    events, skipped = read_event_file(Path("2025-01-01.jsonl"))
    for session_id, session_events in group_by_session(events).items():
        ...
"""

import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional, Union

logger = logging.getLogger(__name__)

# Largest value SQLite stores in an INTEGER column
MAX_TIMESTAMP = 2**63 - 1


class HookEventType(Enum):
    """Event kinds emitted by the assistant's hooks."""
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    STOP = "Stop"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    SUBAGENT_STOP = "SubagentStop"
    PRE_COMPACT = "PreCompact"


@dataclass(frozen=True)
class BaseHookEvent:
    """Envelope fields shared by every event kind."""
    session_id: str
    timestamp: int  # epoch ms
    source_app: str = ""
    timestamp_pst: str = ""
    payload: dict = field(default_factory=dict)

    kind = None  # set by each subclass

    def to_dict(self) -> dict:
        """Convert back to the on-disk record shape."""
        return {
            "source_app": self.source_app,
            "session_id": self.session_id,
            "hook_event_type": self.kind.value,
            "timestamp": self.timestamp,
            "timestamp_pst": self.timestamp_pst,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class SessionStartEvent(BaseHookEvent):
    kind = HookEventType.SESSION_START

    @property
    def cwd(self) -> Optional[str]:
        return self.payload.get("cwd") or None

    @property
    def source(self) -> Optional[str]:
        """How the session began (startup, resume, clear)."""
        return self.payload.get("source")


@dataclass(frozen=True)
class SessionEndEvent(BaseHookEvent):
    kind = HookEventType.SESSION_END

    @property
    def reason(self) -> Optional[str]:
        return self.payload.get("reason")


@dataclass(frozen=True)
class StopEvent(BaseHookEvent):
    kind = HookEventType.STOP


class _ToolFields:
    """Payload accessors common to the Pre/Post tool events."""
    payload: dict

    @property
    def tool_name(self) -> str:
        return self.payload.get("tool_name") or "unknown"

    @property
    def tool_use_id(self) -> Optional[str]:
        return self.payload.get("tool_use_id")

    @property
    def tool_input(self) -> Any:
        return self.payload.get("tool_input") or {}


@dataclass(frozen=True)
class PreToolUseEvent(_ToolFields, BaseHookEvent):
    kind = HookEventType.PRE_TOOL_USE


@dataclass(frozen=True)
class PostToolUseEvent(_ToolFields, BaseHookEvent):
    kind = HookEventType.POST_TOOL_USE

    @property
    def tool_response(self) -> Any:
        return self.payload.get("tool_response")


@dataclass(frozen=True)
class SubagentStopEvent(BaseHookEvent):
    kind = HookEventType.SUBAGENT_STOP

    @property
    def agent_type(self) -> Optional[str]:
        return self.payload.get("agent_type") or self.payload.get("subagent_type")

    @property
    def agent_id(self) -> Optional[str]:
        return self.payload.get("agent_id")


@dataclass(frozen=True)
class PreCompactEvent(BaseHookEvent):
    kind = HookEventType.PRE_COMPACT

    @property
    def trigger(self) -> Optional[str]:
        """manual or auto."""
        return self.payload.get("trigger")


HookEvent = Union[
    SessionStartEvent,
    SessionEndEvent,
    StopEvent,
    PreToolUseEvent,
    PostToolUseEvent,
    SubagentStopEvent,
    PreCompactEvent,
]

_EVENT_CLASSES = {
    HookEventType.SESSION_START: SessionStartEvent,
    HookEventType.SESSION_END: SessionEndEvent,
    HookEventType.STOP: StopEvent,
    HookEventType.PRE_TOOL_USE: PreToolUseEvent,
    HookEventType.POST_TOOL_USE: PostToolUseEvent,
    HookEventType.SUBAGENT_STOP: SubagentStopEvent,
    HookEventType.PRE_COMPACT: PreCompactEvent,
}


def _usable_timestamp(value: Any) -> bool:
    """Finite number that fits a 64-bit integer column. JSON allows NaN and 1e999."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, float) and not math.isfinite(value):
        return False
    return -MAX_TIMESTAMP <= value <= MAX_TIMESTAMP


def parse_event(raw: dict) -> Optional[HookEvent]:
    """
    Build a typed event from one decoded log record.

    Returns:
        The event, or None when the kind is unknown or the envelope is
        unusable (no session id, non-numeric, non-finite or out-of-range timestamp).
    """
    try:
        kind = HookEventType(raw.get("hook_event_type"))
    except ValueError:
        logger.debug("Ignoring unknown hook event type %r", raw.get("hook_event_type"))
        return None

    session_id = raw.get("session_id")
    timestamp = raw.get("timestamp")
    if not session_id or not _usable_timestamp(timestamp):
        logger.debug("Ignoring %s event without session_id/timestamp", kind.value)
        return None

    payload = raw.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    return _EVENT_CLASSES[kind](
        session_id=str(session_id),
        timestamp=int(timestamp),
        source_app=raw.get("source_app") or "",
        timestamp_pst=raw.get("timestamp_pst") or "",
        payload=payload,
    )


def parse_lines(lines: Iterable[str], source: str = "<input>") -> tuple[list[HookEvent], int]:
    """
    Parse newline-delimited JSON records.

    Returns:
        (events, skipped) where skipped counts lines that were not JSON
        objects. Unknown event kinds are dropped but not counted as skipped.
    """
    events: list[HookEvent] = []
    skipped = 0

    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Skipping malformed line %d in %s: %s", line_no, source, e)
            skipped += 1
            continue
        if not isinstance(raw, dict):
            logger.warning("Skipping non-object line %d in %s", line_no, source)
            skipped += 1
            continue

        event = parse_event(raw)
        if event is not None:
            events.append(event)

    return events, skipped


def read_event_file(path: Path) -> tuple[list[HookEvent], int]:
    """Read and parse one daily log file. See parse_lines."""
    path = Path(path)
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return parse_lines(f, source=str(path))


def group_by_session(events: Iterable[HookEvent]) -> dict[str, list[HookEvent]]:
    """
    Group events by session id, each group sorted by timestamp.

    The sort is stable, so events sharing a timestamp keep file order.
    """
    groups: dict[str, list[HookEvent]] = {}
    for event in events:
        groups.setdefault(event.session_id, []).append(event)

    for session_events in groups.values():
        session_events.sort(key=lambda e: e.timestamp)

    return groups
