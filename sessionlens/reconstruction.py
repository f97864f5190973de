"""
Session Reconstruction
======================

Turns the time-ordered events of one session into analytics records:

- the Session itself (boundaries, project, compactions)
- one ToolUsage per completed tool call, paired by tool_use_id
- one AgentSpawn per SubagentStop
- sliding three-tool sequence windows
- one SkillUsage per Skill tool call

Everything here is pure; writing the records is the ingestor's job.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from sessionlens.events import HookEvent, HookEventType
from sessionlens.records import (
    SessionRecord,
    ToolUsageRecord,
    AgentSpawnRecord,
    ToolSequenceRecord,
    SkillUsageRecord,
)

MAX_SUMMARY_LENGTH = 200
MAX_ERROR_LENGTH = 500
SEQUENCE_LENGTH = 3

# Substrings in captured stderr that mark a tool call as failed
STDERR_ERROR_MARKERS = ("error:", "fatal:", "exception", "failed")

FILE_TOOLS = {"Read", "Write", "Edit", "MultiEdit", "NotebookEdit"}
SEARCH_TOOLS = {"Grep", "Glob"}
SKILL_TOOL = "Skill"


@dataclass
class SessionBundle:
    """All records reconstructed for one session, in write order."""
    session: SessionRecord
    tool_usages: list[ToolUsageRecord] = field(default_factory=list)
    agent_spawns: list[AgentSpawnRecord] = field(default_factory=list)
    sequences: list[ToolSequenceRecord] = field(default_factory=list)
    skill_usages: list[SkillUsageRecord] = field(default_factory=list)


# =============================================================================
# Field Extraction
# =============================================================================

def project_name_from_path(project_path: Optional[str]) -> Optional[str]:
    """Final path segment, ignoring trailing separators."""
    if not project_path:
        return None
    name = project_path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
    return name or None


def classify_tool_error(tool_response: Any) -> tuple[bool, Optional[str]]:
    """
    Decide whether a completed tool call failed.

    A call fails when its response carries an explicit error, was
    interrupted, or wrote something error-like to stderr.

    Returns:
        (success, error_message)
    """
    if not isinstance(tool_response, dict):
        return True, None

    error = tool_response.get("error")
    if error:
        return False, _truncate(str(error), MAX_ERROR_LENGTH)

    if tool_response.get("interrupted"):
        return False, "interrupted"

    stderr = tool_response.get("stderr")
    if isinstance(stderr, str) and stderr:
        lowered = stderr.lower()
        if any(marker in lowered for marker in STDERR_ERROR_MARKERS):
            return False, _truncate(stderr.strip(), MAX_ERROR_LENGTH)

    return True, None


def summarize_tool_input(tool_name: str, tool_input: Any) -> str:
    """Short human-readable description of what a tool call was asked to do."""
    if not isinstance(tool_input, dict):
        return _truncate(str(tool_input or ""), MAX_SUMMARY_LENGTH)

    if tool_name == "Bash":
        summary = str(tool_input.get("command", ""))
    elif tool_name in FILE_TOOLS:
        summary = str(tool_input.get("file_path") or tool_input.get("notebook_path") or "")
    elif tool_name in SEARCH_TOOLS:
        summary = f"{tool_input.get('pattern', '')} in {tool_input.get('path') or '.'}"
    elif tool_name == "Task":
        summary = str(tool_input.get("description") or tool_input.get("prompt") or "")
    elif tool_name == "TodoWrite":
        todos = tool_input.get("todos")
        summary = f"{len(todos) if isinstance(todos, list) else 0} todos"
    elif tool_name == SKILL_TOOL:
        summary = str(skill_name_from_input(tool_input) or "")
    else:
        summary = json.dumps(tool_input, default=str)[:MAX_SUMMARY_LENGTH]

    return _truncate(summary, MAX_SUMMARY_LENGTH)


def skill_name_from_input(tool_input: Any) -> Optional[str]:
    if not isinstance(tool_input, dict):
        return None
    return tool_input.get("skill") or tool_input.get("command") or None


def extract_agent_type(agent_type: Optional[str], agent_id: Optional[str]) -> str:
    """
    Agent type for a SubagentStop.

    Falls back to the instance id minus its trailing unique suffix,
    e.g. "code-reviewer-3f2a" -> "code-reviewer".
    """
    if agent_type:
        return agent_type
    if agent_id:
        parts = agent_id.split("-")
        if len(parts) > 1:
            return "-".join(parts[:-1])
        return agent_id
    return "unknown"


def sequence_hash(tools: list[str]) -> str:
    """Grouping key for a tool window: first 16 hex chars of SHA-256."""
    return hashlib.sha256(",".join(tools).encode()).hexdigest()[:16]


def sequence_windows(usages: list[ToolUsageRecord]) -> list[ToolSequenceRecord]:
    """Every contiguous three-tool window, sliding by one."""
    ordered = sorted(usages, key=lambda u: u.timestamp)
    windows = []
    for i in range(len(ordered) - SEQUENCE_LENGTH + 1):
        window = ordered[i:i + SEQUENCE_LENGTH]
        tools = [u.tool_name for u in window]
        windows.append(ToolSequenceRecord(
            session_id=window[0].session_id,
            tools=tools,
            content_hash=sequence_hash(tools),
            timestamp=window[0].timestamp,
            success=all(u.success for u in window),
        ))
    return windows


# =============================================================================
# Reconstruction
# =============================================================================

def reconstruct_session(session_id: str, events: list[HookEvent]) -> SessionBundle:
    """
    Rebuild one session from its events.

    Args:
        session_id: The session being rebuilt
        events: That session's events, sorted by timestamp

    Returns:
        The session and its detail records
    """
    if not events:
        raise ValueError(f"No events for session {session_id}")

    start_time = None
    end_time = None
    last_stop = None
    project_path = None
    compactions: list[int] = []

    pending_calls = {}  # tool_use_id -> PreToolUseEvent
    usages: list[ToolUsageRecord] = []
    spawns: list[AgentSpawnRecord] = []
    skills: list[SkillUsageRecord] = []

    for event in events:
        kind = event.kind

        if kind is HookEventType.SESSION_START:
            if start_time is None:
                start_time = event.timestamp
                project_path = event.cwd

        elif kind is HookEventType.SESSION_END:
            end_time = event.timestamp

        elif kind is HookEventType.STOP:
            last_stop = event.timestamp

        elif kind is HookEventType.PRE_COMPACT:
            compactions.append(event.timestamp)

        elif kind is HookEventType.PRE_TOOL_USE:
            if event.tool_use_id:
                pending_calls[event.tool_use_id] = event

        elif kind is HookEventType.POST_TOOL_USE:
            pre = pending_calls.pop(event.tool_use_id, None) if event.tool_use_id else None
            usage = _tool_usage(session_id, pre, event)
            usages.append(usage)

            if usage.tool_name == SKILL_TOOL:
                tool_input = event.tool_input or (pre.tool_input if pre else {})
                skills.append(SkillUsageRecord(
                    session_id=session_id,
                    skill_name=skill_name_from_input(tool_input) or "unknown",
                    timestamp=usage.timestamp,
                    success=usage.success,
                    duration_ms=usage.duration_ms,
                ))

        elif kind is HookEventType.SUBAGENT_STOP:
            spawns.append(AgentSpawnRecord(
                session_id=session_id,
                agent_type=extract_agent_type(event.agent_type, event.agent_id),
                agent_id=event.agent_id,
                timestamp=event.timestamp,
            ))

    # Unmatched pre events never completed; there is no outcome to record.

    if start_time is None:
        start_time = events[0].timestamp
    if end_time is None:
        end_time = last_stop

    session = SessionRecord(
        session_id=session_id,
        start_time=start_time,
        end_time=end_time,
        project_path=project_path,
        project_name=project_name_from_path(project_path),
        compaction_count=len(compactions),
        compaction_times=compactions,
    )

    sequences = sequence_windows(usages) if len(usages) >= SEQUENCE_LENGTH else []

    return SessionBundle(
        session=session,
        tool_usages=usages,
        agent_spawns=spawns,
        sequences=sequences,
        skill_usages=skills,
    )


def _tool_usage(session_id: str, pre, post) -> ToolUsageRecord:
    success, error_message = classify_tool_error(post.tool_response)
    tool_input = post.tool_input or (pre.tool_input if pre else {})

    return ToolUsageRecord(
        session_id=session_id,
        tool_name=post.tool_name,
        tool_use_id=post.tool_use_id,
        timestamp=pre.timestamp if pre else post.timestamp,
        duration_ms=post.timestamp - pre.timestamp if pre else None,
        success=success,
        error_message=error_message,
        input_summary=summarize_tool_input(post.tool_name, tool_input),
    )


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]
