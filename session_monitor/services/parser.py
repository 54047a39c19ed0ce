"""
Transcript parse state and the session status state machine.

A TranscriptParseResult accumulates everything derived from a transcript:
token counters, the tool-call histogram, pending tool uses and a bounded ring
of recent activities. Providers fold decoded records into it; the status is
then re-evaluated from the kind and age of the latest activity.

Status rules (t = seconds since the latest activity):
    no activity, or t > idle_after    -> idle
    tool use                          -> executing_tool, or awaiting_approval when
                                         the tool is approval-gated, still pending
                                         and t >= approval_timeout (> 0)
    tool result                       -> thinking if t < tool_result_recent else idle
    assistant message                 -> waiting_for_user
    user message                      -> thinking if t < user_message_recent else idle
    thinking                          -> thinking if t < thinking_recent else idle
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from session_monitor.models import (
    ActivityEntry,
    ActivityType,
    AssistantMessageActivity,
    AwaitingApprovalStatus,
    ExecutingToolStatus,
    IdleStatus,
    SessionMonitorState,
    SessionStatus,
    ThinkingActivity,
    ThinkingStatus,
    ToolResultActivity,
    ToolUseActivity,
    UserMessageActivity,
    WaitingForUserStatus,
)
from session_monitor.services.tail import JsonlTail, iter_json_objects

if TYPE_CHECKING:
    from session_monitor.providers.base import SessionProvider, StatusThresholds

__all__ = [
    'DESCRIPTION_LIMIT',
    'PendingToolUse',
    'TranscriptParseResult',
    'apply_lines',
    'build_monitor_state',
    'evaluate_status',
    'parse_timestamp',
    'parse_transcript_file',
    'truncate',
]

DESCRIPTION_LIMIT = 80


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp (with or without fractional seconds)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def truncate(text: str, limit: int = DESCRIPTION_LIMIT) -> str:
    return text[:limit]


@dataclass
class PendingToolUse:
    tool_name: str
    tool_use_id: str
    timestamp: datetime


@dataclass
class TranscriptParseResult:
    """Mutable accumulator for one transcript. Owned by a single tailer."""

    max_activities: int = 100
    model: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    total_output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    message_count: int = 0
    tool_calls: dict[str, int] = field(default_factory=dict)
    pending_tool_uses: dict[str, PendingToolUse] = field(default_factory=dict)
    recent_activities: deque[ActivityEntry] = field(init=False)
    last_activity_at: datetime | None = None
    session_started_at: datetime | None = None
    git_branch: str | None = None
    status: SessionStatus = field(default_factory=IdleStatus)

    def __post_init__(self) -> None:
        self.recent_activities = deque(maxlen=self.max_activities)

    @property
    def last_activity(self) -> ActivityEntry | None:
        return self.recent_activities[-1] if self.recent_activities else None

    def note_timestamp(self, timestamp: datetime | None) -> None:
        if timestamp is None:
            return
        if self.session_started_at is None:
            self.session_started_at = timestamp
        self.last_activity_at = timestamp

    def add_activity(
        self,
        activity: ActivityType,
        description: str,
        timestamp: datetime | None,
        tool_input: dict[str, Any] | None = None,
    ) -> None:
        # deque(maxlen=...) drops the oldest entry once full
        self.recent_activities.append(
            ActivityEntry(
                timestamp=timestamp or datetime.now(UTC),
                type=activity,
                description=description,
                tool_input=tool_input,
            )
        )

    def record_tool_use(
        self,
        name: str,
        tool_use_id: str | None,
        timestamp: datetime | None,
        tool_input: dict[str, Any] | None = None,
    ) -> None:
        self.tool_calls[name] = self.tool_calls.get(name, 0) + 1
        if tool_use_id is not None:
            self.pending_tool_uses[tool_use_id] = PendingToolUse(
                tool_name=name,
                tool_use_id=tool_use_id,
                timestamp=timestamp or datetime.now(UTC),
            )
        self.add_activity(ToolUseActivity(name=name), name, timestamp, tool_input)

    def record_tool_result(self, tool_use_id: str | None, success: bool, timestamp: datetime | None) -> None:
        pending = self.pending_tool_uses.pop(tool_use_id, None) if tool_use_id is not None else None
        name = pending.tool_name if pending is not None else 'tool'
        self.add_activity(
            ToolResultActivity(name=name, success=success),
            'Completed' if success else 'Failed',
            timestamp,
        )

    def record_user_message(self, text: str | None, timestamp: datetime | None) -> None:
        self.add_activity(UserMessageActivity(), truncate(text or 'User message'), timestamp)

    def record_assistant_message(self, text: str | None, timestamp: datetime | None) -> None:
        self.add_activity(AssistantMessageActivity(), truncate(text or 'Assistant message'), timestamp)

    def record_thinking(self, timestamp: datetime | None) -> None:
        self.add_activity(ThinkingActivity(), 'Thinking...', timestamp)

    def is_pending(self, tool_name: str) -> bool:
        return any(pending.tool_name == tool_name for pending in self.pending_tool_uses.values())


def evaluate_status(
    result: TranscriptParseResult,
    thresholds: StatusThresholds,
    now: datetime | None = None,
) -> SessionStatus:
    """Derive the status from the latest activity and its age."""
    last = result.last_activity
    if last is None:
        return IdleStatus()

    elapsed = ((now or datetime.now(UTC)) - last.timestamp).total_seconds()
    if elapsed > thresholds.idle_after:
        return IdleStatus()

    activity = last.type
    if isinstance(activity, ToolUseActivity):
        if (
            thresholds.approval_timeout > 0
            and activity.name in thresholds.approval_tools
            and result.is_pending(activity.name)
            and elapsed >= thresholds.approval_timeout
        ):
            return AwaitingApprovalStatus(tool_name=activity.name)
        return ExecutingToolStatus(name=activity.name)
    if isinstance(activity, ToolResultActivity):
        return ThinkingStatus() if elapsed < thresholds.tool_result_recent else IdleStatus()
    if isinstance(activity, AssistantMessageActivity):
        return WaitingForUserStatus()
    if isinstance(activity, UserMessageActivity):
        return ThinkingStatus() if elapsed < thresholds.user_message_recent else IdleStatus()
    return ThinkingStatus() if elapsed < thresholds.thinking_recent else IdleStatus()


def build_monitor_state(result: TranscriptParseResult) -> SessionMonitorState:
    """Snapshot the parse state into an immutable SessionMonitorState."""
    status = result.status
    if isinstance(status, ExecutingToolStatus):
        current_tool: str | None = status.name
    elif isinstance(status, AwaitingApprovalStatus):
        current_tool = status.tool_name
    else:
        current_tool = None

    return SessionMonitorState(
        status=status,
        current_tool=current_tool,
        last_activity_at=result.last_activity_at,
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
        total_output_tokens=result.total_output_tokens,
        cache_read_tokens=result.cache_read_tokens,
        cache_creation_tokens=result.cache_creation_tokens,
        message_count=result.message_count,
        tool_calls=dict(result.tool_calls),
        session_started_at=result.session_started_at,
        model=result.model,
        git_branch=result.git_branch,
        recent_activities=list(result.recent_activities),
    )


def apply_lines(provider: SessionProvider, lines: Iterable[bytes], result: TranscriptParseResult) -> int:
    """Decode lines and fold them into `result`. Returns the number of records applied."""
    applied = 0
    for raw in iter_json_objects(lines):
        if provider.apply_raw(raw, result):
            applied += 1
    return applied


def parse_transcript_file(
    provider: SessionProvider,
    path: Path,
    max_activities: int = 100,
    now: datetime | None = None,
) -> TranscriptParseResult:
    """Full parse of a transcript with the status evaluated at `now`."""
    result = TranscriptParseResult(max_activities=max_activities)
    read = JsonlTail(path).read_new_lines()
    apply_lines(provider, read.lines, result)
    result.status = evaluate_status(result, provider.thresholds, now)
    return result
