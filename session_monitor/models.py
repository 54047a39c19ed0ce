"""
Domain models for session monitoring.

Everything here is immutable and safe to hand to other threads: the scan
engine publishes Repository trees and live tailers publish StateUpdates.

Layout:
- Repository tree: Repository -> WorktreeBranch -> CLISession
- Discovery inputs: HistoryEntry, SessionMetadata, SessionRepoMapping
- Live tailing: ActivityType, ActivityEntry, SessionStatus, SessionMonitorState
- Search: SessionSearchResult
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

import pydantic

from session_monitor.base_model import StrictModel

__all__ = [
    'ActivityEntry',
    'ActivityType',
    'AssistantMessageActivity',
    'AwaitingApprovalStatus',
    'CLISession',
    'ExecutingToolStatus',
    'HistoryEntry',
    'IdleStatus',
    'JsonDatetime',
    'ProviderKind',
    'Repository',
    'SearchMatchField',
    'SessionMetadata',
    'SessionMonitorState',
    'SessionRepoMapping',
    'SessionSearchResult',
    'SessionStatus',
    'StateUpdate',
    'ThinkingActivity',
    'ThinkingStatus',
    'ToolResultActivity',
    'ToolUseActivity',
    'UserMessageActivity',
    'WaitingForUserStatus',
    'WorktreeBranch',
]

# Pydantic-enhanced datetime for JSON serialization (allows string→datetime conversion)
JsonDatetime = Annotated[datetime, pydantic.Field(strict=False)]

ProviderKind = Literal['claude', 'codex']


# ==============================================================================
# Repository Tree
# ==============================================================================


class CLISession(StrictModel):
    """A session attributed to one worktree during a scan. Rebuilt every scan."""

    id: str
    project_path: str
    branch_name: str
    is_worktree: bool
    last_activity_at: datetime
    message_count: int
    is_active: bool  # Transcript modified within the active window
    first_message: str | None = None
    last_message: str | None = None
    slug: str | None = None
    session_file_path: str | None = None
    provider: ProviderKind = 'claude'


class WorktreeBranch(StrictModel):
    """A git checkout (main or linked worktree) and the sessions claimed by it."""

    name: str  # Branch name
    path: str
    is_worktree: bool
    is_expanded: bool = True  # UI state, carried through untouched
    sessions: Sequence[CLISession] = ()


class Repository(StrictModel):
    """A monitored repository and its worktrees."""

    path: str
    worktrees: Sequence[WorktreeBranch] = ()
    is_expanded: bool = True  # UI state, carried through untouched

    @property
    def name(self) -> str:
        return self.path.rstrip('/').rsplit('/', 1)[-1]

    @property
    def session_count(self) -> int:
        return sum(len(worktree.sessions) for worktree in self.worktrees)


# ==============================================================================
# Discovery Inputs
# ==============================================================================


class HistoryEntry(StrictModel):
    """One line of a provider's global history log."""

    session_id: str
    project: str | None  # None when the provider's log carries no project path (Codex)
    timestamp: int  # Epoch milliseconds
    display: str

    @property
    def date(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=UTC)


class SessionMetadata(StrictModel):
    """Fields read once from the head of a session transcript.

    Assumed never to change for a given session once read.
    """

    branch: str | None = None
    slug: str | None = None
    cwd: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.branch is None and self.slug is None and self.cwd is None


class SessionRepoMapping(StrictModel):
    """Persisted attribution of a session to the repository that first claimed it."""

    session_id: str
    parent_repo_path: str
    worktree_path: str
    created_at: JsonDatetime


# ==============================================================================
# Activity (tagged by `kind`)
# ==============================================================================


class ToolUseActivity(StrictModel):
    kind: Literal['tool_use'] = 'tool_use'
    name: str


class ToolResultActivity(StrictModel):
    kind: Literal['tool_result'] = 'tool_result'
    name: str
    success: bool


class UserMessageActivity(StrictModel):
    kind: Literal['user_message'] = 'user_message'


class AssistantMessageActivity(StrictModel):
    kind: Literal['assistant_message'] = 'assistant_message'


class ThinkingActivity(StrictModel):
    kind: Literal['thinking'] = 'thinking'


ActivityType = Annotated[
    ToolUseActivity | ToolResultActivity | UserMessageActivity | AssistantMessageActivity | ThinkingActivity,
    pydantic.Field(discriminator='kind'),
]


class ActivityEntry(StrictModel):
    """One derived event in a session's recent-activity ring."""

    timestamp: datetime
    type: ActivityType
    description: str
    tool_input: dict[str, Any] | None = None


# ==============================================================================
# Status (tagged by `state`)
# ==============================================================================


class IdleStatus(StrictModel):
    state: Literal['idle'] = 'idle'

    @property
    def label(self) -> str:
        return 'Idle'


class ThinkingStatus(StrictModel):
    state: Literal['thinking'] = 'thinking'

    @property
    def label(self) -> str:
        return 'Thinking'


class ExecutingToolStatus(StrictModel):
    state: Literal['executing_tool'] = 'executing_tool'
    name: str

    @property
    def label(self) -> str:
        return f'Running {self.name}'


class WaitingForUserStatus(StrictModel):
    state: Literal['waiting_for_user'] = 'waiting_for_user'

    @property
    def label(self) -> str:
        return 'Waiting for user'


class AwaitingApprovalStatus(StrictModel):
    state: Literal['awaiting_approval'] = 'awaiting_approval'
    tool_name: str

    @property
    def label(self) -> str:
        return f'Awaiting approval: {self.tool_name}'


SessionStatus = Annotated[
    IdleStatus | ThinkingStatus | ExecutingToolStatus | WaitingForUserStatus | AwaitingApprovalStatus,
    pydantic.Field(discriminator='state'),
]


class SessionMonitorState(StrictModel):
    """Snapshot of a live-tailed session, rebuilt after every parse step."""

    status: SessionStatus
    current_tool: str | None = None
    last_activity_at: datetime | None = None

    # Token counters
    input_tokens: int = 0
    output_tokens: int = 0
    total_output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    message_count: int = 0
    tool_calls: dict[str, int] = pydantic.Field(default_factory=dict)
    session_started_at: datetime | None = None
    model: str | None = None
    git_branch: str | None = None
    recent_activities: Sequence[ActivityEntry] = ()


class StateUpdate(StrictModel):
    """Item published on a watcher's state channel."""

    session_id: str
    state: SessionMonitorState


# ==============================================================================
# Search
# ==============================================================================

SearchMatchField = Literal['slug', 'path', 'git_branch', 'first_message']


class SessionSearchResult(StrictModel):
    """A session matched by a search query."""

    id: str
    slug: str
    project_path: str
    git_branch: str | None
    first_message: str | None
    last_activity_at: datetime
    matched_field: SearchMatchField
    matched_text: str

    @property
    def repository_name(self) -> str:
        return self.project_path.rstrip('/').rsplit('/', 1)[-1]
