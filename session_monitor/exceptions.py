"""
Shared exceptions for session-monitor.

None of these escape the public service APIs: each one is raised inside a
layer and caught at that layer's boundary, where it degrades to an empty or
default result.

Exception Hierarchy:
    SessionMonitorError (base)
    ├── GitCommandError (git invocation failed or timed out)
    ├── TranscriptNotFoundError (no transcript file for a session)
    └── MappingConflictError (store refused to re-parent a session)
"""

from __future__ import annotations


class SessionMonitorError(Exception):
    """Base exception for all session-monitor errors."""


class GitCommandError(SessionMonitorError):
    """Raised when a git command cannot be run or exits non-zero."""

    def __init__(self, args: list[str], detail: str) -> None:
        self.command = args
        self.detail = detail
        super().__init__(f'git {" ".join(args)} failed: {detail}')


class TranscriptNotFoundError(SessionMonitorError):
    """Raised when a session's transcript file cannot be located."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f'No transcript file found for session {session_id}')


class MappingConflictError(SessionMonitorError):
    """Raised when a mapping write would change a session's parent repository."""

    def __init__(self, session_id: str, existing_parent: str, requested_parent: str) -> None:
        self.session_id = session_id
        self.existing_parent = existing_parent
        self.requested_parent = requested_parent
        super().__init__(
            f'Session {session_id} is already mapped to {existing_parent}; refusing to re-map to {requested_parent}'
        )
