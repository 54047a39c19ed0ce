"""
Assignment of sessions to worktrees.

Two repositories can reuse the same directory over time (a worktree deleted
and recreated by another clone), and nested checkouts share path prefixes.
A session is therefore claimed by a worktree only when its project path
equals the worktree path (primary match) or lies below it (fallback match,
evaluated only after every primary match, deepest worktree first), and:

- if a mapping was persisted for it, the mapping names this worktree's
  repository as parent;
- its branch equals the worktree's branch. A session with no branch may only
  be claimed by a main checkout.

A session is claimed at most once per scan. First claims are persisted so a
later clone reusing the worktree path cannot take the session.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from session_monitor.exceptions import MappingConflictError
from session_monitor.models import (
    CLISession,
    HistoryEntry,
    ProviderKind,
    Repository,
    SessionMetadata,
    SessionRepoMapping,
    WorktreeBranch,
)
from session_monitor.paths import is_strict_descendant, normalize_path
from session_monitor.protocols import LoggerProtocol, NullLogger
from session_monitor.storage.protocol import SessionRepoMappingStore

__all__ = ['AssignmentEngine', 'SessionCandidate']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionCandidate:
    """Everything known about one session before it is attributed to a worktree."""

    session_id: str
    project_path: str
    provider: ProviderKind
    entries: Sequence[HistoryEntry] = ()
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    transcript_path: Path | None = None
    transcript_mtime: datetime | None = None

    @property
    def sorted_entries(self) -> list[HistoryEntry]:
        return sorted(self.entries, key=lambda entry: entry.timestamp)

    @property
    def last_activity_at(self) -> datetime:
        if self.entries:
            return max(entry.date for entry in self.entries)
        if self.transcript_mtime is not None:
            return self.transcript_mtime
        return datetime.now(UTC)


@dataclass
class _Slot:
    """A worktree plus the sessions it claims during one scan."""

    repository_index: int
    worktree_index: int
    repository_path: str
    worktree: WorktreeBranch
    sessions: list[CLISession] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return normalize_path(self.worktree.path).count('/')


class AssignmentEngine:
    """Attributes session candidates to worktrees and persists first claims."""

    def __init__(
        self,
        store: SessionRepoMappingStore | None = None,
        active_window_seconds: float = 60.0,
        log: LoggerProtocol | None = None,
    ) -> None:
        self.store = store
        self.active_window_seconds = active_window_seconds
        self.log = log or NullLogger()

    async def assign(
        self,
        repositories: Sequence[Repository],
        candidates: Sequence[SessionCandidate],
        mappings: Mapping[str, SessionRepoMapping],
        now: datetime | None = None,
    ) -> list[Repository]:
        """
        Build the repository tree for one scan.

        Args:
            repositories: Repositories with detected worktrees (sessions ignored)
            candidates: Sessions to place
            mappings: Persisted mappings for the candidates, by session ID
            now: Reference time for is_active (defaults to the current time)

        Returns:
            The repositories with each worktree's sessions filled in, newest first
        """
        now = now or datetime.now(UTC)
        slots = [
            _Slot(ri, wi, repository.path, worktree)
            for ri, repository in enumerate(repositories)
            for wi, worktree in enumerate(repository.worktrees)
        ]
        assigned: set[str] = set()

        # Primary: exact path matches, in repository/worktree order
        for slot in slots:
            worktree_path = normalize_path(slot.worktree.path)
            for candidate in candidates:
                if candidate.session_id in assigned:
                    continue
                if normalize_path(candidate.project_path) != worktree_path:
                    continue
                if await self._try_claim(slot, candidate, mappings, now):
                    assigned.add(candidate.session_id)

        # Fallback: subdirectories, deepest worktree first so nested checkouts win
        for slot in sorted(slots, key=lambda s: s.depth, reverse=True):
            for candidate in candidates:
                if candidate.session_id in assigned:
                    continue
                if not is_strict_descendant(candidate.project_path, slot.worktree.path):
                    continue
                if await self._try_claim(slot, candidate, mappings, now):
                    assigned.add(candidate.session_id)

        claimed = {(slot.repository_index, slot.worktree_index): slot.sessions for slot in slots}
        result: list[Repository] = []
        for ri, repository in enumerate(repositories):
            worktrees = [
                worktree.model_copy(
                    update={
                        'sessions': sorted(claimed[(ri, wi)], key=lambda s: s.last_activity_at, reverse=True),
                    }
                )
                for wi, worktree in enumerate(repository.worktrees)
            ]
            result.append(repository.model_copy(update={'worktrees': worktrees}))

        logger.info(f'Assigned {len(assigned)} of {len(candidates)} sessions across {len(repositories)} repositories')
        return result

    def _branch_matches(self, candidate: SessionCandidate, worktree: WorktreeBranch) -> bool:
        branch = candidate.metadata.branch
        if branch is None:
            # Old sessions carry no branch: only the main checkout may claim them
            return not worktree.is_worktree
        return branch == worktree.name

    async def _try_claim(
        self,
        slot: _Slot,
        candidate: SessionCandidate,
        mappings: Mapping[str, SessionRepoMapping],
        now: datetime,
    ) -> bool:
        mapping = mappings.get(candidate.session_id)
        if mapping is not None and normalize_path(mapping.parent_repo_path) != normalize_path(slot.repository_path):
            return False
        if not self._branch_matches(candidate, slot.worktree):
            return False
        if mapping is None:
            await self._persist(
                SessionRepoMapping(
                    session_id=candidate.session_id,
                    parent_repo_path=slot.repository_path,
                    worktree_path=slot.worktree.path,
                    created_at=now,
                )
            )

        slot.sessions.append(self._build_session(candidate, slot.worktree, now))
        return True

    async def _persist(self, mapping: SessionRepoMapping) -> None:
        if self.store is None:
            return
        try:
            await self.store.set_mapping(mapping)
        except MappingConflictError as e:
            logger.warning(str(e))
            await self.log.warning(str(e))
        except (OSError, ValueError) as e:
            logger.warning(f'Failed to persist mapping for session {mapping.session_id}: {e}')
            await self.log.warning(f'Failed to persist mapping for session {mapping.session_id}: {e}')

    def _build_session(self, candidate: SessionCandidate, worktree: WorktreeBranch, now: datetime) -> CLISession:
        entries = candidate.sorted_entries
        is_active = (
            candidate.transcript_mtime is not None
            and (now - candidate.transcript_mtime).total_seconds() < self.active_window_seconds
        )
        return CLISession(
            id=candidate.session_id,
            project_path=candidate.project_path,
            branch_name=candidate.metadata.branch or worktree.name,
            is_worktree=worktree.is_worktree,
            last_activity_at=candidate.last_activity_at,
            message_count=len(entries),
            is_active=is_active,
            first_message=entries[0].display if entries else None,
            last_message=entries[-1].display if entries else None,
            slug=candidate.metadata.slug,
            session_file_path=str(candidate.transcript_path) if candidate.transcript_path is not None else None,
            provider=candidate.provider,
        )
