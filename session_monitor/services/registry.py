"""
Repository registry with a per-repository worktree cache.

Detection runs in worker threads (git is a blocking subprocess) and several
repositories are detected in parallel with asyncio.gather.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence

from session_monitor.models import Repository, WorktreeBranch
from session_monitor.paths import normalize_path
from session_monitor.services.git import WorktreeDetector

__all__ = ['RepositoryRegistry', 'merge_worktrees']

logger = logging.getLogger(__name__)


def merge_worktrees(existing: Sequence[WorktreeBranch], detected: Sequence[WorktreeBranch]) -> list[WorktreeBranch]:
    """
    Merge freshly detected worktrees into the current ones by path.

    A worktree already present keeps its UI state (is_expanded) but takes the
    detected branch name; every worktree comes back with no sessions. Detection
    is authoritative: worktrees git no longer reports are dropped.
    """
    by_path = {normalize_path(worktree.path): worktree for worktree in existing}
    merged: list[WorktreeBranch] = []
    for worktree in detected:
        current = by_path.get(normalize_path(worktree.path))
        if current is None:
            merged.append(worktree.model_copy(update={'sessions': []}))
        else:
            merged.append(
                current.model_copy(update={'name': worktree.name, 'is_worktree': worktree.is_worktree, 'sessions': []})
            )
    return merged


class RepositoryRegistry:
    """Ordered list of monitored repositories plus the worktree detection cache."""

    def __init__(self, detector: WorktreeDetector) -> None:
        self.detector = detector
        self.repositories: list[Repository] = []
        self._worktree_cache: dict[str, list[WorktreeBranch]] = {}

    def get(self, path: str) -> Repository | None:
        key = normalize_path(path)
        for repository in self.repositories:
            if normalize_path(repository.path) == key:
                return repository
        return None

    def contains(self, path: str) -> bool:
        return self.get(path) is not None

    def paths(self) -> list[str]:
        return [repository.path for repository in self.repositories]

    def invalidate(self, path: str | None = None) -> None:
        if path is None:
            self._worktree_cache.clear()
        else:
            self._worktree_cache.pop(normalize_path(path), None)

    async def detect(self, path: str) -> list[WorktreeBranch]:
        """Worktrees for one repository, from cache when available."""
        key = normalize_path(path)
        cached = self._worktree_cache.get(key)
        if cached is not None:
            return cached
        worktrees = await asyncio.to_thread(self.detector.list_worktrees, key)
        self._worktree_cache[key] = worktrees
        return worktrees

    async def detect_many(self, paths: Iterable[str]) -> dict[str, list[WorktreeBranch]]:
        keys = [normalize_path(path) for path in paths]
        results = await asyncio.gather(*(self.detect(key) for key in keys))
        return dict(zip(keys, results, strict=True))

    def append(self, repository: Repository) -> None:
        self.repositories.append(repository)

    def remove(self, path: str) -> bool:
        key = normalize_path(path)
        before = len(self.repositories)
        self.repositories = [r for r in self.repositories if normalize_path(r.path) != key]
        self.invalidate(key)
        return len(self.repositories) != before

    def replace(self, repositories: Sequence[Repository]) -> None:
        self.repositories = list(repositories)
        self.invalidate()

    async def redetect_all(self) -> list[Repository]:
        """Drop the cache, re-detect every repository in parallel and merge by path."""
        self.invalidate()
        detected = await self.detect_many(self.paths())
        self.repositories = [
            repository.model_copy(
                update={'worktrees': merge_worktrees(repository.worktrees, detected[normalize_path(repository.path)])}
            )
            for repository in self.repositories
        ]
        logger.info(f'Re-detected worktrees for {len(self.repositories)} repositories')
        return self.repositories

    def clear_sessions(self) -> list[Repository]:
        """Worktrees of every repository with their sessions emptied (used when skipping detection)."""
        self.repositories = [
            repository.model_copy(
                update={'worktrees': [w.model_copy(update={'sessions': []}) for w in repository.worktrees]}
            )
            for repository in self.repositories
        ]
        return self.repositories
