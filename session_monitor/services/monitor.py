"""
Session monitor service - the scan engine.

Owns the monitored repositories, the worktree cache, the history index and
the metadata cache. Every mutating operation runs under a single asyncio.Lock,
so scans never interleave; blocking work (git, file reads) is pushed to
worker threads. Each scan publishes the complete repository tree on the
`repositories` channel.

Pipeline per scan:
    worktree detection -> history index (filtered by monitored paths)
    -> metadata resolution -> assignment -> publish
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence

from session_monitor.config import MonitorSettings, settings as default_settings
from session_monitor.models import HistoryEntry, Repository, SessionRepoMapping
from session_monitor.paths import matches_any, normalize_path
from session_monitor.protocols import LoggerProtocol, NullLogger
from session_monitor.providers.base import SessionProvider
from session_monitor.pubsub import Broadcaster
from session_monitor.services.assignment import AssignmentEngine, SessionCandidate
from session_monitor.services.git import GitWorktreeDetector, WorktreeDetector
from session_monitor.services.history import HistoryIndex
from session_monitor.services.metadata import SessionMetadataResolver
from session_monitor.services.registry import RepositoryRegistry
from session_monitor.services.tail import file_mtime
from session_monitor.storage.protocol import SessionRepoMappingStore

__all__ = ['SessionMonitorService']

logger = logging.getLogger(__name__)


class SessionMonitorService:
    """Single-owner scan engine for one provider."""

    def __init__(
        self,
        provider: SessionProvider,
        store: SessionRepoMappingStore | None = None,
        detector: WorktreeDetector | None = None,
        settings: MonitorSettings | None = None,
        log: LoggerProtocol | None = None,
    ) -> None:
        settings = settings or default_settings
        self.provider = provider
        self.store = store
        self.log = log or NullLogger()
        self.registry = RepositoryRegistry(detector or GitWorktreeDetector(settings.GIT_TIMEOUT_SECONDS))
        self.history = HistoryIndex(provider)
        self.resolver = SessionMetadataResolver(provider, settings.METADATA_HEAD_BYTES)
        self.engine = AssignmentEngine(store, settings.ACTIVE_WINDOW_SECONDS, self.log)
        self.repositories: Broadcaster[list[Repository]] = Broadcaster('repositories', replay_current=True)
        self._lock = asyncio.Lock()

    # ==========================================================================
    # Repository management
    # ==========================================================================

    def get_repositories(self) -> list[Repository]:
        return list(self.registry.repositories)

    async def add_repository(self, path: str) -> Repository:
        """
        Start monitoring a repository.

        Returns the existing entry unchanged when the path is already tracked.
        Otherwise detects its worktrees and runs one scan that reuses the
        cached worktrees of every repository.
        """
        async with self._lock:
            existing = self.registry.get(path)
            if existing is not None:
                return existing

            key = normalize_path(path)
            worktrees = await self.registry.detect(key)
            self.registry.append(Repository(path=key, worktrees=worktrees))
            await self.log.info(f'Added repository {key} ({len(worktrees)} worktrees)')
            await self._scan(skip_worktree_redetection=True)
            return self.registry.get(key)  # type: ignore[return-value]

    async def add_repositories(self, paths: Iterable[str]) -> list[Repository]:
        """Add several repositories with parallel detection and exactly one scan."""
        async with self._lock:
            new_paths: list[str] = []
            for path in paths:
                key = normalize_path(path)
                if not self.registry.contains(key) and key not in new_paths:
                    new_paths.append(key)
            if not new_paths:
                return []

            detected = await self.registry.detect_many(new_paths)
            for key in new_paths:
                self.registry.append(Repository(path=key, worktrees=detected[key]))
            await self.log.info(f'Added {len(new_paths)} repositories')
            await self._scan(skip_worktree_redetection=True)
            return [repository for key in new_paths if (repository := self.registry.get(key)) is not None]

    async def remove_repository(self, path: str) -> None:
        async with self._lock:
            if self.registry.remove(path):
                await self.log.info(f'Removed repository {normalize_path(path)}')
            self.repositories.publish(self.get_repositories())

    async def set_repositories(self, repositories: Sequence[Repository]) -> list[Repository]:
        """Replace the monitored list (e.g. restored state) and run a full scan."""
        async with self._lock:
            self.registry.replace(repositories)
            return await self._scan(skip_worktree_redetection=False)

    async def refresh_sessions(self, skip_worktree_redetection: bool = False) -> list[Repository]:
        async with self._lock:
            return await self._scan(skip_worktree_redetection)

    # ==========================================================================
    # Scan
    # ==========================================================================

    async def _scan(self, skip_worktree_redetection: bool) -> list[Repository]:
        if not self.registry.repositories:
            self.repositories.publish([])
            return []

        if skip_worktree_redetection:
            repositories = self.registry.clear_sessions()
        else:
            repositories = await self.registry.redetect_all()

        candidates = await self._collect_candidates(repositories)
        mappings = await self._load_mappings(candidate.session_id for candidate in candidates)
        tree = await self.engine.assign(repositories, candidates, mappings)

        self.registry.repositories = tree
        self.repositories.publish(list(tree))
        await self.log.info(
            f'Scan complete: {sum(r.session_count for r in tree)} sessions in {len(tree)} repositories'
        )
        return tree

    def _monitored_paths(self, repositories: Sequence[Repository]) -> list[str]:
        paths: list[str] = []
        for repository in repositories:
            paths.append(repository.path)
            paths.extend(worktree.path for worktree in repository.worktrees)
        return paths

    async def _collect_candidates(self, repositories: Sequence[Repository]) -> list[SessionCandidate]:
        monitored = self._monitored_paths(repositories)
        entries = await asyncio.to_thread(self.history.refresh)

        grouped: dict[str, list[HistoryEntry]] = {}
        projects: dict[str, str | None] = {}
        for entry in entries:
            grouped.setdefault(entry.session_id, []).append(entry)
            if projects.get(entry.session_id) is None:
                projects[entry.session_id] = entry.project

        # Sessions whose project is known from the log are filtered before any file is read
        requests: dict[str, str | None] = {
            sid: project for sid, project in projects.items() if project is not None and matches_any(project, monitored)
        }
        # The rest only reveal their project through transcript metadata (cwd)
        unhinted = [sid for sid, project in projects.items() if project is None]
        for sid in await asyncio.to_thread(self.provider.known_session_ids):
            if sid not in projects:
                unhinted.append(sid)
        requests.update({sid: None for sid in unhinted})

        resolved = await self.resolver.resolve(requests)
        mtimes = await asyncio.gather(*(asyncio.to_thread(file_mtime, r.path) for r in resolved.values()))

        candidates: list[SessionCandidate] = []
        for (sid, transcript), mtime in zip(resolved.items(), mtimes, strict=True):
            project = requests[sid] or transcript.metadata.cwd
            if project is None or not matches_any(project, monitored):
                continue
            candidates.append(
                SessionCandidate(
                    session_id=sid,
                    project_path=project,
                    provider=self.provider.kind,
                    entries=grouped.get(sid, []),
                    metadata=transcript.metadata,
                    transcript_path=transcript.path,
                    transcript_mtime=mtime,
                )
            )
        logger.debug(f'{len(candidates)} session candidates under {len(monitored)} monitored paths')
        return candidates

    async def _load_mappings(self, session_ids: Iterable[str]) -> dict[str, SessionRepoMapping]:
        if self.store is None:
            return {}
        try:
            return dict(await self.store.get_mappings(list(session_ids)))
        except (OSError, ValueError) as e:  # ValueError covers a corrupt mapping file
            logger.warning(f'Cannot read session mappings: {e}')
            await self.log.warning(f'Cannot read session mappings: {e}')
            return {}
