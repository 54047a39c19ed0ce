"""
Session search.

Keeps an in-memory index of every resolvable session (slug, project path,
branch, first prompt, last activity) and answers case-insensitive substring
queries. The index is rebuilt whenever the history log's mtime moves past the
mtime seen at the last build.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from session_monitor.models import HistoryEntry, SearchMatchField, SessionSearchResult
from session_monitor.paths import is_same_or_descendant
from session_monitor.providers.base import SessionProvider
from session_monitor.services.history import HistoryIndex
from session_monitor.services.metadata import SessionMetadataResolver
from session_monitor.services.tail import file_mtime

__all__ = ['SessionSearchService']

logger = logging.getLogger(__name__)

SLUG_FALLBACK_LENGTH = 8


@dataclass(frozen=True)
class _IndexEntry:
    session_id: str
    slug: str
    project_path: str
    git_branch: str | None
    first_message: str | None
    last_activity_at: datetime

    def match(self, query: str) -> tuple[SearchMatchField, str] | None:
        """First matching field in priority order: slug, path, branch, first message."""
        fields: list[tuple[SearchMatchField, str | None]] = [
            ('slug', self.slug),
            ('path', self.project_path),
            ('git_branch', self.git_branch),
            ('first_message', self.first_message),
        ]
        for name, value in fields:
            if value and query in value.lower():
                return name, value
        return None


class SessionSearchService:
    """Search across one provider's sessions."""

    def __init__(
        self,
        provider: SessionProvider,
        history: HistoryIndex | None = None,
        resolver: SessionMetadataResolver | None = None,
    ) -> None:
        self.provider = provider
        self.history = history or HistoryIndex(provider)
        self.resolver = resolver or SessionMetadataResolver(provider)
        self._index: dict[str, _IndexEntry] = {}
        self._built = False
        self._indexed_mtime: float | None = None
        self._lock = asyncio.Lock()

    async def search(self, query: str, filter_path: str | None = None) -> list[SessionSearchResult]:
        """
        Find sessions matching `query`.

        Args:
            query: Case-insensitive substring; empty returns no results
            filter_path: Only sessions whose project equals or lies below this path

        Returns:
            Matches sorted by last activity, newest first
        """
        async with self._lock:
            if self._needs_rebuild():
                await self._build_index()
            entries = list(self._index.values())

        if not query:
            return []

        needle = query.lower()
        results: list[SessionSearchResult] = []
        for entry in entries:
            if filter_path is not None and not is_same_or_descendant(entry.project_path, filter_path):
                continue
            matched = entry.match(needle)
            if matched is None:
                continue
            field, text = matched
            results.append(
                SessionSearchResult(
                    id=entry.session_id,
                    slug=entry.slug,
                    project_path=entry.project_path,
                    git_branch=entry.git_branch,
                    first_message=entry.first_message,
                    last_activity_at=entry.last_activity_at,
                    matched_field=field,
                    matched_text=text,
                )
            )
        return sorted(results, key=lambda r: r.last_activity_at, reverse=True)

    async def rebuild_index(self) -> None:
        async with self._lock:
            await self._build_index()

    def indexed_session_count(self) -> int:
        return len(self._index)

    def _history_mtime(self) -> float | None:
        try:
            return self.provider.history_path.stat().st_mtime
        except OSError:
            return None

    def _needs_rebuild(self) -> bool:
        if not self._built:
            return True
        mtime = self._history_mtime()
        if mtime is None:
            return True
        return self._indexed_mtime is None or mtime > self._indexed_mtime

    async def _build_index(self) -> None:
        mtime = self._history_mtime()
        entries = await asyncio.to_thread(self.history.refresh)

        grouped: dict[str, list[HistoryEntry]] = {}
        projects: dict[str, str | None] = {}
        for entry in entries:
            grouped.setdefault(entry.session_id, []).append(entry)
            if projects.get(entry.session_id) is None:
                projects[entry.session_id] = entry.project
        for sid in await asyncio.to_thread(self.provider.known_session_ids):
            projects.setdefault(sid, None)

        resolved = await self.resolver.resolve(projects)
        mtimes = await asyncio.gather(*(asyncio.to_thread(file_mtime, r.path) for r in resolved.values()))

        index: dict[str, _IndexEntry] = {}
        for (sid, transcript), modified_at in zip(resolved.items(), mtimes, strict=True):
            project = projects[sid] or transcript.metadata.cwd
            if project is None:
                continue
            history = sorted(grouped.get(sid, []), key=lambda e: e.timestamp)
            candidates = [d for d in (modified_at, history[-1].date if history else None) if d is not None]
            index[sid] = _IndexEntry(
                session_id=sid,
                slug=transcript.metadata.slug or sid[:SLUG_FALLBACK_LENGTH],
                project_path=project,
                git_branch=transcript.metadata.branch,
                first_message=history[0].display if history else None,
                last_activity_at=max(candidates) if candidates else datetime.now(UTC),
            )

        self._index = index
        self._built = True
        self._indexed_mtime = mtime
        logger.info(f'Indexed {len(index)} {self.provider.kind} sessions for search')
