"""
Incremental index over a provider's global history log.

The log is append-only in normal operation. Each refresh reads only the
complete lines appended since the previous one; a shrunken or replaced file
triggers a full reparse.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from session_monitor.models import HistoryEntry
from session_monitor.paths import matches_any
from session_monitor.providers.base import SessionProvider
from session_monitor.services.tail import JsonlTail, iter_json_objects

__all__ = ['HistoryIndex']

logger = logging.getLogger(__name__)


class HistoryIndex:
    """Cached, incrementally refreshed view of history.jsonl. Safe to call from worker threads."""

    def __init__(self, provider: SessionProvider) -> None:
        self.provider = provider
        self._tail = JsonlTail(provider.history_path)
        self._entries: list[HistoryEntry] = []
        self._lock = threading.Lock()

    @property
    def last_offset(self) -> int:
        return self._tail.byte_offset

    def invalidate(self) -> None:
        """Forget the offset so the next refresh reparses from byte 0."""
        with self._lock:
            self._tail.reset()
            self._entries = []

    def refresh(self) -> list[HistoryEntry]:
        """Bring the cache up to date with the file and return every entry."""
        with self._lock:
            read = self._tail.read_new_lines()
            if read.missing:
                self._entries = []
                return []

            parsed = self._parse(read.lines)
            if read.from_start:
                self._entries = parsed
                logger.debug(f'Parsed {len(parsed)} history entries from {self.provider.history_path}')
            elif parsed:
                self._entries.extend(parsed)
            return list(self._entries)

    def entries_for_paths(self, paths: Iterable[str]) -> list[HistoryEntry]:
        """Entries whose project equals or lies below one of `paths`. Re-filtered on every call."""
        monitored = list(paths)
        return [
            entry
            for entry in self.refresh()
            if entry.project is not None and matches_any(entry.project, monitored)
        ]

    def _parse(self, lines: list[bytes]) -> list[HistoryEntry]:
        entries: list[HistoryEntry] = []
        for raw in iter_json_objects(lines):
            entry = self.provider.parse_history_record(raw)
            if entry is None:
                logger.debug('Dropped history line without a session entry')
                continue
            entries.append(entry)
        return entries
