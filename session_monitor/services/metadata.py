"""
Per-session metadata resolution.

Branch, slug and cwd are read from the first METADATA_HEAD_BYTES of each
transcript, never the whole file. Once a session yields any metadata it is
cached for the lifetime of the resolver: those fields are written when a
session starts and are treated as immutable afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from session_monitor.models import SessionMetadata
from session_monitor.providers.base import SessionProvider
from session_monitor.services.tail import iter_json_objects, read_head_lines

__all__ = ['ResolvedTranscript', 'SessionMetadataResolver']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedTranscript:
    path: Path | None
    metadata: SessionMetadata


class SessionMetadataResolver:
    """Locates transcripts and caches their head-of-file metadata."""

    def __init__(self, provider: SessionProvider, head_bytes: int = 16_384) -> None:
        self.provider = provider
        self.head_bytes = head_bytes
        self._metadata: dict[str, SessionMetadata] = {}
        self._paths: dict[str, Path] = {}

    def cached(self, session_id: str) -> SessionMetadata | None:
        return self._metadata.get(session_id)

    def invalidate(self, session_id: str | None = None) -> None:
        if session_id is None:
            self._metadata.clear()
            self._paths.clear()
            self.provider.invalidate()
        else:
            self._metadata.pop(session_id, None)
            self._paths.pop(session_id, None)

    async def resolve(self, requests: Mapping[str, str | None]) -> dict[str, ResolvedTranscript]:
        """
        Resolve transcripts and metadata for sessions.

        Args:
            requests: Mapping of session ID -> project path hint

        Returns:
            One ResolvedTranscript per requested session. Sessions whose
            transcript is missing or unreadable get empty metadata and are
            retried on the next call.
        """
        unlocated = {sid: hint for sid, hint in requests.items() if sid not in self._paths}
        if unlocated:
            located = await asyncio.to_thread(self.provider.locate_transcripts, unlocated)
            self._paths.update(located)

        to_read = [sid for sid in requests if sid not in self._metadata and sid in self._paths]
        if to_read:
            results = await asyncio.gather(
                *(asyncio.to_thread(self._read_metadata, self._paths[sid]) for sid in to_read)
            )
            for sid, metadata in zip(to_read, results, strict=True):
                if not metadata.is_empty:
                    self._metadata[sid] = metadata
            logger.debug(f'Read metadata for {len(to_read)} transcripts')

        return {
            sid: ResolvedTranscript(path=self._paths.get(sid), metadata=self._metadata.get(sid, SessionMetadata()))
            for sid in requests
        }

    def _read_metadata(self, path: Path) -> SessionMetadata:
        try:
            lines = read_head_lines(path, self.head_bytes)
        except OSError as e:
            logger.warning(f'Cannot read transcript head {path}: {e}')
            return SessionMetadata()
        return self.provider.extract_metadata(iter_json_objects(lines))
