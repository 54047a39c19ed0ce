"""
Incremental JSONL reading.

JsonlTail tracks a byte offset into an append-only JSONL file and hands back
only complete, newline-terminated lines. The offset always sits at the end of
the last complete line, so a line caught mid-write is read whole on a later
call and a sequence of incremental reads yields exactly the lines of one full
read.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

__all__ = ['JsonlTail', 'TailRead', 'file_mtime', 'iter_json_objects', 'read_head_lines']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TailRead:
    """Result of one JsonlTail read."""

    lines: list[bytes]
    from_start: bool  # Lines begin at byte 0: callers replace state instead of appending
    missing: bool = False


class JsonlTail:
    """Tracks byte offset in a JSONL file for incremental reading."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.byte_offset: int = 0

    def reset(self) -> None:
        self.byte_offset = 0

    def size(self) -> int | None:
        try:
            return self.path.stat().st_size
        except OSError:
            return None

    def has_unread_bytes(self) -> bool:
        size = self.size()
        return size is not None and size > self.byte_offset

    def read_new_lines(self) -> TailRead:
        """
        Read complete lines appended since the last call.

        A file smaller than the tracked offset was truncated or rotated: the
        offset resets and the whole file is read again (from_start=True).
        A missing or unreadable file resets the offset and returns no lines
        (missing=True).
        """
        size = self.size()
        if size is None:
            self.byte_offset = 0
            return TailRead(lines=[], from_start=True, missing=True)

        if size < self.byte_offset:
            logger.info(f'{self.path} shrank from {self.byte_offset} to {size} bytes, rereading')
            self.byte_offset = 0

        start = self.byte_offset
        if size == start:
            return TailRead(lines=[], from_start=start == 0)

        try:
            with self.path.open('rb') as f:
                f.seek(start)
                raw = f.read(size - start)
        except OSError as e:
            # Deleted or replaced between stat and open
            logger.debug(f'Failed to read {self.path}: {e}')
            self.byte_offset = 0
            return TailRead(lines=[], from_start=True, missing=True)

        # Only consume through the last newline; a trailing partial line stays unread
        end = raw.rfind(b'\n')
        if end == -1:
            return TailRead(lines=[], from_start=start == 0)

        self.byte_offset = start + end + 1
        lines = [line for line in raw[: end + 1].split(b'\n') if line.strip()]
        return TailRead(lines=lines, from_start=start == 0)


def read_head_lines(path: Path, max_bytes: int) -> list[bytes]:
    """Read the complete lines within the first `max_bytes` of a file."""
    with path.open('rb') as f:
        raw = f.read(max_bytes)
    if len(raw) == max_bytes:
        end = raw.rfind(b'\n')
        raw = raw[: end + 1] if end != -1 else b''
    return [line for line in raw.split(b'\n') if line.strip()]


def file_mtime(path: Path | None) -> datetime | None:
    """Modification time as an aware UTC datetime, or None if the file is unreadable."""
    if path is None:
        return None
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
    except OSError:
        return None


def iter_json_objects(lines: Iterable[bytes]) -> Iterator[dict[str, Any]]:
    """Decode JSON object lines, dropping any line that is not one."""
    for line in lines:
        try:
            obj = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug(f'Dropped malformed JSONL line: {line[:80]!r}')
            continue
        if isinstance(obj, dict):
            yield obj
