"""
Provider abstraction.

Each supported agent CLI writes its own history log and transcript format.
A SessionProvider knows how to read one provider's files; everything above it
(history index, metadata resolver, assignment, live tailing, search) is shared.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

import pydantic

from session_monitor.models import HistoryEntry, ProviderKind, SessionMetadata

if TYPE_CHECKING:
    from session_monitor.services.parser import TranscriptParseResult

__all__ = ['SessionProvider', 'StatusThresholds']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusThresholds:
    """Seconds-since-last-activity cutoffs used by the status state machine."""

    idle_after: float = 300.0
    tool_result_recent: float = 60.0
    user_message_recent: float = 60.0
    thinking_recent: float = 30.0
    approval_timeout: float = 0.0  # 0 disables awaiting-approval detection
    approval_tools: frozenset[str] = field(default_factory=frozenset)


class SessionProvider(abc.ABC):
    """Reads one agent CLI's history log and transcripts."""

    kind: ClassVar[ProviderKind]

    def __init__(self, data_dir: Path, thresholds: StatusThresholds) -> None:
        self.data_dir = data_dir
        self.thresholds = thresholds

    @property
    def history_path(self) -> Path:
        return self.data_dir / 'history.jsonl'

    # --------------------------------------------------------------------------
    # Global history log
    # --------------------------------------------------------------------------

    @abc.abstractmethod
    def parse_history_record(self, raw: Mapping[str, Any]) -> HistoryEntry | None:
        """Decode one history line. Returns None for lines that are not session entries."""

    # --------------------------------------------------------------------------
    # Transcript discovery
    # --------------------------------------------------------------------------

    @abc.abstractmethod
    def locate_transcripts(self, requests: Mapping[str, str | None]) -> dict[str, Path]:
        """
        Find transcript files for sessions.

        Args:
            requests: Mapping of session ID -> project path hint (may be None)

        Returns:
            Mapping of session ID -> transcript path, only for files that exist
        """

    def locate_transcript(self, session_id: str, project_hint: str | None = None) -> Path | None:
        return self.locate_transcripts({session_id: project_hint}).get(session_id)

    def known_session_ids(self) -> list[str]:
        """Sessions discoverable from transcript files alone (not via the history log)."""
        return []

    def invalidate(self) -> None:
        """Drop any cached view of the transcript tree."""

    # --------------------------------------------------------------------------
    # Transcript content
    # --------------------------------------------------------------------------

    @abc.abstractmethod
    def extract_metadata(self, records: Iterable[Mapping[str, Any]]) -> SessionMetadata:
        """Scan head-of-file records for branch, slug and cwd. Stops early once found."""

    @abc.abstractmethod
    def decode_transcript_record(self, raw: Mapping[str, Any]) -> Any:
        """Validate one transcript line into the provider's record model."""

    @abc.abstractmethod
    def apply_record(self, record: Any, result: TranscriptParseResult) -> None:
        """Fold one decoded record into the running parse state."""

    def apply_raw(self, raw: Mapping[str, Any], result: TranscriptParseResult) -> bool:
        """Decode and apply one line. Returns False when the line was dropped."""
        try:
            record = self.decode_transcript_record(raw)
        except pydantic.ValidationError as e:
            logger.debug(f'Dropped {self.kind} transcript record: {e.error_count()} validation error(s)')
            return False
        self.apply_record(record, result)
        return True
