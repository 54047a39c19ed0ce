"""
Claude Code provider.

Files under ~/.claude:
    history.jsonl                               global prompt log, one line per prompt
    projects/<encoded-project>/<session>.jsonl  one transcript per session

Transcript records are modeled loosely (PermissiveModel) and only for the
fields the monitor reads; anything else falls through to ClaudeOtherRecord.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, ClassVar, Literal

import pydantic

from session_monitor.base_model import PermissiveModel
from session_monitor.models import HistoryEntry, SessionMetadata
from session_monitor.paths import encode_path
from session_monitor.providers.base import SessionProvider
from session_monitor.services.parser import TranscriptParseResult, parse_timestamp

__all__ = [
    'APPROVAL_GATED_TOOLS',
    'ClaudeAssistantRecord',
    'ClaudeHistoryLine',
    'ClaudeOtherRecord',
    'ClaudeProvider',
    'ClaudeRecord',
    'ClaudeUserRecord',
]

logger = logging.getLogger(__name__)

# Tools that prompt for permission before running in the default permission mode
APPROVAL_GATED_TOOLS = frozenset({'Bash', 'Edit', 'MultiEdit', 'Write', 'NotebookEdit', 'WebFetch'})


# ==============================================================================
# History Log
# ==============================================================================


class ClaudeHistoryLine(PermissiveModel):
    """One line of ~/.claude/history.jsonl."""

    display: str = ''
    timestamp: int | float  # Epoch milliseconds
    project: str | None = None
    sessionId: str | None = None  # Absent on lines written by older CLI versions


# ==============================================================================
# Content Blocks
# ==============================================================================


class TextBlock(PermissiveModel):
    type: Literal['text']
    text: str = ''


class ThinkingBlock(PermissiveModel):
    type: Literal['thinking']


class ToolUseBlock(PermissiveModel):
    type: Literal['tool_use']
    id: str
    name: str
    input: dict[str, Any] = pydantic.Field(default_factory=dict)


class ToolResultBlock(PermissiveModel):
    type: Literal['tool_result']
    tool_use_id: str
    is_error: bool | None = None


class OtherBlock(PermissiveModel):
    """Catch-all for block types the monitor ignores (images, documents, ...)."""

    type: str | None = None


ContentBlock = Annotated[
    TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock | OtherBlock,
    pydantic.Field(union_mode='left_to_right'),
]


# ==============================================================================
# Records
# ==============================================================================


class ClaudeUsage(PermissiveModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int | None = None
    cache_creation_input_tokens: int | None = None


class ClaudeMessage(PermissiveModel):
    content: str | list[ContentBlock] = pydantic.Field(default_factory=list)
    model: str | None = None
    usage: ClaudeUsage | None = None


class ClaudeUserRecord(PermissiveModel):
    type: Literal['user']
    message: ClaudeMessage
    timestamp: str | None = None
    gitBranch: str | None = None
    isMeta: bool | None = None


class ClaudeAssistantRecord(PermissiveModel):
    type: Literal['assistant']
    message: ClaudeMessage
    timestamp: str | None = None
    gitBranch: str | None = None


class ClaudeOtherRecord(PermissiveModel):
    """Summary, system, snapshot and future record types."""

    type: str | None = None
    timestamp: str | None = None
    gitBranch: str | None = None


# Ordered left-to-right: malformed user/assistant records degrade to ClaudeOtherRecord
ClaudeRecord = Annotated[
    ClaudeUserRecord | ClaudeAssistantRecord | ClaudeOtherRecord,
    pydantic.Field(union_mode='left_to_right'),
]

ClaudeRecordAdapter: pydantic.TypeAdapter[Any] = pydantic.TypeAdapter(ClaudeRecord)


# ==============================================================================
# Provider
# ==============================================================================


class ClaudeProvider(SessionProvider):
    kind: ClassVar[Literal['claude']] = 'claude'

    @property
    def projects_dir(self) -> Path:
        return self.data_dir / 'projects'

    def parse_history_record(self, raw: Mapping[str, Any]) -> HistoryEntry | None:
        try:
            line = ClaudeHistoryLine.model_validate(raw)
        except pydantic.ValidationError:
            return None
        if not line.sessionId:
            return None
        return HistoryEntry(
            session_id=line.sessionId,
            project=line.project,
            timestamp=int(line.timestamp),
            display=line.display,
        )

    def locate_transcripts(self, requests: Mapping[str, str | None]) -> dict[str, Path]:
        found: dict[str, Path] = {}
        unresolved: set[str] = set()
        for session_id, project in requests.items():
            if project:
                candidate = self.projects_dir / encode_path(project) / f'{session_id}.jsonl'
                if candidate.is_file():
                    found[session_id] = candidate
                    continue
            unresolved.add(session_id)

        # Project hint missing or stale: one pass over every project directory for all of them
        if unresolved:
            for candidate in self.projects_dir.glob('*/*.jsonl'):
                if candidate.stem in unresolved and candidate.is_file():
                    found[candidate.stem] = candidate
                    unresolved.discard(candidate.stem)
                    if not unresolved:
                        break
        return found

    def extract_metadata(self, records: Iterable[Mapping[str, Any]]) -> SessionMetadata:
        branch: str | None = None
        slug: str | None = None
        cwd: str | None = None
        for raw in records:
            if branch is None and isinstance(raw.get('gitBranch'), str) and raw['gitBranch']:
                branch = raw['gitBranch']
            if slug is None and isinstance(raw.get('slug'), str) and raw['slug']:
                slug = raw['slug']
            if cwd is None and isinstance(raw.get('cwd'), str) and raw['cwd']:
                cwd = raw['cwd']
            if branch is not None and slug is not None:
                break
        return SessionMetadata(branch=branch, slug=slug, cwd=cwd)

    def decode_transcript_record(self, raw: Mapping[str, Any]) -> Any:
        return ClaudeRecordAdapter.validate_python(raw)

    def apply_record(self, record: Any, result: TranscriptParseResult) -> None:
        if record.gitBranch:
            result.git_branch = record.gitBranch

        if isinstance(record, ClaudeUserRecord):
            if record.isMeta:
                return
            timestamp = parse_timestamp(record.timestamp)
            result.note_timestamp(timestamp)
            self._apply_user(record, timestamp, result)
        elif isinstance(record, ClaudeAssistantRecord):
            timestamp = parse_timestamp(record.timestamp)
            result.note_timestamp(timestamp)
            self._apply_assistant(record, timestamp, result)

    def _apply_user(
        self, record: ClaudeUserRecord, timestamp: datetime | None, result: TranscriptParseResult
    ) -> None:
        content = record.message.content
        if isinstance(content, str):
            result.message_count += 1
            result.record_user_message(content, timestamp)
            return

        counted = False
        for block in content:
            if isinstance(block, ToolResultBlock):
                result.record_tool_result(block.tool_use_id, not block.is_error, timestamp)
            elif isinstance(block, TextBlock):
                if not counted:
                    result.message_count += 1
                    counted = True
                result.record_user_message(block.text, timestamp)

    def _apply_assistant(
        self, record: ClaudeAssistantRecord, timestamp: datetime | None, result: TranscriptParseResult
    ) -> None:
        message = record.message
        if message.model:
            result.model = message.model

        usage = message.usage
        if usage is not None:
            cache_read = usage.cache_read_input_tokens or 0
            cache_creation = usage.cache_creation_input_tokens or 0
            result.input_tokens = usage.input_tokens + cache_read + cache_creation
            result.output_tokens = usage.output_tokens
            result.total_output_tokens += usage.output_tokens
            result.cache_read_tokens = cache_read
            result.cache_creation_tokens = cache_creation

        if isinstance(message.content, str):
            if message.content:
                result.message_count += 1
                result.record_assistant_message(message.content, timestamp)
            return

        counted = False
        for block in message.content:
            if isinstance(block, ThinkingBlock):
                result.record_thinking(timestamp)
            elif isinstance(block, TextBlock):
                # One assistant message per record, however many text blocks it carries
                if not counted:
                    result.message_count += 1
                    counted = True
                    result.record_assistant_message(block.text, timestamp)
            elif isinstance(block, ToolUseBlock):
                result.record_tool_use(block.name, block.id, timestamp, dict(block.input))
