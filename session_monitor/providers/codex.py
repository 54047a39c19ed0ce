"""
Codex CLI provider.

Files under ~/.codex:
    history.jsonl                                        {"session_id", "ts", "text"} per prompt
    sessions/YYYY/MM/DD/rollout-<timestamp>-<id>.jsonl   one transcript per session

The history log carries no project path. A session's project comes from the
`cwd` of the session_meta record at the head of its transcript, and sessions
are also discovered straight from the sessions tree.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, ClassVar, Literal

import pydantic

from session_monitor.base_model import PermissiveModel
from session_monitor.models import HistoryEntry, SessionMetadata, ToolResultActivity
from session_monitor.providers.base import SessionProvider, StatusThresholds
from session_monitor.services.parser import TranscriptParseResult, parse_timestamp

__all__ = [
    'CodexEventRecord',
    'CodexHistoryLine',
    'CodexProvider',
    'CodexRecord',
    'CodexResponseItemRecord',
    'CodexSessionMetaRecord',
    'CodexTurnContextRecord',
    'CodexUnknownRecord',
]

logger = logging.getLogger(__name__)

_ROLLOUT_ID = re.compile(
    r'^rollout-.*-([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})\.jsonl$'
)


# ==============================================================================
# History Log
# ==============================================================================


class CodexHistoryLine(PermissiveModel):
    """One line of ~/.codex/history.jsonl."""

    session_id: str
    ts: int | float  # Epoch seconds
    text: str = ''


# ==============================================================================
# Transcript Records
# ==============================================================================


class CodexGitInfo(PermissiveModel):
    branch: str | None = None


class CodexSessionMetaPayload(PermissiveModel):
    id: str | None = None
    cwd: str | None = None
    timestamp: str | None = None
    git: CodexGitInfo | None = None


class CodexSessionMetaRecord(PermissiveModel):
    type: Literal['session_meta']
    payload: CodexSessionMetaPayload
    timestamp: str | None = None


class CodexTurnContextPayload(PermissiveModel):
    model: str | None = None


class CodexTurnContextRecord(PermissiveModel):
    type: Literal['turn_context']
    payload: CodexTurnContextPayload
    timestamp: str | None = None


class CodexTokenUsage(PermissiveModel):
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0


class CodexTokenInfo(PermissiveModel):
    last_token_usage: CodexTokenUsage | None = None
    total_token_usage: CodexTokenUsage | None = None


class CodexEventPayload(PermissiveModel):
    type: str
    message: str | None = None
    info: CodexTokenInfo | None = None


class CodexEventRecord(PermissiveModel):
    type: Literal['event_msg']
    payload: CodexEventPayload
    timestamp: str | None = None


class CodexResponseItemPayload(PermissiveModel):
    type: str
    name: str | None = None
    call_id: str | None = None
    status: str | None = None
    arguments: str | None = None


class CodexResponseItemRecord(PermissiveModel):
    type: Literal['response_item']
    payload: CodexResponseItemPayload
    timestamp: str | None = None


class CodexUnknownRecord(PermissiveModel):
    """Catch-all for record types the monitor ignores."""

    type: str | None = None
    timestamp: str | None = None


CodexRecord = Annotated[
    CodexSessionMetaRecord
    | CodexTurnContextRecord
    | CodexEventRecord
    | CodexResponseItemRecord
    | CodexUnknownRecord,
    pydantic.Field(union_mode='left_to_right'),
]

CodexRecordAdapter: pydantic.TypeAdapter[Any] = pydantic.TypeAdapter(CodexRecord)


def _parse_arguments(arguments: str | None) -> dict[str, Any] | None:
    """function_call arguments arrive as a JSON-encoded string."""
    if not arguments:
        return None
    try:
        decoded = json.loads(arguments)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


# ==============================================================================
# Provider
# ==============================================================================


class CodexProvider(SessionProvider):
    kind: ClassVar[Literal['codex']] = 'codex'

    def __init__(self, data_dir: Path, thresholds: StatusThresholds) -> None:
        super().__init__(data_dir, thresholds)
        self._catalog: dict[str, Path] = {}
        self._catalog_built = False
        self._catalog_lock = threading.Lock()

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / 'sessions'

    # --------------------------------------------------------------------------
    # Catalog of rollout files, keyed by the session id in the file name
    # --------------------------------------------------------------------------

    def _rebuild_catalog(self) -> None:
        catalog: dict[str, Path] = {}
        if self.sessions_dir.is_dir():
            for path in self.sessions_dir.rglob('rollout-*.jsonl'):
                match = _ROLLOUT_ID.match(path.name)
                if match is None:
                    logger.debug(f'Skipping rollout file without a session id: {path}')
                    continue
                catalog[match.group(1)] = path
        self._catalog = catalog
        self._catalog_built = True

    def invalidate(self) -> None:
        with self._catalog_lock:
            self._catalog = {}
            self._catalog_built = False

    def known_session_ids(self) -> list[str]:
        with self._catalog_lock:
            self._rebuild_catalog()
            return sorted(self._catalog)

    def locate_transcripts(self, requests: Mapping[str, str | None]) -> dict[str, Path]:
        with self._catalog_lock:
            if not self._catalog_built or any(sid not in self._catalog for sid in requests):
                self._rebuild_catalog()
            return {sid: self._catalog[sid] for sid in requests if sid in self._catalog}

    # --------------------------------------------------------------------------
    # History log
    # --------------------------------------------------------------------------

    def parse_history_record(self, raw: Mapping[str, Any]) -> HistoryEntry | None:
        try:
            line = CodexHistoryLine.model_validate(raw)
        except pydantic.ValidationError:
            return None
        return HistoryEntry(
            session_id=line.session_id,
            project=None,
            timestamp=int(line.ts * 1000),
            display=line.text,
        )

    # --------------------------------------------------------------------------
    # Transcript content
    # --------------------------------------------------------------------------

    def extract_metadata(self, records: Iterable[Mapping[str, Any]]) -> SessionMetadata:
        for raw in records:
            if raw.get('type') != 'session_meta':
                continue
            try:
                record = CodexSessionMetaRecord.model_validate(raw)
            except pydantic.ValidationError:
                continue
            payload = record.payload
            if payload.cwd is None:
                continue
            branch = payload.git.branch if payload.git is not None else None
            return SessionMetadata(branch=branch or None, cwd=payload.cwd)
        return SessionMetadata()

    def decode_transcript_record(self, raw: Mapping[str, Any]) -> Any:
        return CodexRecordAdapter.validate_python(raw)

    def apply_record(self, record: Any, result: TranscriptParseResult) -> None:
        # session_meta carries the real start time, which precedes the record's own timestamp
        if isinstance(record, CodexSessionMetaRecord) and result.session_started_at is None:
            result.session_started_at = parse_timestamp(record.payload.timestamp)

        timestamp = parse_timestamp(record.timestamp)
        result.note_timestamp(timestamp)

        if isinstance(record, CodexSessionMetaRecord):
            if record.payload.git is not None and record.payload.git.branch:
                result.git_branch = record.payload.git.branch
        elif isinstance(record, CodexTurnContextRecord):
            if record.payload.model:
                result.model = record.payload.model
        elif isinstance(record, CodexEventRecord):
            self._apply_event(record.payload, timestamp, result)
        elif isinstance(record, CodexResponseItemRecord):
            self._apply_response_item(record.payload, timestamp, result)

    def _apply_event(
        self, payload: CodexEventPayload, timestamp: datetime | None, result: TranscriptParseResult
    ) -> None:
        match payload.type:
            case 'user_message':
                result.message_count += 1
                if payload.message:
                    result.record_user_message(payload.message, timestamp)
            case 'agent_message':
                result.message_count += 1
                if payload.message:
                    result.record_assistant_message(payload.message, timestamp)
            case 'agent_reasoning':
                result.record_thinking(timestamp)
            case 'token_count':
                if payload.info is None:
                    return
                if payload.info.last_token_usage is not None:
                    usage = payload.info.last_token_usage
                    result.total_output_tokens += usage.output_tokens
                elif payload.info.total_token_usage is not None:
                    usage = payload.info.total_token_usage
                    result.total_output_tokens = usage.output_tokens
                else:
                    return
                result.input_tokens = usage.input_tokens + usage.cached_input_tokens
                result.output_tokens = usage.output_tokens
                result.cache_read_tokens = usage.cached_input_tokens

    def _apply_response_item(
        self, payload: CodexResponseItemPayload, timestamp: datetime | None, result: TranscriptParseResult
    ) -> None:
        match payload.type:
            case 'function_call':
                if payload.name is None or payload.call_id is None:
                    return
                result.record_tool_use(payload.name, payload.call_id, timestamp, _parse_arguments(payload.arguments))
            case 'function_call_output':
                if payload.call_id is not None:
                    result.record_tool_result(payload.call_id, True, timestamp)
            case 'custom_tool_call':
                if payload.name is None:
                    return
                result.record_tool_use(payload.name, None, timestamp)
                if payload.status == 'completed':
                    result.add_activity(
                        ToolResultActivity(name=payload.name, success=True), 'Completed', timestamp
                    )
