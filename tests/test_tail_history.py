"""
Tests for incremental JSONL tailing and the history index.

The key property: any sequence of incremental refreshes over an append-only
file yields the same entries as one full parse of the final file, including
when a line is caught half-written.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from session_monitor.providers import ClaudeProvider, CodexProvider
from session_monitor.services.history import HistoryIndex
from session_monitor.services.tail import JsonlTail, iter_json_objects, read_head_lines


def _line(record: dict[str, Any]) -> bytes:
    return json.dumps(record).encode() + b'\n'


def _history_line(session_id: str, project: str, timestamp: int, display: str = 'prompt') -> bytes:
    return _line({'display': display, 'timestamp': timestamp, 'project': project, 'sessionId': session_id})


def _append(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('ab') as f:
        f.write(data)


# ==============================================================================
# JsonlTail
# ==============================================================================


def test_tail_holds_back_partial_line(tmp_path: Path) -> None:
    """A trailing line without a newline is not consumed until it is complete."""
    path = tmp_path / 'log.jsonl'
    _append(path, b'{"a": 1}\n{"b":')
    tail = JsonlTail(path)

    first = tail.read_new_lines()
    assert first.lines == [b'{"a": 1}']
    assert first.from_start
    assert tail.byte_offset == len(b'{"a": 1}\n')

    _append(path, b' 2}\n')
    second = tail.read_new_lines()
    assert second.lines == [b'{"b": 2}']
    assert not second.from_start


def test_tail_rereads_after_truncation(tmp_path: Path) -> None:
    path = tmp_path / 'log.jsonl'
    _append(path, b'{"a": 1}\n{"b": 2}\n')
    tail = JsonlTail(path)
    tail.read_new_lines()

    path.write_bytes(b'{"c": 3}\n')
    read = tail.read_new_lines()
    assert read.from_start
    assert read.lines == [b'{"c": 3}']


def test_tail_missing_file(tmp_path: Path) -> None:
    tail = JsonlTail(tmp_path / 'absent.jsonl')
    read = tail.read_new_lines()
    assert read.missing
    assert read.lines == []
    assert not tail.has_unread_bytes()


def test_tail_unreadable_path_reads_as_missing(tmp_path: Path) -> None:
    path = tmp_path / 'log.jsonl'
    _append(path, b'{"a": 1}\n')
    tail = JsonlTail(path)
    tail.read_new_lines()

    path.unlink()
    path.mkdir()
    (path / 'filler').write_bytes(b'x' * 4096)

    read = tail.read_new_lines()
    assert read.missing
    assert read.lines == []
    assert tail.byte_offset == 0


def test_read_head_lines_drops_cut_line(tmp_path: Path) -> None:
    path = tmp_path / 'head.jsonl'
    path.write_bytes(b'{"a": 1}\n{"b": 2}\n')
    assert read_head_lines(path, 12) == [b'{"a": 1}']
    assert read_head_lines(path, 1000) == [b'{"a": 1}', b'{"b": 2}']


def test_iter_json_objects_drops_malformed_lines() -> None:
    lines = [b'{"ok": 1}', b'not json', b'[1, 2]', b'\xff\xfe', b'{"ok": 2}']
    assert list(iter_json_objects(lines)) == [{'ok': 1}, {'ok': 2}]


# ==============================================================================
# HistoryIndex
# ==============================================================================


def test_incremental_refresh_matches_full_parse(claude: ClaudeProvider) -> None:
    """Appending in chunks (one split mid-line) ends with the same entries as a fresh parse."""
    history = claude.history_path
    incremental = HistoryIndex(claude)

    _append(history, _history_line('s1', '/repo/a', 1_000))
    assert [e.session_id for e in incremental.refresh()] == ['s1']

    chunk = _history_line('s2', '/repo/a', 2_000) + _history_line('s1', '/repo/a', 3_000)
    _append(history, chunk[:30])
    assert [e.session_id for e in incremental.refresh()] == ['s1']
    _append(history, chunk[30:])
    incremental_entries = incremental.refresh()

    full_entries = HistoryIndex(claude).refresh()
    assert incremental_entries == full_entries
    assert [e.timestamp for e in full_entries] == [1_000, 2_000, 3_000]
    assert incremental.last_offset == history.stat().st_size


def test_refresh_after_truncation_reparses(claude: ClaudeProvider) -> None:
    history = claude.history_path
    index = HistoryIndex(claude)
    _append(history, _history_line('s1', '/repo/a', 1_000) + _history_line('s2', '/repo/a', 2_000))
    assert len(index.refresh()) == 2

    history.write_bytes(_history_line('s3', '/repo/b', 3_000))
    assert [e.session_id for e in index.refresh()] == ['s3']


def test_refresh_missing_history(claude: ClaudeProvider) -> None:
    assert HistoryIndex(claude).refresh() == []


def test_malformed_and_sessionless_lines_are_dropped(claude: ClaudeProvider) -> None:
    _append(
        claude.history_path,
        b'garbage\n'
        + _line({'display': 'old line', 'timestamp': 500, 'project': '/repo/a'})
        + _line({'display': 'x', 'timestamp': 'not a number', 'sessionId': 'bad'})
        + _history_line('s1', '/repo/a', 1_000, display='hello'),
    )
    entries = HistoryIndex(claude).refresh()
    assert len(entries) == 1
    assert entries[0].display == 'hello'


def test_entries_for_paths_respects_component_boundaries(claude: ClaudeProvider) -> None:
    _append(
        claude.history_path,
        _history_line('s1', '/repo/a', 1_000)
        + _history_line('s2', '/repo/a/sub', 2_000)
        + _history_line('s3', '/repo/a-wt', 3_000)
        + _history_line('s4', '/elsewhere', 4_000),
    )
    index = HistoryIndex(claude)
    assert [e.session_id for e in index.entries_for_paths(['/repo/a'])] == ['s1', 's2']
    assert [e.session_id for e in index.entries_for_paths(['/repo/a', '/repo/a-wt'])] == ['s1', 's2', 's3']


def test_codex_history_has_no_project(codex: CodexProvider) -> None:
    _append(codex.history_path, _line({'session_id': 'c1', 'ts': 1_700_000_000, 'text': 'fix the bug'}))
    entries = HistoryIndex(codex).refresh()
    assert len(entries) == 1
    assert entries[0].project is None
    assert entries[0].timestamp == 1_700_000_000_000
    assert entries[0].display == 'fix the bug'
