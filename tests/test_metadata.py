"""Tests for transcript location and head-of-file metadata resolution."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from session_monitor.models import SessionMetadata
from session_monitor.paths import encode_path
from session_monitor.providers import ClaudeProvider, CodexProvider
from session_monitor.services.metadata import SessionMetadataResolver

CODEX_ID = '0199a1b2-c3d4-7e5f-8a9b-0c1d2e3f4a5b'


def _write_jsonl(path: Path, records: list[dict[str, Any]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(''.join(json.dumps(record) + '\n' for record in records))
    return path


def _claude_transcript(provider: ClaudeProvider, project: str, session_id: str, records: list[dict[str, Any]]) -> Path:
    return _write_jsonl(provider.projects_dir / encode_path(project) / f'{session_id}.jsonl', records)


def test_claude_metadata_from_head(claude: ClaudeProvider) -> None:
    """Branch and slug may appear on different lines; the first non-empty value wins."""
    _claude_transcript(
        claude,
        '/repo/a',
        'abc',
        [
            {'type': 'summary', 'summary': 'x'},
            {'type': 'user', 'cwd': '/repo/a', 'gitBranch': '', 'message': {'content': 'hi'}},
            {'type': 'user', 'cwd': '/repo/a', 'gitBranch': 'main', 'message': {'content': 'hi'}},
            {'type': 'assistant', 'slug': 'brave-otter', 'gitBranch': 'other', 'message': {'content': []}},
        ],
    )
    resolver = SessionMetadataResolver(claude)
    resolved = asyncio.run(resolver.resolve({'abc': '/repo/a'}))

    assert resolved['abc'].metadata == SessionMetadata(branch='main', slug='brave-otter', cwd='/repo/a')
    assert resolved['abc'].path == claude.projects_dir / '-repo-a' / 'abc.jsonl'


def test_claude_locates_transcript_without_hint(claude: ClaudeProvider) -> None:
    """A missing or stale project hint falls back to searching every project directory."""
    path = _claude_transcript(claude, '/moved/repo', 'abc', [{'type': 'user', 'gitBranch': 'main'}])
    assert claude.locate_transcript('abc', '/repo/a') == path
    assert claude.locate_transcript('abc') == path
    assert claude.locate_transcript('missing', '/repo/a') is None


def test_metadata_is_read_from_head_only(claude: ClaudeProvider) -> None:
    filler = [{'type': 'progress', 'data': 'x' * 200} for _ in range(100)]
    _claude_transcript(claude, '/repo/a', 'abc', [*filler, {'type': 'user', 'gitBranch': 'late'}])

    resolved = asyncio.run(SessionMetadataResolver(claude, head_bytes=4096).resolve({'abc': '/repo/a'}))
    assert resolved['abc'].metadata.branch is None


def test_metadata_is_cached_once_found(claude: ClaudeProvider) -> None:
    path = _claude_transcript(claude, '/repo/a', 'abc', [{'type': 'user', 'gitBranch': 'main', 'slug': 's'}])
    resolver = SessionMetadataResolver(claude)
    asyncio.run(resolver.resolve({'abc': '/repo/a'}))

    _write_jsonl(path, [{'type': 'user', 'gitBranch': 'rewritten', 'slug': 's'}])
    resolved = asyncio.run(resolver.resolve({'abc': '/repo/a'}))
    assert resolved['abc'].metadata.branch == 'main'

    resolver.invalidate('abc')
    resolved = asyncio.run(resolver.resolve({'abc': '/repo/a'}))
    assert resolved['abc'].metadata.branch == 'rewritten'


def test_missing_transcript_is_retried(claude: ClaudeProvider) -> None:
    """Empty results are not cached, so a transcript that appears later is picked up."""
    resolver = SessionMetadataResolver(claude)
    first = asyncio.run(resolver.resolve({'abc': '/repo/a'}))
    assert first['abc'].path is None
    assert first['abc'].metadata.is_empty
    assert resolver.cached('abc') is None

    _claude_transcript(claude, '/repo/a', 'abc', [{'type': 'user', 'gitBranch': 'main'}])
    second = asyncio.run(resolver.resolve({'abc': '/repo/a'}))
    assert second['abc'].metadata.branch == 'main'


def test_codex_metadata_from_session_meta(codex: CodexProvider) -> None:
    _write_jsonl(
        codex.sessions_dir / '2025' / '01' / '02' / f'rollout-2025-01-02T10-00-00-{CODEX_ID}.jsonl',
        [
            {
                'timestamp': '2025-01-02T10:00:00.000Z',
                'type': 'session_meta',
                'payload': {'id': CODEX_ID, 'cwd': '/repo/a', 'git': {'branch': 'feature-x'}},
            },
            {'timestamp': '2025-01-02T10:00:01.000Z', 'type': 'turn_context', 'payload': {'model': 'gpt-5'}},
        ],
    )
    (codex.sessions_dir / '2025' / 'rollout-without-id.jsonl').write_text('{}\n')

    assert codex.known_session_ids() == [CODEX_ID]
    resolved = asyncio.run(SessionMetadataResolver(codex).resolve({CODEX_ID: None}))
    assert resolved[CODEX_ID].metadata == SessionMetadata(branch='feature-x', cwd='/repo/a')


def test_unhinted_sessions_share_one_directory_scan(claude: ClaudeProvider, monkeypatch: pytest.MonkeyPatch) -> None:
    """Pruned transcripts do not cost one glob per session."""
    moved = _claude_transcript(claude, '/moved/repo', 'abc', [{'type': 'user', 'gitBranch': 'main'}])
    patterns: list[str] = []
    original_glob = Path.glob

    def counting_glob(self: Path, pattern: str, *args: Any, **kwargs: Any) -> Any:
        patterns.append(pattern)
        return original_glob(self, pattern, *args, **kwargs)

    monkeypatch.setattr(Path, 'glob', counting_glob)

    found = claude.locate_transcripts({'abc': '/repo/a', 'gone-1': '/repo/a', 'gone-2': None, 'gone-3': '/repo/b'})

    assert found == {'abc': moved}
    assert len(patterns) == 1
