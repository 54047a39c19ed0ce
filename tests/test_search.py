"""Tests for session search."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any

from session_monitor.paths import encode_path
from session_monitor.providers import ClaudeProvider, CodexProvider
from session_monitor.services.search import SessionSearchService

CODEX_ID = '0199a1b2-c3d4-7e5f-8a9b-0c1d2e3f4a5b'


def _append_jsonl(path: Path, records: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('a') as f:
        for record in records:
            f.write(json.dumps(record) + '\n')


def _session(
    provider: ClaudeProvider,
    session_id: str,
    project: str,
    prompt: str,
    timestamp: int,
    slug: str | None = None,
    branch: str | None = None,
) -> None:
    _append_jsonl(
        provider.history_path,
        [{'display': prompt, 'timestamp': timestamp, 'project': project, 'sessionId': session_id}],
    )
    record: dict[str, Any] = {'type': 'user', 'cwd': project, 'message': {'content': prompt}}
    if slug:
        record['slug'] = slug
    if branch:
        record['gitBranch'] = branch
    path = provider.projects_dir / encode_path(project) / f'{session_id}.jsonl'
    _append_jsonl(path, [record])
    # Pin transcript mtimes in the past so history timestamps decide recency
    os.utime(path, (timestamp / 1000, timestamp / 1000))


def _populate(claude: ClaudeProvider) -> None:
    _session(claude, 'aaaaaaaa-1111', '/work/api', 'add login endpoint', 1_700_000_000_000, 'happy-login', 'main')
    _session(claude, 'bbbbbbbb-2222', '/work/login-page', 'style the form', 1_700_000_100_000, 'calm-river', 'dev')
    _session(claude, 'cccccccc-3333', '/work/web', 'polish layout', 1_700_000_200_000, None, 'feature/login')
    _session(claude, 'dddddddd-4444', '/work/web', 'fix LOGIN redirect', 1_700_000_300_000)


def test_match_field_priority_and_order(claude: ClaudeProvider) -> None:
    """Each session reports its highest-priority matching field; results are newest first."""
    _populate(claude)
    results = asyncio.run(SessionSearchService(claude).search('Login'))

    assert [(r.id, r.matched_field) for r in results] == [
        ('dddddddd-4444', 'first_message'),
        ('cccccccc-3333', 'git_branch'),
        ('bbbbbbbb-2222', 'path'),
        ('aaaaaaaa-1111', 'slug'),
    ]
    assert results[0].matched_text == 'fix LOGIN redirect'
    assert results[1].matched_text == 'feature/login'


def test_slug_defaults_to_id_prefix(claude: ClaudeProvider) -> None:
    _populate(claude)
    [result] = asyncio.run(SessionSearchService(claude).search('dddd'))
    assert result.slug == 'dddddddd'
    assert result.matched_field == 'slug'
    assert result.repository_name == 'web'


def test_filter_path(claude: ClaudeProvider) -> None:
    _populate(claude)
    service = SessionSearchService(claude)
    results = asyncio.run(service.search('login', filter_path='/work/web'))
    assert sorted(r.id for r in results) == ['cccccccc-3333', 'dddddddd-4444']
    assert asyncio.run(service.search('login', filter_path='/work/we')) == []


def test_empty_query_returns_nothing(claude: ClaudeProvider) -> None:
    _populate(claude)
    service = SessionSearchService(claude)
    assert asyncio.run(service.search('')) == []
    assert service.indexed_session_count() == 4


def test_index_rebuilds_when_history_changes(claude: ClaudeProvider) -> None:
    _populate(claude)
    service = SessionSearchService(claude)
    assert asyncio.run(service.search('kubernetes')) == []

    _session(claude, 'eeeeeeee-5555', '/work/ops', 'deploy to kubernetes', 1_700_000_400_000)
    stat = claude.history_path.stat()
    os.utime(claude.history_path, (stat.st_atime, stat.st_mtime + 10))

    [result] = asyncio.run(service.search('kubernetes'))
    assert result.id == 'eeeeeeee-5555'
    assert service.indexed_session_count() == 5


def test_sessions_without_project_are_skipped(claude: ClaudeProvider) -> None:
    _append_jsonl(claude.history_path, [{'display': 'orphan', 'timestamp': 1, 'sessionId': 'zzzz'}])
    assert asyncio.run(SessionSearchService(claude).search('orphan')) == []


def test_codex_search_uses_transcript_cwd(codex: CodexProvider) -> None:
    _append_jsonl(codex.history_path, [{'session_id': CODEX_ID, 'ts': 1_700_000_000, 'text': 'migrate database'}])
    _append_jsonl(
        codex.sessions_dir / '2023' / '11' / '14' / f'rollout-2023-11-14T22-13-20-{CODEX_ID}.jsonl',
        [{'type': 'session_meta', 'payload': {'id': CODEX_ID, 'cwd': '/work/db', 'git': {'branch': 'main'}}}],
    )

    [result] = asyncio.run(SessionSearchService(codex).search('database'))

    assert result.id == CODEX_ID
    assert result.project_path == '/work/db'
    assert result.git_branch == 'main'
    assert result.slug == CODEX_ID[:8]
