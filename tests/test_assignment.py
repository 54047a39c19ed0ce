"""
Tests for attributing sessions to worktrees.

Scenarios covered:
- Exact path + branch match on the main checkout
- First claim persists a mapping; a later repository reusing the same
  worktree path cannot steal the session
- Subdirectory fallback prefers the deepest worktree
- Sessions without a branch only go to a main checkout
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path

from session_monitor.exceptions import MappingConflictError
from session_monitor.models import HistoryEntry, Repository, SessionMetadata, SessionRepoMapping, WorktreeBranch
from session_monitor.services.assignment import AssignmentEngine, SessionCandidate
from session_monitor.storage.local import JsonMappingStore

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class RecordingStore:
    """In-memory mapping store that records every write."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.mappings: dict[str, SessionRepoMapping] = {}
        self.writes: list[SessionRepoMapping] = []
        self.fail_with = fail_with

    async def get_mappings(self, session_ids: Iterable[str]) -> Mapping[str, SessionRepoMapping]:
        return {sid: self.mappings[sid] for sid in session_ids if sid in self.mappings}

    async def set_mapping(self, mapping: SessionRepoMapping) -> None:
        self.writes.append(mapping)
        if self.fail_with is not None:
            raise self.fail_with
        self.mappings.setdefault(mapping.session_id, mapping)


def _entries(session_id: str, project: str, count: int, start_ms: int = 1_735_725_600_000) -> list[HistoryEntry]:
    return [
        HistoryEntry(session_id=session_id, project=project, timestamp=start_ms + i * 1000, display=f'prompt {i}')
        for i in range(count)
    ]


def _candidate(
    session_id: str,
    project: str,
    branch: str | None,
    count: int = 1,
    mtime: datetime | None = None,
) -> SessionCandidate:
    return SessionCandidate(
        session_id=session_id,
        project_path=project,
        provider='claude',
        entries=_entries(session_id, project, count),
        metadata=SessionMetadata(branch=branch),
        transcript_path=Path(f'/transcripts/{session_id}.jsonl'),
        transcript_mtime=mtime,
    )


def _repo(path: str, *worktrees: tuple[str, str, bool]) -> Repository:
    return Repository(
        path=path,
        worktrees=[WorktreeBranch(name=name, path=wt_path, is_worktree=linked) for name, wt_path, linked in worktrees],
    )


def _sessions(repository: Repository, worktree_path: str) -> list[str]:
    for worktree in repository.worktrees:
        if worktree.path == worktree_path:
            return [session.id for session in worktree.sessions]
    raise AssertionError(f'No worktree {worktree_path}')


def test_main_checkout_claims_matching_session() -> None:
    """History entries for the session become its message count and first/last prompts."""
    repo = _repo('/repo/a', ('main', '/repo/a', False))
    engine = AssignmentEngine()

    [result] = asyncio.run(engine.assign([repo], [_candidate('abc', '/repo/a', 'main', count=3)], {}, now=NOW))

    [session] = result.worktrees[0].sessions
    assert session.id == 'abc'
    assert session.message_count == 3
    assert session.branch_name == 'main'
    assert session.first_message == 'prompt 0'
    assert session.last_message == 'prompt 2'
    assert not session.is_worktree
    assert session.session_file_path == '/transcripts/abc.jsonl'


def test_first_claim_is_persisted() -> None:
    repo = _repo('/repo/a', ('main', '/repo/a', False), ('feature-x', '/repo/a-wt', True))
    store = RecordingStore()
    engine = AssignmentEngine(store)

    [result] = asyncio.run(engine.assign([repo], [_candidate('xyz', '/repo/a-wt', 'feature-x')], {}, now=NOW))

    assert _sessions(result, '/repo/a-wt') == ['xyz']
    assert _sessions(result, '/repo/a') == []
    [mapping] = store.writes
    assert (mapping.parent_repo_path, mapping.worktree_path) == ('/repo/a', '/repo/a-wt')


def test_mapping_blocks_other_repository_reusing_worktree_path() -> None:
    """A different clone now owns /repo/a-wt; the persisted mapping keeps xyz out of it."""
    other = _repo('/repo/b', ('main', '/repo/b', False), ('feature-y', '/repo/a-wt', True))
    mapping = SessionRepoMapping(
        session_id='xyz', parent_repo_path='/repo/a', worktree_path='/repo/a-wt', created_at=NOW
    )
    store = RecordingStore()

    [result] = asyncio.run(
        AssignmentEngine(store).assign(
            [other], [_candidate('xyz', '/repo/a-wt', 'feature-y')], {'xyz': mapping}, now=NOW
        )
    )

    assert result.session_count == 0
    assert store.writes == []


def test_mapping_still_requires_matching_branch() -> None:
    """/repo/a-wt was recreated as feature-y in the same repository; the feature-x session stays out."""
    repo = _repo('/repo/a', ('main', '/repo/a', False), ('feature-y', '/repo/a-wt', True))
    mapping = SessionRepoMapping(
        session_id='xyz', parent_repo_path='/repo/a', worktree_path='/repo/a-wt', created_at=NOW
    )
    store = RecordingStore()

    [result] = asyncio.run(
        AssignmentEngine(store).assign(
            [repo], [_candidate('xyz', '/repo/a-wt', 'feature-x')], {'xyz': mapping}, now=NOW
        )
    )

    assert result.session_count == 0
    assert store.writes == []


def test_mapped_session_is_claimed_without_new_write() -> None:
    repo = _repo('/repo/a', ('main', '/repo/a', False), ('feature-x', '/repo/a-wt', True))
    mapping = SessionRepoMapping(
        session_id='xyz', parent_repo_path='/repo/a', worktree_path='/repo/a-wt', created_at=NOW
    )
    store = RecordingStore()

    [result] = asyncio.run(
        AssignmentEngine(store).assign(
            [repo], [_candidate('xyz', '/repo/a-wt', 'feature-x')], {'xyz': mapping}, now=NOW
        )
    )

    assert _sessions(result, '/repo/a-wt') == ['xyz']
    assert store.writes == []


def test_branch_mismatch_is_not_claimed() -> None:
    repo = _repo('/repo/a', ('main', '/repo/a', False))
    [result] = asyncio.run(AssignmentEngine().assign([repo], [_candidate('abc', '/repo/a', 'other')], {}, now=NOW))
    assert result.session_count == 0


def test_session_without_branch_only_goes_to_main_checkout() -> None:
    repo = _repo('/repo/a', ('main', '/repo/a', False), ('feature-x', '/repo/a-wt', True))
    candidates = [_candidate('old-main', '/repo/a', None), _candidate('old-wt', '/repo/a-wt', None)]

    [result] = asyncio.run(AssignmentEngine().assign([repo], candidates, {}, now=NOW))

    assert _sessions(result, '/repo/a') == ['old-main']
    assert _sessions(result, '/repo/a-wt') == []


def test_subdirectory_fallback_prefers_deepest_worktree() -> None:
    """A session in /repo/a/nested/src belongs to the nested checkout, not the outer one."""
    repo = _repo('/repo/a', ('main', '/repo/a', False), ('main', '/repo/a/nested', True))
    [result] = asyncio.run(
        AssignmentEngine().assign([repo], [_candidate('deep', '/repo/a/nested/src', 'main')], {}, now=NOW)
    )
    assert _sessions(result, '/repo/a/nested') == ['deep']
    assert _sessions(result, '/repo/a') == []


def test_exact_match_wins_over_fallback() -> None:
    outer = _repo('/repo', ('main', '/repo', False))
    inner = _repo('/repo/inner', ('main', '/repo/inner', False))
    [outer_result, inner_result] = asyncio.run(
        AssignmentEngine().assign([outer, inner], [_candidate('s', '/repo/inner', 'main')], {}, now=NOW)
    )
    assert outer_result.session_count == 0
    assert _sessions(inner_result, '/repo/inner') == ['s']


def test_session_is_claimed_at_most_once() -> None:
    """Two repositories listing the same checkout path: only the first claims the session."""
    first = _repo('/repo/a', ('main', '/repo/a', False))
    duplicate = _repo('/repo/a-copy', ('main', '/repo/a', True))
    candidates = [_candidate('s', '/repo/a', 'main')]
    results = asyncio.run(AssignmentEngine().assign([first, duplicate], candidates, {}, now=NOW))
    assert sum(repository.session_count for repository in results) == 1
    assert _sessions(results[0], '/repo/a') == ['s']


def test_sessions_sorted_newest_first_and_active_flag() -> None:
    repo = _repo('/repo/a', ('main', '/repo/a', False))
    old = SessionCandidate(
        session_id='old',
        project_path='/repo/a',
        provider='claude',
        metadata=SessionMetadata(branch='main'),
        transcript_mtime=NOW - timedelta(hours=1),
    )
    fresh = SessionCandidate(
        session_id='fresh',
        project_path='/repo/a',
        provider='claude',
        metadata=SessionMetadata(branch='main'),
        transcript_mtime=NOW - timedelta(seconds=10),
    )

    [result] = asyncio.run(AssignmentEngine(active_window_seconds=60).assign([repo], [old, fresh], {}, now=NOW))

    sessions = result.worktrees[0].sessions
    assert [s.id for s in sessions] == ['fresh', 'old']
    assert [s.is_active for s in sessions] == [True, False]
    assert sessions[1].message_count == 0
    assert sessions[1].first_message is None


def test_mapping_write_failure_does_not_block_claim() -> None:
    store = RecordingStore(fail_with=MappingConflictError('abc', '/elsewhere', '/repo/a'))
    repo = _repo('/repo/a', ('main', '/repo/a', False))
    [result] = asyncio.run(AssignmentEngine(store).assign([repo], [_candidate('abc', '/repo/a', 'main')], {}, now=NOW))
    assert _sessions(result, '/repo/a') == ['abc']


def test_persisted_with_json_store(tmp_path: Path) -> None:
    store = JsonMappingStore(tmp_path)
    repo = _repo('/repo/a', ('main', '/repo/a', False))
    asyncio.run(AssignmentEngine(store).assign([repo], [_candidate('abc', '/repo/a', 'main')], {}, now=NOW))

    stored = asyncio.run(store.get_mappings(['abc']))
    assert stored['abc'].parent_repo_path == '/repo/a'
    assert stored['abc'].created_at == NOW
