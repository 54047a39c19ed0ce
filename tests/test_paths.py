"""
Tests for project-directory encoding and path containment.

Containment must respect path-component boundaries: a sibling directory that
merely shares a string prefix (/repo/a-wt next to /repo/a) is never inside it.
"""

from __future__ import annotations

import pytest

from session_monitor.paths import encode_path, is_same_or_descendant, is_strict_descendant, matches_any


@pytest.mark.parametrize(
    ('path', 'encoded'),
    [
        ('/Users/chris/project', '-Users-chris-project'),
        ('/Users/chris/My Project.app', '-Users-chris-My-Project-app'),
        ('/home/dev/repo_name/sub~dir', '-home-dev-repo-name-sub-dir'),
        ('/tmp/already-hyphenated', '-tmp-already-hyphenated'),
    ],
)
def test_encode_path(path: str, encoded: str) -> None:
    """Every character outside [A-Za-z0-9-] becomes a hyphen."""
    assert encode_path(path) == encoded


@pytest.mark.parametrize(
    ('path', 'ancestor', 'expected'),
    [
        ('/repo/a/sub', '/repo/a', True),
        ('/repo/a/sub/deeper', '/repo/a/', True),
        ('/repo/a', '/repo/a', False),
        ('/repo/a-wt', '/repo/a', False),
        ('/repo/ab', '/repo/a', False),
        ('/anything', '/', True),
    ],
)
def test_is_strict_descendant(path: str, ancestor: str, expected: bool) -> None:
    assert is_strict_descendant(path, ancestor) is expected


def test_is_same_or_descendant_ignores_trailing_slash() -> None:
    assert is_same_or_descendant('/repo/a/', '/repo/a')
    assert is_same_or_descendant('/repo/a/x', '/repo/a/')
    assert not is_same_or_descendant('/repo/a-wt', '/repo/a')


def test_matches_any() -> None:
    monitored = ['/repo/a', '/repo/b-feature']
    assert matches_any('/repo/b-feature/src', monitored)
    assert not matches_any('/repo/b', monitored)
    assert not matches_any('/repo/a', [])
