"""
Path utilities for session discovery.

Claude Code names each project directory under ~/.claude/projects/ by
replacing every character that is not an ASCII letter, digit or hyphen with
`-`.

WARNING: This encoding is LOSSY - decoding is impossible.
To get the real path, read the `cwd` field from the session's transcript.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

__all__ = ['encode_path', 'is_same_or_descendant', 'is_strict_descendant', 'matches_any', 'normalize_path']

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9-]')


def encode_path(path: Path | str) -> str:
    """
    Encode path for Claude's project directory naming.

    This is the ONLY direction encoding can go. There is no decode function
    because the encoding is lossy (`/`, `.`, ` `, `_`, `~` all become `-`).

    Examples:
        >>> encode_path("/Users/chris/project")
        '-Users-chris-project'

        >>> encode_path("/Users/chris/My Project.app")
        '-Users-chris-My-Project-app'
    """
    return _UNSAFE_CHARS.sub('-', str(path))


def normalize_path(path: str) -> str:
    return path.rstrip('/') or '/'


def is_strict_descendant(path: str, ancestor: str) -> bool:
    """True when `path` lies below `ancestor` on a path-component boundary.

    `/repo/a/sub` is below `/repo/a`; `/repo/a-wt` is not.
    """
    parent = normalize_path(ancestor)
    prefix = parent if parent.endswith('/') else parent + '/'
    return normalize_path(path).startswith(prefix)


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    """True when `path` equals `ancestor` or lies below it."""
    return normalize_path(path) == normalize_path(ancestor) or is_strict_descendant(path, ancestor)


def matches_any(path: str, ancestors: Iterable[str]) -> bool:
    """True when `path` equals or lies below any of `ancestors`."""
    return any(is_same_or_descendant(path, ancestor) for ancestor in ancestors)
