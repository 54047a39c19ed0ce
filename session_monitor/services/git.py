"""
Git worktree detection.

Runs the system git binary. Every failure (missing binary, non-zero exit,
timeout) degrades: the caller always gets at least one synthetic main-checkout
entry for the repository.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from session_monitor.exceptions import GitCommandError
from session_monitor.models import WorktreeBranch

__all__ = ['GitWorktreeDetector', 'WorktreeDetector', 'parse_worktree_porcelain']

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = 'main'


class WorktreeDetector(Protocol):
    """Anything that can list a repository's checkouts. Called from worker threads."""

    def list_worktrees(self, repo_path: str) -> list[WorktreeBranch]: ...


def parse_worktree_porcelain(output: str) -> list[WorktreeBranch]:
    """
    Parse `git worktree list --porcelain`.

    Entries are blank-line separated. The first non-bare entry is the main
    checkout; the rest are linked worktrees. A detached HEAD is named after the
    worktree directory.

    Example input:
        worktree /repo
        HEAD 1a2b3c
        branch refs/heads/main

        worktree /repo-feature
        HEAD 4d5e6f
        detached
    """
    worktrees: list[WorktreeBranch] = []
    for block in output.strip().split('\n\n'):
        fields: dict[str, str] = {}
        for line in block.splitlines():
            key, _, value = line.strip().partition(' ')
            if key:
                fields[key] = value
        path = fields.get('worktree')
        if not path or 'bare' in fields:
            continue

        branch = fields.get('branch')
        if branch:
            name = branch.removeprefix('refs/heads/')
        else:
            name = Path(path).name

        worktrees.append(WorktreeBranch(name=name, path=path, is_worktree=bool(worktrees)))
    return worktrees


class GitWorktreeDetector:
    """Lists worktrees with `git -C <repo> worktree list --porcelain`."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def run_git(self, repo_path: str, *args: str) -> str:
        """
        Run a git command against `repo_path`.

        Raises:
            GitCommandError: If git is missing, exits non-zero or times out
        """
        command = ['-C', repo_path, *args]
        try:
            result = subprocess.run(
                ['git', *command],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise GitCommandError(command, 'git executable not found') from e
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(command, f'timed out after {self.timeout}s') from e

        if result.returncode != 0:
            raise GitCommandError(command, result.stderr.strip() or f'exit code {result.returncode}')
        return result.stdout

    def current_branch(self, repo_path: str) -> str:
        try:
            branch = self.run_git(repo_path, 'rev-parse', '--abbrev-ref', 'HEAD').strip()
        except GitCommandError as e:
            logger.warning(f'Cannot read current branch of {repo_path}: {e.detail}')
            return DEFAULT_BRANCH
        return branch or DEFAULT_BRANCH

    def list_worktrees(self, repo_path: str) -> list[WorktreeBranch]:
        try:
            worktrees = parse_worktree_porcelain(self.run_git(repo_path, 'worktree', 'list', '--porcelain'))
        except GitCommandError as e:
            logger.warning(f'Worktree detection failed for {repo_path}: {e.detail}')
            worktrees = []

        if worktrees:
            return worktrees

        # Nothing reported: the repository itself is the only checkout
        return [WorktreeBranch(name=self.current_branch(repo_path), path=repo_path, is_worktree=False)]
