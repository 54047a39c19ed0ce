"""Live monitoring of local AI coding-agent CLI sessions across git repositories and worktrees."""

__version__ = '0.1.0'
