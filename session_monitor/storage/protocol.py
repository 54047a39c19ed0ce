"""
Session-to-repository mapping store protocol.

The assignment engine depends only on this interface, so the backing storage
(JSON file, SQLite, ...) can change without touching the matching algorithm.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from session_monitor.models import SessionRepoMapping


@runtime_checkable
class SessionRepoMappingStore(Protocol):
    """Protocol for persisted session -> (parent repo, worktree) mappings."""

    async def get_mappings(self, session_ids: Iterable[str]) -> Mapping[str, SessionRepoMapping]:
        """
        Bulk-read mappings.

        Args:
            session_ids: Session IDs to look up

        Returns:
            Mapping of session ID -> stored mapping, only for IDs that have one
        """
        ...

    async def set_mapping(self, mapping: SessionRepoMapping) -> None:
        """
        Idempotent upsert of a mapping.

        Writing the same parent repository again is a no-op.

        Raises:
            MappingConflictError: If the session is already mapped to a
                different parent repository
        """
        ...
