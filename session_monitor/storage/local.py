"""
Local JSON file mapping store.

Stores session -> repository mappings in ~/.session-monitor/repo_mappings.json
with cross-process locking and atomic writes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from filelock import FileLock
from pydantic import Field

from session_monitor.base_model import StrictModel
from session_monitor.exceptions import MappingConflictError
from session_monitor.models import SessionRepoMapping

__all__ = ['JsonMappingStore', 'MappingFile']

logger = logging.getLogger(__name__)


class MappingFile(StrictModel):
    """The repo_mappings.json file structure.

    This model is NOT frozen to allow mutable sessions dict.
    """

    model_config = {'extra': 'forbid', 'strict': True, 'frozen': False}

    schema_version: str = '1.0'
    sessions: dict[str, SessionRepoMapping] = Field(default_factory=dict)


class JsonMappingStore:
    """Mapping store backed by a single JSON file.

    Uses filelock for cross-process safety and temp file + rename for atomic
    writes. File I/O runs in a worker thread so callers on an event loop are
    never blocked.
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.mapping_file = state_dir / 'repo_mappings.json'
        self.lock_file = self.mapping_file.with_suffix('.lock')

    async def get_mappings(self, session_ids: Iterable[str]) -> Mapping[str, SessionRepoMapping]:
        wanted = set(session_ids)
        if not wanted:
            return {}
        data = await asyncio.to_thread(self._read_locked)
        return {sid: mapping for sid, mapping in data.sessions.items() if sid in wanted}

    async def set_mapping(self, mapping: SessionRepoMapping) -> None:
        await asyncio.to_thread(self._upsert, mapping)

    def _upsert(self, mapping: SessionRepoMapping) -> None:
        """Insert the mapping unless one exists; never re-parent an existing one."""
        self.state_dir.mkdir(parents=True, exist_ok=True)

        # Acquire lock, read, modify, write atomically
        with FileLock(self.lock_file):
            data = self._read_mapping_file()
            existing = data.sessions.get(mapping.session_id)
            if existing is not None:
                if existing.parent_repo_path != mapping.parent_repo_path:
                    raise MappingConflictError(
                        mapping.session_id, existing.parent_repo_path, mapping.parent_repo_path
                    )
                return
            data.sessions[mapping.session_id] = mapping
            self._write_mapping_file(data)

        logger.debug(f'Mapped session {mapping.session_id} -> {mapping.parent_repo_path}')

    def _read_locked(self) -> MappingFile:
        if not self.mapping_file.exists():
            return MappingFile()
        with FileLock(self.lock_file):
            return self._read_mapping_file()

    def _read_mapping_file(self) -> MappingFile:
        """Read and parse repo_mappings.json (empty if missing)."""
        if not self.mapping_file.exists():
            return MappingFile()

        with self.mapping_file.open() as f:
            data = json.load(f)
        return MappingFile.model_validate(data, strict=False)

    def _write_mapping_file(self, data: MappingFile) -> None:
        """Write repo_mappings.json atomically using temp file + rename."""
        tmp_file = self.mapping_file.with_suffix('.tmp.json')

        with tmp_file.open('w') as f:
            json.dump(data.model_dump(mode='json'), f, indent=2, default=str)

        # Atomic rename
        tmp_file.rename(self.mapping_file)
