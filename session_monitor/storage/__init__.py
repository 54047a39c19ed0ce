"""Storage backends for session -> repository mappings."""

from session_monitor.storage.local import JsonMappingStore
from session_monitor.storage.protocol import SessionRepoMappingStore

__all__ = ['JsonMappingStore', 'SessionRepoMappingStore']
