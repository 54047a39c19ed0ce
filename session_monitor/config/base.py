"""
Configuration for session-monitor.

Settings are read from `SESSION_MONITOR_*` environment variables, optionally
from a .env file named by LOAD_ENV_FILE.
"""

from __future__ import annotations

import os
import pathlib
from typing import TypeVar

import lazy_object_proxy
import pydantic
import pydantic_settings

T = TypeVar('T', bound='MonitorSettings')


class MonitorSettings(pydantic_settings.BaseSettings):
    """Settings shared by the scan engine, live tailers and search index."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='SESSION_MONITOR_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,  # Fail fast on misconfiguration
        extra='ignore',  # .env may carry settings for other tools
    )

    # Application metadata
    APP_NAME: str = 'session-monitor'
    VERSION: str = '0.1.0'

    # Data locations
    CLAUDE_DATA_DIR: pathlib.Path = pathlib.Path.home() / '.claude'
    CODEX_DATA_DIR: pathlib.Path = pathlib.Path.home() / '.codex'
    STATE_DIR: pathlib.Path = pathlib.Path.home() / '.session-monitor'

    # Scanning
    ACTIVE_WINDOW_SECONDS: float = 60.0  # Transcript modified this recently => session is active
    METADATA_HEAD_BYTES: int = 16_384  # Slug may appear several lines into the file
    GIT_TIMEOUT_SECONDS: float = 10.0

    # Live tailing
    STATUS_TICK_SECONDS: float = 1.5
    RECONCILE_AFTER_SECONDS: float = 5.0
    MAX_RECENT_ACTIVITIES: int = 100

    # Status thresholds - Claude
    CLAUDE_IDLE_AFTER_SECONDS: float = 300.0
    CLAUDE_TOOL_RESULT_RECENT_SECONDS: float = 60.0
    CLAUDE_USER_MESSAGE_RECENT_SECONDS: float = 60.0
    CLAUDE_THINKING_RECENT_SECONDS: float = 30.0
    CLAUDE_APPROVAL_TIMEOUT_SECONDS: float = 5.0

    # Status thresholds - Codex (independent of Claude's, not assumed equal)
    CODEX_IDLE_AFTER_SECONDS: float = 300.0
    CODEX_TOOL_RESULT_RECENT_SECONDS: float = 60.0
    CODEX_USER_MESSAGE_RECENT_SECONDS: float = 60.0
    CODEX_THINKING_RECENT_SECONDS: float = 30.0
    CODEX_APPROVAL_TIMEOUT_SECONDS: float = 0.0  # 0 disables approval detection

    @pydantic.field_validator('STATUS_TICK_SECONDS')
    @classmethod
    def validate_status_tick(cls, v: float) -> float:
        """The periodic re-evaluation must run at a sub-2-second cadence."""
        if not 0 < v < 2:
            raise ValueError('STATUS_TICK_SECONDS must be greater than 0 and less than 2')
        return v

    @pydantic.field_validator('MAX_RECENT_ACTIVITIES', 'METADATA_HEAD_BYTES')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError('must be positive')
        return v


def get_settings(settings_class: type[T], env_file: str | None = None) -> T:
    """
    Factory for creating settings with dynamic .env file loading.

    LOAD_ENV_FILE environment variable specifies custom .env file path.
    When unset, loads from environment variables only.

    Raises:
        FileNotFoundError: If specified .env file doesn't exist
    """
    env_file_path = env_file or os.getenv('LOAD_ENV_FILE')

    if not env_file_path:
        return settings_class()

    resolved_path = pathlib.Path(env_file_path).resolve()
    if not resolved_path.exists():
        raise FileNotFoundError(f'Environment file not found: {resolved_path}')

    return settings_class(_env_file=resolved_path)  # type: ignore[call-arg]


def lazy_settings(settings_class: type[T]) -> T:
    """
    Lazy settings - defers instantiation until first access.

    Returns:
        Proxy that instantiates settings on first access
    """
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))  # type: ignore[return-value]


# Module-level singleton (lazy-loaded)
settings = lazy_settings(MonitorSettings)
