"""Agent CLI providers: Claude Code and Codex."""

from __future__ import annotations

from session_monitor.config import MonitorSettings
from session_monitor.models import ProviderKind
from session_monitor.providers.base import SessionProvider, StatusThresholds
from session_monitor.providers.claude import APPROVAL_GATED_TOOLS, ClaudeProvider
from session_monitor.providers.codex import CodexProvider

__all__ = [
    'ClaudeProvider',
    'CodexProvider',
    'SessionProvider',
    'StatusThresholds',
    'build_provider',
    'thresholds_for',
]


def thresholds_for(kind: ProviderKind, settings: MonitorSettings) -> StatusThresholds:
    """Status thresholds for a provider. Each provider is configured independently."""
    if kind == 'claude':
        return StatusThresholds(
            idle_after=settings.CLAUDE_IDLE_AFTER_SECONDS,
            tool_result_recent=settings.CLAUDE_TOOL_RESULT_RECENT_SECONDS,
            user_message_recent=settings.CLAUDE_USER_MESSAGE_RECENT_SECONDS,
            thinking_recent=settings.CLAUDE_THINKING_RECENT_SECONDS,
            approval_timeout=settings.CLAUDE_APPROVAL_TIMEOUT_SECONDS,
            approval_tools=APPROVAL_GATED_TOOLS,
        )
    return StatusThresholds(
        idle_after=settings.CODEX_IDLE_AFTER_SECONDS,
        tool_result_recent=settings.CODEX_TOOL_RESULT_RECENT_SECONDS,
        user_message_recent=settings.CODEX_USER_MESSAGE_RECENT_SECONDS,
        thinking_recent=settings.CODEX_THINKING_RECENT_SECONDS,
        approval_timeout=settings.CODEX_APPROVAL_TIMEOUT_SECONDS,
    )


def build_provider(kind: ProviderKind, settings: MonitorSettings) -> SessionProvider:
    """Create the provider for `kind` with data directory and thresholds from settings."""
    thresholds = thresholds_for(kind, settings)
    if kind == 'claude':
        return ClaudeProvider(settings.CLAUDE_DATA_DIR, thresholds)
    if kind == 'codex':
        return CodexProvider(settings.CODEX_DATA_DIR, thresholds)
    raise ValueError(f'Unknown provider: {kind}')
