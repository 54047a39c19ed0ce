"""
Shared fixtures.

Every test works against real files under tmp_path; provider data directories
and the state directory are redirected there through MonitorSettings.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from session_monitor.config import MonitorSettings
from session_monitor.providers import ClaudeProvider, CodexProvider, build_provider


@pytest.fixture
def settings(tmp_path: Path) -> MonitorSettings:
    return MonitorSettings(
        CLAUDE_DATA_DIR=tmp_path / 'claude',
        CODEX_DATA_DIR=tmp_path / 'codex',
        STATE_DIR=tmp_path / 'state',
    )


@pytest.fixture
def claude(settings: MonitorSettings) -> ClaudeProvider:
    provider = build_provider('claude', settings)
    assert isinstance(provider, ClaudeProvider)
    return provider


@pytest.fixture
def codex(settings: MonitorSettings) -> CodexProvider:
    provider = build_provider('codex', settings)
    assert isinstance(provider, CodexProvider)
    return provider
