"""Configuration for session-monitor."""

from session_monitor.config.base import MonitorSettings, get_settings, lazy_settings, settings

__all__ = ['MonitorSettings', 'get_settings', 'lazy_settings', 'settings']
