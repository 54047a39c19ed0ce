"""
Live tailing of session transcripts.

One LiveTailer per watched session. Two paths drive it:

- Event-driven: a watchdog notification for the transcript reads the newly
  appended complete lines, folds them into the parse state and publishes.
- Time-driven: a timer thread re-evaluates the status every
  STATUS_TICK_SECONDS (a long tool call writes nothing for a while, and
  status must decay to idle without file events). When no file event has
  arrived for RECONCILE_AFTER_SECONDS and the file grew past the consumed
  offset, the timer reads the delta itself.

Both paths take the tailer's lock and advance the same byte offset, so a byte
is never applied twice. A stopped tailer publishes nothing, even from a
callback that was already in flight.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from session_monitor.config import MonitorSettings, settings as default_settings
from session_monitor.exceptions import TranscriptNotFoundError
from session_monitor.models import SessionMonitorState, SessionStatus, StateUpdate
from session_monitor.providers.base import SessionProvider, StatusThresholds
from session_monitor.pubsub import Broadcaster
from session_monitor.services.parser import (
    TranscriptParseResult,
    apply_lines,
    build_monitor_state,
    evaluate_status,
)
from session_monitor.services.tail import JsonlTail

__all__ = ['LiveTailer', 'SessionFileWatcher', 'TranscriptEventHandler']

logger = logging.getLogger(__name__)


# ==============================================================================
# Watchdog Event Handler
# ==============================================================================


class TranscriptEventHandler(FileSystemEventHandler):
    """Watchdog handler that forwards changes to a single transcript file."""

    def __init__(self, path: Path, on_change: Callable[[], None]) -> None:
        super().__init__()
        self.path = path
        self._on_change = on_change

    def _is_transcript(self, raw_path: Any) -> bool:
        return bool(raw_path) and Path(os.fsdecode(raw_path)) == self.path

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_transcript(event.src_path):
            self._on_change()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_transcript(event.src_path):
            self._on_change()

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic rewrites land as a move onto the transcript path
        if not event.is_directory and self._is_transcript(getattr(event, 'dest_path', None)):
            self._on_change()


# ==============================================================================
# LiveTailer
# ==============================================================================


class LiveTailer:
    """Parse state, byte offset and status for one watched transcript."""

    def __init__(
        self,
        session_id: str,
        path: Path,
        provider: SessionProvider,
        publish: Callable[[StateUpdate], None],
        thresholds: StatusThresholds | None = None,
        max_activities: int = 100,
        reconcile_after_seconds: float = 5.0,
    ) -> None:
        self.session_id = session_id
        self.path = path
        self.provider = provider
        self.thresholds = thresholds or provider.thresholds
        self.max_activities = max_activities
        self.reconcile_after_seconds = reconcile_after_seconds
        self._publish = publish
        self._lock = threading.Lock()
        self._tail = JsonlTail(path)
        self.result = TranscriptParseResult(max_activities=max_activities)
        self.state: SessionMonitorState | None = None
        self.last_event_at: datetime | None = None
        self.readable = True
        self.stopped = False

    @property
    def byte_offset(self) -> int:
        return self._tail.byte_offset

    def stop(self) -> None:
        with self._lock:
            self.stopped = True

    def full_parse(self, now: datetime | None = None) -> SessionMonitorState | None:
        """Reparse the transcript from byte 0 and publish the resulting state. None if it cannot be read."""
        with self._lock:
            if self.stopped:
                return None
            self._tail.reset()
            self.result = TranscriptParseResult(max_activities=self.max_activities)
            self._consume()
            if not self.readable:
                return None
            return self._publish_state(now)

    def on_file_changed(self, now: datetime | None = None) -> None:
        """Watchdog path: read the appended lines and publish."""
        with self._lock:
            if self.stopped:
                return
            self.last_event_at = now or datetime.now(UTC)
            if self._consume():
                self._publish_state(now)
            else:
                self._publish_if_status_changed(now)

    def tick(self, now: datetime | None = None) -> None:
        """Timer path: reconcile missed events, then re-evaluate the status."""
        with self._lock:
            if self.stopped:
                return
            now = now or datetime.now(UTC)
            quiet_for = (now - self.last_event_at).total_seconds() if self.last_event_at else None
            if (quiet_for is None or quiet_for >= self.reconcile_after_seconds) and self._tail.has_unread_bytes():
                logger.debug(f'Reconciling {self.session_id}: file grew without a change event')
                if self._consume():
                    self._publish_state(now)
                    return
            self._publish_if_status_changed(now)

    def _consume(self) -> bool:
        """Fold newly appended lines into the parse state. Returns True if anything was applied."""
        previous_offset = self._tail.byte_offset
        read = self._tail.read_new_lines()
        if read.missing:
            if self.readable:
                logger.warning(f'Transcript for {self.session_id} is missing or unreadable: {self.path}')
            self.readable = False
            return False
        # A transcript that reappears after being unreadable is reread from byte 0
        was_readable, self.readable = self.readable, True
        if read.from_start and (previous_offset > 0 or not was_readable):
            logger.info(f'Transcript for {self.session_id} was truncated or replaced, reparsing')
            self.result = TranscriptParseResult(max_activities=self.max_activities)
        return apply_lines(self.provider, read.lines, self.result) > 0

    def _evaluate(self, now: datetime | None) -> SessionStatus:
        return evaluate_status(self.result, self.thresholds, now)

    def _publish_if_status_changed(self, now: datetime | None) -> None:
        status = self._evaluate(now)
        if self.state is not None and status == self.state.status:
            return
        self._publish_state(now, status)

    def _publish_state(self, now: datetime | None, status: SessionStatus | None = None) -> SessionMonitorState:
        self.result.status = status if status is not None else self._evaluate(now)
        self.state = build_monitor_state(self.result)
        self._publish(StateUpdate(session_id=self.session_id, state=self.state))
        return self.state


# ==============================================================================
# SessionFileWatcher
# ==============================================================================


@dataclasses.dataclass
class _WatchedSession:
    tailer: LiveTailer
    observer: Any
    timer: threading.Thread
    stop_event: threading.Event


class SessionFileWatcher:
    """Watches transcripts of selected sessions and publishes StateUpdates on `states`."""

    def __init__(
        self,
        provider: SessionProvider,
        settings: MonitorSettings | None = None,
        observer_factory: Callable[[], Any] = Observer,
        start_timers: bool = True,
    ) -> None:
        settings = settings or default_settings
        self.provider = provider
        self.tick_seconds = settings.STATUS_TICK_SECONDS
        self.reconcile_after_seconds = settings.RECONCILE_AFTER_SECONDS
        self.max_activities = settings.MAX_RECENT_ACTIVITIES
        self.thresholds = provider.thresholds
        self.states: Broadcaster[StateUpdate] = Broadcaster('states')
        self._observer_factory = observer_factory
        self._start_timers = start_timers
        self._sessions: dict[str, _WatchedSession] = {}
        self._lock = threading.Lock()

    def watched_session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def start_monitoring(
        self,
        session_id: str,
        project_path: str | None = None,
        session_file_path: str | None = None,
    ) -> SessionMonitorState | None:
        """
        Start tailing a session's transcript.

        Performs a full parse and publishes the initial state. Starting an
        already-watched session republishes its current state. Returns None
        (and logs) when no transcript can be found or read.
        """
        with self._lock:
            watched = self._sessions.get(session_id)
            if watched is not None:
                state = watched.tailer.state
                if state is not None:
                    self.states.publish(StateUpdate(session_id=session_id, state=state))
                return state

            try:
                path = self._resolve_path(session_id, project_path, session_file_path)
            except TranscriptNotFoundError as e:
                logger.warning(str(e))
                return None

            tailer = LiveTailer(
                session_id,
                path,
                self.provider,
                self.states.publish,
                thresholds=self.thresholds,
                max_activities=self.max_activities,
                reconcile_after_seconds=self.reconcile_after_seconds,
            )
            state = tailer.full_parse()
            if state is None:
                return None

            observer = self._observer_factory()
            observer.schedule(TranscriptEventHandler(path, tailer.on_file_changed), str(path.parent), recursive=False)
            observer.start()

            stop_event = threading.Event()
            timer = threading.Thread(
                target=self._run_timer,
                args=(tailer, stop_event),
                name=f'status-timer-{session_id[:8]}',
                daemon=True,
            )
            if self._start_timers:
                timer.start()

            self._sessions[session_id] = _WatchedSession(tailer, observer, timer, stop_event)
            logger.info(f'Watching {self.provider.kind} session {session_id} ({path})')
            return state

    def stop_monitoring(self, session_id: str) -> None:
        """Stop tailing. Returns after the watch and timer are torn down."""
        with self._lock:
            watched = self._sessions.pop(session_id, None)
        if watched is None:
            return
        self._teardown(watched)
        logger.info(f'Stopped watching session {session_id}')

    def get_state(self, session_id: str) -> SessionMonitorState | None:
        with self._lock:
            watched = self._sessions.get(session_id)
        return watched.tailer.state if watched is not None else None

    def refresh_state(self, session_id: str) -> SessionMonitorState | None:
        """Full reparse of a watched session's transcript."""
        with self._lock:
            watched = self._sessions.get(session_id)
        return watched.tailer.full_parse() if watched is not None else None

    def set_approval_timeout(self, seconds: float) -> None:
        """Set the awaiting-approval timeout (at least 1 second) for current and future watches."""
        self.thresholds = dataclasses.replace(self.thresholds, approval_timeout=max(1.0, seconds))
        with self._lock:
            for watched in self._sessions.values():
                watched.tailer.thresholds = self.thresholds

    def close(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for watched in sessions:
            self._teardown(watched)

    def _resolve_path(self, session_id: str, project_path: str | None, session_file_path: str | None) -> Path:
        if session_file_path:
            path = Path(session_file_path)
            if path.is_file():
                return path
        located = self.provider.locate_transcript(session_id, project_path)
        if located is None:
            raise TranscriptNotFoundError(session_id)
        return located

    def _run_timer(self, tailer: LiveTailer, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.tick_seconds):
            try:
                tailer.tick()
            except OSError as e:
                logger.warning(f'Status tick failed for {tailer.session_id}: {e}')

    def _teardown(self, watched: _WatchedSession) -> None:
        watched.tailer.stop()
        watched.stop_event.set()
        watched.observer.unschedule_all()
        watched.observer.stop()
        watched.observer.join(timeout=2.0)
        if watched.timer.is_alive() and watched.timer is not threading.current_thread():
            watched.timer.join(timeout=2.0)
