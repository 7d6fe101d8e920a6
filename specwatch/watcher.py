"""Bridge file-system notifications to parsed document snapshots.

A :class:`FileWatcher` watches the activity log and the task board through a
``watchdog`` observer. Whenever one of them changes it re-parses that file
and hands a full snapshot (never a diff) to the listeners registered for the
file's role. Problems registering a watch or parsing a file are reported as
``WatchRole.ERROR`` events, never raised.

Listeners run on the observer thread; consumers living on an event loop must
hop back onto it themselves (see :mod:`specwatch.stream`).
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import SyncConfig
from .models import ParseDiagnostic, utc_timestamp
from .parsers import ActivityLogParser, TaskBoardParser

logger = logging.getLogger("specwatch.watcher")


class WatchRole(str, Enum):
    ACTIVITY = "activity"
    PRD = "prd"
    ERROR = "error"


@dataclass(slots=True)
class WatchEvent:
    """A fresh snapshot (or diagnostic) for one watched document."""

    role: WatchRole
    path: Path
    data: Any
    timestamp: str = field(default_factory=utc_timestamp)


Listener = Callable[[WatchEvent], None]

_RELEVANT_EVENTS = (EVENT_TYPE_MODIFIED, EVENT_TYPE_CREATED, EVENT_TYPE_MOVED)


def _key(path: Path | str) -> str:
    return os.path.normcase(os.path.abspath(os.fspath(path)))


class _DocumentEventHandler(FileSystemEventHandler):
    """Route raw directory events to the watched documents they touch."""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT_EVENTS:
            return
        # Atomic writes arrive as a rename of ``<doc>.tmp`` onto the document.
        path = event.dest_path if event.event_type == EVENT_TYPE_MOVED else event.src_path
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        self._watcher.handle_change(path)


class FileWatcher:
    """Watch the activity log and task board named by a :class:`SyncConfig`."""

    def __init__(self, config: SyncConfig, *, observer_factory: Callable[[], Any] = Observer):
        self.config = config
        self._observer_factory = observer_factory
        self._observer = None
        self._documents: Dict[str, WatchRole] = {}
        self._listeners: Dict[WatchRole, List[Listener]] = {role: [] for role in WatchRole}
        self._lock = threading.Lock()
        self._watching = False
        self._closed = False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on(self, role: WatchRole, listener: Listener) -> None:
        with self._lock:
            self._listeners[WatchRole(role)].append(listener)

    def off(self, role: WatchRole, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners[WatchRole(role)]
            if listener in listeners:
                listeners.remove(listener)

    def listener_count(self) -> int:
        with self._lock:
            return sum(len(listeners) for listeners in self._listeners.values())

    def _emit(self, event: WatchEvent) -> None:
        with self._lock:
            listeners = list(self._listeners[event.role])
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener for {event.role.value} failed: {e}", exc_info=True)

    def _emit_diagnostic(self, path: Path, code: str, message: str) -> None:
        logger.warning(f"{message} ({path})")
        self._emit(WatchEvent(
            role=WatchRole.ERROR,
            path=path,
            data=ParseDiagnostic(code=code, message=message),
        ))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Register one watch per document; missing targets degrade to diagnostics."""
        if self._closed:
            raise RuntimeError("FileWatcher has been closed")
        if self._watching:
            raise RuntimeError("FileWatcher is already watching files")

        self._observer = self._observer_factory()
        handler = _DocumentEventHandler(self)
        scheduled: set[str] = set()

        for path, role in (
            (self.config.activity_log_path, WatchRole.ACTIVITY),
            (self.config.task_board_path, WatchRole.PRD),
        ):
            self._register(Path(path), role, handler, scheduled)

        try:
            self._observer.start()
        except OSError as e:
            # e.g. inotify watch limit reached; carry on without live updates.
            for key in list(self._documents):
                self._emit_diagnostic(Path(key), "EWATCH", f"Could not start file observer: {e}")
            self._documents.clear()
            self._observer = None
        self._watching = True
        logger.info(f"Watching {len(self._documents)} document(s)")

    def _register(self, path: Path, role: WatchRole, handler: _DocumentEventHandler, scheduled: set) -> None:
        directory = path.parent
        if not directory.is_dir():
            self._emit_diagnostic(path, "ENOENT", f"Directory not found for {role.value} document")
            return
        if not path.exists():
            # Still watch the directory so the document is picked up once created.
            self._emit_diagnostic(path, "ENOENT", f"File not found: {path.name}")

        try:
            if _key(directory) not in scheduled:
                self._observer.schedule(handler, os.fspath(directory), recursive=False)
                scheduled.add(_key(directory))
        except OSError as e:
            self._emit_diagnostic(path, "EWATCH", f"File watcher error for {role.value}: {e}")
            return
        self._documents[_key(path)] = role

    def handle_change(self, path: Path | str) -> None:
        """Re-parse ``path`` and emit its snapshot if it is a watched document."""
        if self._closed:
            return
        role = self._documents.get(_key(path))
        if role is None:
            return

        document = Path(path)
        try:
            if role is WatchRole.ACTIVITY:
                data = ActivityLogParser.parse(document)
            else:
                data = TaskBoardParser.parse(document)
        except Exception as e:
            logger.error(f"Failed to parse {role.value} file {document}: {e}", exc_info=True)
            self._emit_diagnostic(document, "PARSE_ERROR", f"Failed to parse {role.value} file: {e}")
            return

        self._emit(WatchEvent(role=role, path=document, data=data))

    def close(self) -> None:
        """Stop every watch and drop every listener. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            observer, self._observer = self._observer, None
            for listeners in self._listeners.values():
                listeners.clear()

        if observer is not None:
            try:
                observer.stop()
                if observer.is_alive():
                    observer.join(timeout=5)
            except RuntimeError as e:
                logger.warning(f"Error while stopping file observer: {e}")
        self._documents.clear()
        self._watching = False
        logger.debug("FileWatcher closed")

    def is_active(self) -> bool:
        return self._watching

    def watch_count(self) -> int:
        return len(self._documents)

    def __enter__(self) -> "FileWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
