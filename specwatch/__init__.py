"""Specwatch - safe spec-document mutation and live change streaming."""

from .activity_log import ActivityLogWriter
from .client import ClientSync, ConnectionState, SyncState, backoff_delay
from .config import SyncConfig
from .file_system import (
    BackupManager,
    atomic_write,
    safe_read,
    validate_markdown,
)
from .models import (
    ActivityEntry,
    ActivityFeed,
    ActivityLevel,
    ChangeEvent,
    ErrorCode,
    EventType,
    Task,
    TaskBoardStatus,
    TaskStatus,
)
from .parsers import ActivityLogParser, TaskBoardParser
from .stream import ChangeStream, StreamState
from .sync_logging import setup_logging
from .task_status import update_task_status
from .watcher import FileWatcher, WatchEvent, WatchRole

__all__ = [
    "ActivityEntry",
    "ActivityFeed",
    "ActivityLevel",
    "ActivityLogParser",
    "ActivityLogWriter",
    "BackupManager",
    "ChangeEvent",
    "ChangeStream",
    "ClientSync",
    "ConnectionState",
    "ErrorCode",
    "EventType",
    "FileWatcher",
    "StreamState",
    "SyncConfig",
    "SyncState",
    "Task",
    "TaskBoardParser",
    "TaskBoardStatus",
    "TaskStatus",
    "WatchEvent",
    "WatchRole",
    "atomic_write",
    "backoff_delay",
    "safe_read",
    "setup_logging",
    "update_task_status",
    "validate_markdown",
]
