"""Data models for Specwatch.

This module contains the core data structures used throughout the system:
tasks and activity entries parsed from documents, the result types returned
by mutation primitives, and the change events carried on the push stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Checkbox token written for each status.
STATUS_TO_MARKER: Dict[TaskStatus, str] = {
    TaskStatus.NOT_STARTED: "[ ]",
    TaskStatus.QUEUED: "[~]",
    TaskStatus.IN_PROGRESS: "[>]",
    TaskStatus.COMPLETED: "[x]",
}


class ActivityLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    CORRECTION = "correction"


class EventType(str, Enum):
    """Closed set of message kinds carried on the push stream."""

    INITIAL_STATE = "initial_state"
    ACTIVITY = "activity"
    PRD_UPDATE = "prd_update"
    CORRECTION = "correction"
    HEARTBEAT = "heartbeat"


class ErrorCode(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    WRITE_FAILED = "WRITE_FAILED"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    BACKUP_FAILED = "BACKUP_FAILED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    PARSE_DEGRADED = "PARSE_DEGRADED"
    STREAM_DEGRADED = "STREAM_DEGRADED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


@dataclass(slots=True)
class ParseDiagnostic:
    """Why a parser returned an empty result."""

    code: str
    message: str
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message, "timestamp": self.timestamp}


@dataclass(slots=True)
class Task:
    """A top-level checkbox line from the task board."""

    id: str
    description: str
    status: TaskStatus
    priority: int = 0
    dependencies: List[str] = field(default_factory=list)
    optional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "optional": self.optional,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            description=data["description"],
            status=TaskStatus(data["status"]),
            priority=data.get("priority", 0),
            dependencies=list(data.get("dependencies", [])),
            optional=data.get("optional", False),
        )


@dataclass(slots=True)
class TaskBoardStatus:
    """Aggregate view of the task board."""

    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    queued_tasks: int = 0
    completion_percentage: int = 0
    tasks: List[Task] = field(default_factory=list)
    error: Optional[ParseDiagnostic] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "totalTasks": self.total_tasks,
            "completedTasks": self.completed_tasks,
            "inProgressTasks": self.in_progress_tasks,
            "queuedTasks": self.queued_tasks,
            "completionPercentage": self.completion_percentage,
            "tasks": [task.to_dict() for task in self.tasks],
        }
        if self.error:
            data["error"] = self.error.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskBoardStatus":
        error = data.get("error")
        return cls(
            total_tasks=data.get("totalTasks", 0),
            completed_tasks=data.get("completedTasks", 0),
            in_progress_tasks=data.get("inProgressTasks", 0),
            queued_tasks=data.get("queuedTasks", 0),
            completion_percentage=data.get("completionPercentage", 0),
            tasks=[Task.from_dict(item) for item in data.get("tasks", [])],
            error=ParseDiagnostic(**error) if error else None,
        )


@dataclass(slots=True, frozen=True)
class ActivityEntry:
    """A single entry extracted from the activity log."""

    id: str
    timestamp: str
    message: str
    level: ActivityLevel

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "message": self.message,
            "level": self.level.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityEntry":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            message=data["message"],
            level=ActivityLevel(data["level"]),
        )


@dataclass(slots=True)
class ActivityFeed:
    """Activity parser result: display window plus optional diagnostic."""

    entries: List[ActivityEntry] = field(default_factory=list)
    error: Optional[ParseDiagnostic] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"entries": [entry.to_dict() for entry in self.entries]}
        if self.error:
            data["error"] = self.error.to_dict()
        return data


@dataclass(slots=True)
class Backup:
    """A timestamped snapshot of a document."""

    source_file_name: str
    timestamp: str
    path: Path

    def to_dict(self) -> Dict[str, str]:
        return {
            "source_file_name": self.source_file_name,
            "timestamp": self.timestamp,
            "path": str(self.path),
        }


@dataclass(slots=True)
class WriteResult:
    """Outcome of an atomic write."""

    success: bool
    file_path: Path
    error_code: Optional[ErrorCode] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "file_path": str(self.file_path),
            "error_code": self.error_code.value if self.error_code else None,
            "error": self.error,
        }


@dataclass(slots=True)
class BackupResult:
    """Outcome of a backup operation."""

    success: bool
    backup: Optional[Backup] = None
    error_code: Optional[ErrorCode] = None
    error: Optional[str] = None

    @property
    def backup_path(self) -> Optional[Path]:
        return self.backup.path if self.backup else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "error_code": self.error_code.value if self.error_code else None,
            "error": self.error,
        }


@dataclass(slots=True)
class TaskStatusUpdateResult:
    """Outcome of a checkbox mutation."""

    success: bool
    file_path: Path
    task_id: str
    status: str
    error_code: Optional[ErrorCode] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "file_path": str(self.file_path),
            "task_id": self.task_id,
            "status": self.status,
            "error_code": self.error_code.value if self.error_code else None,
            "error": self.error,
        }


@dataclass(slots=True)
class ChangeEvent:
    """A typed message on the push stream. Never persisted."""

    type: EventType
    data: Any = None
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "timestamp": self.timestamp, "data": self.data}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        return cls(
            type=EventType(data["type"]),
            data=data.get("data"),
            timestamp=data.get("timestamp") or utc_timestamp(),
        )
