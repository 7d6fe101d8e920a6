"""Parsers for the activity log and the task board.

Both documents are loosely structured markdown, so they are read with small
regular expressions. Each pattern sits in its own pure function; the parser
classes only compose them. File-level entry points never raise for a
missing, unreadable or non-UTF-8 file: they return an empty result carrying a
:class:`~specwatch.models.ParseDiagnostic`.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .models import (
    ActivityEntry,
    ActivityFeed,
    ActivityLevel,
    ParseDiagnostic,
    Task,
    TaskBoardStatus,
    TaskStatus,
)

logger = logging.getLogger("specwatch.parsers")

MAX_ENTRIES = 100
DISPLAY_ENTRIES = 10

_ENTRY_NAMESPACE = uuid.UUID("6f1c5a0e-3c1b-4d7e-9a55-2b8f4d1e7c90")


def _read_document(path: Path | str, parser: str) -> Tuple[Optional[str], Optional[ParseDiagnostic]]:
    """Read a document, degrading absent, unreadable or undecodable files to a diagnostic."""
    try:
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return handle.read(), None
    except FileNotFoundError as e:
        code = "ENOENT"
        message = str(e)
    except (PermissionError, IsADirectoryError) as e:
        code = "EACCES"
        message = str(e)
    except UnicodeDecodeError as e:
        code = "EDECODE"
        message = f"{path} is not valid UTF-8: {e}"
    except OSError as e:
        code = "EIO"
        message = str(e)
    logger.warning(f"[{parser}] Parse degraded for {path}: {code} {message}")
    return None, ParseDiagnostic(code=code, message=message)


# ----------------------------------------------------------------------
# Activity log patterns
# ----------------------------------------------------------------------

_ENTRY_HEADER = re.compile(r"^### Entry (\d+): (.+)$", re.MULTILINE)
_ENTRY_DATE = re.compile(r"\*\*Date\*\*:\s*(\d{4}-\d{2}-\d{2})")
_ENTRY_STATUS = re.compile(r"\*\*Status\*\*:[ \t]*(?:(?:✅|🔄|❌|⏸)\ufe0f?[ \t]*)?(\S[^\n]*)")

_CORRECTION_MARKERS = ("self-correction", "self-healing", "correction", "b.l.a.s.t")
_ERROR_MARKERS = ("error", "failed", "failure")
_SUCCESS_MARKERS = ("complete", "success", "ready")


@dataclass(slots=True, frozen=True)
class EntryBlock:
    number: str
    title: str
    body: str


def find_entry_blocks(content: str) -> Iterator[EntryBlock]:
    """Split the log into ``### Entry N: Title`` blocks."""
    headers = list(_ENTRY_HEADER.finditer(content))
    for index, header in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(content)
        yield EntryBlock(
            number=header.group(1),
            title=header.group(2).strip(),
            body=content[header.start():end],
        )


def extract_entry_date(block: str) -> Optional[str]:
    """The ``**Date**: YYYY-MM-DD`` value, if present."""
    match = _ENTRY_DATE.search(block)
    return match.group(1) if match else None


def extract_entry_status(block: str) -> str:
    """The ``**Status**:`` text with its leading emoji stripped."""
    match = _ENTRY_STATUS.search(block)
    return match.group(1).strip() if match else "UNKNOWN"


def detect_activity_level(title: str, status: str) -> ActivityLevel:
    """Classify an entry; correction beats error beats success beats info."""
    combined = f"{title} {status}".lower()
    if any(marker in combined for marker in _CORRECTION_MARKERS):
        return ActivityLevel.CORRECTION
    if any(marker in combined for marker in _ERROR_MARKERS):
        return ActivityLevel.ERROR
    if any(marker in combined for marker in _SUCCESS_MARKERS):
        return ActivityLevel.SUCCESS
    return ActivityLevel.INFO


def _entry_timestamp(date: str) -> str:
    try:
        parsed = datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        parsed = datetime.now(timezone.utc)
    return parsed.strftime("%Y-%m-%dT00:00:00.000Z")


class ActivityLogParser:
    """Extract the most recent activity entries from ``ACTIVITY_LOG.md``.

    The log is a sequence of blocks::

        ### Entry 12: Wire the change stream
        **Date**: 2026-01-12
        **Status**: ✅ COMPLETE

    At most ``MAX_ENTRIES`` entries are kept after sorting and only the last
    ``DISPLAY_ENTRIES`` of those are returned, oldest first.
    """

    MAX_ENTRIES = MAX_ENTRIES
    DISPLAY_ENTRIES = DISPLAY_ENTRIES

    @classmethod
    def parse_text(cls, content: str) -> List[ActivityEntry]:
        entries: List[ActivityEntry] = []
        for block in find_entry_blocks(content):
            date = extract_entry_date(block.body) or datetime.now(timezone.utc).strftime("%Y-%m-%d")
            status = extract_entry_status(block.body)
            entries.append(ActivityEntry(
                id=str(uuid.uuid5(_ENTRY_NAMESPACE, f"{block.number}|{block.title}|{date}")),
                timestamp=_entry_timestamp(date),
                message=f"Entry {block.number}: {block.title} - {status}",
                level=detect_activity_level(block.title, status),
            ))

        # Stable sort keeps document order for entries sharing a date.
        entries.sort(key=lambda entry: entry.timestamp)
        bounded = entries[-cls.MAX_ENTRIES:]
        return bounded[-cls.DISPLAY_ENTRIES:]

    @classmethod
    def parse(cls, path: Path | str) -> ActivityFeed:
        content, diagnostic = _read_document(path, "ActivityLogParser")
        if content is None:
            return ActivityFeed(entries=[], error=diagnostic)
        return ActivityFeed(entries=cls.parse_text(content))


# ----------------------------------------------------------------------
# Task board patterns
# ----------------------------------------------------------------------

# Unindented only: nested checkboxes are sub-items and are not counted.
_TASK_LINE = re.compile(r"^- \[([ xX~>])\](\*?) (?:(\d+(?:\.\d+)*)\.?\s+)?(.+)$")
_DEPENDS_ON = re.compile(r"depends on ([\d.]*\d)", re.IGNORECASE)
_REQUIRES = re.compile(r"requires (?:task )?([\d.]*\d)", re.IGNORECASE)
_BLOCKED_BY = re.compile(r"blocked by ([\d., ]+)", re.IGNORECASE)
_TASK_ID = re.compile(r"^\d+(?:\.\d+)*$")

_MARKER_STATUS = {
    " ": TaskStatus.NOT_STARTED,
    "~": TaskStatus.QUEUED,
    ">": TaskStatus.IN_PROGRESS,
    "x": TaskStatus.COMPLETED,
    "X": TaskStatus.COMPLETED,
}


@dataclass(slots=True, frozen=True)
class TaskLine:
    marker: str
    optional: bool
    task_id: Optional[str]
    description: str


def match_task_line(line: str) -> Optional[TaskLine]:
    """Recognise a top-level ``- [g] [ID] description`` line."""
    match = _TASK_LINE.match(line.rstrip("\r"))
    if not match:
        return None
    marker, star, task_id, description = match.groups()
    return TaskLine(marker=marker, optional=bool(star), task_id=task_id, description=description.strip())


def status_from_marker(marker: str) -> TaskStatus:
    return _MARKER_STATUS.get(marker, TaskStatus.NOT_STARTED)


def extract_dependencies(description: str) -> List[str]:
    """Task IDs referenced by ``depends on``, ``requires`` or ``blocked by``."""
    found: List[str] = []
    found.extend(match.group(1) for match in _DEPENDS_ON.finditer(description))
    found.extend(match.group(1) for match in _REQUIRES.finditer(description))
    for match in _BLOCKED_BY.finditer(description):
        for candidate in match.group(1).split(","):
            candidate = candidate.strip().rstrip(".")
            if _TASK_ID.match(candidate):
                found.append(candidate)
    return list(dict.fromkeys(found))


def completion_percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    # Half-up, not banker's rounding.
    return int(completed * 100 / total + 0.5)


class TaskBoardParser:
    """Summarise the checkbox tasks of ``PRD.md``."""

    @staticmethod
    def parse_text(content: str) -> TaskBoardStatus:
        tasks: List[Task] = []
        for line in content.split("\n"):
            parsed = match_task_line(line)
            if parsed is None:
                continue
            tasks.append(Task(
                id=parsed.task_id or str(len(tasks) + 1),
                description=parsed.description,
                status=status_from_marker(parsed.marker),
                priority=0,
                dependencies=extract_dependencies(parsed.description),
                optional=parsed.optional,
            ))

        completed = sum(1 for task in tasks if task.status is TaskStatus.COMPLETED)
        return TaskBoardStatus(
            total_tasks=len(tasks),
            completed_tasks=completed,
            in_progress_tasks=sum(1 for task in tasks if task.status is TaskStatus.IN_PROGRESS),
            queued_tasks=sum(1 for task in tasks if task.status is TaskStatus.QUEUED),
            completion_percentage=completion_percentage(completed, len(tasks)),
            tasks=tasks,
        )

    @classmethod
    def parse(cls, path: Path | str) -> TaskBoardStatus:
        content, diagnostic = _read_document(path, "TaskBoardParser")
        if content is None:
            return TaskBoardStatus(error=diagnostic)
        return cls.parse_text(content)
