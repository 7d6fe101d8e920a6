"""Append entries to the activity log in the format the parser reads."""

from __future__ import annotations

import logging
from datetime import date as date_type, datetime, timezone
from pathlib import Path
from typing import Optional

from .file_system import BackupManager, atomic_write, file_exists, safe_read
from .models import ErrorCode, WriteResult
from .parsers import find_entry_blocks

logger = logging.getLogger("specwatch.activity_log")

STATUS_EMOJI = {
    "COMPLETE": "✅",
    "IN PROGRESS": "🔄",
    "FAILED": "❌",
    "PAUSED": "⏸️",
}


def format_entry(number: int, title: str, status: str, day: date_type) -> str:
    status = status.strip().upper()
    emoji = STATUS_EMOJI.get(status)
    status_text = f"{emoji} {status}" if emoji else status
    return (
        f"### Entry {number}: {title.strip()}\n"
        f"**Date**: {day.isoformat()}\n"
        f"**Status**: {status_text}\n"
    )


class ActivityLogWriter:
    """Append-only writer for ``ACTIVITY_LOG.md``.

    Each append rewrites the whole file through :func:`atomic_write`, so a
    watcher sees exactly one rename per entry and never a half-appended block.
    With ``backups`` the previous log is snapshotted first and the append is
    refused if that fails.
    """

    def __init__(self, path: Path | str, *, backups: Optional[BackupManager] = None):
        self.path = Path(path)
        self.backups = backups

    def next_entry_number(self, content: Optional[str] = None) -> int:
        if content is None:
            content = safe_read(self.path) or ""
        numbers = [int(block.number) for block in find_entry_blocks(content)]
        return max(numbers, default=0) + 1

    def append_entry(self, title: str, status: str, *, date: Optional[date_type] = None) -> WriteResult:
        if not title or not title.strip():
            raise ValueError("Activity title cannot be empty")
        if not status or not status.strip():
            raise ValueError("Activity status cannot be empty")

        existing = ""
        if file_exists(self.path):
            existing = safe_read(self.path)
            if existing is None:
                # Never replace a log we could not read.
                logger.error(f"Refusing to append to unreadable activity log {self.path}")
                return WriteResult(
                    success=False,
                    file_path=self.path,
                    error_code=ErrorCode.WRITE_FAILED,
                    error=f"Activity log exists but cannot be read: {self.path}",
                )

        number = self.next_entry_number(existing)
        day = date or datetime.now(timezone.utc).date()
        block = format_entry(number, title, status, day)

        if existing and not existing.endswith("\n"):
            existing += "\n"
        separator = "\n" if existing else ""
        content = f"{existing}{separator}{block}"
        if self.backups is not None:
            result = self.backups.atomic_write_with_backup(self.path, content)
        else:
            result = atomic_write(self.path, content)
        if result.success:
            logger.info(f"Appended activity entry {number} to {self.path}")
        return result
