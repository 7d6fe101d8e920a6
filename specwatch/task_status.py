"""Surgical task status edits.

Only the checkbox token of the first line carrying the requested task ID is
rewritten; indentation, bullet, optional-task asterisk, spacing, ID and
trailing text are re-emitted verbatim so the rest of the document stays
byte-identical.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .file_system import BackupManager, atomic_write, safe_read, validate_markdown
from .models import STATUS_TO_MARKER, ErrorCode, TaskStatus, TaskStatusUpdateResult
from .sync_logging import log_operation, log_task_status_update

logger = logging.getLogger("specwatch.task_status")


def task_line_pattern(task_id: str) -> re.Pattern[str]:
    """Pattern for a checkbox line whose ID is exactly ``task_id``.

    Groups: 1 indentation and bullet, 2 optional ``*``, 3 spacing, 4 the ID,
    5 the rest of the line. The ID must not continue with a digit or with
    ``.<digit>``, so ``2`` never matches ``2.1`` or ``20``.
    """
    return re.compile(
        r"^(\s*[-*+]\s*)\[[^\]]*\](\*?)(\s+)(" + re.escape(task_id) + r")(?!\d|\.\d)(.*)$"
    )


def replace_checkbox(lines: List[str], task_id: str, status: TaskStatus) -> Tuple[List[str], Optional[int]]:
    """Return ``lines`` with the first matching task's checkbox replaced.

    The second element is the index of the changed line, or ``None`` when no
    line carries ``task_id``.
    """
    pattern = task_line_pattern(task_id)
    marker = STATUS_TO_MARKER[status]
    for index, line in enumerate(lines):
        match = pattern.match(line)
        if match:
            updated = list(lines)
            updated[index] = f"{match.group(1)}{marker}{match.group(2)}{match.group(3)}{match.group(4)}{match.group(5)}"
            return updated, index
    return lines, None


def _coerce_status(status: Union[TaskStatus, str]) -> Optional[TaskStatus]:
    if isinstance(status, TaskStatus):
        return status
    try:
        return TaskStatus(str(status).strip().lower())
    except ValueError:
        return None


def update_task_status(
    path: Path | str,
    task_id: str,
    status: Union[TaskStatus, str],
    *,
    backups: Optional[BackupManager] = None,
    create_backup: bool = True,
) -> TaskStatusUpdateResult:
    """Set the checkbox of ``task_id`` in the document at ``path``.

    With ``create_backup`` (the default) the document is snapshotted through
    ``backups`` before being replaced, and the write is refused if the
    snapshot fails.
    """
    target = Path(path)
    task_id = task_id.strip()
    resolved = _coerce_status(status)
    status_label = resolved.value if resolved else str(status)

    def result(error_code: Optional[ErrorCode] = None, error: Optional[str] = None) -> TaskStatusUpdateResult:
        outcome = TaskStatusUpdateResult(
            success=error_code is None,
            file_path=target,
            task_id=task_id,
            status=status_label,
            error_code=error_code,
            error=error,
        )
        log_task_status_update(
            str(target), task_id, status_label, outcome.success,
            error_code=error_code.value if error_code else None,
        )
        return outcome

    if resolved is None:
        return result(ErrorCode.VALIDATION_FAILED, f"Unknown task status '{status}' for task '{task_id}'")
    if not task_id:
        return result(ErrorCode.TASK_NOT_FOUND, "Task ID cannot be empty")

    with log_operation("update_task_status", path=str(target), task_id=task_id, status=status_label):
        content = safe_read(target)
        if content is None:
            return result(ErrorCode.FILE_NOT_FOUND, f"Tasks file does not exist or cannot be read: {target}")

        lines, changed = replace_checkbox(content.split("\n"), task_id, resolved)
        if changed is None:
            logger.warning(f"Task '{task_id}' not found in {target}")
            return result(ErrorCode.TASK_NOT_FOUND, f'Task with ID "{task_id}" not found in tasks file')

        updated = "\n".join(lines)
        if not validate_markdown(updated):
            return result(ErrorCode.VALIDATION_FAILED, f"Updated content for task '{task_id}' failed markdown validation")

        if create_backup:
            if backups is None:
                backups = BackupManager(target.parent / ".backups")
            write = backups.atomic_write_with_backup(target, updated, validate_markdown)
        else:
            write = atomic_write(target, updated, validate_markdown)

        if not write.success:
            return result(write.error_code or ErrorCode.WRITE_FAILED, f"Task '{task_id}': {write.error}")

    logger.info(f"Task '{task_id}' in {target} set to {status_label} (line {changed + 1})")
    return result()
