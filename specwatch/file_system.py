"""Atomic document writes and timestamped backups.

Every mutation goes through :func:`atomic_write`: content lands in a
``<path>.tmp`` sibling first and is then renamed over the target, so readers
only ever observe the complete old or the complete new file.
:class:`BackupManager` adds snapshot/retention on top and refuses to write
when an existing document could not be backed up first.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

from .models import Backup, BackupResult, ErrorCode, WriteResult
from .sync_logging import log_backup_created, log_error_with_context, log_performance

logger = logging.getLogger("specwatch.file_system")

Validator = Callable[[str], bool]

TEMP_SUFFIX = ".tmp"
BACKUP_MARKER = ".backup."
BACKUP_EXTENSION = ".md"


def temp_path_for(path: Path | str) -> Path:
    return Path(f"{path}{TEMP_SUFFIX}")


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {path}: {e}")


@log_performance("atomic_write")
def atomic_write(
    path: Path | str,
    content: str,
    validate: Optional[Validator] = None,
    *,
    create_dirs: bool = True,
    encoding: str = "utf-8",
) -> WriteResult:
    """Write ``content`` to ``path`` via temp-file-then-rename.

    If ``validate`` rejects the content the temp file is removed and the
    original file is left untouched.
    """
    target = Path(path)
    temp_path = temp_path_for(target)

    try:
        if create_dirs:
            target.parent.mkdir(parents=True, exist_ok=True)

        with open(temp_path, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())

        if validate is not None and not validate(content):
            _discard(temp_path)
            logger.warning(f"Validation rejected write to {target}")
            return WriteResult(
                success=False,
                file_path=target,
                error_code=ErrorCode.VALIDATION_FAILED,
                error="Content validation failed",
            )

        os.replace(temp_path, target)
    except OSError as e:
        _discard(temp_path)
        log_error_with_context(e, {"operation": "atomic_write", "path": str(target)})
        return WriteResult(
            success=False,
            file_path=target,
            error_code=ErrorCode.WRITE_FAILED,
            error=f"Failed to write file: {e}",
        )

    logger.debug(f"Atomically wrote {len(content)} characters to {target}")
    return WriteResult(success=True, file_path=target)


def safe_read(path: Path | str, encoding: str = "utf-8") -> Optional[str]:
    """Return the file's exact text, or ``None`` when it cannot be read."""
    try:
        with open(path, "r", encoding=encoding, newline="") as handle:
            return handle.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Could not read {path}: {e}")
        return None


def file_exists(path: Path | str) -> bool:
    return Path(path).is_file()


def validate_basic_content(content: str) -> bool:
    """Content must be non-empty and not just whitespace."""
    return bool(content) and bool(content.strip())


def validate_markdown(content: str) -> bool:
    """Generic well-formedness check for a markdown document.

    The document format is deliberately loose, so this only rejects text
    that could not be a document at all (empty, whitespace, NUL bytes).
    """
    if not validate_basic_content(content):
        return False
    return "\x00" not in content


# Backup names embed the timestamp, so they must be strictly increasing even
# when several backups are taken within one clock tick.
_timestamp_lock = threading.Lock()
_last_backup_time: Optional[datetime] = None


def _next_backup_time() -> datetime:
    global _last_backup_time
    with _timestamp_lock:
        now = datetime.now(timezone.utc)
        if _last_backup_time is not None and now <= _last_backup_time:
            now = _last_backup_time + timedelta(microseconds=1)
        _last_backup_time = now
        return now


def backup_timestamp(moment: datetime) -> str:
    """ISO-8601 with ``:`` and ``.`` replaced by ``-`` (filesystem safe)."""
    iso = moment.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")
    return iso.replace(":", "-").replace(".", "-")


def backup_file_name(source: Path | str, timestamp: str) -> str:
    return f"{Path(source).name}{BACKUP_MARKER}{timestamp}{BACKUP_EXTENSION}"


class BackupManager:
    """Create, list, prune and restore timestamped document snapshots."""

    def __init__(self, backup_dir: Path | str, max_backups: int = 10, *, encoding: str = "utf-8"):
        if max_backups < 1:
            raise ValueError(f"max_backups must be at least 1, got: {max_backups}")
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self.encoding = encoding

    @classmethod
    def from_config(cls, config) -> "BackupManager":
        return cls(config.backup_dir, config.max_backups)

    def _prefix(self, source: Path | str) -> str:
        return f"{Path(source).name}{BACKUP_MARKER}"

    @log_performance("create_backup")
    def create_backup(self, path: Path | str) -> BackupResult:
        """Snapshot ``path`` into the backup directory, then apply retention."""
        source = Path(path)
        if not file_exists(source):
            return BackupResult(
                success=False,
                error_code=ErrorCode.FILE_NOT_FOUND,
                error=f"Source file does not exist: {source}",
            )

        timestamp = backup_timestamp(_next_backup_time())
        backup_path = self.backup_dir / backup_file_name(source, timestamp)

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            with open(source, "r", encoding=self.encoding, newline="") as handle:
                content = handle.read()
            with open(backup_path, "w", encoding=self.encoding, newline="") as handle:
                handle.write(content)
        except (OSError, UnicodeDecodeError) as e:
            log_error_with_context(e, {"operation": "create_backup", "path": str(source)})
            return BackupResult(
                success=False,
                error_code=ErrorCode.BACKUP_FAILED,
                error=f"Failed to create backup: {e}",
            )

        self._prune(source)
        backup = Backup(source_file_name=source.name, timestamp=timestamp, path=backup_path)
        log_backup_created(str(source), str(backup_path))
        return BackupResult(success=True, backup=backup)

    def _prune(self, source: Path) -> None:
        for stale in self.list_backups(source)[self.max_backups:]:
            try:
                stale.unlink()
                logger.debug(f"Pruned backup {stale}")
            except OSError as e:
                logger.warning(f"Could not prune backup {stale}: {e}")

    def list_backups(self, path: Path | str) -> List[Path]:
        """Backups of ``path``, newest first."""
        prefix = self._prefix(path)
        try:
            names = [entry.name for entry in self.backup_dir.iterdir()
                     if entry.is_file() and entry.name.startswith(prefix)]
        except OSError:
            return []
        return [self.backup_dir / name for name in sorted(names, reverse=True)]

    def restore_from_backup(self, backup_path: Path | str, target_path: Path | str) -> WriteResult:
        """Atomically replace ``target_path`` with a backup's content."""
        backup = Path(backup_path)
        target = Path(target_path)
        content = safe_read(backup, self.encoding) if file_exists(backup) else None
        if content is None:
            return WriteResult(
                success=False,
                file_path=target,
                error_code=ErrorCode.FILE_NOT_FOUND,
                error=f"Backup file does not exist or cannot be read: {backup}",
            )
        result = atomic_write(target, content, encoding=self.encoding)
        if result.success:
            logger.info(f"Restored {target} from {backup}")
        return result

    def atomic_write_with_backup(
        self,
        path: Path | str,
        content: str,
        validate: Optional[Validator] = None,
    ) -> WriteResult:
        """Back up an existing document, then write it atomically.

        Fails closed: if the backup cannot be taken nothing is written.
        """
        target = Path(path)
        if file_exists(target):
            backup = self.create_backup(target)
            if not backup.success:
                return WriteResult(
                    success=False,
                    file_path=target,
                    error_code=ErrorCode.BACKUP_FAILED,
                    error=f"Backup failed: {backup.error}",
                )
        return atomic_write(target, content, validate, encoding=self.encoding)
