"""Configuration for Specwatch.

All document paths flow through a :class:`SyncConfig` value that is passed to
every component explicitly. Environment variables only seed the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

PROJECT_ROOT_ENV = "SPECWATCH_PROJECT_ROOT"
ACTIVITY_LOG_ENV = "SPECWATCH_ACTIVITY_LOG"
TASK_BOARD_ENV = "SPECWATCH_TASK_BOARD"
BACKUP_DIR_ENV = "SPECWATCH_BACKUP_DIR"
MAX_BACKUPS_ENV = "SPECWATCH_MAX_BACKUPS"
HEARTBEAT_ENV = "SPECWATCH_HEARTBEAT_SECONDS"

DEFAULT_ACTIVITY_LOG = Path("docs") / "ACTIVITY_LOG.md"
DEFAULT_TASK_BOARD = Path("docs") / "PRD.md"
DEFAULT_BACKUP_DIR = Path(".specwatch") / "backups"
DEFAULT_MAX_BACKUPS = 10
DEFAULT_HEARTBEAT_SECONDS = 30.0


def _resolve(root: Path, value: Path | str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


@dataclass(slots=True, frozen=True)
class SyncConfig:
    """Document locations and tuning knobs shared by every component."""

    root: Path
    activity_log_path: Path
    task_board_path: Path
    backup_dir: Path
    max_backups: int = DEFAULT_MAX_BACKUPS
    heartbeat_interval: float = DEFAULT_HEARTBEAT_SECONDS

    def __post_init__(self) -> None:
        if self.max_backups < 1:
            raise ValueError(f"max_backups must be at least 1, got: {self.max_backups}")
        if self.heartbeat_interval <= 0:
            raise ValueError(f"heartbeat_interval must be positive, got: {self.heartbeat_interval}")

    @classmethod
    def for_root(
        cls,
        root: Path | str,
        *,
        activity_log: Path | str = DEFAULT_ACTIVITY_LOG,
        task_board: Path | str = DEFAULT_TASK_BOARD,
        backup_dir: Path | str = DEFAULT_BACKUP_DIR,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_SECONDS,
    ) -> "SyncConfig":
        """Build a config with relative paths anchored at ``root``."""
        resolved = Path(root).expanduser().resolve()
        return cls(
            root=resolved,
            activity_log_path=_resolve(resolved, activity_log),
            task_board_path=_resolve(resolved, task_board),
            backup_dir=_resolve(resolved, backup_dir),
            max_backups=max_backups,
            heartbeat_interval=heartbeat_interval,
        )

    @classmethod
    def from_env(cls, root: Optional[Path | str] = None) -> "SyncConfig":
        """Build a config from ``SPECWATCH_*`` environment variables.

        An explicit ``root`` wins over ``SPECWATCH_PROJECT_ROOT``; when neither
        is set the current working directory is used.
        """
        if root is None:
            env_root = os.getenv(PROJECT_ROOT_ENV)
            if env_root:
                if not Path(env_root).expanduser().exists():
                    raise ValueError(
                        f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
                    )
                root = env_root
            else:
                root = Path.cwd()

        max_backups = os.getenv(MAX_BACKUPS_ENV)
        heartbeat = os.getenv(HEARTBEAT_ENV)
        try:
            return cls.for_root(
                root,
                activity_log=os.getenv(ACTIVITY_LOG_ENV) or DEFAULT_ACTIVITY_LOG,
                task_board=os.getenv(TASK_BOARD_ENV) or DEFAULT_TASK_BOARD,
                backup_dir=os.getenv(BACKUP_DIR_ENV) or DEFAULT_BACKUP_DIR,
                max_backups=int(max_backups) if max_backups else DEFAULT_MAX_BACKUPS,
                heartbeat_interval=float(heartbeat) if heartbeat else DEFAULT_HEARTBEAT_SECONDS,
            )
        except ValueError as e:
            raise ValueError(f"Invalid Specwatch configuration: {e}") from e

    def to_dict(self) -> dict:
        return {
            "root": str(self.root),
            "activity_log_path": str(self.activity_log_path),
            "task_board_path": str(self.task_board_path),
            "backup_dir": str(self.backup_dir),
            "max_backups": self.max_backups,
            "heartbeat_interval": self.heartbeat_interval,
        }
