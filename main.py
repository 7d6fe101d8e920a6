"""MCP server exposing safe spec-document mutation and a live change stream."""

from __future__ import annotations

import argparse
import os
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.resources import TextResource
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse

from specwatch import (
    ActivityLogParser,
    ActivityLogWriter,
    BackupManager,
    ChangeStream,
    SyncConfig,
    TaskBoardParser,
    setup_logging,
    update_task_status as _update_task_status,
)
from specwatch.stream import SSE_HEADERS

mcp = FastMCP("specwatch")

STREAM_PATH = "/api/system/brain"


def _config(root: Optional[str] = None) -> SyncConfig:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return SyncConfig.from_env(resolved)
    return SyncConfig.from_env()


def _resolve_document(config: SyncConfig, path: Optional[str]) -> Path:
    if not path:
        return config.task_board_path
    candidate = Path(path).expanduser()
    return candidate if candidate.is_absolute() else config.root / candidate


@mcp.tool()
def update_task_status(
    task_id: str,
    status: str,
    path: Optional[str] = None,
    create_backup: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Set a task's checkbox (not_started, queued, in_progress, completed).
    Only the checkbox of the matching line changes; the document is backed up first."""

    config = _config(root)
    result = _update_task_status(
        _resolve_document(config, path),
        task_id,
        status,
        backups=BackupManager.from_config(config),
        create_backup=create_backup,
    )
    return result.to_dict()


@mcp.tool()
def create_backup(path: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Snapshot a document into the backup directory, pruning old snapshots."""

    config = _config(root)
    result = BackupManager.from_config(config).create_backup(_resolve_document(config, path))
    return result.to_dict()


@mcp.tool()
def list_backups(path: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """List backups of a document, newest first."""

    config = _config(root)
    document = _resolve_document(config, path)
    backups = BackupManager.from_config(config).list_backups(document)
    return {"file_path": str(document), "backups": [str(backup) for backup in backups]}


@mcp.tool()
def restore_backup(backup_path: str, path: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Atomically restore a document from one of its backups."""

    config = _config(root)
    manager = BackupManager.from_config(config)
    backup = Path(backup_path).expanduser()
    if not backup.is_absolute():
        backup = config.backup_dir / backup
    return manager.restore_from_backup(backup, _resolve_document(config, path)).to_dict()


@mcp.tool()
def get_activity(root: Optional[str] = None) -> Dict[str, Any]:
    """Return the most recent activity log entries, oldest first."""

    config = _config(root)
    return ActivityLogParser.parse(config.activity_log_path).to_dict()


@mcp.tool()
def get_task_board(root: Optional[str] = None) -> Dict[str, Any]:
    """Return task board counts, completion percentage and tasks."""

    config = _config(root)
    return TaskBoardParser.parse(config.task_board_path).to_dict()


@mcp.tool()
def append_activity(title: str, status: str, entry_date: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Append an entry to the activity log (status e.g. COMPLETE, IN PROGRESS, FAILED)."""

    config = _config(root)
    day = date.fromisoformat(entry_date) if entry_date else None
    writer = ActivityLogWriter(config.activity_log_path, backups=BackupManager.from_config(config))
    result = writer.append_entry(title, status, date=day)
    return result.to_dict()


TASK_BOARD_URI = "specwatch://task-board"


def _text_resource(text: str) -> TextResource:
    return TextResource(uri=TASK_BOARD_URI, name="task-board", mime_type="text/plain", text=text)


@mcp.resource(TASK_BOARD_URI)
def resource_task_board():
    """Plain-text summary of the task board for discovery."""

    try:
        config = _config()
    except ValueError as e:
        return _text_resource(str(e))

    status = TaskBoardParser.parse(config.task_board_path)
    if status.error:
        return _text_resource(f"Task board unavailable: {status.error.code} {status.error.message}")

    lines = [f"Task board: {status.completed_tasks}/{status.total_tasks} complete ({status.completion_percentage}%)"]
    for task in status.tasks:
        lines.append(f"- [{task.status.value}] {task.id} {task.description}")
    return _text_resource("\n".join(lines))


@mcp.custom_route(STREAM_PATH, methods=["GET"])
async def brain_stream(request: Request) -> Response:
    """Server-Sent Events stream of activity and task board changes.

    Access control is expected to sit in front of this endpoint.
    """

    session = ChangeStream(_config())
    await session.open()
    return StreamingResponse(session.frames(), media_type="text/event-stream", headers=SSE_HEADERS)


def main(argv: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(description="Specwatch MCP server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=os.getenv("SPECWATCH_TRANSPORT", "sse"),
        help="MCP transport; the change stream route needs an HTTP transport",
    )
    parser.add_argument("--log-level", default=os.getenv("SPECWATCH_LOG_LEVEL", "INFO"))
    parser.add_argument("--log-file", type=Path, default=None)
    args = parser.parse_args(argv)

    setup_logging(args.log_level.upper(), args.log_file)
    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
