"""Integration tests for the document sync pipeline.

These tests drive a task status edit through the watcher and out of the
change stream, and exercise the MCP server tools against a real project
directory.
"""

import asyncio
import json
import threading
import time

import pytest
from watchdog.events import FileMovedEvent

import main
from specwatch.config import SyncConfig
from specwatch.stream import ChangeStream
from specwatch.watcher import FileWatcher, WatchRole, _DocumentEventHandler

BOARD = "# PRD\n\n- [x] 1. Bootstrap\n- [ ] 2. Parser\n- [ ] 2.1 Patterns\n"
LOG = "# Activity\n\n### Entry 1: Bootstrap\n**Date**: 2026-01-01\n**Status**: ✅ COMPLETE\n"


class FakeObserver:
    def schedule(self, handler, path, recursive=False):
        pass

    def start(self):
        pass

    def stop(self):
        pass

    def is_alive(self):
        return False


@pytest.fixture
def project(tmp_path, monkeypatch):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "PRD.md").write_text(BOARD, encoding="utf-8")
    (docs / "ACTIVITY_LOG.md").write_text(LOG, encoding="utf-8")
    monkeypatch.setenv("SPECWATCH_PROJECT_ROOT", str(tmp_path))
    for name in ("SPECWATCH_ACTIVITY_LOG", "SPECWATCH_TASK_BOARD", "SPECWATCH_BACKUP_DIR",
                 "SPECWATCH_MAX_BACKUPS", "SPECWATCH_HEARTBEAT_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def decode(frame):
    return json.loads(frame[len("data: "):])


class TestStatusUpdateReachesStream:
    """A checkbox edit is observed and pushed to a connected stream."""

    def test_update_forwarded_as_prd_update(self, project):
        config = SyncConfig.for_root(project, heartbeat_interval=60)
        sent = []

        async def send(frame):
            sent.append(frame)

        def watcher_factory(cfg):
            return FileWatcher(cfg, observer_factory=FakeObserver)

        async def scenario():
            stream = ChangeStream(config, send, watcher_factory=watcher_factory)
            await stream.open()

            result = main.update_task_status("2.1", "completed")
            assert result["success"], result

            # What the observer thread reports after the atomic rename.
            handler = _DocumentEventHandler(stream.watcher)
            board = str(config.task_board_path)
            thread = threading.Thread(target=handler.dispatch, args=(FileMovedEvent(board + ".tmp", board),))
            thread.start()
            thread.join()
            for _ in range(10):
                await asyncio.sleep(0.01)
            stream.close()

        asyncio.run(scenario())

        messages = [decode(frame) for frame in sent]
        assert [message["type"] for message in messages] == ["initial_state", "prd_update"]
        assert messages[0]["data"]["prdStatus"]["completedTasks"] == 1
        update = messages[1]["data"]
        assert update["completedTasks"] == 2
        assert update["completionPercentage"] == 67
        assert [task["status"] for task in update["tasks"]] == ["completed", "not_started", "completed"]

    def test_real_observer_sees_atomic_write(self, project):
        config = SyncConfig.for_root(project)
        received = []
        errors = []
        seen = threading.Event()

        def on_prd(event):
            received.append(event)
            seen.set()

        watcher = FileWatcher(config)
        watcher.on(WatchRole.PRD, on_prd)
        watcher.on(WatchRole.ERROR, errors.append)
        with watcher:
            if any(event.data.code == "EWATCH" for event in errors):
                pytest.skip("file system notifications unavailable")
            time.sleep(0.2)
            main.update_task_status("2", "in_progress")
            assert seen.wait(timeout=10)

        assert received[-1].data.in_progress_tasks == 1


class TestServerTools:
    """Test cases for the MCP tool functions."""

    def test_update_and_read_board(self, project):
        result = main.update_task_status("2", "in_progress")
        board = main.get_task_board()

        assert result["success"]
        assert board["inProgressTasks"] == 1
        assert board["totalTasks"] == 3

    def test_update_unknown_task(self, project):
        result = main.update_task_status("7", "completed")

        assert result["success"] is False
        assert result["error_code"] == "TASK_NOT_FOUND"
        assert (project / "docs" / "PRD.md").read_text(encoding="utf-8") == BOARD

    def test_backup_list_and_restore(self, project):
        main.update_task_status("1", "not_started")
        backups = main.list_backups()["backups"]

        assert len(backups) == 1
        assert backups[0].startswith(str(project.resolve() / ".specwatch" / "backups"))

        restored = main.restore_backup(backups[0])

        assert restored["success"]
        assert (project / "docs" / "PRD.md").read_text(encoding="utf-8") == BOARD

    def test_create_backup_for_activity_log(self, project):
        result = main.create_backup(path="docs/ACTIVITY_LOG.md")

        assert result["success"]
        assert "ACTIVITY_LOG.md.backup." in result["backup_path"]

    def test_append_and_read_activity(self, project):
        written = main.append_activity("Wire stream", "IN PROGRESS", entry_date="2026-01-02")
        feed = main.get_activity()

        assert written["success"]
        assert [entry["message"] for entry in feed["entries"]] == [
            "Entry 1: Bootstrap - COMPLETE",
            "Entry 2: Wire stream - IN PROGRESS",
        ]

    def test_explicit_root(self, project, tmp_path_factory):
        other = tmp_path_factory.mktemp("other")
        (other / "docs").mkdir()
        (other / "docs" / "PRD.md").write_text("- [ ] 1. Only\n", encoding="utf-8")

        board = main.get_task_board(root=str(other))

        assert board["totalTasks"] == 1

    def test_missing_root_rejected(self, project):
        with pytest.raises(ValueError, match="does not exist"):
            main.get_task_board(root=str(project / "nowhere"))

    def test_task_board_resource(self, project):
        resource = main.resource_task_board()

        assert "1/3 complete (33%)" in resource.text

    def test_stream_route_sends_initial_state(self, project):
        async def scenario():
            response = await main.brain_stream(None)
            frames = response.body_iterator
            first = await frames.__anext__()
            await frames.aclose()
            return response, first

        response, first = asyncio.run(scenario())

        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert decode(first)["type"] == "initial_state"
