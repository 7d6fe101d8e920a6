"""Unit tests for the activity log writer."""

from datetime import date

import pytest

from specwatch.activity_log import ActivityLogWriter, format_entry
from specwatch.file_system import BackupManager
from specwatch.models import ActivityLevel, ErrorCode
from specwatch.parsers import ActivityLogParser


class TestFormatEntry:
    """Test cases for format_entry."""

    def test_known_status_gets_emoji(self):
        block = format_entry(3, "Wire stream", "complete", date(2026, 1, 2))

        assert block == "### Entry 3: Wire stream\n**Date**: 2026-01-02\n**Status**: ✅ COMPLETE\n"

    def test_unknown_status_is_plain(self):
        block = format_entry(1, "Review", "blocked", date(2026, 1, 2))

        assert block.endswith("**Status**: BLOCKED\n")


class TestActivityLogWriter:
    """Test cases for ActivityLogWriter."""

    def test_creates_log(self, tmp_path):
        path = tmp_path / "docs" / "ACTIVITY_LOG.md"
        writer = ActivityLogWriter(path)

        result = writer.append_entry("Setup", "COMPLETE", date=date(2026, 1, 1))

        assert result.success
        assert path.read_text(encoding="utf-8").startswith("### Entry 1: Setup\n")

    def test_numbers_continue_from_highest(self, tmp_path):
        path = tmp_path / "ACTIVITY_LOG.md"
        path.write_text("# Log\n\n### Entry 4: Old\n**Date**: 2026-01-01\n**Status**: ✅ COMPLETE", encoding="utf-8")
        writer = ActivityLogWriter(path)

        writer.append_entry("New", "IN PROGRESS", date=date(2026, 1, 2))

        content = path.read_text(encoding="utf-8")
        assert "**Status**: ✅ COMPLETE\n\n### Entry 5: New\n" in content
        assert writer.next_entry_number() == 6

    def test_appended_entries_parse(self, tmp_path):
        path = tmp_path / "ACTIVITY_LOG.md"
        writer = ActivityLogWriter(path)
        writer.append_entry("Setup", "COMPLETE", date=date(2026, 1, 1))
        writer.append_entry("Deploy", "FAILED", date=date(2026, 1, 2))

        feed = ActivityLogParser.parse(path)

        assert [e.message for e in feed.entries] == [
            "Entry 1: Setup - COMPLETE",
            "Entry 2: Deploy - FAILED",
        ]
        assert feed.entries[1].level is ActivityLevel.ERROR

    @pytest.mark.parametrize("title,status", [("", "COMPLETE"), ("Title", "  ")])
    def test_rejects_empty_fields(self, tmp_path, title, status):
        writer = ActivityLogWriter(tmp_path / "ACTIVITY_LOG.md")

        with pytest.raises(ValueError):
            writer.append_entry(title, status)

        assert not (tmp_path / "ACTIVITY_LOG.md").exists()

    def test_unreadable_log_is_never_replaced(self, tmp_path):
        path = tmp_path / "ACTIVITY_LOG.md"
        original = "# Human notes\n\n### Entry 1: Keep me\n**Date**: 2026-01-01\n**Status**: caf\xe9\n".encode("latin-1")
        path.write_bytes(original)

        result = ActivityLogWriter(path).append_entry("New", "COMPLETE", date=date(2026, 1, 2))

        assert not result.success
        assert result.error_code is ErrorCode.WRITE_FAILED
        assert path.read_bytes() == original

    def test_append_with_backups_snapshots_previous_log(self, tmp_path):
        path = tmp_path / "ACTIVITY_LOG.md"
        path.write_text("### Entry 1: Setup\n**Date**: 2026-01-01\n**Status**: ✅ COMPLETE\n", encoding="utf-8")
        manager = BackupManager(tmp_path / "backups")

        result = ActivityLogWriter(path, backups=manager).append_entry("Deploy", "COMPLETE", date=date(2026, 1, 2))

        assert result.success
        backups = manager.list_backups(path)
        assert len(backups) == 1
        assert "Entry 2" not in backups[0].read_text(encoding="utf-8")
        assert "### Entry 2: Deploy" in path.read_text(encoding="utf-8")

    def test_append_refused_when_backup_fails(self, tmp_path):
        path = tmp_path / "ACTIVITY_LOG.md"
        path.write_text("### Entry 1: Setup\n", encoding="utf-8")
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        result = ActivityLogWriter(path, backups=BackupManager(blocker)).append_entry("Deploy", "COMPLETE")

        assert result.error_code is ErrorCode.BACKUP_FAILED
        assert path.read_text(encoding="utf-8") == "### Entry 1: Setup\n"
