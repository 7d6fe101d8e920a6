"""Unit tests for atomic writes and backups."""

import os
import pytest
from unittest.mock import patch

from specwatch.file_system import (
    BackupManager,
    atomic_write,
    backup_file_name,
    backup_timestamp,
    file_exists,
    safe_read,
    temp_path_for,
    validate_basic_content,
    validate_markdown,
)
from specwatch.models import ErrorCode


class TestAtomicWrite:
    """Test cases for atomic_write."""

    def test_round_trip_is_byte_exact(self, tmp_path):
        target = tmp_path / "PRD.md"
        content = "# Tasks\r\n- [ ] 1. First\n\ttrailing  \n"

        result = atomic_write(target, content)

        assert result.success
        assert target.read_bytes() == content.encode("utf-8")
        assert safe_read(target) == content

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "docs" / "nested" / "PRD.md"

        assert atomic_write(target, "# PRD\n").success
        assert target.exists()

    def test_validation_rejection_leaves_original(self, tmp_path):
        target = tmp_path / "PRD.md"
        target.write_text("original\n", encoding="utf-8")

        result = atomic_write(target, "replacement\n", validate=lambda content: False)

        assert not result.success
        assert result.error_code is ErrorCode.VALIDATION_FAILED
        assert target.read_text(encoding="utf-8") == "original\n"
        assert not temp_path_for(target).exists()

    def test_validator_sees_new_content(self, tmp_path):
        seen = []
        atomic_write(tmp_path / "doc.md", "new", validate=lambda content: seen.append(content) or True)
        assert seen == ["new"]

    def test_rename_failure_cleans_temp(self, tmp_path):
        target = tmp_path / "PRD.md"
        target.write_text("original", encoding="utf-8")

        with patch("specwatch.file_system.os.replace", side_effect=OSError("disk full")):
            result = atomic_write(target, "new content")

        assert not result.success
        assert result.error_code is ErrorCode.WRITE_FAILED
        assert "disk full" in result.error
        assert target.read_text(encoding="utf-8") == "original"
        assert not temp_path_for(target).exists()

    def test_write_into_directory_path_fails(self, tmp_path):
        target = tmp_path / "adir"
        target.mkdir()

        result = atomic_write(target, "content")

        assert not result.success
        assert result.error_code is ErrorCode.WRITE_FAILED
        assert target.is_dir()

    def test_last_write_wins(self, tmp_path):
        target = tmp_path / "PRD.md"

        atomic_write(target, "A" * 1000)
        atomic_write(target, "B" * 10)

        assert target.read_text(encoding="utf-8") == "B" * 10


class TestHelpers:
    """Test cases for read and validation helpers."""

    def test_safe_read_missing_file(self, tmp_path):
        assert safe_read(tmp_path / "missing.md") is None

    def test_file_exists(self, tmp_path):
        path = tmp_path / "doc.md"
        assert not file_exists(path)
        path.write_text("x")
        assert file_exists(path)
        assert not file_exists(tmp_path)

    @pytest.mark.parametrize("content,expected", [
        ("", False),
        ("   \n\t", False),
        ("# Title", True),
        ("plain text", True),
    ])
    def test_validate_basic_content(self, content, expected):
        assert validate_basic_content(content) is expected

    def test_validate_markdown_rejects_nul(self):
        assert validate_markdown("- [ ] 1. ok") is True
        assert validate_markdown("- [ ] 1.\x00") is False


class TestBackupNaming:
    """Test cases for the backup filename convention."""

    def test_timestamp_has_no_colons_or_dots(self):
        from datetime import datetime, timezone

        stamp = backup_timestamp(datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))

        assert stamp == "2026-01-02T03-04-05-678000Z"

    def test_backup_file_name(self):
        assert backup_file_name("/x/PRD.md", "2026-01-02T03-04-05-678000Z") == \
            "PRD.md.backup.2026-01-02T03-04-05-678000Z.md"


class TestBackupManager:
    """Test cases for BackupManager."""

    def test_create_backup_copies_content(self, tmp_path):
        source = tmp_path / "PRD.md"
        source.write_text("- [ ] 1. Task\n", encoding="utf-8")
        manager = BackupManager(tmp_path / "backups")

        result = manager.create_backup(source)

        assert result.success
        assert result.backup_path.name.startswith("PRD.md.backup.")
        assert result.backup_path.name.endswith(".md")
        assert result.backup_path.read_text(encoding="utf-8") == "- [ ] 1. Task\n"
        assert result.backup.source_file_name == "PRD.md"

    def test_create_backup_missing_source(self, tmp_path):
        manager = BackupManager(tmp_path / "backups")

        result = manager.create_backup(tmp_path / "missing.md")

        assert not result.success
        assert result.error_code is ErrorCode.FILE_NOT_FOUND

    def test_retention_keeps_most_recent(self, tmp_path):
        source = tmp_path / "PRD.md"
        manager = BackupManager(tmp_path / "backups", max_backups=3)
        created = []
        for index in range(7):
            source.write_text(f"version {index}\n", encoding="utf-8")
            created.append(manager.create_backup(source).backup_path)

        remaining = manager.list_backups(source)

        assert len(remaining) == 3
        assert remaining == list(reversed(created[-3:]))
        assert [path.read_text(encoding="utf-8") for path in remaining] == [
            "version 6\n", "version 5\n", "version 4\n",
        ]

    def test_retention_is_per_source(self, tmp_path):
        manager = BackupManager(tmp_path / "backups", max_backups=2)
        prd = tmp_path / "PRD.md"
        log = tmp_path / "ACTIVITY_LOG.md"
        prd.write_text("prd")
        log.write_text("log")

        for _ in range(3):
            manager.create_backup(prd)
        manager.create_backup(log)

        assert len(manager.list_backups(prd)) == 2
        assert len(manager.list_backups(log)) == 1

    def test_list_backups_missing_dir(self, tmp_path):
        assert BackupManager(tmp_path / "nowhere").list_backups(tmp_path / "PRD.md") == []

    def test_invalid_max_backups(self, tmp_path):
        with pytest.raises(ValueError):
            BackupManager(tmp_path, max_backups=0)

    def test_restore_from_backup(self, tmp_path):
        source = tmp_path / "PRD.md"
        source.write_text("original\n", encoding="utf-8")
        manager = BackupManager(tmp_path / "backups")
        backup = manager.create_backup(source).backup_path
        source.write_text("corrupted", encoding="utf-8")

        result = manager.restore_from_backup(backup, source)

        assert result.success
        assert source.read_text(encoding="utf-8") == "original\n"

    def test_restore_missing_backup(self, tmp_path):
        manager = BackupManager(tmp_path / "backups")

        result = manager.restore_from_backup(tmp_path / "nope.md", tmp_path / "PRD.md")

        assert not result.success
        assert result.error_code is ErrorCode.FILE_NOT_FOUND
        assert not (tmp_path / "PRD.md").exists()

    def test_write_with_backup_snapshots_previous_content(self, tmp_path):
        target = tmp_path / "PRD.md"
        target.write_text("old\n", encoding="utf-8")
        manager = BackupManager(tmp_path / "backups")

        result = manager.atomic_write_with_backup(target, "new\n")

        assert result.success
        assert target.read_text(encoding="utf-8") == "new\n"
        backups = manager.list_backups(target)
        assert len(backups) == 1
        assert backups[0].read_text(encoding="utf-8") == "old\n"

    def test_write_with_backup_new_file_needs_no_backup(self, tmp_path):
        manager = BackupManager(tmp_path / "backups")

        result = manager.atomic_write_with_backup(tmp_path / "PRD.md", "fresh\n")

        assert result.success
        assert manager.list_backups(tmp_path / "PRD.md") == []

    def test_write_with_backup_fails_closed(self, tmp_path):
        target = tmp_path / "PRD.md"
        target.write_text("old\n", encoding="utf-8")
        # A regular file where the backup directory should be.
        blocker = tmp_path / "backups"
        blocker.write_text("not a directory")
        manager = BackupManager(blocker)

        result = manager.atomic_write_with_backup(target, "new\n")

        assert not result.success
        assert result.error_code is ErrorCode.BACKUP_FAILED
        assert target.read_text(encoding="utf-8") == "old\n"
        assert not os.path.exists(f"{target}.tmp")
