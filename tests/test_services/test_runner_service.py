"""Tests for plan execution with fake collaborators."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pgbackup.core.errors import (
    ArtifactNotFoundError,
    CollaboratorError,
    DumpError,
    StepFailedError,
    UsageError,
)
from pgbackup.domain.artifacts import ListingEntry, format_artifact_name
from pgbackup.domain.enums import Location
from pgbackup.services.local_backups import LocalBackupStore
from pgbackup.services.plan import RawFlags, build_plan
from pgbackup.services.runner import BackupRunner

from conftest import FakeDumpPlugin, FakeRemoteStore, touch_artifact

NOW = datetime(2024, 1, 25, 14, 30, 22, tzinfo=timezone.utc)


class FlakyLocalStore(LocalBackupStore):
    def __init__(self, backup_dir, fail_names):
        super().__init__(backup_dir)
        self.fail_names = set(fail_names)

    def delete(self, entry: ListingEntry) -> None:
        if entry.name in self.fail_names:
            raise PermissionError(f"Operation not permitted: {entry.name}")
        super().delete(entry)


def _runner(settings, *, dump=None, remote=None, local=None, which=lambda name: f"/usr/bin/{name}"):
    return BackupRunner(
        settings,
        dump_plugin=dump or FakeDumpPlugin(),
        local_store=local,
        remote_store=remote,
        clock=lambda: NOW,
        which=which,
    )


@pytest.mark.asyncio
async def test_default_mode_backup_restore_upload(settings, backup_dir: Path):
    dump = FakeDumpPlugin()
    remote = FakeRemoteStore()
    plan = build_plan(RawFlags(restore=True, s3_upload=True))

    result = await _runner(settings, dump=dump, remote=remote).run(plan)

    expected = format_artifact_name("app", NOW)
    assert (backup_dir / expected).read_bytes() == b"PGDMP"
    assert dump.calls == [
        ("dump", "app", str(backup_dir / expected)),
        ("restore", "app_restore", str(backup_dir / expected)),
    ]
    assert remote.calls == [("upload", expected)]
    assert result.artifact is not None and result.artifact.name == expected
    assert result.completed == ["create_backup", "restore", "upload"]


@pytest.mark.asyncio
async def test_backup_creates_missing_directory(settings, tmp_path: Path):
    target = tmp_path / "nested" / "dir"
    local = LocalBackupStore(target)
    await _runner(settings, local=local).run(build_plan(RawFlags(backup_only=True)))
    assert len(list(target.iterdir())) == 1


@pytest.mark.asyncio
async def test_dump_failure_is_fail_fast(settings, backup_dir: Path):
    old = NOW - timedelta(days=30)
    touch_artifact(backup_dir, "app_20231201_000000.dump", old)
    dump = FakeDumpPlugin(fail_dump=True)
    remote = FakeRemoteStore({"app_20231201_000000.dump": (b"x", old)})
    plan = build_plan(RawFlags(restore=True, s3_upload=True, cleanup_local="24h", cleanup_s3="24h"))

    with pytest.raises(StepFailedError) as excinfo:
        await _runner(settings, dump=dump, remote=remote).run(plan)

    assert excinfo.value.step == "create_backup"
    assert isinstance(excinfo.value.cause, DumpError)
    assert "connection refused" in str(excinfo.value)
    assert [c[0] for c in dump.calls] == ["dump"]
    assert remote.calls == []
    assert (backup_dir / "app_20231201_000000.dump").exists()


@pytest.mark.asyncio
async def test_partial_local_cleanup_does_not_abort_remote_cleanup(settings, backup_dir: Path):
    old = NOW - timedelta(days=3)
    for day in (1, 2, 3):
        touch_artifact(backup_dir, f"app_2024010{day}_000000.dump", old)
    local = FlakyLocalStore(backup_dir, {"app_20240102_000000.dump"})
    remote = FakeRemoteStore({"app_20240101_000000.dump": (b"x", old)})
    plan = build_plan(RawFlags(cleanup_local="24h", cleanup_s3="24h"))

    result = await _runner(settings, local=local, remote=remote).run(plan)

    local_report, remote_report = result.cleanup_reports
    assert local_report.summary() == "2/3"
    assert local_report.failed == ["app_20240102_000000.dump"]
    assert remote_report.summary() == "1/1"
    assert remote.objects == {}
    assert result.completed == ["cleanup_local(24h)", "cleanup_remote(24h)"]


@pytest.mark.asyncio
async def test_restore_only_uses_latest_local(settings, backup_dir: Path):
    touch_artifact(backup_dir, "app_20240124_120000.dump", NOW)
    touch_artifact(backup_dir, "app_20240125_090000.dump", NOW)
    touch_artifact(backup_dir, "app2_20250101_000000.dump", NOW)
    dump = FakeDumpPlugin()

    result = await _runner(settings, dump=dump).run(build_plan(RawFlags(restore_only=True)))

    assert dump.calls == [("restore", "app_restore", str(backup_dir / "app_20240125_090000.dump"))]
    assert result.artifact.name == "app_20240125_090000.dump"


@pytest.mark.asyncio
async def test_restore_only_named_file(settings, backup_dir: Path):
    touch_artifact(backup_dir, "handpicked.dump", NOW)
    touch_artifact(backup_dir, "app_20250101_000000.dump", NOW)
    dump = FakeDumpPlugin()
    plan = build_plan(RawFlags(restore_only=True, restore_file="handpicked.dump"))

    result = await _runner(settings, dump=dump).run(plan)

    assert dump.calls == [("restore", "app_restore", str(backup_dir / "handpicked.dump"))]
    assert result.artifact.created_at is None


@pytest.mark.asyncio
async def test_restore_only_named_file_missing(settings):
    plan = build_plan(RawFlags(restore_only=True, restore_file="app_20240101_000000.dump"))
    with pytest.raises(StepFailedError) as excinfo:
        await _runner(settings).run(plan)
    assert excinfo.value.step == "restore"
    assert isinstance(excinfo.value.cause, ArtifactNotFoundError)


@pytest.mark.asyncio
async def test_restore_only_from_remote_downloads_latest(settings, backup_dir: Path):
    remote = FakeRemoteStore(
        {
            "app_20240124_120000.dump": (b"older", NOW),
            "app_20240125_143022.dump": (b"newest", NOW),
            "notes.txt": (b"n", NOW),
        }
    )
    dump = FakeDumpPlugin()

    result = await _runner(settings, dump=dump, remote=remote).run(
        build_plan(RawFlags(restore_only=True, restore_from_s3=True))
    )

    downloaded = backup_dir / "app_20240125_143022.dump"
    assert remote.calls == [("download", "app_20240125_143022.dump")]
    assert downloaded.read_bytes() == b"newest"
    assert dump.calls == [("restore", "app_restore", str(downloaded))]
    assert result.artifact.location == Location.LOCAL


@pytest.mark.asyncio
async def test_restore_from_remote_with_no_match(settings):
    remote = FakeRemoteStore({"other_20240101_000000.dump": (b"x", NOW)})
    with pytest.raises(StepFailedError) as excinfo:
        await _runner(settings, remote=remote).run(build_plan(RawFlags(restore_only=True, restore_from_s3=True)))
    assert excinfo.value.step == "locate_latest_remote"
    assert "app_*.dump in s3://bucket/prefix/" in str(excinfo.value)


@pytest.mark.asyncio
async def test_upload_only_uses_latest_local(settings, backup_dir: Path):
    touch_artifact(backup_dir, "app_20240101_000000.dump", NOW)
    touch_artifact(backup_dir, "app_20240102_000000.dump", NOW)
    remote = FakeRemoteStore()

    await _runner(settings, remote=remote).run(build_plan(RawFlags(s3_only=True)))

    assert remote.calls == [("upload", "app_20240102_000000.dump")]


@pytest.mark.asyncio
async def test_upload_only_missing_directory(settings, tmp_path: Path):
    local = LocalBackupStore(tmp_path / "absent")
    with pytest.raises(StepFailedError, match="Backup directory does not exist"):
        await _runner(settings, local=local, remote=FakeRemoteStore()).run(build_plan(RawFlags(s3_only=True)))


@pytest.mark.asyncio
async def test_remote_step_without_bucket_fails_before_running(settings):
    dump = FakeDumpPlugin()
    with pytest.raises(UsageError, match="S3 bucket is required"):
        await _runner(settings, dump=dump).run(build_plan(RawFlags(s3_upload=True)))
    assert dump.calls == []


@pytest.mark.asyncio
async def test_missing_binaries_fail_preflight(settings):
    class NeedsTools(FakeDumpPlugin):
        def required_binaries(self, *, backup, restore):
            return ["pg_dump"] if backup else []

    dump = NeedsTools()
    with pytest.raises(CollaboratorError, match="Missing tools: pg_dump"):
        await _runner(settings, dump=dump, which=lambda name: None).run(build_plan(RawFlags()))
    assert dump.calls == []


@pytest.mark.asyncio
async def test_empty_plan_is_noop(settings):
    result = await _runner(settings).run(build_plan(RawFlags(cleanup_only=True)))
    assert result.completed == []
    assert result.cleanup_reports == []


class SilentDumpPlugin(FakeDumpPlugin):
    """Reports success without writing anything."""

    async def create_dump(self, connection, output_path):
        self.calls.append(("dump", connection.database, output_path))
        return {"artifact_path": output_path}


@pytest.mark.asyncio
async def test_empty_dump_output_fails_the_backup_step(settings, backup_dir: Path):
    dump = FakeDumpPlugin(payload=b"")
    remote = FakeRemoteStore()
    plan = build_plan(RawFlags(restore=True, s3_upload=True))

    with pytest.raises(StepFailedError, match="Backup file is empty") as excinfo:
        await _runner(settings, dump=dump, remote=remote).run(plan)

    assert excinfo.value.step == "create_backup"
    assert isinstance(excinfo.value.cause, DumpError)
    assert [c[0] for c in dump.calls] == ["dump"]
    assert remote.calls == []


@pytest.mark.asyncio
async def test_missing_dump_output_fails_the_backup_step(settings, backup_dir: Path):
    dump = SilentDumpPlugin()
    plan = build_plan(RawFlags(restore=True))

    with pytest.raises(StepFailedError, match="Backup file was not created"):
        await _runner(settings, dump=dump).run(plan)

    assert [c[0] for c in dump.calls] == ["dump"]


@pytest.mark.asyncio
async def test_plan_start_names_the_dump_engine(settings, caplog):
    with caplog.at_level(logging.INFO, logger="pgbackup.services.runner"):
        await _runner(settings).run(build_plan(RawFlags(backup_only=True)))

    assert "engine=fake/1.0.0" in caplog.text


@pytest.mark.asyncio
async def test_window_older_than_calendar_keeps_every_artifact(settings, backup_dir: Path):
    old = NOW - timedelta(days=3650)
    touch_artifact(backup_dir, "app_20140101_000000.dump", old)
    dump = FakeDumpPlugin()
    plan = build_plan(RawFlags(restore=True, cleanup_local="100000000h"))

    result = await _runner(settings, dump=dump).run(plan)

    assert [c[0] for c in dump.calls] == ["dump", "restore"]
    assert result.cleanup_reports[0].summary() == "0/0"
    assert (backup_dir / "app_20140101_000000.dump").exists()
