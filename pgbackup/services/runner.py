"""Execution of an action plan against the dump engine and artifact stores.

Steps run strictly in order. The first failing step aborts the rest of the
plan; cleanup steps absorb their own per-file deletion failures and never
abort the run.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pgbackup.core.config import Settings
from pgbackup.core.errors import (
    ArtifactNotFoundError,
    BackupError,
    CollaboratorError,
    DumpError,
    StepFailedError,
    UsageError,
)
from pgbackup.core.plugins.base import DumpPlugin, RemoteStore
from pgbackup.domain.artifacts import ArtifactReference, format_artifact_name, parse_artifact_name
from pgbackup.domain.enums import Location, StepKind
from pgbackup.services.local_backups import LocalBackupStore
from pgbackup.services.locator import find_latest
from pgbackup.services.plan import ActionPlan, PlanStep
from pgbackup.services.retention import CleanupReport, apply_retention


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunResult:
    completed: List[str] = field(default_factory=list)
    artifact: Optional[ArtifactReference] = None
    cleanup_reports: List[CleanupReport] = field(default_factory=list)


class BackupRunner:
    """Walks an ActionPlan, threading the current artifact between steps."""

    def __init__(
        self,
        settings: Settings,
        *,
        dump_plugin: DumpPlugin,
        local_store: Optional[LocalBackupStore] = None,
        remote_store: Optional[RemoteStore] = None,
        clock: Callable[[], datetime] = _utcnow,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.settings = settings
        self.dump_plugin = dump_plugin
        self.local_store = local_store or LocalBackupStore(settings.backup_dir)
        self.remote_store = remote_store
        self.clock = clock
        self.which = which
        self._current: Optional[ArtifactReference] = None

    def preflight(self, plan: ActionPlan) -> None:
        """Fail before the first step if the plan cannot possibly run."""
        if plan.needs_remote and self.remote_store is None:
            raise UsageError("An S3 bucket is required for S3 operations (--s3-bucket)")

        needed = self.dump_plugin.required_binaries(
            backup=plan.has(StepKind.CREATE_BACKUP),
            restore=plan.has(StepKind.RESTORE),
        )
        missing = [name for name in needed if self.which(name) is None]
        if missing:
            raise CollaboratorError(
                f"Missing tools: {', '.join(missing)}. Install the PostgreSQL client tools and retry."
            )

    async def run(self, plan: ActionPlan) -> RunResult:
        result = RunResult()
        self._current = None

        if plan.is_empty:
            logger.info("plan_empty | mode=%s nothing to do", plan.mode.value)
            return result

        self.preflight(plan)
        engine = self.dump_plugin.get_info()
        logger.info(
            "plan_start | mode=%s engine=%s/%s steps=%s",
            plan.mode.value,
            engine["name"],
            engine["version"],
            ",".join(step.describe() for step in plan.steps),
        )

        for step in plan.steps:
            logger.info("step_start | step=%s", step.describe())
            try:
                report = await self._execute(step, plan)
            except (BackupError, OSError) as exc:
                logger.error("step_failed | step=%s error=%s", step.describe(), exc)
                raise StepFailedError(step.describe(), exc) from exc
            if report is not None:
                result.cleanup_reports.append(report)
            result.completed.append(step.describe())

        result.artifact = self._current
        logger.info("plan_complete | mode=%s steps=%s", plan.mode.value, len(result.completed))
        return result

    async def _execute(self, step: PlanStep, plan: ActionPlan) -> Optional[CleanupReport]:
        kind = step.kind
        if kind == StepKind.CREATE_BACKUP:
            await self._create_backup()
        elif kind == StepKind.USE_NAMED:
            self._use_named(step.artifact_name or "")
        elif kind == StepKind.LOCATE_LATEST_LOCAL:
            self._locate_latest_local()
        elif kind == StepKind.LOCATE_LATEST_REMOTE:
            await self._locate_latest_remote()
        elif kind == StepKind.DOWNLOAD:
            await self._download()
        elif kind == StepKind.RESTORE:
            await self._restore()
        elif kind == StepKind.UPLOAD:
            await self._upload()
        elif kind == StepKind.CLEANUP_LOCAL:
            return apply_retention(self.local_store, step.window, now=self.clock(), dry_run=plan.dry_run)
        elif kind == StepKind.CLEANUP_REMOTE:
            return await asyncio.to_thread(
                apply_retention, self.remote_store, step.window, now=self.clock(), dry_run=plan.dry_run
            )
        else:  # pragma: no cover - exhaustive over StepKind
            raise UsageError(f"Unsupported step: {kind}")
        return None

    def _require_current(self) -> ArtifactReference:
        if self._current is None:
            raise UsageError("No backup artifact has been selected for this step")
        return self._current

    async def _create_backup(self) -> None:
        source = self.settings.source
        backup_dir = self.local_store.ensure()
        created_at = self.clock().replace(microsecond=0)
        name = format_artifact_name(source.database, created_at)
        logger.info(
            "backup_start | database=%s host=%s port=%s",
            source.database,
            source.host,
            source.port,
        )
        path = backup_dir / name
        await self.dump_plugin.create_dump(source.connection(), str(path))
        if not path.is_file():
            raise DumpError(f"Backup file was not created: {path}")
        if path.stat().st_size == 0:
            raise DumpError(f"Backup file is empty: {path}")
        self._current = ArtifactReference(
            database_id=source.database,
            created_at=created_at,
            name=name,
            location=Location.LOCAL,
        )
        logger.info("backup_complete | path=%s bytes=%s", path, path.stat().st_size)

    def _use_named(self, name: str) -> None:
        parsed = parse_artifact_name(name)
        self._current = ArtifactReference(
            database_id=parsed[0] if parsed else self.settings.source.database,
            created_at=parsed[1] if parsed else None,
            name=name,
            location=Location.LOCAL,
        )
        logger.info("artifact_selected | source=named name=%s", name)

    def _locate_latest_local(self) -> None:
        store = self.local_store
        if not store.exists():
            raise ArtifactNotFoundError(f"Backup directory does not exist: {store.describe()}")
        self._current = find_latest(
            store.list_entries(),
            self.settings.source.database,
            location=Location.LOCAL,
            namespace=store.describe(),
        )
        logger.info("artifact_selected | source=latest_local name=%s", self._current.name)

    async def _locate_latest_remote(self) -> None:
        store = self.remote_store
        entries = await asyncio.to_thread(store.list_entries)
        self._current = find_latest(
            entries,
            self.settings.source.database,
            location=Location.REMOTE,
            namespace=store.describe(),
        )
        logger.info("artifact_selected | source=latest_remote name=%s", self._current.name)

    async def _download(self) -> None:
        ref = self._require_current()
        backup_dir = self.local_store.ensure()
        await asyncio.to_thread(self.remote_store.download, ref.name, str(backup_dir / ref.name))
        self._current = replace(ref, location=Location.LOCAL, key=None)

    async def _restore(self) -> None:
        ref = self._require_current()
        path = self.local_store.path_for(ref.name)
        if not path.is_file():
            raise ArtifactNotFoundError(f"Backup file not found: {path}")
        destination = self.settings.destination
        logger.info(
            "restore_start | artifact=%s dest=%s@%s:%s",
            ref.name,
            destination.database,
            destination.host,
            destination.port,
        )
        await self.dump_plugin.restore_dump(destination.connection(), str(path))
        logger.info("restore_complete | artifact=%s", ref.name)

    async def _upload(self) -> None:
        ref = self._require_current()
        path = self.local_store.path_for(ref.name)
        if not path.is_file():
            raise ArtifactNotFoundError(f"Backup file not found for S3 upload: {path}")
        await asyncio.to_thread(self.remote_store.upload, str(path), path.name)
