"""Mode resolution and action-plan construction.

Pure functions only: nothing here touches the filesystem, the network or a
database. Lookups that need I/O (latest local/remote artifact) are expressed
as steps for the runner to execute.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pgbackup.core.errors import ConflictingModesError, UsageError
from pgbackup.domain.enums import Mode, StepKind
from pgbackup.services.retention import RetentionWindow, parse_retention_window


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawFlags:
    """The decision-relevant flags of one invocation."""

    backup_only: bool = False
    restore_only: bool = False
    s3_only: bool = False
    cleanup_only: bool = False
    restore: bool = False
    s3_upload: bool = False
    cleanup_local: Optional[str] = None
    cleanup_s3: Optional[str] = None
    restore_file: Optional[str] = None
    restore_from_s3: bool = False
    dry_run: bool = False

    def explicit_modes(self) -> List[Mode]:
        modes = []
        if self.backup_only:
            modes.append(Mode.BACKUP_ONLY)
        if self.restore_only:
            modes.append(Mode.RESTORE_ONLY)
        if self.s3_only:
            modes.append(Mode.UPLOAD_ONLY)
        if self.cleanup_only:
            modes.append(Mode.CLEANUP_ONLY)
        return modes

    def has_cleanup(self) -> bool:
        return self.cleanup_local is not None or self.cleanup_s3 is not None

    def has_action(self) -> bool:
        return bool(self.restore or self.s3_upload or self.restore_from_s3) or self.restore_file is not None


@dataclass(frozen=True)
class PlanStep:
    kind: StepKind
    window: Optional[RetentionWindow] = None
    artifact_name: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.kind in (
            StepKind.LOCATE_LATEST_REMOTE,
            StepKind.DOWNLOAD,
            StepKind.UPLOAD,
            StepKind.CLEANUP_REMOTE,
        )

    def describe(self) -> str:
        if self.window is not None:
            return f"{self.kind.value}({self.window})"
        if self.artifact_name is not None:
            return f"{self.kind.value}({self.artifact_name})"
        return self.kind.value


@dataclass(frozen=True)
class ActionPlan:
    mode: Mode
    steps: Tuple[PlanStep, ...]
    dry_run: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.steps

    @property
    def needs_remote(self) -> bool:
        return any(step.is_remote for step in self.steps)

    def kinds(self) -> List[StepKind]:
        return [step.kind for step in self.steps]

    def has(self, kind: StepKind) -> bool:
        return kind in self.kinds()


def infer_mode(flags: RawFlags) -> Mode:
    """Return the single operation mode implied by `flags`.

    Raises ConflictingModesError when more than one explicit mode is set.
    Without an explicit mode, cleanup windows alone (no restore/upload
    actions) promote the invocation to cleanup-only.
    """
    modes = flags.explicit_modes()
    if len(modes) > 1:
        names = ", ".join(f"--{mode.value}" for mode in modes)
        raise ConflictingModesError(f"Cannot combine operation modes ({names})")
    if modes:
        return modes[0]
    if flags.has_cleanup() and not flags.has_action():
        return Mode.CLEANUP_ONLY
    return Mode.DEFAULT


def _cleanup_steps(
    local_window: Optional[RetentionWindow],
    remote_window: Optional[RetentionWindow],
) -> List[PlanStep]:
    steps = []
    if local_window is not None:
        steps.append(PlanStep(StepKind.CLEANUP_LOCAL, window=local_window))
    if remote_window is not None:
        steps.append(PlanStep(StepKind.CLEANUP_REMOTE, window=remote_window))
    return steps


def build_plan(flags: RawFlags) -> ActionPlan:
    """Validate `flags` and derive the ordered action plan.

    All validation (mode conflicts, retention window grammar) happens here,
    before anything is executed.
    """
    mode = infer_mode(flags)

    if flags.restore_file is not None and not flags.restore_file.strip():
        raise UsageError("--restore-file requires a file name")

    local_window = parse_retention_window(flags.cleanup_local) if flags.cleanup_local is not None else None
    remote_window = parse_retention_window(flags.cleanup_s3) if flags.cleanup_s3 is not None else None

    if mode != Mode.RESTORE_ONLY and (flags.restore_file is not None or flags.restore_from_s3):
        logger.warning(
            "restore_source_ignored | mode=%s restore_file=%s restore_from_s3=%s",
            mode.value,
            flags.restore_file,
            flags.restore_from_s3,
        )

    steps: List[PlanStep] = []
    if mode == Mode.BACKUP_ONLY:
        steps.append(PlanStep(StepKind.CREATE_BACKUP))
        if local_window is not None or remote_window is not None:
            logger.info("cleanup_suppressed | mode=%s", mode.value)
        return ActionPlan(mode=mode, steps=tuple(steps), dry_run=flags.dry_run)

    if mode == Mode.DEFAULT:
        steps.append(PlanStep(StepKind.CREATE_BACKUP))
        if flags.restore:
            steps.append(PlanStep(StepKind.RESTORE))
        if flags.s3_upload:
            steps.append(PlanStep(StepKind.UPLOAD))
    elif mode == Mode.RESTORE_ONLY:
        if flags.restore_file is not None:
            steps.append(PlanStep(StepKind.USE_NAMED, artifact_name=flags.restore_file))
        elif flags.restore_from_s3:
            steps.append(PlanStep(StepKind.LOCATE_LATEST_REMOTE))
            steps.append(PlanStep(StepKind.DOWNLOAD))
        else:
            steps.append(PlanStep(StepKind.LOCATE_LATEST_LOCAL))
        steps.append(PlanStep(StepKind.RESTORE))
    elif mode == Mode.UPLOAD_ONLY:
        steps.append(PlanStep(StepKind.LOCATE_LATEST_LOCAL))
        steps.append(PlanStep(StepKind.UPLOAD))

    steps.extend(_cleanup_steps(local_window, remote_window))
    return ActionPlan(mode=mode, steps=tuple(steps), dry_run=flags.dry_run)
