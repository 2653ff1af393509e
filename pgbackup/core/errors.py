"""Error taxonomy shared by the resolver, the runner and the CLI."""

from __future__ import annotations


class BackupError(Exception):
    """Base class for every error the tool reports to the operator."""


class UsageError(BackupError):
    """Invalid invocation: detected before any external call is made."""


class ConflictingModesError(UsageError):
    """More than one operation mode was requested."""


class RetentionWindowError(UsageError):
    """A retention window did not match the `<hours>h` grammar."""


class ArtifactNotFoundError(BackupError):
    """No backup artifact matched a lookup, or the namespace is absent."""


class CollaboratorError(BackupError):
    """An external tool failed or its postcondition check did not hold."""


class DumpError(CollaboratorError):
    pass


class RestoreError(CollaboratorError):
    pass


class TransferError(CollaboratorError):
    pass


class StepFailedError(BackupError):
    """A plan step failed; carries the step name and the underlying cause."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause
