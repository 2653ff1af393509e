from __future__ import annotations

from enum import Enum


class Mode(str, Enum):
    DEFAULT = "default"
    BACKUP_ONLY = "backup-only"
    RESTORE_ONLY = "restore-only"
    UPLOAD_ONLY = "s3-only"
    CLEANUP_ONLY = "cleanup-only"


class StepKind(str, Enum):
    CREATE_BACKUP = "create_backup"
    USE_NAMED = "use_named"
    LOCATE_LATEST_LOCAL = "locate_latest_local"
    LOCATE_LATEST_REMOTE = "locate_latest_remote"
    DOWNLOAD = "download"
    RESTORE = "restore"
    UPLOAD = "upload"
    CLEANUP_LOCAL = "cleanup_local"
    CLEANUP_REMOTE = "cleanup_remote"


class Location(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
