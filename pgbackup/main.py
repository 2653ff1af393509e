"""Command-line entry point: flags -> settings + plan -> runner -> exit code."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

from pgbackup import __version__
from pgbackup.core.config import Settings, load_settings
from pgbackup.core.errors import BackupError, UsageError
from pgbackup.core.logging import setup_logging
from pgbackup.plugins.postgresql import PostgreSQLPlugin
from pgbackup.plugins.s3 import S3Plugin
from pgbackup.services.local_backups import LocalBackupStore
from pgbackup.services.plan import ActionPlan, RawFlags, build_plan
from pgbackup.services.runner import BackupRunner


logger = logging.getLogger("pgbackup")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

EPILOG = """\
Operation mode examples:
  Create backup only:            pgbackup --backup-only
  Restore latest backup:         pgbackup --restore-only --dest-db new_staging
  Restore specific file:         pgbackup --restore-only --restore-file mydb_20240125_120000.dump
  Restore from S3:               pgbackup --restore-only --restore-from-s3 --dest-db staging
  Upload latest to S3:           pgbackup --s3-only --s3-bucket archive
  Cleanup local files > 24h:     pgbackup --cleanup-local 24h
  Cleanup S3 files > 7 days:     pgbackup --cleanup-s3 168h
  Backup + upload + cleanup:     pgbackup -s --s3-bucket backups --cleanup-local 48h --cleanup-s3 168h

File selection:
  - default mode always creates a new backup named database_YYYYMMDD_HHMMSS.dump
  - --restore-only and --s3-only use the latest backup by the timestamp in its name
  - cleanup only ever deletes files whose name matches that pattern
"""

# CLI dest -> dotted settings key
_OVERRIDES = {
    "backup_dir": "backup_dir",
    "src_host": "source.host",
    "src_port": "source.port",
    "src_user": "source.user",
    "src_db": "source.database",
    "src_password": "source.password",
    "dest_host": "destination.host",
    "dest_port": "destination.port",
    "dest_user": "destination.user",
    "dest_db": "destination.database",
    "dest_password": "destination.password",
    "s3_bucket": "s3.bucket",
    "s3_prefix": "s3.prefix",
    "s3_endpoint": "s3.endpoint",
    "s3_access_key": "s3.access_key",
    "s3_secret_key": "s3.secret_key",
    "s3_region": "s3.region",
}


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="pgbackup",
        description="PostgreSQL backup helper with optional restore, S3 upload and retention cleanup.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    modes = parser.add_argument_group("operation modes (choose one; default: backup + optional actions)")
    modes.add_argument("--backup-only", action="store_true", help="Only create a backup (no restore, upload or cleanup)")
    modes.add_argument("--restore-only", action="store_true", help="Only restore the latest existing backup or --restore-file")
    modes.add_argument("--s3-only", action="store_true", help="Only upload the latest existing backup to S3")
    modes.add_argument("--cleanup-only", action="store_true", help="Only run cleanup operations")

    actions = parser.add_argument_group("actions")
    actions.add_argument("-r", "--restore", action="store_true", help="After dumping, restore to the destination server")
    actions.add_argument("-s", "--s3-upload", action="store_true", help="After dumping, copy the dump file to S3")
    actions.add_argument("--cleanup-local", metavar="TIME", help="Delete local backups older than TIME (e.g. 24h)")
    actions.add_argument("--cleanup-s3", metavar="TIME", help="Delete S3 backups older than TIME (e.g. 168h)")
    actions.add_argument("--dry-run", action="store_true", help="Report cleanup candidates without deleting them")

    restore = parser.add_argument_group("restore options")
    restore.add_argument("--restore-file", metavar="FILE", help="Restore this file instead of the latest backup")
    restore.add_argument("--restore-from-s3", action="store_true", help="Restore the latest backup found in S3")

    common = parser.add_argument_group("overrides")
    common.add_argument("-b", "--backup-dir", metavar="DIR", help="Local folder for dumps")
    common.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper)

    for side, label in (("src", "Source"), ("dest", "Destination")):
        group = parser.add_argument_group(f"{label.lower()} overrides")
        group.add_argument(f"--{side}-host", metavar="HOST", help=f"{label} host")
        group.add_argument(f"--{side}-port", metavar="PORT", type=int, help=f"{label} port")
        group.add_argument(f"--{side}-user", metavar="USER", help=f"{label} user")
        group.add_argument(f"--{side}-db", metavar="DB", help=f"{label} database")
        group.add_argument(
            f"--{side}-pass",
            f"--{side}-password",
            dest=f"{side}_password",
            metavar="PASS",
            help=f"{label} password",
        )

    s3 = parser.add_argument_group("S3 overrides")
    s3.add_argument("--s3-bucket", metavar="NAME", help="Bucket name")
    s3.add_argument("--s3-prefix", metavar="PREFIX", help="Key prefix (folder)")
    s3.add_argument("--s3-endpoint", metavar="URL", help="Custom S3 endpoint (MinIO, ...)")
    s3.add_argument("--s3-access-key", metavar="KEY", help="Access key id")
    s3.add_argument("--s3-secret-key", metavar="KEY", help="Secret access key")
    s3.add_argument("--s3-region", metavar="REGION", help="Region name")
    return parser


def flags_from_args(args: argparse.Namespace) -> RawFlags:
    return RawFlags(
        backup_only=args.backup_only,
        restore_only=args.restore_only,
        s3_only=args.s3_only,
        cleanup_only=args.cleanup_only,
        restore=args.restore,
        s3_upload=args.s3_upload,
        cleanup_local=args.cleanup_local,
        cleanup_s3=args.cleanup_s3,
        restore_file=args.restore_file,
        restore_from_s3=args.restore_from_s3,
        dry_run=args.dry_run,
    )


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    return {key: getattr(args, dest) for dest, key in _OVERRIDES.items()}


def build_runner(settings: Settings, plan: ActionPlan) -> BackupRunner:
    remote_store = S3Plugin(settings.s3) if plan.needs_remote and settings.s3.bucket else None
    return BackupRunner(
        settings,
        dump_plugin=PostgreSQLPlugin(),
        local_store=LocalBackupStore(settings.backup_dir),
        remote_store=remote_store,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Run one invocation and return the process exit code."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as exc:
        setup_logging()
        logger.error("invalid_arguments | error=%s", exc)
        return EXIT_USAGE

    setup_logging(args.log_level)

    try:
        plan = build_plan(flags_from_args(args))
        settings = load_settings(overrides_from_args(args))
        logger.info("mode_selected | mode=%s", plan.mode.value)
        result = asyncio.run(build_runner(settings, plan).run(plan))
    except UsageError as exc:
        logger.error("validation_failed | error=%s", exc)
        return EXIT_USAGE
    except BackupError as exc:
        logger.error("run_failed | error=%s", exc, exc_info=logger.isEnabledFor(logging.DEBUG))
        return EXIT_FAILURE

    for report in result.cleanup_reports:
        logger.info(
            "cleanup_complete | location=%s deleted=%s skipped=%s dry_run=%s",
            report.location,
            report.summary(),
            len(report.skipped),
            report.dry_run,
        )
    logger.info("all_done | mode=%s steps=%s", plan.mode.value, len(result.completed))
    return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
