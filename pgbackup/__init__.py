"""PostgreSQL logical backups, restores and S3 archival with retention cleanup."""

__version__ = "0.1.0"
