from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Tuple

from pgbackup.core.errors import ArtifactNotFoundError, DumpError, RestoreError
from pgbackup.core.plugins.base import ConnectionParams, DumpPlugin

MAINTENANCE_DATABASE = "postgres"


def _pg_env(connection: ConnectionParams) -> Dict[str, str]:
    env = os.environ.copy()
    if connection.password:
        env["PGPASSWORD"] = connection.password
    return env


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class PostgreSQLPlugin(DumpPlugin):
    """PostgreSQL dump/restore engine using the client tools on PATH.

    - `pg_dump -F c` writes a custom-format archive (compressed, includes
      large objects with `-b`).
    - Restores go through `pg_restore --if-exists -c`, so existing objects
      are dropped and recreated instead of duplicated.
    - The destination server is probed with asyncpg (`SELECT 1`) and the
      target database is created when it does not exist yet.
    """

    def __init__(self, name: str = "postgresql", version: str = "0.1.0") -> None:
        super().__init__(name=name, version=version)
        self._logger = logging.getLogger(__name__)

    def required_binaries(self, *, backup: bool, restore: bool) -> List[str]:
        bins: List[str] = []
        if backup:
            bins.append("pg_dump")
        if restore:
            bins.append("pg_restore")
        return bins

    async def _run(self, cmd: List[str], connection: ConnectionParams) -> Tuple[int, str]:
        """Run a client tool; returns (returncode, stderr text)."""
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_pg_env(connection),
        )
        _, stderr_data = await proc.communicate()
        return proc.returncode, stderr_data.decode(errors="ignore").strip()

    async def create_dump(self, connection: ConnectionParams, output_path: str) -> Dict[str, Any]:
        cmd = [
            "pg_dump",
            "-h",
            connection.host,
            "-p",
            str(connection.port),
            "-U",
            connection.user,
            "-F",
            "c",
            "-b",
            "-v",
            "-f",
            output_path,
            connection.database,
        ]
        self._logger.info(
            "postgresql_backup_start | host=%s port=%s database=%s artifact=%s",
            connection.host,
            connection.port,
            connection.database,
            output_path,
        )

        try:
            returncode, err = await self._run(cmd, connection)
        except OSError as exc:
            raise DumpError(f"pg_dump could not be started: {exc}") from exc
        if returncode != 0:
            raise DumpError(f"pg_dump failed for database {connection.database}: {err}")

        # pg_dump reporting success is not enough: the archive must exist and hold data
        if not os.path.isfile(output_path):
            raise DumpError(f"Backup file was not created: {output_path}")
        artifact_bytes = os.path.getsize(output_path)
        if artifact_bytes == 0:
            raise DumpError(f"Backup file is empty: {output_path}")

        self._logger.info(
            "postgresql_backup_success | database=%s artifact=%s bytes=%s",
            connection.database,
            output_path,
            artifact_bytes,
        )
        return {"artifact_path": output_path, "artifact_bytes": artifact_bytes}

    async def ensure_database(self, connection: ConnectionParams) -> bool:
        """Probe the server and create `connection.database` if it is missing.

        Returns True if the database had to be created.
        """
        import asyncpg  # type: ignore

        conn = None
        try:
            conn = await asyncpg.connect(
                host=connection.host,
                port=connection.port,
                user=connection.user,
                password=connection.password,
                database=MAINTENANCE_DATABASE,
            )
            value = await conn.fetchval("SELECT 1")
            if value != 1:
                raise RestoreError(f"Unexpected probe result from {connection.host}: {value!r}")
            exists = await conn.fetchval(
                "SELECT COUNT(*) FROM pg_database WHERE datname = $1",
                connection.database,
            )
            if exists:
                return False
            self._logger.info(
                "postgresql_create_database | host=%s database=%s",
                connection.host,
                connection.database,
            )
            await conn.execute(f"CREATE DATABASE {_quote_ident(connection.database)}")
            return True
        except RestoreError:
            raise
        except Exception as exc:
            raise RestoreError(
                f"Cannot connect to destination database server {connection.host}:{connection.port}: {exc}"
            ) from exc
        finally:
            if conn is not None:
                await conn.close()

    async def restore_dump(self, connection: ConnectionParams, input_path: str) -> Dict[str, Any]:
        """Restore a custom-format archive into the destination database."""
        if not input_path or not os.path.isfile(input_path):
            raise ArtifactNotFoundError(f"Backup file not found: {input_path}")

        created = await self.ensure_database(connection)

        cmd = [
            "pg_restore",
            "-h",
            connection.host,
            "-p",
            str(connection.port),
            "-U",
            connection.user,
            "-d",
            connection.database,
            "--if-exists",
            "-c",
            "-v",
            input_path,
        ]
        self._logger.info(
            "postgresql_restore_start | host=%s port=%s database=%s artifact=%s",
            connection.host,
            connection.port,
            connection.database,
            input_path,
        )

        try:
            returncode, err = await self._run(cmd, connection)
        except OSError as exc:
            raise RestoreError(f"pg_restore could not be started: {exc}") from exc
        if returncode != 0:
            raise RestoreError(f"pg_restore failed for database {connection.database}: {err}")

        artifact_bytes = os.path.getsize(input_path)
        self._logger.info(
            "postgresql_restore_success | database=%s artifact=%s bytes=%s created_database=%s",
            connection.database,
            input_path,
            artifact_bytes,
            created,
        )
        return {
            "status": "success",
            "artifact_path": input_path,
            "artifact_bytes": artifact_bytes,
            "created_database": created,
        }
