"""S3-compatible object storage for backup artifacts (AWS S3, MinIO, ...)."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from pgbackup.core.config import S3Settings
from pgbackup.core.errors import ArtifactNotFoundError, TransferError
from pgbackup.core.plugins.base import RemoteStore
from pgbackup.domain.artifacts import ListingEntry


_MISSING_CODES = {"404", "NoSuchBucket", "NoSuchKey", "NotFound"}


def normalize_prefix(prefix: Optional[str]) -> str:
    """Return `prefix` with exactly one trailing separator, or '' when empty."""
    if not prefix:
        return ""
    return prefix.rstrip("/") + "/"


def object_key(prefix: Optional[str], name: str) -> str:
    """Join a key prefix and an artifact name with exactly one separator."""
    return normalize_prefix(prefix) + name.lstrip("/")


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3Plugin(RemoteStore):
    """Bucket + prefix namespace backed by boto3.

    Listing is non-recursive: only objects directly under the prefix are
    returned, and their names are the keys with the prefix stripped.
    """

    def __init__(self, settings: S3Settings, client: Any = None) -> None:
        if not settings.bucket:
            raise ValueError("S3 operations require a bucket")
        self.settings = settings
        self.bucket = settings.bucket
        self.prefix = normalize_prefix(settings.prefix)
        self._client = client
        self._logger = logging.getLogger(__name__)

    @property
    def client(self) -> Any:
        if self._client is None:
            session = boto3.Session(
                aws_access_key_id=self.settings.access_key,
                aws_secret_access_key=self.settings.secret_key,
                region_name=self.settings.region,
            )
            self._client = session.client("s3", endpoint_url=self.settings.endpoint)
        return self._client

    def describe(self) -> str:
        return f"s3://{self.bucket}/{self.prefix}"

    def key_for(self, name: str) -> str:
        return object_key(self.prefix, name)

    def exists(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise TransferError(
                f"Cannot access S3 bucket {self.bucket}. Check credentials and bucket access: {exc}"
            ) from exc
        except BotoCoreError as exc:
            raise TransferError(f"Cannot reach S3 endpoint: {exc}") from exc
        return True

    def list_entries(self) -> List[ListingEntry]:
        list_kwargs: Dict[str, Any] = {"Bucket": self.bucket, "Delimiter": "/"}
        if self.prefix:
            list_kwargs["Prefix"] = self.prefix

        entries: List[ListingEntry] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(**list_kwargs):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    name = key[len(self.prefix):]
                    if not name:
                        continue
                    entries.append(ListingEntry(name=name, last_modified=obj["LastModified"], key=key))
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise ArtifactNotFoundError(f"S3 bucket does not exist: {self.bucket}") from exc
            raise TransferError(f"S3 listing failed for {self.describe()}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransferError(f"S3 listing failed for {self.describe()}: {exc}") from exc
        return entries

    def download(self, name: str, local_path: str) -> Dict[str, Any]:
        key = self.key_for(name)
        self._logger.info("s3_download_start | bucket=%s key=%s path=%s", self.bucket, key, local_path)
        try:
            self.client.download_file(self.bucket, key, local_path)
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"S3 download failed for s3://{self.bucket}/{key}: {exc}") from exc

        if not os.path.isfile(local_path):
            raise TransferError(f"Downloaded file was not created: {local_path}")
        artifact_bytes = os.path.getsize(local_path)
        if artifact_bytes == 0:
            raise TransferError(f"Downloaded file is empty: {local_path}")

        self._logger.info("s3_download_complete | path=%s bytes=%s", local_path, artifact_bytes)
        return {"artifact_path": local_path, "artifact_bytes": artifact_bytes, "key": key}

    def upload(self, local_path: str, name: str) -> Dict[str, Any]:
        if not os.path.isfile(local_path):
            raise ArtifactNotFoundError(f"Backup file not found for S3 upload: {local_path}")
        key = self.key_for(name)
        self._logger.info("s3_upload_start | bucket=%s key=%s path=%s", self.bucket, key, local_path)
        try:
            self.client.upload_file(local_path, self.bucket, key)
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"S3 upload failed for s3://{self.bucket}/{key}: {exc}") from exc
        self._logger.info("s3_upload_complete | bucket=%s key=%s", self.bucket, key)
        return {"key": key, "artifact_bytes": os.path.getsize(local_path)}

    def delete(self, entry: ListingEntry) -> None:
        key = entry.key or self.key_for(entry.name)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"S3 delete failed for s3://{self.bucket}/{key}: {exc}") from exc
