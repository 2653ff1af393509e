"""Central logging configuration for the CLI.

This module configures Python logging with sane defaults and is intended to be
invoked from `pgbackup.main` before anything else runs.
"""

from __future__ import annotations

import logging
import os
from typing import Optional


NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3", "asyncpg")


def setup_logging(level: Optional[str] = None) -> None:
    """Initialize application logging.

    - Level is taken from the `LOG_LEVEL` environment variable if not provided.
    - Uses a concise, structured-ish format with timestamps.
    """

    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    root_logger = logging.getLogger()

    # Configure handlers once to avoid duplicates when called twice
    if not root_logger.handlers:
        logging.basicConfig(
            level=log_level,
            format=(
                "%(asctime)s | %(levelname)s | %(name)s | "
                "%(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger.setLevel(log_level)

    # AWS SDK and driver chatter only when DEBUG is enabled at the root
    third_party_level = logging.DEBUG if root_logger.level == logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)
