"""Backup artifact naming scheme.

Artifacts are named `<database_id>_<YYYYMMDD>_<HHMMSS>.dump`. Any name that
does not match this grammar exactly is foreign data: it is never selected as
a restore/upload source and never deleted by a retention sweep.

Parsing splits from the right (extension, then time, then date) so database
identifiers that contain underscores are recovered intact.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from pgbackup.domain.enums import Location

ARTIFACT_EXTENSION = "dump"

_DATABASE_ID_RE = re.compile(r"[A-Za-z0-9_]+")
_ARTIFACT_RE = re.compile(
    r"(?P<database_id>[A-Za-z0-9_]+)_(?P<date>[0-9]{8})_(?P<time>[0-9]{6})\."
    + re.escape(ARTIFACT_EXTENSION)
)


@dataclass(frozen=True)
class ListingEntry:
    """One object in a namespace listing: a name and its last-modified instant.

    `key` is the storage key for remote listings (prefix + name); it is None
    for local directory listings.
    """

    name: str
    last_modified: datetime
    key: Optional[str] = None


@dataclass(frozen=True)
class ArtifactReference:
    """A backup artifact resolved in a namespace. Recomputed on every run.

    `created_at` is None only for an operator-named file whose name does not
    follow the artifact grammar.
    """

    database_id: str
    created_at: Optional[datetime]
    name: str
    location: Location
    key: Optional[str] = None


def is_valid_database_id(database_id: str) -> bool:
    return bool(_DATABASE_ID_RE.fullmatch(database_id or ""))


def format_artifact_name(database_id: str, instant: datetime) -> str:
    """Return the canonical artifact name for `database_id` at `instant`.

    The instant is rendered in the local calendar at second resolution. A
    naive instant is taken to already be local time.
    """
    if not is_valid_database_id(database_id):
        raise ValueError(f"invalid database identifier: {database_id!r}")
    local = instant.astimezone() if instant.tzinfo is not None else instant
    return f"{database_id}_{local.strftime('%Y%m%d_%H%M%S')}.{ARTIFACT_EXTENSION}"


def parse_artifact_name(name: str) -> Optional[Tuple[str, datetime]]:
    """Parse an artifact name into (database_id, aware local instant).

    Returns None for anything that is not a conforming artifact name,
    including calendar-invalid dates such as month 13.
    """
    match = _ARTIFACT_RE.fullmatch(name)
    if match is None:
        return None
    date, time = match.group("date"), match.group("time")
    try:
        naive = datetime(
            int(date[0:4]),
            int(date[4:6]),
            int(date[6:8]),
            int(time[0:2]),
            int(time[2:4]),
            int(time[4:6]),
        )
    except ValueError:
        return None
    return match.group("database_id"), naive.astimezone()


def artifact_glob(database_id: str) -> str:
    """Human-readable search pattern used in not-found messages."""
    return f"{database_id}_*.{ARTIFACT_EXTENSION}"
