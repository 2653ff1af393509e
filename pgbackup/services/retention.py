"""Retention service: window parsing, candidate selection, and destructive cleanup.

A sweep only ever considers names that match the artifact grammar; everything
else in the directory or bucket prefix is reported as skipped and left alone.
Deletions are independent of each other: a failed delete is logged and the
sweep carries on with the remaining candidates.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from pgbackup.core.errors import RetentionWindowError
from pgbackup.core.plugins.base import ArtifactStore
from pgbackup.domain.artifacts import ListingEntry, parse_artifact_name


logger = logging.getLogger(__name__)

_WINDOW_RE = re.compile(r"[0-9]+h")


@dataclass(frozen=True)
class RetentionWindow:
    """A positive whole number of hours."""

    hours: int

    def __post_init__(self) -> None:
        if self.hours <= 0:
            raise RetentionWindowError("Duration must be greater than 0")
        try:
            timedelta(hours=self.hours)
        except OverflowError:
            raise RetentionWindowError(f"Duration {self.hours}h is too large") from None

    @property
    def delta(self) -> timedelta:
        return timedelta(hours=self.hours)

    def __str__(self) -> str:
        return f"{self.hours}h"


def parse_retention_window(value: Optional[str]) -> RetentionWindow:
    """Parse a window such as `24h`.

    Only whole hours are accepted; `24`, `0h`, `-5h`, `1.5h` and `7d` are all
    rejected with RetentionWindowError.
    """
    if value is None or not _WINDOW_RE.fullmatch(value):
        raise RetentionWindowError(
            f"Invalid duration format '{value}'. Use format like '24h' (whole numbers only)"
        )
    return RetentionWindow(hours=int(value[:-1]))


def _ensure_tz_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware, assuming UTC if naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class RetentionSelection:
    cutoff: datetime
    candidates: List[ListingEntry] = field(default_factory=list)
    retained: List[ListingEntry] = field(default_factory=list)
    skipped: List[ListingEntry] = field(default_factory=list)

    @property
    def candidate_names(self) -> List[str]:
        return [entry.name for entry in self.candidates]

    @property
    def considered(self) -> int:
        return len(self.candidates) + len(self.retained)


def select_for_deletion(
    listing: Iterable[ListingEntry],
    window: RetentionWindow,
    now: Optional[datetime] = None,
) -> RetentionSelection:
    """Partition a listing into deletion candidates, retained and skipped entries.

    An entry is a candidate only if its name parses as an artifact and its
    last-modified instant is strictly earlier than `now - window`.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    try:
        cutoff = _ensure_tz_aware(now) - window.delta
    except OverflowError:
        # window reaches past the earliest representable instant: nothing is old enough
        cutoff = datetime.min.replace(tzinfo=timezone.utc)
    selection = RetentionSelection(cutoff=cutoff)

    for entry in sorted(listing, key=lambda e: e.name):
        if parse_artifact_name(entry.name) is None:
            selection.skipped.append(entry)
            continue
        if _ensure_tz_aware(entry.last_modified) < cutoff:
            selection.candidates.append(entry)
        else:
            selection.retained.append(entry)

    return selection


@dataclass
class CleanupReport:
    """Outcome of one cleanup step. Failures here never abort the run."""

    location: str
    window: RetentionWindow
    considered: int = 0
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def attempted(self) -> int:
        return len(self.deleted) + len(self.failed)

    def summary(self) -> str:
        return f"{len(self.deleted)}/{self.attempted}"


def _delete_entry(store: ArtifactStore, entry: ListingEntry) -> bool:
    """Delete one candidate. Returns False (after logging) if deletion failed."""
    try:
        store.delete(entry)
    except Exception as exc:
        logger.warning(
            "retention_artifact_delete_failed | location=%s name=%s error=%s",
            store.location.value,
            entry.name,
            exc,
        )
        return False
    logger.info(
        "retention_artifact_deleted | location=%s name=%s last_modified=%s",
        store.location.value,
        entry.name,
        entry.last_modified.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
    )
    return True


def apply_retention(
    store: ArtifactStore,
    window: RetentionWindow,
    *,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> CleanupReport:
    """Delete artifacts older than `window` from `store`.

    Args:
        store: Namespace to sweep (local directory or remote prefix)
        window: Retention window; artifacts modified within it are kept
        now: Current time for cutoff calculation (defaults to utcnow)
        dry_run: If True, compute candidates but don't delete anything

    Returns:
        CleanupReport with deleted/failed/skipped names and counts.
    """
    report = CleanupReport(location=store.location.value, window=window, dry_run=dry_run)

    if not store.exists():
        logger.warning(
            "retention_skip_missing_namespace | location=%s namespace=%s",
            store.location.value,
            store.describe(),
        )
        return report

    logger.info(
        "retention_start | location=%s namespace=%s window=%s dry_run=%s",
        store.location.value,
        store.describe(),
        window,
        dry_run,
    )
    selection = select_for_deletion(store.list_entries(), window, now=now)
    report.considered = selection.considered
    report.skipped = [entry.name for entry in selection.skipped]

    for entry in selection.skipped:
        logger.info("retention_skip_foreign | location=%s name=%s", store.location.value, entry.name)

    for entry in selection.candidates:
        if dry_run:
            logger.info("retention_would_delete | location=%s name=%s", store.location.value, entry.name)
            report.deleted.append(entry.name)
            continue
        if _delete_entry(store, entry):
            report.deleted.append(entry.name)
        else:
            report.failed.append(entry.name)

    logger.info(
        "retention_applied | location=%s deleted=%s considered=%s skipped=%s failed=%s dry_run=%s",
        store.location.value,
        report.summary(),
        report.considered,
        len(report.skipped),
        len(report.failed),
        dry_run,
    )
    return report
