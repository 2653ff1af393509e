"""Latest-artifact lookup over a namespace listing."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from pgbackup.core.errors import ArtifactNotFoundError
from pgbackup.domain.artifacts import (
    ArtifactReference,
    ListingEntry,
    artifact_glob,
    parse_artifact_name,
)
from pgbackup.domain.enums import Location


logger = logging.getLogger(__name__)


def find_latest(
    listing: Iterable[ListingEntry],
    database_id: str,
    *,
    location: Location,
    namespace: Optional[str] = None,
) -> ArtifactReference:
    """Return the newest artifact of `database_id` in `listing`.

    Only conforming names whose database id equals `database_id` exactly are
    considered; the newest is chosen by the instant encoded in the name, with
    the lexicographically greatest name breaking ties.

    Raises ArtifactNotFoundError when nothing matches.
    """
    matches: List[Tuple[ArtifactReference, str]] = []
    for entry in listing:
        parsed = parse_artifact_name(entry.name)
        if parsed is None:
            continue
        parsed_id, created_at = parsed
        if parsed_id != database_id:
            continue
        ref = ArtifactReference(
            database_id=parsed_id,
            created_at=created_at,
            name=entry.name,
            location=location,
            key=entry.key,
        )
        matches.append((ref, entry.name))

    if not matches:
        where = namespace or location.value
        raise ArtifactNotFoundError(
            f"No backup files found matching pattern: {artifact_glob(database_id)} in {where}"
        )

    latest, _ = max(matches, key=lambda item: (item[0].created_at, item[1]))
    logger.debug(
        "locator_latest | location=%s database=%s name=%s candidates=%s",
        location.value,
        database_id,
        latest.name,
        len(matches),
    )
    return latest
