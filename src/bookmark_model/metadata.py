"""Metadata stamping helpers.

Every content-changing mutation stamps ``last_modified`` on the entity it
changed and on every ancestor up to the Root, using one timestamp per
mutation. The helpers here work on any of the tree entities since they all
carry an optional ``metadata`` field.
"""

from dataclasses import replace
from datetime import datetime, UTC
from typing import Optional, TypeVar

from .models import Metadata

# Timestamp used when an entity has never been stamped
EPOCH_TIMESTAMP = '1970-01-01T00:00:00.000Z'

E = TypeVar('E')


def current_timestamp() -> str:
    """Return the current UTC time as an ISO 8601 string with milliseconds.

    Example:
        >>> current_timestamp()
        '2024-01-15T10:30:00.123Z'
    """
    now = datetime.now(UTC)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"


def touch_metadata(metadata: Optional[Metadata], timestamp: str) -> Metadata:
    """Return metadata with last_modified set to timestamp.

    The version counter is bumped when present; fresh metadata starts at
    version 1 with created_at equal to the stamp.
    """
    if metadata is None:
        return Metadata(last_modified=timestamp, created_at=timestamp, version=1)
    version = metadata.version + 1 if metadata.version is not None else None
    return replace(metadata, last_modified=timestamp, version=version)


def stamp(entity: E, timestamp: str) -> E:
    """Return a copy of entity with last_modified stamped."""
    return replace(entity, metadata=touch_metadata(entity.metadata, timestamp))  # type: ignore[attr-defined]


def mark_deleted(entity: E, timestamp: str) -> E:
    """Return a copy of entity flagged as a tombstone."""
    metadata = touch_metadata(entity.metadata, timestamp)  # type: ignore[attr-defined]
    return replace(entity, metadata=replace(metadata, is_deleted=True))  # type: ignore[arg-type]


def mark_synced(entity: E, timestamp: str) -> E:
    """Return a copy of entity with last_synced set, leaving last_modified alone."""
    metadata = entity.metadata  # type: ignore[attr-defined]
    if metadata is None:
        metadata = Metadata(last_modified=EPOCH_TIMESTAMP)
    return replace(entity, metadata=replace(metadata, last_synced=timestamp))  # type: ignore[arg-type]


def last_modified(entity) -> str:
    """Return the entity's last_modified, or the epoch when unstamped."""
    if entity.metadata is None or not entity.metadata.last_modified:
        return EPOCH_TIMESTAMP
    return entity.metadata.last_modified
