"""Unread-count aggregation (core domain).

Subscription records come straight from the backend and are loosely typed.
Every numeric read goes through _to_count so a malformed field counts as 0
instead of failing the whole poll.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Optional

from core.models import UnreadSnapshot

# First present field wins, even when its value turns out to be non-numeric.
UNREAD_SIGNAL_FIELDS = ("unread", "unreadCount", "msgs")
MENTION_FIELDS = ("userMentions", "groupMentions")
THREAD_UNREAD_FIELD = "tunread"

# Type discriminator -> bucket. Other types are not counted.
BUCKET_BY_TYPE = {
    "c": "channels",
    "d": "im",
    "p": "groups",
}


def _to_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def _first_present(record: dict[str, Any], fields: Iterable[str]) -> Optional[Any]:
    for name in fields:
        value = record.get(name)
        if value is not None:
            return value
    return None


def _bucket_for(record: dict[str, Any]) -> Optional[str]:
    kind = record.get("t")
    return BUCKET_BY_TYPE.get(kind) if isinstance(kind, str) else None


def record_unread(record: dict[str, Any]) -> int:
    """Return the unread total contributed by one subscription record."""

    base = _to_count(_first_present(record, UNREAD_SIGNAL_FIELDS))
    mentions = sum(_to_count(record.get(name)) for name in MENTION_FIELDS)
    threads = _to_count(record.get(THREAD_UNREAD_FIELD))
    return base + mentions + threads


def compute(records: Iterable[Any]) -> UnreadSnapshot:
    """Aggregate subscription records into an UnreadSnapshot."""

    buckets = {"channels": 0, "im": 0, "groups": 0}
    for record in records:
        if not isinstance(record, dict):
            continue
        bucket = _bucket_for(record)
        if bucket is None:
            continue
        buckets[bucket] += record_unread(record)
    return UnreadSnapshot.from_buckets(**buckets)


def count_mentions(records: Iterable[Any]) -> int:
    """Sum direct and group mentions over records that land in a bucket."""

    total = 0
    for record in records:
        if not isinstance(record, dict) or _bucket_for(record) is None:
            continue
        total += sum(_to_count(record.get(name)) for name in MENTION_FIELDS)
    return total
