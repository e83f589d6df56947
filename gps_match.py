"""
Nearest-timestamp matching of photos without GPS against GPS-tagged photos.

The GPS-tagged photos are sorted once into a TimeOrderedIndex. Each photo
missing GPS is then matched to the reference whose capture time is closest,
found with a binary search, and the match is accepted only when the time
difference is within the configured window.
"""

import math
from bisect import bisect_left
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional

DEFAULT_MAX_GAP = timedelta(minutes=20)


@dataclass(frozen=True)
class Coordinate:
    """Decimal degrees, south and west negative. Altitude in metres."""

    lat: float
    lon: float
    alt: Optional[float] = None


@dataclass(frozen=True)
class PhotoRecord:
    identity: Any
    captured_at: datetime
    coordinate: Optional[Coordinate] = None

    @property
    def has_gps(self):
        return self.coordinate is not None


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of matching one query photo.

    `record` and `delta` are None when there was nothing to match against.
    `accepted` stays False until a MatchPolicy has approved the delta.
    """

    query: Optional[PhotoRecord]
    record: Optional[PhotoRecord]
    delta: Optional[timedelta]
    accepted: bool = False

    @property
    def found(self):
        return self.record is not None


class TimeOrderedIndex:
    """
    GPS-tagged photos sorted by capture time.

    Sorted once on construction and never modified afterwards, so lookups
    can rely on the ordering without re-checking it.
    """

    def __init__(self, records=()):
        ordered = sorted(records, key=lambda r: r.captured_at)
        for record in ordered:
            if record.coordinate is None:
                raise ValueError(f"Reference photo has no GPS coordinate: {record.identity}")
        self._records = tuple(ordered)
        self._timestamps = tuple(r.captured_at for r in self._records)

    def __len__(self):
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def __getitem__(self, position):
        return self._records[position]

    @property
    def timestamps(self):
        return self._timestamps

    def find_nearest(self, when):
        return find_nearest(self, when)


def find_nearest(index, when, query=None):
    """
    Find the reference photo closest in time to `when`.

    Uses binary search for the first reference not before `when`, then
    compares it with its left neighbour. On an exact tie the later photo
    (the right neighbour) wins.

    Returns a MatchResult with record=None if the index is empty.
    """
    length = len(index)
    if length == 0:
        return MatchResult(query=query, record=None, delta=None)

    pos = bisect_left(index.timestamps, when)

    if pos == 0:
        right = index[0]
        return MatchResult(query=query, record=right, delta=right.captured_at - when)
    if pos == length:
        left = index[length - 1]
        return MatchResult(query=query, record=left, delta=when - left.captured_at)

    left = index[pos - 1]
    right = index[pos]
    left_delta = when - left.captured_at
    right_delta = right.captured_at - when
    if left_delta < right_delta:
        return MatchResult(query=query, record=left, delta=left_delta)
    return MatchResult(query=query, record=right, delta=right_delta)


def accept(delta, max_gap):
    """Return True if `delta` is within `max_gap` (inclusive)."""
    return delta <= max_gap


@dataclass(frozen=True)
class MatchPolicy:
    max_gap: timedelta = DEFAULT_MAX_GAP

    def __post_init__(self):
        if self.max_gap < timedelta(0):
            raise ValueError(f"max_gap must not be negative: {self.max_gap}")

    @classmethod
    def from_minutes(cls, minutes):
        """Build a policy from a window in minutes; ValueError if it is not a usable duration."""
        if not math.isfinite(minutes):
            raise ValueError(f"max gap must be a finite number of minutes: {minutes}")
        try:
            max_gap = timedelta(minutes=minutes)
        except OverflowError:
            raise ValueError(f"max gap is too large: {minutes} minutes") from None
        return cls(max_gap=max_gap)

    def accept(self, delta):
        if delta is None:
            return False
        return accept(delta, self.max_gap)


def match_photo(index, query, policy):
    """Match a single photo against the index and apply the policy."""
    result = find_nearest(index, query.captured_at, query=query)
    if not result.found:
        return result
    return replace(result, accepted=policy.accept(result.delta))


def match_all(index, queries, policy):
    for query in queries:
        yield match_photo(index, query, policy)
