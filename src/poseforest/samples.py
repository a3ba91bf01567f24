"""Time-ordered transform samples for a single parent/child edge."""

from bisect import bisect_left, bisect_right
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

from poseforest.config import DEFAULT_MAX_AGE_NS, DEFAULT_MAX_SAMPLES
from poseforest.errors import OutOfRangeError
from poseforest.transform import Transform


@dataclass(frozen=True, eq=False)
class TransformSample:
    """One timestamped rigid transform between a parent and a child frame.

    Attributes:
        timestamp_ns: Sample time in nanoseconds.
        transform: The child's pose in the parent frame at that time.

    """

    timestamp_ns: int
    transform: Transform


def interpolate(before: TransformSample, after: TransformSample, time_ns: int) -> Transform:
    """Interpolate between two samples of the same edge.

    Translation is interpolated linearly and rotation spherically along the
    shortest arc. Querying exactly at either sample time returns that sample's
    transform unmodified.

    Args:
        before: The earlier sample.
        after: The later sample. May be the same sample as ``before``.
        time_ns: Query time, within [before.timestamp_ns, after.timestamp_ns].

    Returns:
        The interpolated transform, with a normalized rotation.

    Raises:
        ValueError: If the samples are out of order or time_ns is outside them.

    """
    start = before.timestamp_ns
    end = after.timestamp_ns
    if start == end:
        return before.transform
    if end < start:
        raise ValueError(f"Samples out of order: {start} > {end}")
    if time_ns == start:
        return before.transform
    if time_ns == end:
        return after.transform
    if not start < time_ns < end:
        raise ValueError(f"Time {time_ns} is outside the samples [{start}, {end}]")

    fraction = (time_ns - start) / (end - start)
    translation = before.transform.translation + fraction * (
        after.transform.translation - before.transform.translation
    )
    rotations = Rotation.from_quat(np.vstack((before.transform.rotation, after.transform.rotation)))
    rotation = Slerp([0.0, 1.0], rotations)([fraction])[0]
    return Transform(translation, rotation.as_quat())


class SampleStore:
    """Sorted history of transform samples for one edge.

    Samples are kept ordered by timestamp. In-order arrivals are appended;
    late arrivals are placed by binary search. A sample with the same
    timestamp as an existing one replaces it.
    """

    def __init__(
        self,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        max_age_ns: int | None = DEFAULT_MAX_AGE_NS,
    ) -> None:
        """Initialize an empty store.

        Args:
            max_samples: Maximum number of samples retained.
            max_age_ns: Samples older than the newest sample by more than this
                are evicted. None disables age-based eviction.

        """
        self._max_samples = max_samples
        self._max_age_ns = max_age_ns
        self._timestamps: list[int] = []
        self._transforms: list[Transform] = []
        # Index i with timestamps[i - 1] <= t < timestamps[i] for the last query
        self._hint: int | None = None

    def __len__(self) -> int:
        return len(self._timestamps)

    def __iter__(self) -> Iterator[TransformSample]:
        """Iterate over samples in time order."""
        for timestamp, transform in zip(self._timestamps, self._transforms, strict=True):
            yield TransformSample(timestamp, transform)

    @property
    def earliest(self) -> TransformSample | None:
        """The oldest retained sample, or None if empty."""
        if not self._timestamps:
            return None
        return TransformSample(self._timestamps[0], self._transforms[0])

    @property
    def latest(self) -> TransformSample | None:
        """The newest retained sample, or None if empty."""
        if not self._timestamps:
            return None
        return TransformSample(self._timestamps[-1], self._transforms[-1])

    def insert(self, sample: TransformSample) -> None:
        """Insert a sample, keeping time order and evicting expired samples."""
        timestamps = self._timestamps
        timestamp = sample.timestamp_ns
        if not timestamps or timestamp > timestamps[-1]:
            timestamps.append(timestamp)
            self._transforms.append(sample.transform)
        else:
            index = bisect_left(timestamps, timestamp)
            if timestamps[index] == timestamp:
                self._transforms[index] = sample.transform
            else:
                timestamps.insert(index, timestamp)
                self._transforms.insert(index, sample.transform)
        self._hint = None
        self._evict()

    def _evict(self) -> None:
        """Drop samples beyond the count and age limits, always keeping the newest."""
        count = len(self._timestamps) - self._max_samples
        if self._max_age_ns is not None:
            cutoff = self._timestamps[-1] - self._max_age_ns
            count = max(count, bisect_left(self._timestamps, cutoff))
        count = min(count, len(self._timestamps) - 1)
        if count > 0:
            del self._timestamps[:count]
            del self._transforms[:count]

    def query(self, time_ns: int, tolerance_ns: int = 0) -> Transform:
        """Look up the transform at a given time.

        Args:
            time_ns: Query time in nanoseconds.
            tolerance_ns: How far outside the retained range the query may be
                and still resolve to the nearest boundary sample.

        Returns:
            The exact, interpolated, or boundary transform.

        Raises:
            OutOfRangeError: If the store is empty or time_ns lies outside the
                retained samples by more than tolerance_ns.

        """
        timestamps = self._timestamps
        if not timestamps:
            raise OutOfRangeError("No transform samples available", time_ns=time_ns)

        first = timestamps[0]
        last = timestamps[-1]
        if time_ns <= first:
            if first - time_ns > tolerance_ns:
                raise OutOfRangeError(
                    f"Time {time_ns} precedes the earliest sample at {first}",
                    time_ns=time_ns,
                )
            return self._transforms[0]
        if time_ns >= last:
            if time_ns - last > tolerance_ns:
                raise OutOfRangeError(
                    f"Time {time_ns} follows the latest sample at {last}",
                    time_ns=time_ns,
                )
            return self._transforms[-1]

        index = self._bracket(time_ns)
        if timestamps[index - 1] == time_ns:
            return self._transforms[index - 1]
        return interpolate(
            TransformSample(timestamps[index - 1], self._transforms[index - 1]),
            TransformSample(timestamps[index], self._transforms[index]),
            time_ns,
        )

    def _bracket(self, time_ns: int) -> int:
        """Find i with timestamps[i - 1] <= time_ns < timestamps[i]."""
        timestamps = self._timestamps
        hint = self._hint
        if hint is not None and 0 < hint < len(timestamps) and timestamps[hint - 1] <= time_ns < timestamps[hint]:
            return hint
        index = bisect_right(timestamps, time_ns)
        self._hint = index
        return index

    def invalidate_cache(self) -> None:
        """Forget the lookup hint, e.g. after a playback time jump."""
        self._hint = None

    def clear(self) -> None:
        self._timestamps.clear()
        self._transforms.clear()
        self._hint = None
