"""Configuration for the transform tree."""

from dataclasses import dataclass

DEFAULT_TOLERANCE_NS = 500_000_000
DEFAULT_MAX_SAMPLES = 10_000
DEFAULT_MAX_AGE_NS = 10_000_000_000


@dataclass(frozen=True)
class TreeConfig:
    """Tuning knobs for sample lookup and retention.

    Attributes:
        tolerance_ns: How far (in nanoseconds) a query may fall before the
            earliest or after the latest sample of an edge and still resolve
            to that boundary sample. Queries further out are refused.
        max_samples: Maximum number of samples kept per edge.
        max_age_ns: Samples older than this, measured back from the newest
            sample of the same edge, are evicted. None keeps samples forever.
        strict_reparent: If True, a sample that would give a child frame a
            different parent is rejected with AmbiguousReparentError instead
            of replacing the old edge with a warning.
    """

    tolerance_ns: int = DEFAULT_TOLERANCE_NS
    max_samples: int = DEFAULT_MAX_SAMPLES
    max_age_ns: int | None = DEFAULT_MAX_AGE_NS
    strict_reparent: bool = False

    def __post_init__(self) -> None:
        if self.tolerance_ns < 0:
            raise ValueError(f"tolerance_ns must be non-negative, got {self.tolerance_ns}")
        if self.max_samples < 1:
            raise ValueError(f"max_samples must be at least 1, got {self.max_samples}")
        if self.max_age_ns is not None and self.max_age_ns < 0:
            raise ValueError(f"max_age_ns must be non-negative or None, got {self.max_age_ns}")
