"""Errors raised by the transform tree."""

from enum import Enum


class MissingTransformReason(Enum):
    """Why a transform could not be resolved."""

    FRAME_NOT_FOUND = "frame_not_found"
    NO_PATH = "no_path"
    OUT_OF_RANGE = "out_of_range"


class FrameRole(Enum):
    """Which frame of a pose resolution could not be resolved."""

    SOURCE = "source"
    DESTINATION = "destination"
    FIXED = "fixed"


class TransformTreeError(Exception):
    """Base class for all transform tree errors."""


class TransformLookupError(TransformTreeError):
    """A transform between two frames could not be resolved.

    Attributes:
        frame: The frame the failure is attributed to, if known.
        role: The role of that frame in the pose resolution that failed. Set
            by FrameTree.apply; None for direct lookups.

    """

    reason: MissingTransformReason

    def __init__(self, message: str, *, frame: str | None = None) -> None:
        super().__init__(message)
        self.frame = frame
        self.role: FrameRole | None = None


class FrameNotFoundError(TransformLookupError, KeyError):
    """A query named a frame the tree has never seen."""

    reason = MissingTransformReason.FRAME_NOT_FOUND

    def __str__(self) -> str:
        return str(self.args[0])


class NoPathError(TransformLookupError):
    """Two frames live in disconnected trees."""

    reason = MissingTransformReason.NO_PATH


class OutOfRangeError(TransformLookupError):
    """The query time is outside the tolerance of the known samples."""

    reason = MissingTransformReason.OUT_OF_RANGE

    def __init__(self, message: str, *, frame: str | None = None, time_ns: int | None = None) -> None:
        super().__init__(message, frame=frame)
        self.time_ns = time_ns


class AmbiguousReparentError(TransformTreeError):
    """A child frame was given a different parent while strict reparenting is on."""

    def __init__(self, child: str, previous_parent: str, parent: str) -> None:
        super().__init__(
            f"Frame '{child}' already has parent '{previous_parent}', refusing new parent '{parent}'",
        )
        self.child = child
        self.previous_parent = previous_parent
        self.parent = parent
