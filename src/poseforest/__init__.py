"""poseforest: Resolve poses across a time-varying forest of coordinate frames."""

from poseforest.config import TreeConfig
from poseforest.diagnostics import MISSING_TRANSFORM, Diagnostics, missing_transform_message
from poseforest.errors import (
    AmbiguousReparentError,
    FrameNotFoundError,
    FrameRole,
    MissingTransformReason,
    NoPathError,
    OutOfRangeError,
    TransformLookupError,
    TransformTreeError,
)
from poseforest.publish import point_transform, pose_transform
from poseforest.samples import SampleStore, TransformSample, interpolate
from poseforest.session import Renderable, RenderableState, SceneSession, TickSummary, update_pose
from poseforest.transform import Pose, Transform
from poseforest.tree import FramePath, FrameTree

__version__ = "0.1.0"

__all__ = [
    "MISSING_TRANSFORM",
    "AmbiguousReparentError",
    "Diagnostics",
    "FrameNotFoundError",
    "FramePath",
    "FrameRole",
    "FrameTree",
    "MissingTransformReason",
    "NoPathError",
    "OutOfRangeError",
    "Pose",
    "Renderable",
    "RenderableState",
    "SampleStore",
    "SceneSession",
    "TickSummary",
    "Transform",
    "TransformLookupError",
    "TransformSample",
    "TransformTreeError",
    "TreeConfig",
    "interpolate",
    "missing_transform_message",
    "point_transform",
    "pose_transform",
    "update_pose",
]
