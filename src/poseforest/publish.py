"""Convert user interactions in the scene into the frame they are published in."""

import logging

import numpy as np
from skspatial.objects import Point

from poseforest.errors import TransformLookupError
from poseforest.transform import Pose
from poseforest.tree import FrameTree

logger = logging.getLogger(__name__)


def pose_transform(pose: Pose, original_frame: str, target_frame: str, tree: FrameTree, time_ns: int) -> Pose:
    """Express a pose clicked in one frame in the publish frame.

    The original frame doubles as the fixed frame, and both frames are looked
    up at the same time.

    Args:
        pose: The pose in ``original_frame``.
        original_frame: The frame the interaction happened in.
        target_frame: The frame to publish in.
        tree: The transform tree.
        time_ns: The current playback time.

    Returns:
        The pose in ``target_frame``, or ``pose`` unchanged if the transform
        is not available.

    """
    if target_frame == original_frame:
        return pose
    try:
        return tree.apply(pose, target_frame, original_frame, original_frame, time_ns, time_ns)
    except TransformLookupError as e:
        logger.warning(f"Could not transform from {original_frame} to {target_frame}: {e}")
        return pose


def point_transform(point: Point, original_frame: str, target_frame: str, tree: FrameTree, time_ns: int) -> Point:
    """Express a 3D point clicked in one frame in the publish frame.

    Returns:
        A new Point in ``target_frame``, or ``point`` unchanged if the
        transform is not available.

    """
    if target_frame == original_frame:
        return point
    try:
        pose = tree.apply(Pose(np.asarray(point)), target_frame, original_frame, original_frame, time_ns, time_ns)
    except TransformLookupError as e:
        logger.warning(f"Could not transform from {original_frame} to {target_frame}: {e}")
        return point
    return Point(pose.position)
