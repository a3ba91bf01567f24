"""Rigid-body transforms and poses.

Quaternions are stored in scalar-last ``(x, y, z, w)`` order, matching
``scipy.spatial.transform.Rotation``. Conversion to 4x4 homogeneous matrices
goes through pytransform3d, which uses scalar-first ``(w, x, y, z)``.
"""

from typing import Any

import numpy as np
import numpy.typing as npt
from pytransform3d.rotations import quaternion_wxyz_from_xyzw, quaternion_xyzw_from_wxyz
from pytransform3d.transformations import pq_from_transform, transform_from_pq
from scipy.spatial.transform import Rotation

# Quaternions shorter than this cannot be normalized meaningfully
_MIN_QUATERNION_NORM = 1e-12


def _as_vector(values: npt.ArrayLike, size: int, name: str) -> npt.NDArray[np.floating[Any]]:
    """Copy values into a finite float vector of the given size."""
    array = np.array(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {array.shape}")
    if not np.all(np.isfinite(array)):
        raise ValueError(f"{name} must be finite, got {array}")
    return array


def _as_unit_quaternion(values: npt.ArrayLike) -> npt.NDArray[np.floating[Any]]:
    """Copy values into a normalized (x, y, z, w) quaternion."""
    quaternion = _as_vector(values, 4, "Rotation quaternion")
    norm = np.linalg.norm(quaternion)
    if norm < _MIN_QUATERNION_NORM:
        raise ValueError("Rotation quaternion must have non-zero length")
    return quaternion / norm


class Transform:
    """An immutable rigid-body transform: a rotation followed by a translation.

    A transform stored on a tree edge maps coordinates in the child frame into
    the parent frame, i.e. it is the child's pose expressed in the parent.
    Transforms compose with ``@``: ``(a_from_b @ b_from_c)`` is ``a_from_c``.
    """

    __slots__ = ("_rotation", "_translation")

    def __init__(
        self,
        translation: npt.ArrayLike = (0.0, 0.0, 0.0),
        rotation: npt.ArrayLike = (0.0, 0.0, 0.0, 1.0),
    ) -> None:
        """Initialize a transform.

        Args:
            translation: Array-like of shape (3,).
            rotation: Quaternion of shape (4,) in (x, y, z, w) order. It is
                normalized on construction.

        Raises:
            ValueError: If either input has the wrong shape, is not finite, or
                the quaternion has zero length.

        """
        self._translation = _as_vector(translation, 3, "Translation")
        self._rotation = _as_unit_quaternion(rotation)
        self._translation.setflags(write=False)
        self._rotation.setflags(write=False)

    @classmethod
    def identity(cls) -> "Transform":
        """Return the identity transform."""
        return cls()

    @classmethod
    def from_rotation(
        cls,
        rotation: Rotation,
        translation: npt.ArrayLike = (0.0, 0.0, 0.0),
    ) -> "Transform":
        """Build a transform from a scipy Rotation and a translation."""
        return cls(translation, rotation.as_quat())

    @classmethod
    def from_matrix(cls, matrix: npt.ArrayLike) -> "Transform":
        """Build a transform from a 4x4 homogeneous transformation matrix.

        Raises:
            ValueError: If the matrix is not a valid rigid transform.

        """
        pq = pq_from_transform(np.asarray(matrix, dtype=float))
        return cls(pq[:3], quaternion_xyzw_from_wxyz(pq[3:]))

    @property
    def translation(self) -> npt.NDArray[np.floating[Any]]:
        """Read-only translation vector of shape (3,)."""
        return self._translation

    @property
    def rotation(self) -> npt.NDArray[np.floating[Any]]:
        """Read-only unit quaternion of shape (4,) in (x, y, z, w) order."""
        return self._rotation

    def as_rotation(self) -> Rotation:
        """Return the rotation part as a scipy Rotation."""
        return Rotation.from_quat(self._rotation)

    def as_matrix(self) -> npt.NDArray[np.floating[Any]]:
        """Return the transform as a 4x4 homogeneous transformation matrix."""
        pq = np.concatenate([self._translation, quaternion_wxyz_from_xyzw(self._rotation)])
        return transform_from_pq(pq)

    def inverse(self) -> "Transform":
        """Return the inverse transform."""
        inverse_rotation = self.as_rotation().inv()
        return Transform(-inverse_rotation.apply(self._translation), inverse_rotation.as_quat())

    def __matmul__(self, other: "Transform") -> "Transform":
        """Compose transforms: (a_from_b @ b_from_c) -> a_from_c"""
        if not isinstance(other, Transform):
            return NotImplemented
        rotation = self.as_rotation()
        return Transform(
            self._translation + rotation.apply(other._translation),
            (rotation * other.as_rotation()).as_quat(),
        )

    def apply_points(self, points: npt.ArrayLike) -> npt.NDArray[np.floating[Any]]:
        """Transform a point of shape (3,) or an array of points of shape (n, 3)."""
        return self.as_rotation().apply(np.asarray(points, dtype=float)) + self._translation

    def almost_equal(self, other: "Transform", atol: float = 1e-8) -> bool:
        """Check equality within tolerance, treating q and -q as the same rotation."""
        if not np.allclose(self._translation, other._translation, atol=atol):
            return False
        return bool(abs(np.dot(self._rotation, other._rotation)) >= 1.0 - atol)

    def __repr__(self) -> str:
        return f"Transform(translation={self._translation.tolist()}, rotation={self._rotation.tolist()})"


class Pose:
    """An immutable position and orientation of an object within some frame."""

    __slots__ = ("_transform",)

    def __init__(
        self,
        position: npt.ArrayLike = (0.0, 0.0, 0.0),
        orientation: npt.ArrayLike = (0.0, 0.0, 0.0, 1.0),
    ) -> None:
        """Initialize a pose.

        Args:
            position: Array-like of shape (3,).
            orientation: Quaternion of shape (4,) in (x, y, z, w) order.

        Raises:
            ValueError: If either input is malformed.

        """
        self._transform = Transform(position, orientation)

    @classmethod
    def from_transform(cls, transform: Transform) -> "Pose":
        """Interpret a frame_from_object transform as a pose in that frame."""
        return cls(transform.translation, transform.rotation)

    @property
    def position(self) -> npt.NDArray[np.floating[Any]]:
        """Read-only position of shape (3,)."""
        return self._transform.translation

    @property
    def orientation(self) -> npt.NDArray[np.floating[Any]]:
        """Read-only orientation quaternion of shape (4,) in (x, y, z, w) order."""
        return self._transform.rotation

    def as_transform(self) -> Transform:
        """Return the pose as the transform from object coordinates into its frame."""
        return self._transform

    def copy(self) -> "Pose":
        """Return a new pose equal to this one."""
        return Pose(self.position, self.orientation)

    def almost_equal(self, other: "Pose", atol: float = 1e-8) -> bool:
        """Check equality within tolerance, treating q and -q as the same orientation."""
        return self._transform.almost_equal(other._transform, atol=atol)

    def __repr__(self) -> str:
        return f"Pose(position={self.position.tolist()}, orientation={self.orientation.tolist()})"
