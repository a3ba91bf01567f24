"""Frame registry, path resolution and pose resolution across a forest of frames."""

import logging
from collections import Counter, defaultdict
from collections.abc import Iterator
from dataclasses import dataclass

import numpy.typing as npt
from pytransform3d.transform_manager import TransformManager

from poseforest.config import TreeConfig
from poseforest.errors import (
    AmbiguousReparentError,
    FrameNotFoundError,
    FrameRole,
    NoPathError,
    OutOfRangeError,
    TransformLookupError,
)
from poseforest.samples import SampleStore, TransformSample
from poseforest.transform import Pose, Transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FramePath:
    """The structural chain of edges connecting two frames.

    Attributes:
        source: The frame the path starts at.
        target: The frame the path ends at.
        ancestor: The lowest common ancestor of source and target.
        up: Frames whose parent edges are walked going from source up to the
            ancestor, in walking order (starts with source).
        down: Frames whose parent edges are walked going from the ancestor
            down to target, in walking order (ends with target).

    """

    source: str
    target: str
    ancestor: str
    up: tuple[str, ...]
    down: tuple[str, ...]

    def __len__(self) -> int:
        """Number of edges on the path."""
        return len(self.up) + len(self.down)


class _Edge:
    """The parent link of one child frame together with its sample history."""

    __slots__ = ("child", "parent", "samples", "static_transform")

    def __init__(self, parent: str, child: str, config: TreeConfig) -> None:
        self.parent = parent
        self.child = child
        self.samples = SampleStore(max_samples=config.max_samples, max_age_ns=config.max_age_ns)
        self.static_transform: Transform | None = None

    def record(self, sample: TransformSample, *, static: bool) -> None:
        # Whichever kind arrived last wins
        if static:
            self.static_transform = sample.transform
            self.samples.clear()
        else:
            self.static_transform = None
            self.samples.insert(sample)

    def transform_at(self, time_ns: int, tolerance_ns: int) -> Transform:
        """Return parent_from_child at the given time."""
        if self.static_transform is not None:
            return self.static_transform
        try:
            return self.samples.query(time_ns, tolerance_ns)
        except OutOfRangeError as e:
            msg = f"Transform from '{self.child}' to '{self.parent}' unavailable: {e}"
            raise OutOfRangeError(msg, frame=self.child, time_ns=time_ns) from e


class FrameTree:
    """A forest of named coordinate frames linked by timestamped transforms.

    Frames are created lazily the first time they are named. Each frame has at
    most one parent; the edge to the parent owns the time-ordered samples of
    the child's pose in the parent frame. The tree answers where one frame is
    relative to another at a given time, and resolves poses between frames
    sampled at two different times via a fixed frame.
    """

    def __init__(self, config: TreeConfig | None = None) -> None:
        """Initialize an empty tree.

        Args:
            config: Lookup and retention settings. Defaults to TreeConfig().

        """
        self._config = config or TreeConfig()
        # Insertion-ordered set of frame names
        self._frames: dict[str, None] = {}
        # child -> edge to its parent
        self._edges: dict[str, _Edge] = {}
        self._path_cache: dict[tuple[str, str], FramePath] = {}

    @property
    def config(self) -> TreeConfig:
        """The tree's configuration."""
        return self._config

    # Registry

    def add_frame(self, name: str) -> None:
        """Ensure a frame exists. Adding a known frame does nothing."""
        if name not in self._frames:
            self._frames[name] = None

    def add_edge(self, parent: str, child: str, sample: TransformSample, *, static: bool = False) -> None:
        """Record a transform sample between a parent and a child frame.

        Both frames are created if needed. If the child already has a
        different parent, the old edge and its history are replaced and a
        warning is logged, unless the tree is configured with
        ``strict_reparent``, in which case the sample is rejected.

        Args:
            parent: The parent frame name.
            child: The child frame name.
            sample: The child's pose in the parent frame at a given time.
            static: If True, the transform holds at every time.

        Raises:
            ValueError: If parent and child are the same frame.
            AmbiguousReparentError: If the child has a different parent and
                strict reparenting is enabled.

        """
        if parent == child:
            raise ValueError(f"Frame '{child}' cannot be its own parent")

        edge = self._edges.get(child)
        if edge is not None and edge.parent != parent and self._config.strict_reparent:
            raise AmbiguousReparentError(child, edge.parent, parent)

        self.add_frame(parent)
        self.add_frame(child)

        if edge is None or edge.parent != parent:
            if edge is not None:
                logger.warning(f"Frame '{child}' reparented from '{edge.parent}' to '{parent}'")
            if child in self._ancestors(parent):
                logger.warning(f"Transform from '{child}' to '{parent}' creates a cycle in the frame tree")
            edge = _Edge(parent, child, self._config)
            self._edges[child] = edge
            self._path_cache.clear()

        edge.record(sample, static=static)

    def add_transform(
        self,
        parent: str,
        child: str,
        timestamp_ns: int,
        translation: npt.ArrayLike,
        rotation: npt.ArrayLike,
        *,
        static: bool = False,
    ) -> None:
        """Record a transform sample given as raw translation and rotation.

        Args:
            parent: The parent frame name.
            child: The child frame name.
            timestamp_ns: Sample time in nanoseconds.
            translation: Child origin in the parent frame, shape (3,).
            rotation: Child orientation in the parent frame as an
                (x, y, z, w) quaternion.
            static: If True, the transform holds at every time.

        Raises:
            ValueError: If the transform values are malformed or parent and
                child are the same frame.
            AmbiguousReparentError: See add_edge().

        """
        self.add_edge(parent, child, TransformSample(timestamp_ns, Transform(translation, rotation)), static=static)

    def frames(self) -> tuple[str, ...]:
        """Return a snapshot of all known frame names in creation order."""
        return tuple(self._frames)

    def has_frame(self, name: str) -> bool:
        """Return True if a frame with this name is known."""
        return name in self._frames

    def __contains__(self, name: object) -> bool:
        """Check if frame exists: 'map' in tree"""
        return name in self._frames

    def __iter__(self) -> Iterator[str]:
        """Iterate over a snapshot of frame names: for frame in tree"""
        return iter(self.frames())

    def __len__(self) -> int:
        """Return number of known frames: len(tree)"""
        return len(self._frames)

    def _require(self, name: str) -> None:
        if name not in self._frames:
            raise FrameNotFoundError(f"Frame '{name}' does not exist", frame=name)

    def parent(self, name: str) -> str | None:
        """Return the parent of a frame, or None for a root frame.

        Raises:
            FrameNotFoundError: If the frame is unknown.

        """
        self._require(name)
        edge = self._edges.get(name)
        return edge.parent if edge is not None else None

    def has_parent(self, name: str) -> bool:
        """Check whether a frame is linked to a parent.

        Raises:
            FrameNotFoundError: If the frame is unknown.

        """
        return self.parent(name) is not None

    def children(self, name: str) -> tuple[str, ...]:
        """Return the direct children of a frame in creation order.

        Raises:
            FrameNotFoundError: If the frame is unknown.

        """
        self._require(name)
        return tuple(edge.child for edge in self._edges.values() if edge.parent == name)

    def root_frame(self, name: str) -> str:
        """Return the top-most ancestor of a frame.

        For a frame caught in a cycle, this is the last frame reached before
        the walk would revisit a frame.

        Raises:
            FrameNotFoundError: If the frame is unknown.

        """
        self._require(name)
        return self._ancestors(name)[-1]

    def default_root_frame(self) -> str | None:
        """Pick the root of the largest tree, e.g. as an initial render frame.

        Ties go to the tree whose first frame was created earliest.

        Returns:
            A root frame name, or None if no frames are known.

        """
        if not self._frames:
            return None
        sizes = Counter(self._ancestors(name)[-1] for name in self._frames)
        return sizes.most_common(1)[0][0]

    def frame_hierarchy(self) -> list[tuple[str, int]]:
        """List frames depth-first with their depth, for frame picker UIs.

        Roots appear in creation order and children sorted by name. Frames
        that are only reachable through a cycle are listed after all trees.

        Returns:
            A list of (frame_name, depth) tuples, each frame exactly once.

        """
        children: dict[str, list[str]] = defaultdict(list)
        for edge in self._edges.values():
            children[edge.parent].append(edge.child)

        roots = [name for name in self._frames if name not in self._edges]
        leftovers = [name for name in self._frames if name in self._edges]

        result: list[tuple[str, int]] = []
        visited: set[str] = set()
        for start in roots + leftovers:
            stack = [(start, 0)]
            while stack:
                name, depth = stack.pop()
                if name in visited:
                    continue
                visited.add(name)
                result.append((name, depth))
                stack.extend((child, depth + 1) for child in sorted(children[name], reverse=True))
        return result

    def clear(self) -> None:
        """Forget all frames, edges and samples."""
        logger.info(f"Clearing transform tree with {len(self._frames)} frames")
        self._frames.clear()
        self._edges.clear()
        self._path_cache.clear()

    # Path resolution

    def _ancestors(self, name: str) -> list[str]:
        """Walk parent links from a frame, stopping at a root or a repeated frame."""
        chain = [name]
        visited = {name}
        edge = self._edges.get(name)
        while edge is not None:
            if edge.parent in visited:
                logger.debug(f"Cycle detected above frame '{name}' at '{edge.parent}'")
                break
            chain.append(edge.parent)
            visited.add(edge.parent)
            edge = self._edges.get(edge.parent)
        return chain

    def find_path(self, source: str, target: str) -> FramePath:
        """Find the chain of edges from source up to the common ancestor and down to target.

        Args:
            source: The frame to start from.
            target: The frame to end at.

        Returns:
            The structural path. It carries no transforms.

        Raises:
            FrameNotFoundError: If either frame is unknown.
            NoPathError: If the frames are in disconnected trees.

        """
        self._require(source)
        self._require(target)

        key = (source, target)
        cached = self._path_cache.get(key)
        if cached is not None:
            return cached

        source_chain = self._ancestors(source)
        source_depth = {name: i for i, name in enumerate(source_chain)}
        target_chain = self._ancestors(target)
        for j, name in enumerate(target_chain):
            i = source_depth.get(name)
            if i is not None:
                path = FramePath(
                    source=source,
                    target=target,
                    ancestor=name,
                    up=tuple(source_chain[:i]),
                    down=tuple(reversed(target_chain[:j])),
                )
                self._path_cache[key] = path
                return path

        msg = (
            f"No path between '{source}' (root '{source_chain[-1]}') "
            f"and '{target}' (root '{target_chain[-1]}')"
        )
        raise NoPathError(msg, frame=source)

    def lookup_transform(self, target: str, source: str, time_ns: int) -> Transform:
        """Return target_from_source at a single time.

        The result maps coordinates in the source frame into the target frame.

        Raises:
            FrameNotFoundError: If either frame is unknown.
            NoPathError: If the frames are in disconnected trees.
            OutOfRangeError: If an edge on the path has no usable sample.

        """
        path = self.find_path(source, target)
        tolerance_ns = self._config.tolerance_ns

        ancestor_from_source = Transform.identity()
        for name in path.up:
            ancestor_from_source = self._edges[name].transform_at(time_ns, tolerance_ns) @ ancestor_from_source

        ancestor_from_target = Transform.identity()
        for name in path.down:
            ancestor_from_target = ancestor_from_target @ self._edges[name].transform_at(time_ns, tolerance_ns)

        return ancestor_from_target.inverse() @ ancestor_from_source

    # Pose resolution

    def apply(
        self,
        pose: Pose,
        destination_frame: str,
        source_frame: str,
        fixed_frame: str,
        source_time_ns: int,
        destination_time_ns: int,
    ) -> Pose:
        """Express a pose given in the source frame in the destination frame.

        The source frame is resolved against the fixed frame at
        ``source_time_ns`` and the fixed frame against the destination frame
        at ``destination_time_ns``. The fixed frame is assumed not to move
        between the two times, which is what makes it safe to bridge them.

        Args:
            pose: The pose in the source frame.
            destination_frame: The frame to express the pose in (usually the
                render frame).
            source_frame: The frame the pose is given in.
            fixed_frame: A frame assumed static across both times.
            source_time_ns: Time at which the source frame is looked up.
            destination_time_ns: Time at which the destination frame is looked up.

        Returns:
            A new pose in the destination frame.

        Raises:
            TransformLookupError: If either half cannot be resolved. The
                error's ``role`` names the frame that failed.

        """
        if source_frame == destination_frame:
            return pose.copy()

        fixed_from_source = self._resolve(fixed_frame, source_frame, source_time_ns, FrameRole.SOURCE)
        destination_from_fixed = self._resolve(
            destination_frame,
            fixed_frame,
            destination_time_ns,
            FrameRole.DESTINATION,
        )
        return Pose.from_transform(destination_from_fixed @ fixed_from_source @ pose.as_transform())

    def _resolve(self, target: str, source: str, time_ns: int, role: FrameRole) -> Transform:
        try:
            return self.lookup_transform(target, source, time_ns)
        except TransformLookupError as e:
            # The fixed frame is the target of the source half and the source
            # of the destination half
            fixed = target if role is FrameRole.SOURCE else source
            e.role = FrameRole.FIXED if isinstance(e, FrameNotFoundError) and e.frame == fixed else role
            raise

    # Time handling

    def handle_time_discontinuity(self, previous_time_ns: int, current_time_ns: int | None = None) -> None:
        """Prepare for a jump in playback time, e.g. after a seek.

        Cached paths and per-edge lookup hints are dropped. If the new time is
        known and precedes every retained sample by more than the tolerance,
        the retained history is useless and the whole tree is cleared with
        clear(). That drops static edges along with the dynamic ones, so
        static transforms have to be sent again after such a reset.

        Args:
            previous_time_ns: Playback time before the jump.
            current_time_ns: Playback time after the jump, if known.

        """
        logger.debug(f"Time discontinuity from {previous_time_ns} to {current_time_ns}")
        self._path_cache.clear()
        for edge in self._edges.values():
            edge.samples.invalidate_cache()

        if current_time_ns is None or current_time_ns >= previous_time_ns:
            return
        earliest = [edge.samples.earliest.timestamp_ns for edge in self._edges.values() if edge.samples.earliest]
        if earliest and current_time_ns < min(earliest) - self._config.tolerance_ns:
            self.clear()

    def as_transform_manager(self, time_ns: int) -> TransformManager:
        """Snapshot the tree at one time as a pytransform3d TransformManager.

        Edges without a usable sample at that time are left out.

        Returns:
            A new TransformManager, safe to modify or plot.

        """
        tm = TransformManager()
        for edge in self._edges.values():
            try:
                transform = edge.transform_at(time_ns, self._config.tolerance_ns)
            except OutOfRangeError:
                logger.debug(f"Skipping edge '{edge.parent}' -> '{edge.child}' at {time_ns}")
                continue
            tm.add_transform(edge.child, edge.parent, transform.as_matrix())
        return tm
