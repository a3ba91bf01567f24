"""Per-tick pose resolution for renderable objects."""

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy.typing as npt

from poseforest.config import TreeConfig
from poseforest.diagnostics import Diagnostics, SettingsPath, missing_transform_message
from poseforest.errors import AmbiguousReparentError, TransformLookupError
from poseforest.samples import TransformSample
from poseforest.transform import Pose, Transform
from poseforest.tree import FrameTree

logger = logging.getLogger(__name__)


class RenderableState(Enum):
    """Resolution state of a renderable across ticks."""

    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    STALE = "stale"


@dataclass(eq=False)
class Renderable:
    """An object drawn in the scene at a pose given in its own frame.

    Attributes:
        settings_path: Identity of the object in the settings tree. Diagnostics
            are attached to this path.
        frame_id: The frame ``pose`` is expressed in.
        pose: The object's pose in ``frame_id``.
        message_time_ns: Timestamp carried by the message that produced the object.
        frame_locked: If True the object moves with its frame and is looked
            up at the current time; otherwise it stays where its frame was at
            ``message_time_ns``.
        keep_last_pose: If True a failed resolution leaves the last resolved
            pose in place; otherwise ``render_pose`` is cleared (hidden).
        visible: Invisible objects are skipped and their diagnostics cleared.
        render_pose: The last resolved pose in the render frame, if any.
        state: Resolution state.
        last_error: The error of the latest failed resolution, if any.

    """

    settings_path: SettingsPath
    frame_id: str
    pose: Pose = field(default_factory=Pose)
    message_time_ns: int = 0
    frame_locked: bool = True
    keep_last_pose: bool = True
    visible: bool = True
    render_pose: Pose | None = None
    state: RenderableState = RenderableState.UNRESOLVED
    last_error: TransformLookupError | None = None


def update_pose(
    renderable: Renderable,
    tree: FrameTree,
    render_frame: str,
    fixed_frame: str,
    current_time_ns: int,
) -> bool:
    """Resolve a renderable's pose in the render frame for the current tick.

    Args:
        renderable: The object to update in place.
        tree: The transform tree.
        render_frame: The frame the scene is rendered in.
        fixed_frame: The frame bridging message time and current time.
        current_time_ns: The playback time of this tick.

    Returns:
        True if the pose was resolved.

    """
    source_time_ns = current_time_ns if renderable.frame_locked else renderable.message_time_ns
    try:
        render_pose = tree.apply(
            renderable.pose,
            render_frame,
            renderable.frame_id,
            fixed_frame,
            source_time_ns,
            current_time_ns,
        )
    except TransformLookupError as e:
        renderable.last_error = e
        if renderable.state is not RenderableState.UNRESOLVED:
            renderable.state = RenderableState.STALE
        if not renderable.keep_last_pose:
            renderable.render_pose = None
        return False

    renderable.render_pose = render_pose
    renderable.state = RenderableState.RESOLVED
    renderable.last_error = None
    return True


@dataclass(frozen=True)
class TickSummary:
    """Outcome of one tick.

    Attributes:
        render_frame: The render frame used, or None if no frame was available.
        fixed_frame: The fixed frame used, or None if no frame was available.
        resolved: Number of visible renderables whose pose was resolved.
        failed: Number of visible renderables whose pose could not be resolved.

    """

    render_frame: str | None
    fixed_frame: str | None
    resolved: int
    failed: int


class SceneSession:
    """One visualization session: a transform tree, its renderables and diagnostics.

    Incoming transforms are queued and only applied to the tree at the start
    of the next tick, so the tree never changes while poses are resolved.
    """

    def __init__(
        self,
        config: TreeConfig | None = None,
        *,
        tree: FrameTree | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        """Initialize a session.

        Args:
            config: Configuration for a new tree. Ignored if ``tree`` is given.
            tree: An existing tree to use.
            diagnostics: An existing diagnostics list to report into.

        """
        self._tree = tree if tree is not None else FrameTree(config)
        self._diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self._renderables: dict[SettingsPath, Renderable] = {}
        self._pending: list[tuple[str, str, TransformSample, bool]] = []

    @property
    def tree(self) -> FrameTree:
        """The session's transform tree."""
        return self._tree

    @property
    def diagnostics(self) -> Diagnostics:
        """The session's diagnostics."""
        return self._diagnostics

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
        """Queue a transform sample for the next tick.

        Raises:
            ValueError: If the transform values are malformed or parent and
                child are the same frame.

        """
        if parent == child:
            raise ValueError(f"Frame '{child}' cannot be its own parent")
        sample = TransformSample(timestamp_ns, Transform(translation, rotation))
        self._pending.append((parent, child, sample, static))

    def flush(self) -> int:
        """Apply all queued transforms to the tree.

        Samples rejected by a strict tree are logged and dropped.

        Returns:
            The number of samples applied.

        """
        pending, self._pending = self._pending, []
        applied = 0
        for parent, child, sample, static in pending:
            try:
                self._tree.add_edge(parent, child, sample, static=static)
            except AmbiguousReparentError as e:
                logger.warning(f"Dropping transform sample: {e}")
                continue
            applied += 1
        return applied

    def add_renderable(self, renderable: Renderable) -> Renderable:
        """Track a renderable, replacing any with the same settings path.

        The renderable's frame is registered with the tree.
        """
        self._tree.add_frame(renderable.frame_id)
        self._renderables[renderable.settings_path] = renderable
        return renderable

    def remove_renderable(self, path: SettingsPath) -> None:
        """Stop tracking a renderable and clear its diagnostics.

        Raises:
            KeyError: If no renderable has that path.

        """
        del self._renderables[path]
        self._diagnostics.clear_path(path)

    def __getitem__(self, path: SettingsPath) -> Renderable:
        return self._renderables[path]

    def __contains__(self, path: object) -> bool:
        return path in self._renderables

    def __len__(self) -> int:
        return len(self._renderables)

    def handle_time_discontinuity(self, previous_time_ns: int, current_time_ns: int | None = None) -> None:
        """Forward a playback time jump to the tree.

        Queued samples are applied first since they belong to the timeline
        before the jump.
        """
        self.flush()
        self._tree.handle_time_discontinuity(previous_time_ns, current_time_ns)

    def tick(
        self,
        current_time_ns: int,
        render_frame: str | None = None,
        fixed_frame: str | None = None,
    ) -> TickSummary:
        """Apply queued transforms, then resolve every renderable.

        Args:
            current_time_ns: Playback time of this tick.
            render_frame: The frame to render in. Defaults to the tree's
                default root frame.
            fixed_frame: The frame bridging message and current time. Defaults
                to the root of the render frame.

        Returns:
            A summary of the tick.

        """
        self.flush()

        if render_frame is None:
            render_frame = self._tree.default_root_frame()
        if render_frame is None:
            return TickSummary(None, None, 0, 0)
        if fixed_frame is None:
            fixed_frame = self._tree.root_frame(render_frame) if self._tree.has_frame(render_frame) else render_frame

        resolved = 0
        failed = 0
        for path, renderable in list(self._renderables.items()):
            if not renderable.visible:
                self._diagnostics.clear_path(path)
                continue

            if update_pose(renderable, self._tree, render_frame, fixed_frame, current_time_ns):
                self._diagnostics.clear_missing_transform(path)
                resolved += 1
            else:
                message = missing_transform_message(
                    render_frame,
                    fixed_frame,
                    renderable.frame_id,
                    renderable.last_error,
                )
                self._diagnostics.report_missing_transform(path, message)
                failed += 1

        return TickSummary(render_frame, fixed_frame, resolved, failed)
