"""Tests for the per-tick update pass."""

import logging

import pytest
from numpy.testing import assert_array_almost_equal

from poseforest import (
    MISSING_TRANSFORM,
    Diagnostics,
    FrameTree,
    Renderable,
    RenderableState,
    SceneSession,
    TreeConfig,
    update_pose,
)

SECOND = 1_000_000_000
IDENTITY = (0.0, 0.0, 0.0, 1.0)


class TestUpdatePose:
    """Tests for update_pose()."""

    def test_state_transitions(self) -> None:
        """UNRESOLVED -> RESOLVED -> STALE -> RESOLVED."""
        tree = FrameTree(TreeConfig(tolerance_ns=0))
        tree.add_transform("map", "base", 0, [1, 0, 0], IDENTITY)
        tree.add_transform("map", "base", SECOND, [2, 0, 0], IDENTITY)
        renderable = Renderable(("layers", "robot"), "base")
        assert renderable.state is RenderableState.UNRESOLVED

        assert update_pose(renderable, tree, "map", "map", SECOND // 2)
        assert renderable.state is RenderableState.RESOLVED
        assert_array_almost_equal(renderable.render_pose.position, [1.5, 0, 0])

        assert not update_pose(renderable, tree, "map", "map", 5 * SECOND)
        assert renderable.state is RenderableState.STALE
        assert renderable.last_error is not None
        # Last pose stays displayed by default
        assert_array_almost_equal(renderable.render_pose.position, [1.5, 0, 0])

        assert update_pose(renderable, tree, "map", "map", SECOND)
        assert renderable.state is RenderableState.RESOLVED
        assert renderable.last_error is None

    def test_never_resolved_stays_unresolved(self) -> None:
        """A failure before any success keeps the UNRESOLVED state."""
        tree = FrameTree()
        tree.add_frame("map")
        tree.add_frame("base")
        renderable = Renderable(("layers", "robot"), "base")
        assert not update_pose(renderable, tree, "map", "map", 0)
        assert renderable.state is RenderableState.UNRESOLVED
        assert renderable.render_pose is None

    def test_hide_on_failure(self) -> None:
        """keep_last_pose=False drops the pose on failure."""
        tree = FrameTree(TreeConfig(tolerance_ns=0))
        tree.add_transform("map", "base", 0, [1, 0, 0], IDENTITY)
        renderable = Renderable(("layers", "robot"), "base", keep_last_pose=False)
        assert update_pose(renderable, tree, "map", "map", 0)
        assert not update_pose(renderable, tree, "map", "map", SECOND)
        assert renderable.render_pose is None

    def test_frame_locked_uses_current_time(self) -> None:
        """Frame-locked objects follow their frame; others stay at message time."""
        tree = FrameTree()
        tree.add_transform("map", "base", 0, [0, 0, 0], IDENTITY)
        tree.add_transform("map", "base", SECOND, [1, 0, 0], IDENTITY)
        locked = Renderable(("a",), "base", message_time_ns=0, frame_locked=True)
        unlocked = Renderable(("b",), "base", message_time_ns=0, frame_locked=False)
        assert update_pose(locked, tree, "map", "map", SECOND)
        assert update_pose(unlocked, tree, "map", "map", SECOND)
        assert_array_almost_equal(locked.render_pose.position, [1, 0, 0])
        # Left where base was when the message was stamped
        assert_array_almost_equal(unlocked.render_pose.position, [0, 0, 0])


class TestSceneSession:
    """Tests for SceneSession.tick()."""

    def test_transforms_apply_on_tick(self) -> None:
        """Queued transforms only reach the tree when the tick starts."""
        session = SceneSession()
        session.add_transform("map", "base", 0, [1, 0, 0], IDENTITY)
        assert "base" not in session.tree
        session.tick(0)
        assert session.tree.parent("base") == "map"

    def test_default_frames(self) -> None:
        """Without explicit frames, render and fixed frame are the largest root."""
        session = SceneSession()
        session.add_transform("map", "base", 0, [1, 0, 0], IDENTITY)
        session.add_renderable(Renderable(("layers", "robot"), "base"))
        summary = session.tick(0)
        assert summary.render_frame == "map"
        assert summary.fixed_frame == "map"
        assert summary.resolved == 1
        assert summary.failed == 0
        assert_array_almost_equal(session[("layers", "robot")].render_pose.position, [1, 0, 0])

    def test_fixed_frame_defaults_to_render_root(self) -> None:
        """The fixed frame defaults to the root of the render frame."""
        session = SceneSession()
        session.add_transform("map", "base", 0, [1, 0, 0], IDENTITY)
        summary = session.tick(0, render_frame="base")
        assert summary.fixed_frame == "map"

    def test_empty_session(self) -> None:
        """A session without frames does nothing."""
        summary = SceneSession().tick(0)
        assert summary.render_frame is None
        assert summary.resolved == summary.failed == 0

    def test_diagnostic_lifecycle(self) -> None:
        """A failing path gets one diagnostic, cleared exactly once on success."""
        changes = []
        session = SceneSession(TreeConfig(tolerance_ns=0), diagnostics=Diagnostics(on_change=changes.append))
        path = ("layers", "robot")
        session.add_renderable(Renderable(path, "base"))
        session.add_transform("world", "other", 0, [0, 0, 0], IDENTITY)

        for t in range(3):
            summary = session.tick(t, render_frame="world")
            assert summary.failed == 1
        assert session.diagnostics.has_error(path, MISSING_TRANSFORM)
        assert len(session.diagnostics) == 1
        assert "base" in session.diagnostics.errors(path)[MISSING_TRANSFORM]

        session.add_transform("world", "base", 3, [0, 0, 0], IDENTITY)
        session.tick(3, render_frame="world")
        session.tick(3, render_frame="world")
        assert not session.diagnostics.has_error(path)
        assert changes == [path, path]

    def test_persistent_out_of_range_reports_once(self) -> None:
        """A failure that persists while time advances notifies only once."""
        changes = []
        session = SceneSession(TreeConfig(tolerance_ns=0), diagnostics=Diagnostics(on_change=changes.append))
        path = ("layers", "robot")
        session.add_transform("map", "base", 0, [0, 0, 0], IDENTITY)
        session.add_renderable(Renderable(path, "base"))

        messages = set()
        for t in (SECOND, 2 * SECOND, 3 * SECOND):
            summary = session.tick(t)
            assert summary.failed == 1
            messages.add(session.diagnostics.errors(path)[MISSING_TRANSFORM])
        assert changes == [path]
        assert len(messages) == 1
        assert "out_of_range" in messages.pop()

    def test_invisible_renderables_are_skipped(self) -> None:
        """Hidden renderables are not resolved and lose their diagnostics."""
        session = SceneSession()
        path = ("layers", "robot")
        renderable = session.add_renderable(Renderable(path, "base"))
        session.add_transform("world", "other", 0, [0, 0, 0], IDENTITY)
        session.tick(0, render_frame="world")
        assert session.diagnostics.has_error(path)

        renderable.visible = False
        summary = session.tick(0, render_frame="world")
        assert summary.failed == 0
        assert not session.diagnostics.has_error(path)

    def test_unknown_render_frame(self) -> None:
        """An unknown render frame fails every renderable without raising."""
        session = SceneSession()
        session.add_transform("map", "base", 0, [1, 0, 0], IDENTITY)
        session.add_renderable(Renderable(("layers", "robot"), "base"))
        summary = session.tick(0, render_frame="ghost")
        assert summary.failed == 1
        assert summary.fixed_frame == "ghost"

    def test_remove_renderable_clears_diagnostics(self) -> None:
        """Removing a renderable removes its diagnostics."""
        session = SceneSession()
        path = ("layers", "robot")
        session.add_renderable(Renderable(path, "base"))
        session.add_transform("world", "other", 0, [0, 0, 0], IDENTITY)
        session.tick(0, render_frame="world")
        session.remove_renderable(path)
        assert path not in session
        assert not session.diagnostics.has_error(path)
        with pytest.raises(KeyError):
            session.remove_renderable(path)

    def test_strict_reparent_drops_sample(self, caplog: pytest.LogCaptureFixture) -> None:
        """Rejected samples are logged and dropped without breaking the tick."""
        session = SceneSession(TreeConfig(strict_reparent=True))
        session.add_transform("odom", "base", 0, [0, 0, 0], IDENTITY)
        session.add_transform("map", "base", 0, [0, 0, 0], IDENTITY)
        with caplog.at_level(logging.WARNING, logger="poseforest.session"):
            session.tick(0)
        assert session.tree.parent("base") == "odom"
        assert "Dropping transform sample" in caplog.text

    def test_self_parent_raises_on_ingest(self) -> None:
        """Malformed samples are rejected when queued."""
        session = SceneSession()
        with pytest.raises(ValueError):
            session.add_transform("a", "a", 0, [0, 0, 0], IDENTITY)
        with pytest.raises(ValueError):
            session.add_transform("a", "b", 0, [0, 0, 0], [0, 0, 0, 0])

    def test_discontinuity_flushes_then_resets(self) -> None:
        """Queued samples are applied before a seek is handled."""
        session = SceneSession(TreeConfig(tolerance_ns=0))
        session.add_transform("map", "base", 100 * SECOND, [0, 0, 0], IDENTITY)
        session.handle_time_discontinuity(100 * SECOND, 200 * SECOND)
        assert "base" in session.tree
        session.handle_time_discontinuity(200 * SECOND, SECOND)
        assert len(session.tree) == 0

    def test_shared_tree(self) -> None:
        """A session can be built around an existing tree."""
        tree = FrameTree()
        session = SceneSession(tree=tree)
        session.add_transform("map", "base", 0, [0, 0, 0], IDENTITY)
        session.flush()
        assert tree.has_parent("base")
        assert session.tree is tree
