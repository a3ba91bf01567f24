"""Per-settings-path diagnostics surfaced to the settings UI."""

import logging
from collections.abc import Callable, Iterator

from poseforest.errors import FrameRole, TransformLookupError

logger = logging.getLogger(__name__)

MISSING_TRANSFORM = "MISSING_TRANSFORM"

# Identity of a settings tree node, e.g. ("layers", "grid-1")
SettingsPath = tuple[str, ...]


def missing_transform_message(
    render_frame: str,
    fixed_frame: str,
    frame_id: str,
    error: TransformLookupError | None = None,
) -> str:
    """Describe a failed pose resolution for display next to a settings node.

    Args:
        render_frame: The frame the scene is rendered in.
        fixed_frame: The fixed frame used to bridge the two query times.
        frame_id: The frame the object is given in.
        error: The lookup error, if available, to name the failing frame
            and the cause.

    Returns:
        A human-readable message. It does not mention query times, so a
        persisting failure keeps producing the same text tick after tick.

    """
    if fixed_frame == render_frame:
        msg = f"Missing transform from frame <{frame_id}> to frame <{render_frame}>"
    else:
        msg = f"Missing transform from frame <{frame_id}> to frame <{render_frame}> via <{fixed_frame}>"
    if error is not None:
        role = error.role.value if error.role is not None else FrameRole.SOURCE.value
        details = f"{role} frame, {error.reason.value}"
        if error.frame is not None:
            details += f" at <{error.frame}>"
        msg += f" ({details})"
    return msg


class Diagnostics:
    """Errors attached to settings paths, keyed by an error id.

    Adding the same error twice for a path is a no-op, so callers may report
    failures every tick without duplicating them. Each change to a path
    notifies the optional ``on_change`` callback.
    """

    def __init__(self, on_change: Callable[[SettingsPath], None] | None = None) -> None:
        """Initialize an empty diagnostics list.

        Args:
            on_change: Called with the settings path whenever its errors change.

        """
        self._errors: dict[SettingsPath, dict[str, str]] = {}
        self._on_change = on_change

    def _changed(self, path: SettingsPath) -> None:
        if self._on_change is not None:
            self._on_change(path)

    def add(self, path: SettingsPath, error_id: str, message: str) -> bool:
        """Attach an error to a path.

        Returns:
            True if the path's errors changed.

        """
        errors = self._errors.setdefault(path, {})
        if errors.get(error_id) == message:
            return False
        errors[error_id] = message
        logger.debug(f"Diagnostic {error_id} on {'/'.join(path)}: {message}")
        self._changed(path)
        return True

    def remove(self, path: SettingsPath, error_id: str) -> bool:
        """Remove one error from a path.

        Returns:
            True if the error was present.

        """
        errors = self._errors.get(path)
        if errors is None or error_id not in errors:
            return False
        del errors[error_id]
        if not errors:
            del self._errors[path]
        self._changed(path)
        return True

    def clear_path(self, path: SettingsPath) -> bool:
        """Remove every error from a path.

        Returns:
            True if the path had any errors.

        """
        if self._errors.pop(path, None) is None:
            return False
        self._changed(path)
        return True

    def clear(self) -> None:
        for path in list(self._errors):
            self.clear_path(path)

    def report_missing_transform(self, path: SettingsPath, message: str) -> bool:
        """Mark a path as unable to resolve its transform."""
        return self.add(path, MISSING_TRANSFORM, message)

    def clear_missing_transform(self, path: SettingsPath) -> bool:
        """Clear a missing-transform error from a path, if present."""
        return self.remove(path, MISSING_TRANSFORM)

    def errors(self, path: SettingsPath) -> dict[str, str]:
        """Return a copy of the errors attached to a path."""
        return dict(self._errors.get(path, {}))

    def has_error(self, path: SettingsPath, error_id: str | None = None) -> bool:
        """Check whether a path has any error, or a specific one."""
        errors = self._errors.get(path)
        if not errors:
            return False
        return error_id is None or error_id in errors

    def __iter__(self) -> Iterator[SettingsPath]:
        """Iterate over paths that currently have errors."""
        return iter(list(self._errors))

    def __len__(self) -> int:
        """Return the number of active (path, error_id) pairs."""
        return sum(len(errors) for errors in self._errors.values())
