from __future__ import annotations


class TaskTrackError(RuntimeError):
    """Base class for errors raised by the tracking core."""


class NotFound(TaskTrackError, LookupError):
    """A referenced task, entry or project id does not exist."""


class InvalidRange(TaskTrackError, ValueError):
    """A time range edit whose end is not after its start."""


class ExternalUnavailable(TaskTrackError):
    """JIRA or the calendar could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = ["TaskTrackError", "NotFound", "InvalidRange", "ExternalUnavailable"]
