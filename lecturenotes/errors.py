class LectureNotesError(Exception):
    """Base class for errors raised by the lecture-notes pipeline."""


class NotFoundError(LectureNotesError):
    """A lecture or chapter does not exist in the store."""


class PreconditionError(LectureNotesError):
    """An operation was requested before the data it needs exists."""


class InvalidTransitionError(LectureNotesError):
    """A chapter status change that the state machine does not allow."""

    def __init__(self, status: str, event: str) -> None:
        super().__init__(f"Cannot apply '{event}' to a chapter in status '{status}'")
        self.status = status
        self.event = event


class LectureBusyError(LectureNotesError):
    """A deep dive is already running for the lecture."""


class UnsupportedProviderError(LectureNotesError, ValueError):
    """The gateway factory was asked for a provider it does not know."""
