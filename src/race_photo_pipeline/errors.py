"""Domain errors raised by the photo pipeline services."""

from uuid import UUID


class PipelineError(Exception):
    """Base class for expected, caller-facing failures."""


class InsufficientCreditsError(PipelineError):
    """Raised when a batch costs more credits than the user holds."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits: need {required}, have {available}")
        self.required = required
        self.available = available


class UserNotFoundError(PipelineError):
    """Raised when a ledger operation targets an unknown user."""

    def __init__(self, user_id: UUID) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class EventNotFoundError(PipelineError):
    """Raised when an upload targets an unknown event."""

    def __init__(self, event_id: UUID) -> None:
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class NoValidFilesError(PipelineError):
    """Raised when no file of a batch could be stored."""

    def __init__(self, failed_files: list[str]) -> None:
        super().__init__(f"{len(failed_files)} file(s) failed: {', '.join(failed_files)}")
        self.failed_files = failed_files


class SessionNotFoundError(PipelineError):
    """Raised when a progress stream targets an unknown upload session."""

    def __init__(self, session_id: UUID) -> None:
        super().__init__(f"Upload session {session_id} not found")
        self.session_id = session_id


class CriticalStageError(PipelineError):
    """Raised when a mandatory pipeline stage fails for a photo."""

    def __init__(self, stage: str, photo_id: UUID, cause: BaseException) -> None:
        super().__init__(f"Stage {stage} failed for photo {photo_id}: {cause}")
        self.stage = stage
        self.photo_id = photo_id
        self.cause = cause


class StorageObjectNotFoundError(PipelineError):
    """Raised when a storage key does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Storage object {key} not found")
        self.key = key
