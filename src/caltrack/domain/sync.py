"""Sync state, progress events and errors."""

from dataclasses import asdict, dataclass
from enum import StrEnum


@dataclass(frozen=True)
class SyncMeta:
    """Marker written after a completed full sync."""

    version: int
    count: int
    synced_at: str

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class ResumeCheckpoint:
    """Coordinates of the next unfetched page of an interrupted sync."""

    source_index: int
    page_number: int
    records_stored: int
    grand_total: int

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


class SyncPhase(StrEnum):
    """Phase reported in progress events."""

    FETCHING = "fetching"
    STORING = "storing"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class SyncProgress:
    """Progress event passed to sync callbacks."""

    phase: SyncPhase
    current: int
    total: int
    message: str

    def as_dict(self) -> dict[str, object]:
        return {
            "phase": self.phase.value,
            "current": self.current,
            "total": self.total,
            "message": self.message,
        }


@dataclass(frozen=True)
class SyncOutcome:
    """Result of a sync invocation."""

    skipped: bool
    records_stored: int
    pages_fetched: int


class SyncError(Exception):
    """Base class for sync failures."""


class SyncCancelledError(SyncError):
    """Raised when the cancellation signal is observed."""

    def __init__(self) -> None:
        super().__init__("Sync cancelled")


class SyncAlreadyRunningError(SyncError):
    """Raised when a sync run is started while another is in progress."""


class RemoteRequestError(SyncError):
    """A remote request failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermanentRemoteError(RemoteRequestError):
    """Non-retryable HTTP failure."""


class RetriesExhaustedError(RemoteRequestError):
    """Retry ceiling reached for a retryable failure."""


class MalformedResponseError(RemoteRequestError):
    """Response body could not be parsed into the expected shape."""
