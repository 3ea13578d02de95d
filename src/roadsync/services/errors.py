"""Exception hierarchy shared by the sync services."""

from typing import Optional


class RoadSyncError(Exception):
    """Base exception for sync core errors."""

    pass


class StoreUnreachableError(RoadSyncError):
    """Raised when a store does not answer within its timeout."""

    def __init__(self, store: str, message: str = "") -> None:
        super().__init__(f"{store} unreachable{': ' + message if message else ''}")
        self.store = store


class BackendRequestError(StoreUnreachableError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__("backend", f"HTTP {status}{' - ' + message if message else ''}")
        self.status = status


class ConflictSkipped(RoadSyncError):
    """Raised when a record is already present; counted as skipped, not as an error."""

    pass


class ReconciliationUnavailableError(RoadSyncError):
    """Raised when a full listing cannot be fetched; nothing has been applied."""

    pass


class WriteFailedError(RoadSyncError):
    """Raised when even the local store fails to persist a write."""

    pass


class PartialBatchError(RoadSyncError):
    """A single item of a batch failed; the batch itself continues."""

    def __init__(self, item_id: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Item {item_id} failed: {cause}")
        self.item_id = item_id
        self.cause = cause
