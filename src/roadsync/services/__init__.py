"""
Services package for RoadSync.

Store adapters, the availability prober, the fallback-chain write
coordinator, the unsynced-record tracker, the identity reconciler and
the sync manager.
"""

from .accounts import AccountRepository
from .availability import AvailabilityProber, AvailabilityState
from .backend import BackendClient
from .backend_store import BackendRecordStore
from .cloud import (
    CloudDocument,
    CloudDocumentStore,
    CloudIdentityAPI,
    FirebaseIdentityClient,
    FirestoreDocumentStore,
    probe_cloud,
)
from .context import SyncContext
from .coordinator import FallbackChain, RecordWriteCoordinator, WriteStep
from .database import DatabaseService
from .errors import (
    BackendRequestError,
    ConflictSkipped,
    PartialBatchError,
    ReconciliationUnavailableError,
    RoadSyncError,
    StoreUnreachableError,
    WriteFailedError,
)
from .local_store import LocalRecordStore
from .reconciler import IdentityReconciler
from .report import DirectionCounters, IdentityReconciliationResult, SyncReport
from .sync_manager import SyncManager
from .tracker import UnsyncedRecordTracker

__all__ = [
    "AccountRepository",
    "AvailabilityProber",
    "AvailabilityState",
    "BackendClient",
    "BackendRecordStore",
    "CloudDocument",
    "CloudDocumentStore",
    "CloudIdentityAPI",
    "FirebaseIdentityClient",
    "FirestoreDocumentStore",
    "probe_cloud",
    "SyncContext",
    "FallbackChain",
    "RecordWriteCoordinator",
    "WriteStep",
    "DatabaseService",
    "BackendRequestError",
    "ConflictSkipped",
    "PartialBatchError",
    "ReconciliationUnavailableError",
    "RoadSyncError",
    "StoreUnreachableError",
    "WriteFailedError",
    "LocalRecordStore",
    "IdentityReconciler",
    "DirectionCounters",
    "IdentityReconciliationResult",
    "SyncReport",
    "SyncManager",
    "UnsyncedRecordTracker",
]
