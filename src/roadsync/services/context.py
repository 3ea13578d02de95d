"""
SyncContext - owns every sync service and their lifecycle.

The availability cache lives on the prober held here; callers that need
deterministic time pass their own clock to `from_config`.
"""

import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Optional, Union

from ..config import SyncConfig
from .accounts import AccountRepository
from .availability import AvailabilityProber, ProbeFunc
from .backend import BackendClient
from .backend_store import BackendRecordStore
from .cloud import (
    CloudDocumentStore,
    CloudIdentityAPI,
    FirebaseIdentityClient,
    FirestoreDocumentStore,
    init_firebase,
    probe_cloud,
)
from .coordinator import RecordWriteCoordinator
from .database import DatabaseService
from .local_store import LocalRecordStore
from .models import ProbeTarget
from .reconciler import IdentityReconciler
from .sync_manager import SyncManager
from .tracker import UnsyncedRecordTracker

logger = logging.getLogger(__name__)

Backend = Union[BackendClient, BackendRecordStore]


@dataclass
class SyncContext:
    """Wired set of sync services sharing one prober and one set of stores."""

    config: SyncConfig
    database: DatabaseService
    accounts: AccountRepository
    local_store: LocalRecordStore
    prober: AvailabilityProber
    backend: Optional[Backend]
    identity_api: Optional[CloudIdentityAPI]
    document_store: Optional[CloudDocumentStore]
    reconciler: Optional[IdentityReconciler]
    coordinator: RecordWriteCoordinator
    tracker: UnsyncedRecordTracker
    sync_manager: SyncManager

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        clock: Callable[[], float] = time.monotonic,
        identity_api: Optional[CloudIdentityAPI] = None,
        document_store: Optional[CloudDocumentStore] = None,
    ) -> "SyncContext":
        """
        Build every service from configuration.

        Firebase adapters are created only when credentials are configured
        and cloud mode is not offline; explicit adapters take precedence.
        """
        database = DatabaseService(config.database_url)
        accounts = AccountRepository(database)
        local_store = LocalRecordStore(config.local_store_path)

        backend: Backend
        if config.embedded_backend:
            backend = BackendRecordStore(database)
        else:
            backend = BackendClient(config)

        if (
            identity_api is None
            and document_store is None
            and config.firebase_credentials_path
            and config.cloud_mode != "offline"
        ):
            app = init_firebase(config)
            identity_api = FirebaseIdentityClient(app, timeout=config.request_timeout_seconds)
            document_store = FirestoreDocumentStore(app, timeout=config.request_timeout_seconds)

        probes: Dict[ProbeTarget, ProbeFunc] = {ProbeTarget.BACKEND: backend.ping}
        overrides: Dict[ProbeTarget, bool] = {}
        if config.cloud_mode == "online":
            overrides[ProbeTarget.CLOUD] = True
        elif config.cloud_mode == "offline" or document_store is None:
            overrides[ProbeTarget.CLOUD] = False
        else:
            probes[ProbeTarget.CLOUD] = partial(probe_cloud, config)

        prober = AvailabilityProber(
            probes,
            ttl_seconds=config.availability_ttl_seconds,
            timeout_seconds=config.probe_timeout_seconds,
            clock=clock,
            overrides=overrides,
        )

        reconciler = (
            IdentityReconciler(accounts, identity_api, page_size=config.cloud_page_size)
            if identity_api is not None
            else None
        )
        tracker = UnsyncedRecordTracker(local_store, document_store)
        coordinator = RecordWriteCoordinator(prober, backend, document_store, local_store)
        sync_manager = SyncManager(
            prober,
            tracker,
            accounts,
            reconciler=reconciler,
            backend=backend,
            document_store=document_store,
        )

        logger.debug(
            f"Sync context built (backend={type(backend).__name__}, "
            f"cloud={'on' if document_store else 'off'}, mode={config.cloud_mode})"
        )
        return cls(
            config=config,
            database=database,
            accounts=accounts,
            local_store=local_store,
            prober=prober,
            backend=backend,
            identity_api=identity_api,
            document_store=document_store,
            reconciler=reconciler,
            coordinator=coordinator,
            tracker=tracker,
            sync_manager=sync_manager,
        )

    async def initialize(self) -> None:
        """Open both databases and the backend session."""
        if not self.database.is_initialized:
            await self.database.initialize()
        await self.local_store.initialize()
        if self.backend is not None:
            await self.backend.start()
        logger.info("Sync context initialized")

    async def shutdown(self) -> None:
        """Close everything opened by initialize(); safe to call twice."""
        if self.backend is not None:
            try:
                await self.backend.stop()
            except Exception as e:
                logger.error(f"Error stopping backend: {e}")
        await self.local_store.close()
        await self.database.close()
        logger.info("Sync context shut down")
