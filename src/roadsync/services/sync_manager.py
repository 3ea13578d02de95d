"""
SyncManager for relational store / cloud / local store synchronization.

A full sync pass reconciles identities, ingests cloud-side records the
backend has not seen yet, replays record updates queued while the backend
was away, and pushes the local backlog to the cloud. Every cross-store
write is an upsert keyed by the record's own identifier, so a pass can be
interrupted or run alongside ordinary writes without producing
duplicates; whatever it missed is picked up by the next pass.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .accounts import AccountRepository
from .availability import AvailabilityProber
from .backend import BackendClient
from .cloud import CloudDocument, CloudDocumentStore
from .errors import BackendRequestError
from .models import (
    PendingUpdate,
    ProbeTarget,
    RecordKind,
    RecordSource,
    SyncableRecord,
    SyncDirection,
)
from .reconciler import IdentityReconciler
from .report import DirectionCounters, SyncReport
from .tracker import UnsyncedRecordTracker

logger = logging.getLogger(__name__)


class SyncManager:
    """
    Runs full sync passes and aggregates their outcome into a SyncReport.

    Features:
    - Identity reconciliation in either or both directions
    - Cloud backlog ingestion into the backend
    - Replay of queued record updates against the backend
    - Local backlog push to the cloud
    - Sync statistics and health reporting
    """

    def __init__(
        self,
        prober: AvailabilityProber,
        tracker: UnsyncedRecordTracker,
        accounts: AccountRepository,
        reconciler: Optional[IdentityReconciler] = None,
        backend: Optional[BackendClient] = None,
        document_store: Optional[CloudDocumentStore] = None,
    ):
        """
        Initialize SyncManager.

        Args:
            prober: Availability prober shared with the write coordinator
            tracker: Backlog tracker
            accounts: Account repository, used to resolve record owners
            reconciler: Identity reconciler, None when the cloud is not configured
            backend: Backend client, None when no backend is configured
            document_store: Cloud document store, None when the cloud is not configured
        """
        self.prober = prober
        self.tracker = tracker
        self.accounts = accounts
        self.reconciler = reconciler
        self.backend = backend
        self.document_store = document_store

    async def run_full_sync(self, direction: SyncDirection = SyncDirection.BOTH) -> SyncReport:
        """
        Run one sync pass.

        Store-level problems are reported in `firebase_error` / `backend_error`
        and per-record failures in the counters.

        Raises:
            ReconciliationUnavailableError: An identity listing could not be fetched
        """
        report = SyncReport(direction=direction, started_at=datetime.now())
        logger.info(f"Starting full sync ({direction.value})")

        if self.reconciler is not None:
            report.identities = await self.reconciler.reconcile_identities(direction)
        else:
            report.firebase_error = "Cloud identity store not configured"

        if direction.includes_cloud_to_local:
            await self._ingest_cloud_backlog(report)

        await self._replay_pending_updates(report)

        if direction.includes_local_to_cloud:
            await self._push_local_backlog(report)

        report.completed_at = datetime.now()
        totals = report.totals
        logger.info(
            f"Full sync ({direction.value}) finished: {totals.added} added, "
            f"{totals.skipped} skipped, {totals.errors} errors"
        )
        return report

    async def _ingest_cloud_backlog(self, report: SyncReport) -> None:
        """Upsert unsynced cloud documents into the backend."""
        if self.document_store is None:
            report.firebase_error = report.firebase_error or "Cloud document store not configured"
            return
        if self.backend is None:
            report.backend_error = "Backend not configured"
            return
        if not await self.prober.is_reachable(ProbeTarget.BACKEND):
            report.backend_error = "Backend unreachable"
            logger.warning("Skipping cloud backlog ingestion: backend unreachable")
            return

        counters = report.records_cloud_to_local
        for kind in RecordKind:
            try:
                documents = await self.tracker.list_cloud_unsynced(kind)
            except Exception as e:
                logger.error(f"Failed to list unsynced cloud {kind.value} records: {e}")
                report.firebase_error = str(e)
                continue

            for document in documents:
                await self._ingest_document(self.backend, kind, document, counters)

    async def _ingest_document(
        self,
        backend: BackendClient,
        kind: RecordKind,
        document: CloudDocument,
        counters: DirectionCounters,
    ) -> None:
        try:
            record = await self._record_from_document(kind, document)
            response = await backend.upsert_record(record)
            backend_id = response.get("id")
            await self.tracker.mark_cloud_synced(
                kind, document.id, str(backend_id) if backend_id is not None else None
            )
        except Exception as e:
            logger.error(f"Failed to ingest cloud {kind.value} {document.id}: {e}")
            counters.record_error(document.id, e)
            return

        if response.get("created", True):
            counters.added += 1
        else:
            counters.skipped += 1

    async def _record_from_document(
        self, kind: RecordKind, document: CloudDocument
    ) -> SyncableRecord:
        data = dict(document.data)
        record_id = str(data.pop("record_id", None) or document.id)
        owner_account_id = data.pop("owner_account_id", None)
        subject_id = data.pop("uid", None)
        if owner_account_id is None and subject_id:
            owner = await self.accounts.find_by_subject_id(subject_id)
            owner_account_id = owner.id if owner else None

        created_at = data.get("created_at")
        for key in ("kind", "source", "synced", "created_at", "synced_at", "backend_id"):
            data.pop(key, None)

        return SyncableRecord(
            record_id=record_id,
            kind=kind,
            owner_account_id=owner_account_id,
            payload=data,
            synced=False,
            source=RecordSource.CLOUD,
            cloud_id=document.id,
            created_at=_parse_datetime(created_at),
        )

    async def _replay_pending_updates(self, report: SyncReport) -> None:
        """Send queued record updates to the backend, oldest first."""
        pending = await self.tracker.local_store.list_pending_updates()
        if not pending:
            return
        if self.backend is None:
            report.backend_error = report.backend_error or "Backend not configured"
            return
        if not await self.prober.is_reachable(ProbeTarget.BACKEND):
            report.backend_error = "Backend unreachable"
            logger.warning(f"Keeping {len(pending)} queued updates: backend unreachable")
            return

        logger.info(f"Replaying {len(pending)} queued record updates")
        for update in pending:
            await self._replay_update(self.backend, update, report.pending_updates)

    async def _replay_update(
        self, backend: BackendClient, update: PendingUpdate, counters: DirectionCounters
    ) -> None:
        try:
            backend_id = update.backend_id
            if backend_id is None:
                matches = await backend.list_records(update.kind, record_id=update.record_id)
                backend_id = str(matches[0]["id"]) if matches else None
            if backend_id is None:
                logger.debug(f"{update.kind.value} {update.record_id} not on the backend yet")
                counters.skipped += 1
                return

            try:
                await backend.update_record(backend_id, {"payload": update.changes})
                applied = True
            except BackendRequestError as e:
                if e.status != 404:
                    raise
                logger.warning(
                    f"{update.kind.value} {update.record_id} is gone from the backend, "
                    "dropping its queued update"
                )
                applied = False
            await self.tracker.local_store.remove_pending_update(update.record_id)
        except Exception as e:
            logger.error(f"Failed to replay update of {update.kind.value} {update.record_id}: {e}")
            counters.record_error(update.record_id, e)
            return

        if applied:
            counters.added += 1
        else:
            counters.skipped += 1

    async def _push_local_backlog(self, report: SyncReport) -> None:
        """Push unsynced local records to the cloud and flag them synced."""
        if self.document_store is None:
            report.firebase_error = report.firebase_error or "Cloud document store not configured"
            return
        if not await self.prober.is_reachable(ProbeTarget.CLOUD):
            report.firebase_error = "Cloud unreachable"
            logger.warning("Skipping local backlog push: cloud unreachable")
            return

        counters = report.records_local_to_cloud
        backlog = await self.tracker.list_unsynced()
        logger.info(f"Pushing {len(backlog)} local records to the cloud")

        subject_cache: Dict[Optional[int], Optional[str]] = {}
        for record in backlog:
            try:
                if record.local_id is None:
                    raise ValueError("record has no local id")
                if record.owner_account_id not in subject_cache:
                    owner = (
                        await self.accounts.get(record.owner_account_id)
                        if record.owner_account_id is not None
                        else None
                    )
                    subject_cache[record.owner_account_id] = (
                        owner.cloud_subject_id if owner else None
                    )
                subject_id = subject_cache[record.owner_account_id]

                cloud_id = await self.document_store.add_document(
                    record.kind.collection,
                    record.to_document(owner_subject_id=subject_id),
                    document_id=record.record_id,
                )
                await self.tracker.attach_cloud_id(record.local_id, cloud_id)
                await self.tracker.mark_synced([record.local_id])
            except Exception as e:
                logger.error(f"Failed to push local {record.kind.value} {record.record_id}: {e}")
                counters.record_error(record.record_id, e)
                continue

            counters.added += 1

    async def get_sync_stats(self) -> Dict[str, Any]:
        """Per-kind local backlog statistics."""
        stats = await self.tracker.local_store.get_stats()
        pending = await self.tracker.local_store.list_pending_updates()
        return {
            "records": stats,
            "total": sum(counts["total"] for counts in stats.values()),
            "unsynced": sum(counts["unsynced"] for counts in stats.values()),
            "pending_updates": len(pending),
            "checked_at": datetime.now().isoformat(),
        }

    async def health_check(self) -> Dict[str, Any]:
        """Reachability of every target plus local store status."""
        health_status: Dict[str, Any] = {
            "status": "healthy",
            "targets": {},
            "checked_at": datetime.now().isoformat(),
        }

        for target in ProbeTarget:
            reachable = await self.prober.is_reachable(target)
            health_status["targets"][target.value] = reachable
            if not reachable:
                health_status["status"] = "degraded"

        try:
            health_status["local_store"] = await self.tracker.local_store.db.get_stats()
        except Exception as e:
            health_status["status"] = "unhealthy"
            health_status["error"] = str(e)

        return health_status


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None
