"""
Fallback-chain write coordinator.

Every mutable record kind (report, notification, photo) is written the same
way: backend first, then the cloud document store, then the local store.
Exactly one store receives a given write; the local store is the floor and
only its failure reaches the caller. Changes to an existing record go to the
backend or wait in the local update queue.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .availability import AvailabilityProber
from .backend import BackendClient
from .cloud import CloudDocumentStore
from .errors import BackendRequestError, StoreUnreachableError, WriteFailedError
from .local_store import LocalRecordStore
from .models import (
    Account,
    PendingUpdate,
    ProbeTarget,
    RecordKind,
    RecordSource,
    SyncableRecord,
    WriteOrigin,
    WriteResult,
)

logger = logging.getLogger(__name__)

SessionResolver = Callable[[Account], Awaitable[Optional[str]]]


class StepSkipped(Exception):
    """A chain step declined the write without trying it."""

    pass


@dataclass
class WriteStep:
    """One link of a fallback chain."""

    origin: WriteOrigin
    is_available: Callable[[], Awaitable[bool]]
    attempt: Callable[[SyncableRecord, Account], Awaitable[WriteResult]]


class FallbackChain:
    """
    Ordered list of write steps ending with a floor step.

    Steps are tried in order until one succeeds. Failures of regular steps
    are logged and turn into a transition to the next step; the floor step
    has no successor, so its failure is raised as WriteFailedError.
    """

    def __init__(self, steps: List[WriteStep], floor: WriteStep):
        self.steps = steps
        self.floor = floor

    async def run(self, record: SyncableRecord, owner: Account) -> WriteResult:
        trail: List[tuple] = []

        for step in self.steps:
            name = step.origin.value
            if not await step.is_available():
                logger.debug(f"{name} unavailable for {record.kind.value} {record.record_id}")
                trail.append((step.origin, "unavailable"))
                continue

            try:
                result = await step.attempt(record, owner)
            except StepSkipped as e:
                logger.debug(f"{name} skipped for {record.record_id}: {e}")
                trail.append((step.origin, f"skipped: {e}"))
                continue
            except Exception as e:
                logger.warning(
                    f"Write of {record.kind.value} {record.record_id} to {name} failed, "
                    f"falling back: {e}"
                )
                trail.append((step.origin, f"failed: {e}"))
                continue

            trail.append((step.origin, "ok"))
            result.attempts = trail
            return result

        try:
            result = await self.floor.attempt(record, owner)
        except WriteFailedError:
            raise
        except Exception as e:
            raise WriteFailedError(f"Floor store failed for {record.record_id}: {e}") from e

        trail.append((self.floor.origin, "ok"))
        result.attempts = trail
        return result


class RecordWriteCoordinator:
    """Writes reports, notifications and photos through the fallback chain."""

    def __init__(
        self,
        prober: AvailabilityProber,
        backend: Optional[BackendClient],
        document_store: Optional[CloudDocumentStore],
        local_store: LocalRecordStore,
        session_resolver: Optional[SessionResolver] = None,
    ):
        self.prober = prober
        self.backend = backend
        self.document_store = document_store
        self.local_store = local_store
        self.session_resolver = session_resolver or _subject_id_session
        self.chain = FallbackChain(
            steps=[
                WriteStep(WriteOrigin.BACKEND, self._backend_available, self._write_backend),
                WriteStep(WriteOrigin.CLOUD, self._cloud_available, self._write_cloud),
            ],
            floor=WriteStep(WriteOrigin.LOCAL, _always_available, self._write_local),
        )

    async def write(
        self, kind: RecordKind, payload: Dict[str, Any], owner: Account
    ) -> WriteResult:
        """
        Write one new record of the given kind.

        Returns:
            WriteResult whose origin names the store that accepted it

        Raises:
            WriteFailedError: Even the local store failed
        """
        record = SyncableRecord(
            record_id=uuid.uuid4().hex,
            kind=kind,
            owner_account_id=owner.id,
            payload=dict(payload),
            synced=False,
            created_at=datetime.now(),
        )
        result = await self.chain.run(record, owner)
        logger.info(f"{kind.value} {record.record_id} written to {result.origin.value}")
        return result

    async def create_report(self, payload: Dict[str, Any], owner: Account) -> WriteResult:
        return await self.write(RecordKind.REPORT, payload, owner)

    async def create_notification(self, payload: Dict[str, Any], owner: Account) -> WriteResult:
        return await self.write(RecordKind.NOTIFICATION, payload, owner)

    async def mark_notification_read(
        self, notification_id: str, backend_id: Optional[str] = None
    ) -> WriteResult:
        """Flag an existing notification as read; notification_id is its record_id."""
        changes = {"read": True, "read_at": datetime.now().isoformat()}
        return await self.update_record(
            RecordKind.NOTIFICATION, notification_id, changes, backend_id=backend_id
        )

    async def update_record(
        self,
        kind: RecordKind,
        record_id: str,
        changes: Dict[str, Any],
        backend_id: Optional[str] = None,
    ) -> WriteResult:
        """
        Merge payload changes into an existing record.

        The backend takes the change when it is reachable and knows the
        record. Otherwise the change waits in the local queue, one entry per
        record, until a sync pass replays it.

        Raises:
            BackendRequestError: The backend rejected the change
            WriteFailedError: The change could not be queued locally
        """
        trail: List[tuple] = []
        backend = self.backend
        if backend is not None and await self.prober.is_reachable(ProbeTarget.BACKEND):
            try:
                if backend_id is None:
                    backend_id = await _find_backend_id(backend, kind, record_id)
                if backend_id is None:
                    trail.append((WriteOrigin.BACKEND, "skipped: not on the backend yet"))
                else:
                    await backend.update_record(backend_id, {"payload": dict(changes)})
                    logger.info(f"{kind.value} {record_id} updated on the backend")
                    return WriteResult(
                        origin=WriteOrigin.BACKEND,
                        record_id=record_id,
                        backend_id=backend_id,
                        attempts=[(WriteOrigin.BACKEND, "ok")],
                    )
            except BackendRequestError:
                raise
            except StoreUnreachableError as e:
                logger.warning(f"Update of {kind.value} {record_id} failed, queueing: {e}")
                self._backend_unreachable()
                trail.append((WriteOrigin.BACKEND, f"failed: {e}"))
        else:
            trail.append((WriteOrigin.BACKEND, "unavailable"))

        await self.local_store.queue_update(
            PendingUpdate(
                record_id=record_id, kind=kind, changes=dict(changes), backend_id=backend_id
            )
        )
        trail.append((WriteOrigin.LOCAL, "queued"))
        logger.info(f"Update of {kind.value} {record_id} queued locally")
        return WriteResult(
            origin=WriteOrigin.LOCAL, record_id=record_id, backend_id=backend_id, attempts=trail
        )

    async def upload_photo(
        self, report_id: str, photo: Dict[str, Any], owner: Account
    ) -> WriteResult:
        payload = dict(photo)
        payload["report_id"] = report_id
        return await self.write(RecordKind.PHOTO, payload, owner)

    async def _backend_available(self) -> bool:
        if self.backend is None:
            return False
        return await self.prober.is_reachable(ProbeTarget.BACKEND)

    async def _cloud_available(self) -> bool:
        if self.document_store is None:
            return False
        return await self.prober.is_reachable(ProbeTarget.CLOUD)

    def _backend_unreachable(self) -> None:
        # Transport failure: make the next write re-probe every candidate
        self.prober.invalidate(ProbeTarget.BACKEND)
        if self.backend is not None:
            self.backend.reset_resolution()

    async def _write_backend(self, record: SyncableRecord, owner: Account) -> WriteResult:
        if self.backend is None:
            raise StepSkipped("no backend configured")
        try:
            response = await self.backend.create_record(record)
        except BackendRequestError:
            raise
        except StoreUnreachableError:
            self._backend_unreachable()
            raise

        backend_id = response.get("id")
        return WriteResult(
            origin=WriteOrigin.BACKEND,
            record_id=record.record_id,
            backend_id=str(backend_id) if backend_id is not None else None,
        )

    async def _write_cloud(self, record: SyncableRecord, owner: Account) -> WriteResult:
        if self.document_store is None:
            raise StepSkipped("no cloud document store configured")
        subject_id = await self.session_resolver(owner)
        if not subject_id:
            raise StepSkipped(f"no cloud session for account {owner.id}")

        record.source = RecordSource.CLOUD
        try:
            cloud_id = await self.document_store.add_document(
                record.kind.collection,
                record.to_document(owner_subject_id=subject_id),
                document_id=record.record_id,
            )
        except StoreUnreachableError:
            self.prober.invalidate(ProbeTarget.CLOUD)
            record.source = RecordSource.LOCAL
            raise

        return WriteResult(origin=WriteOrigin.CLOUD, record_id=record.record_id, cloud_id=cloud_id)

    async def _write_local(self, record: SyncableRecord, owner: Account) -> WriteResult:
        record.source = RecordSource.LOCAL
        record.synced = False
        stored = await self.local_store.insert(record)
        return WriteResult(
            origin=WriteOrigin.LOCAL, record_id=stored.record_id, local_id=stored.local_id
        )


async def _always_available() -> bool:
    return True


async def _subject_id_session(owner: Account) -> Optional[str]:
    return owner.cloud_subject_id


async def _find_backend_id(
    backend: BackendClient, kind: RecordKind, record_id: str
) -> Optional[str]:
    matches = await backend.list_records(kind, record_id=record_id)
    return str(matches[0]["id"]) if matches else None
