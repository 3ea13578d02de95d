"""
UnsyncedRecordTracker - surfaces the backlog waiting for a push.

Local records carry a synced flag in the local store; cloud documents carry
one in their body. The tracker lists both backlogs and flips the flags once
a push succeeded.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .cloud import CloudDocument, CloudDocumentStore
from .local_store import LocalRecordStore
from .models import RecordKind, SyncableRecord

logger = logging.getLogger(__name__)


class UnsyncedRecordTracker:
    """Backlog queries and synced-flag updates."""

    def __init__(
        self,
        local_store: LocalRecordStore,
        document_store: Optional[CloudDocumentStore] = None,
    ):
        self.local_store = local_store
        self.document_store = document_store

    async def list_unsynced(self, kind: Optional[RecordKind] = None) -> List[SyncableRecord]:
        """Local records with synced=false, oldest first."""
        records = await self.local_store.list_unsynced(kind)
        logger.debug(f"{len(records)} unsynced local {kind.value if kind else 'records'}")
        return records

    async def mark_synced(self, ids: Iterable[int]) -> List[int]:
        """
        Flag local records as synced.

        Idempotent; unknown ids are ignored.

        Returns:
            The subset of ids that exist in the local store
        """
        requested = list(ids)
        updated = await self.local_store.mark_synced(requested)
        missing = [local_id for local_id in requested if local_id not in updated]
        if missing:
            logger.debug(f"mark_synced ignored unknown ids: {missing}")
        return updated

    async def attach_cloud_id(self, local_id: int, cloud_id: str) -> bool:
        return await self.local_store.attach_cloud_id(local_id, cloud_id)

    async def list_cloud_unsynced(self, kind: RecordKind) -> List[CloudDocument]:
        """Cloud documents of this kind still waiting for backend ingestion, oldest first."""
        if self.document_store is None:
            return []
        documents = await self.document_store.query(kind.collection, [("synced", "==", False)])
        return sorted(documents, key=lambda doc: str(doc.data.get("created_at") or ""))

    async def mark_cloud_synced(
        self, kind: RecordKind, document_id: str, backend_id: Optional[str] = None
    ) -> None:
        """Flag a cloud document as ingested by the backend."""
        if self.document_store is None:
            return
        patch: Dict[str, Any] = {"synced": True, "synced_at": datetime.now().isoformat()}
        if backend_id is not None:
            patch["backend_id"] = backend_id
        await self.document_store.update_document(kind.collection, document_id, patch)

    async def get_stats(self) -> Dict[str, Dict[str, int]]:
        """Per-kind {total, synced, unsynced} of the local store."""
        stats = await self.local_store.get_stats()
        return {
            kind: {key: counts[key] for key in ("total", "synced", "unsynced")}
            for kind, counts in stats.items()
        }
