"""
Data types shared by the sync services.

Accounts live in the relational store, cloud identities in Firebase Auth,
and syncable records (reports, notifications, photos) in whichever store
was reachable when they were written.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class RecordKind(Enum):
    """Mutable record kinds handled by the write coordinator."""

    REPORT = "report"
    NOTIFICATION = "notification"
    PHOTO = "photo"

    @property
    def collection(self) -> str:
        """Cloud document collection holding this kind."""
        return _COLLECTIONS[self]


_COLLECTIONS = {
    RecordKind.REPORT: "signalements",
    RecordKind.NOTIFICATION: "notifications",
    RecordKind.PHOTO: "photos",
}


class RecordSource(Enum):
    """Store a record was first written to."""

    LOCAL = "LOCAL"
    CLOUD = "CLOUD"


class WriteOrigin(Enum):
    """Store that accepted a coordinated write."""

    BACKEND = "BACKEND"
    CLOUD = "CLOUD"
    LOCAL = "LOCAL"


class ProbeTarget(Enum):
    """Targets the availability prober knows how to check."""

    BACKEND = "backend"
    CLOUD = "cloud"


class SyncDirection(Enum):
    """Direction of a full sync pass."""

    CLOUD_TO_LOCAL = "cloud_to_local"
    LOCAL_TO_CLOUD = "local_to_cloud"
    BOTH = "both"

    @property
    def includes_cloud_to_local(self) -> bool:
        return self in (SyncDirection.CLOUD_TO_LOCAL, SyncDirection.BOTH)

    @property
    def includes_local_to_cloud(self) -> bool:
        return self in (SyncDirection.LOCAL_TO_CLOUD, SyncDirection.BOTH)


@dataclass
class Account:
    """Relational account record."""

    id: int
    email: str
    display_name: str = ""
    given_name: str = ""
    family_name: str = ""
    cloud_subject_id: Optional[str] = None
    created_from_cloud: bool = False
    created_at: Optional[datetime] = None


@dataclass
class CloudIdentity:
    """User as seen by the cloud identity API."""

    subject_id: str
    email: Optional[str]
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class CloudUserPage:
    """One page of a cloud identity listing."""

    users: List[CloudIdentity]
    next_page_token: Optional[str] = None


@dataclass
class SyncableRecord:
    """Report, notification or photo held by one of the stores."""

    record_id: str
    kind: RecordKind
    owner_account_id: Optional[int]
    payload: Dict[str, Any]
    synced: bool = False
    source: RecordSource = RecordSource.LOCAL
    local_id: Optional[int] = None
    cloud_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_document(self, owner_subject_id: Optional[str] = None) -> Dict[str, Any]:
        """Build the cloud document body for this record."""
        document = dict(self.payload)
        document.update(
            {
                "record_id": self.record_id,
                "kind": self.kind.value,
                "owner_account_id": self.owner_account_id,
                "uid": owner_subject_id,
                "source": RecordSource.CLOUD.value,
                "synced": False,
                "created_at": (self.created_at or datetime.now()).isoformat(),
            }
        )
        return document


@dataclass
class PendingUpdate:
    """Payload changes for an existing record, held locally until the backend answers."""

    record_id: str
    kind: RecordKind
    changes: Dict[str, Any]
    backend_id: Optional[str] = None
    queued_at: Optional[datetime] = None


@dataclass
class WriteResult:
    """Outcome of a coordinated write."""

    origin: WriteOrigin
    record_id: str
    local_id: Optional[int] = None
    cloud_id: Optional[str] = None
    backend_id: Optional[str] = None
    attempts: List[Tuple[WriteOrigin, str]] = field(default_factory=list)


def split_display_name(display_name: Optional[str]) -> Tuple[str, str]:
    """Split "Jean Rakoto" into ("Jean", "Rakoto"); the family name may be empty."""
    if not display_name:
        return "", ""
    parts = display_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])
