"""Counters and reports produced by reconciliation and sync passes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import SyncDirection


@dataclass
class DirectionCounters:
    """Added / skipped / errored items for one direction."""

    added: int = 0
    skipped: int = 0
    errors: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.added + self.skipped + self.errors

    def record_error(self, item_id: str, error: Exception) -> None:
        self.errors += 1
        self.failures.append({"id": item_id, "error": str(error)})

    def merge(self, other: "DirectionCounters") -> "DirectionCounters":
        return DirectionCounters(
            added=self.added + other.added,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
            failures=self.failures + other.failures,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "skipped": self.skipped,
            "errors": self.errors,
            "failures": list(self.failures),
        }


@dataclass
class IdentityReconciliationResult:
    """Outcome of one identity reconciliation."""

    cloud_to_local: DirectionCounters = field(default_factory=DirectionCounters)
    local_to_cloud: DirectionCounters = field(default_factory=DirectionCounters)
    total_cloud: int = 0
    total_local: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cloud_to_local": self.cloud_to_local.to_dict(),
            "local_to_cloud": self.local_to_cloud.to_dict(),
            "total_cloud": self.total_cloud,
            "total_local": self.total_local,
        }


@dataclass
class SyncReport:
    """
    Summary of a full sync pass. Built fresh for every call, never stored.

    Identity and record counters are kept apart; the per-direction
    properties combine them. Replayed record updates count towards the
    totals only.
    """

    direction: SyncDirection
    started_at: datetime
    identities: Optional[IdentityReconciliationResult] = None
    records_cloud_to_local: DirectionCounters = field(default_factory=DirectionCounters)
    records_local_to_cloud: DirectionCounters = field(default_factory=DirectionCounters)
    pending_updates: DirectionCounters = field(default_factory=DirectionCounters)
    firebase_error: Optional[str] = None
    backend_error: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def cloud_to_local(self) -> DirectionCounters:
        counters = self.records_cloud_to_local
        if self.identities:
            counters = self.identities.cloud_to_local.merge(counters)
        return counters

    @property
    def local_to_cloud(self) -> DirectionCounters:
        counters = self.records_local_to_cloud
        if self.identities:
            counters = self.identities.local_to_cloud.merge(counters)
        return counters

    @property
    def totals(self) -> DirectionCounters:
        return self.cloud_to_local.merge(self.local_to_cloud).merge(self.pending_updates)

    @property
    def success_rate(self) -> float:
        """Share of processed items that did not error."""
        totals = self.totals
        if totals.total == 0:
            return 0.0
        return (totals.added + totals.skipped) / totals.total

    def to_dict(self) -> Dict[str, Any]:
        totals = self.totals
        return {
            "direction": self.direction.value,
            "cloud_to_local": self.cloud_to_local.to_dict(),
            "local_to_cloud": self.local_to_cloud.to_dict(),
            "identities": self.identities.to_dict() if self.identities else None,
            "records": {
                "cloud_to_local": self.records_cloud_to_local.to_dict(),
                "local_to_cloud": self.records_local_to_cloud.to_dict(),
            },
            "pending_updates": self.pending_updates.to_dict(),
            "totals": {"added": totals.added, "skipped": totals.skipped, "errors": totals.errors},
            "total_cloud": self.identities.total_cloud if self.identities else 0,
            "total_local": self.identities.total_local if self.identities else 0,
            "firebase_error": self.firebase_error,
            "backend_error": self.backend_error,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
