"""
Sync Result Data Models
=======================

Outcomes of the Xero bill sync and the Microsoft 365 user sync.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class UserSyncStatus(str, Enum):
    """Status values for the user_sync_log table."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ClaimSyncResult:
    """Result of pushing one claim to Xero as a draft bill."""

    claim_id: str
    success: bool = False
    xero_bill_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"claim_id": self.claim_id, "success": self.success}
        if self.success:
            data["xero_bill_id"] = self.xero_bill_id
        else:
            data["error"] = self.error
        return data


@dataclass
class BillSyncReport:
    """
    Results for every claim in one sync request.

    Individual claim failures do not fail the request; they are
    recorded per claim and on the claim row itself.
    """

    results: list[ClaimSyncResult] = field(default_factory=list)

    def add(self, result: ClaimSyncResult) -> None:
        self.results.append(result)

    @property
    def synced_count(self) -> int:
        return len([r for r in self.results if r.success])

    @property
    def failed_count(self) -> int:
        return len([r for r in self.results if not r.success])

    def to_dict(self) -> dict:
        return {
            "success": True,
            "results": [r.to_dict() for r in self.results],
        }

    def to_summary(self) -> str:
        """Generate human-readable summary."""
        lines = [f"Claims: {len(self.results)} ({self.synced_count} synced, {self.failed_count} failed)"]
        for r in self.results:
            if r.success:
                lines.append(f"  - {r.claim_id}: {r.xero_bill_id}")
            else:
                lines.append(f"  - {r.claim_id}: FAILED {r.error}")
        return "\n".join(lines)


@dataclass
class UserSyncResult:
    """
    Counters and errors from one directory sync run.

    Maps onto a user_sync_log row when the run completes.
    """

    organization_id: str
    sync_type: str = "manual"
    log_id: Optional[str] = None

    users_created: int = 0
    users_updated: int = 0
    users_deactivated: int = 0
    errors: list[dict] = field(default_factory=list)

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def add_error(self, message: str) -> None:
        self.errors.append({"message": message})

    @property
    def status(self) -> UserSyncStatus:
        return UserSyncStatus.PARTIAL if self.errors else UserSyncStatus.SUCCESS

    def to_log_update(self) -> dict:
        """Columns written to user_sync_log on completion."""
        return {
            "status": self.status.value,
            "completed_at": (self.completed_at or datetime.now(timezone.utc)).isoformat(),
            "users_created": self.users_created,
            "users_updated": self.users_updated,
            "users_deactivated": self.users_deactivated,
            "errors": self.errors or None,
        }

    def to_response(self) -> dict:
        """Body returned to the caller."""
        data = {
            "success": True,
            "usersCreated": self.users_created,
            "usersUpdated": self.users_updated,
            "usersDeactivated": self.users_deactivated,
        }
        if self.errors:
            data["errors"] = self.errors
        return data
