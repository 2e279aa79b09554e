"""
Expense Claim Data Model
========================

Represents an expense claim and its Xero sync state.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from .expense import Expense, parse_date, parse_datetime


class ClaimStatus(str, Enum):
    """Claim lifecycle status."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class XeroSyncStatus(str, Enum):
    """Xero bill sync status."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass
class ExpenseClaim:
    """
    An employee's expense claim covering a date range.

    Maps to the expense_claims database table. Expenses are only
    populated when the row was fetched with an embedded select.
    """

    id: str
    user_id: Optional[str] = None
    claimant_name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    # Billing to a client
    is_chargeable: bool = False
    client_id: Optional[str] = None

    # Review
    status: ClaimStatus = ClaimStatus.DRAFT
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    # Xero
    xero_sync_status: Optional[XeroSyncStatus] = None
    xero_bill_id: Optional[str] = None
    xero_synced_at: Optional[datetime] = None
    xero_sync_error: Optional[str] = None

    expenses: list[Expense] = field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ExpenseClaim":
        """Create ExpenseClaim from database row dictionary."""
        sync_status = data.get("xero_sync_status")
        return cls(
            id=data.get("id", ""),
            user_id=data.get("user_id"),
            claimant_name=data.get("claimant_name"),
            description=data.get("description"),
            start_date=parse_date(data.get("start_date")),
            end_date=parse_date(data.get("end_date")),
            is_chargeable=bool(data.get("is_chargeable", False)),
            client_id=data.get("client_id"),
            status=ClaimStatus(data.get("status") or "draft"),
            submitted_at=parse_datetime(data.get("submitted_at")),
            reviewed_by=data.get("reviewed_by"),
            reviewed_at=parse_datetime(data.get("reviewed_at")),
            review_notes=data.get("review_notes"),
            xero_sync_status=XeroSyncStatus(sync_status) if sync_status else None,
            xero_bill_id=data.get("xero_bill_id"),
            xero_synced_at=parse_datetime(data.get("xero_synced_at")),
            xero_sync_error=data.get("xero_sync_error"),
            expenses=[Expense.from_dict(e) for e in data.get("expenses") or []],
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )

    @property
    def total_amount(self) -> float:
        """Sum of expense amounts on the claim."""
        return round(sum(e.amount for e in self.expenses), 2)

    @property
    def is_editable(self) -> bool:
        """Only draft claims can have expenses changed."""
        return self.status == ClaimStatus.DRAFT

    @property
    def bill_reference(self) -> str:
        """Reference shown on the Xero bill."""
        return f"Claim-{self.id[:8]}"
