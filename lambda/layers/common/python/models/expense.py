"""
Expense Data Model
==================

Represents a single expense line on a claim, plus the mileage
details and rates used when the expense is a mileage journey.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Any

# Category name that switches an expense into mileage mode
MILEAGE_CATEGORY_NAME = "mileage"


class VehicleType(str, Enum):
    """Vehicle type on a user's profile."""
    STANDARD = "standard"
    ELECTRIC = "electric"


class ChargerType(str, Enum):
    """Where an electric vehicle was charged."""
    HOME = "home"
    PUBLIC = "public"


def parse_date(value: Any) -> Optional[date]:
    """Parse date from various formats."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value[:10], "%Y-%m-%d").date()
        except ValueError:
            return None
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse datetime from various formats."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            # Handle ISO format with or without timezone
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


@dataclass
class Expense:
    """
    A receipt-backed or mileage expense.

    Maps to the expenses database table. `amount` is the net cost,
    i.e. amount_before_vat + vat_amount.
    """

    id: str
    user_id: Optional[str] = None
    claim_id: Optional[str] = None
    category_id: Optional[str] = None

    title: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    expense_date: Optional[date] = None

    amount_before_vat: float = 0.0
    vat_amount: float = 0.0
    amount: float = 0.0

    receipt_url: Optional[str] = None

    # Embedded category (select=...,category:expense_categories(...))
    category_name: Optional[str] = None
    xero_account_code: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Expense":
        """Create Expense from database row dictionary."""
        category = data.get("category") or data.get("expense_categories") or {}
        return cls(
            id=data.get("id", ""),
            user_id=data.get("user_id"),
            claim_id=data.get("claim_id"),
            category_id=data.get("category_id"),
            title=data.get("title"),
            description=data.get("description"),
            notes=data.get("notes"),
            expense_date=parse_date(data.get("expense_date")),
            amount_before_vat=float(data.get("amount_before_vat") or 0),
            vat_amount=float(data.get("vat_amount") or 0),
            amount=float(data.get("amount") or 0),
            receipt_url=data.get("receipt_url"),
            category_name=category.get("name"),
            xero_account_code=category.get("xero_account_code"),
        )

    @property
    def has_vat(self) -> bool:
        return self.vat_amount > 0

    @property
    def line_description(self) -> str:
        """Description used on accounting line items."""
        text = self.title or "Expense"
        if self.description:
            text += f" - {self.description}"
        return text


@dataclass
class MileageRate:
    """Per-mile rate (GBP) for a vehicle/charger combination."""

    vehicle_type: VehicleType
    rate_per_mile: float
    charger_type: Optional[ChargerType] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "MileageRate":
        charger = data.get("charger_type")
        return cls(
            id=data.get("id"),
            vehicle_type=VehicleType(data.get("vehicle_type", "standard")),
            rate_per_mile=float(data.get("rate_per_mile") or 0),
            charger_type=ChargerType(charger) if charger else None,
            effective_from=parse_date(data.get("effective_from")),
            effective_to=parse_date(data.get("effective_to")),
        )

    def is_effective(self, on: date) -> bool:
        """Check whether the rate applies on the given date."""
        if self.effective_from and self.effective_from > on:
            return False
        if self.effective_to and self.effective_to < on:
            return False
        return True


@dataclass
class MileageExpense:
    """
    Journey details for a mileage expense.

    Maps to the mileage_expenses table (one row per expense).
    """

    expense_id: str
    start_location: str
    end_location: str
    distance_miles: float
    vehicle_type: VehicleType = VehicleType.STANDARD
    charger_type: Optional[ChargerType] = None
    rate_applied: float = 0.0

    def to_dict(self) -> dict:
        return {
            "expense_id": self.expense_id,
            "start_location": self.start_location,
            "end_location": self.end_location,
            "distance_miles": self.distance_miles,
            "vehicle_type": self.vehicle_type.value,
            "charger_type": self.charger_type.value if self.charger_type else None,
            "rate_applied": self.rate_applied,
        }
