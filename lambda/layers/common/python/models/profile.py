"""
User Profile Data Model
=======================

Local user records, either created by an admin or synced from
Microsoft 365.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .expense import ChargerType, VehicleType, parse_datetime


class UserRole(str, Enum):
    """Application role stored on profiles."""
    STAFF = "staff"
    ADMIN = "admin"


class GroupRole(str, Enum):
    """Role granted by an Azure AD group mapping."""
    STAFF = "staff"
    ADMIN = "admin"
    APPROVER = "approver"


class SyncSource(str, Enum):
    LOCAL = "local"
    MICROSOFT = "microsoft"
    BOTH = "both"


@dataclass
class Profile:
    """
    Maps to the profiles database table.

    The id is shared with the Supabase Auth user.
    """

    id: str
    email: str
    full_name: str = ""
    role: UserRole = UserRole.STAFF
    vehicle_type: VehicleType = VehicleType.STANDARD
    charger_type: Optional[ChargerType] = None

    # Directory sync
    organization_id: Optional[str] = None
    microsoft_user_id: Optional[str] = None
    azure_upn: Optional[str] = None
    sync_source: SyncSource = SyncSource.LOCAL
    is_synced_user: bool = False
    department: Optional[str] = None
    job_title: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        """Create Profile from database row dictionary."""
        charger = data.get("charger_type")
        return cls(
            id=data.get("id", ""),
            email=data.get("email", ""),
            full_name=data.get("full_name") or "",
            role=UserRole(data.get("role") or "staff"),
            vehicle_type=VehicleType(data.get("vehicle_type") or "standard"),
            charger_type=ChargerType(charger) if charger else None,
            organization_id=data.get("organization_id"),
            microsoft_user_id=data.get("microsoft_user_id"),
            azure_upn=data.get("azure_upn"),
            sync_source=SyncSource(data.get("sync_source") or "local"),
            is_synced_user=bool(data.get("is_synced_user", False)),
            department=data.get("department"),
            job_title=data.get("job_title"),
            last_synced_at=parse_datetime(data.get("last_synced_at")),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_electric(self) -> bool:
        return self.vehicle_type == VehicleType.ELECTRIC
