"""
Expense Claims - Data Models
============================

Typed data models for claims, expenses, users and sync results.
"""

from .expense import (
    Expense,
    MileageExpense,
    MileageRate,
    VehicleType,
    ChargerType,
    MILEAGE_CATEGORY_NAME,
)
from .claim import ExpenseClaim, ClaimStatus, XeroSyncStatus
from .profile import Profile, UserRole, GroupRole, SyncSource
from .sync_result import ClaimSyncResult, BillSyncReport, UserSyncResult, UserSyncStatus

__all__ = [
    "Expense",
    "MileageExpense",
    "MileageRate",
    "VehicleType",
    "ChargerType",
    "MILEAGE_CATEGORY_NAME",
    "ExpenseClaim",
    "ClaimStatus",
    "XeroSyncStatus",
    "Profile",
    "UserRole",
    "GroupRole",
    "SyncSource",
    "ClaimSyncResult",
    "BillSyncReport",
    "UserSyncResult",
    "UserSyncStatus",
]
