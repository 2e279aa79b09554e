"""
Data Model Tests
================

Row parsing and derived values on claims, expenses, profiles and
sync results.
"""

from datetime import date

from models import (
    BillSyncReport,
    ChargerType,
    ClaimStatus,
    ClaimSyncResult,
    Expense,
    ExpenseClaim,
    MileageExpense,
    MileageRate,
    Profile,
    SyncSource,
    UserRole,
    UserSyncResult,
    UserSyncStatus,
    VehicleType,
    XeroSyncStatus,
)


CLAIM_ROW = {
    "id": "a1b2c3d4-e5f6-7890-abcd-ef1234567890",
    "user_id": "user-1",
    "claimant_name": "Jane Smith",
    "description": "Client visit",
    "start_date": "2025-03-01",
    "end_date": "2025-03-05",
    "status": "approved",
    "xero_sync_status": "failed",
    "xero_sync_error": "boom",
    "expenses": [
        {
            "id": "e1",
            "title": "Train",
            "description": "London return",
            "amount": 60.0,
            "amount_before_vat": 50.0,
            "vat_amount": 10.0,
            "category": {"name": "Travel", "xero_account_code": "493"},
        },
        {
            "id": "e2",
            "title": "Lunch",
            "amount": "12.35",
            "amount_before_vat": "12.35",
            "vat_amount": None,
        },
    ],
}


class TestExpenseClaim:
    """Tests for ExpenseClaim parsing and properties."""

    def test_from_dict_parses_embedded_expenses(self):
        claim = ExpenseClaim.from_dict(CLAIM_ROW)

        assert claim.status == ClaimStatus.APPROVED
        assert claim.start_date == date(2025, 3, 1)
        assert claim.xero_sync_status == XeroSyncStatus.FAILED
        assert [e.id for e in claim.expenses] == ["e1", "e2"]
        assert claim.expenses[0].xero_account_code == "493"

    def test_total_amount_is_rounded_sum(self):
        claim = ExpenseClaim.from_dict(CLAIM_ROW)
        assert claim.total_amount == 72.35

    def test_bill_reference_uses_first_eight_characters(self):
        claim = ExpenseClaim.from_dict(CLAIM_ROW)
        assert claim.bill_reference == "Claim-a1b2c3d4"

    def test_only_drafts_are_editable(self):
        assert ExpenseClaim(id="c1").is_editable
        assert not ExpenseClaim(id="c1", status=ClaimStatus.SUBMITTED).is_editable

    def test_missing_status_defaults_to_draft(self):
        assert ExpenseClaim.from_dict({"id": "c1"}).status == ClaimStatus.DRAFT


class TestExpense:
    """Tests for Expense parsing."""

    def test_category_can_come_from_table_name_embed(self):
        expense = Expense.from_dict({"id": "e1", "expense_categories": {"name": "Hotel"}})
        assert expense.category_name == "Hotel"
        assert expense.xero_account_code is None

    def test_line_description(self):
        assert Expense(id="e1", title="Train", description="Return").line_description == "Train - Return"
        assert Expense(id="e1").line_description == "Expense"

    def test_has_vat(self):
        assert Expense(id="e1", vat_amount=0.01).has_vat
        assert not Expense(id="e1").has_vat


class TestMileage:
    """Tests for MileageRate and MileageExpense."""

    def test_rate_effective_window(self):
        rate = MileageRate.from_dict({
            "vehicle_type": "electric",
            "charger_type": "public",
            "rate_per_mile": "0.12",
            "effective_from": "2025-01-01",
            "effective_to": "2025-12-31",
        })

        assert rate.charger_type == ChargerType.PUBLIC
        assert rate.rate_per_mile == 0.12
        assert rate.is_effective(date(2025, 6, 1))
        assert not rate.is_effective(date(2024, 12, 31))
        assert not rate.is_effective(date(2026, 1, 1))

    def test_open_ended_rate_is_effective(self):
        rate = MileageRate(vehicle_type=VehicleType.STANDARD, rate_per_mile=0.45)
        assert rate.is_effective(date(2030, 1, 1))

    def test_mileage_expense_to_dict(self):
        data = MileageExpense(
            expense_id="e1",
            start_location="Leeds",
            end_location="York",
            distance_miles=25.0,
            vehicle_type=VehicleType.ELECTRIC,
            charger_type=ChargerType.HOME,
            rate_applied=0.09,
        ).to_dict()

        assert data["vehicle_type"] == "electric"
        assert data["charger_type"] == "home"


class TestProfile:
    """Tests for Profile parsing."""

    def test_defaults(self):
        profile = Profile.from_dict({"id": "u1", "email": "u1@example.com"})

        assert profile.role == UserRole.STAFF
        assert profile.vehicle_type == VehicleType.STANDARD
        assert profile.charger_type is None
        assert profile.sync_source == SyncSource.LOCAL
        assert not profile.is_admin
        assert not profile.is_electric

    def test_admin_with_electric_vehicle(self):
        profile = Profile.from_dict({
            "id": "u1",
            "email": "u1@example.com",
            "role": "admin",
            "vehicle_type": "electric",
            "charger_type": "public",
        })

        assert profile.is_admin
        assert profile.is_electric
        assert profile.charger_type == ChargerType.PUBLIC


class TestSyncResults:
    """Tests for sync result reporting."""

    def test_bill_sync_report(self):
        report = BillSyncReport()
        report.add(ClaimSyncResult(claim_id="c1", success=True, xero_bill_id="inv-1"))
        report.add(ClaimSyncResult(claim_id="c2", success=False, error="Claim c2 is not approved"))

        assert report.synced_count == 1
        assert report.failed_count == 1
        assert report.to_dict() == {
            "success": True,
            "results": [
                {"claim_id": "c1", "success": True, "xero_bill_id": "inv-1"},
                {"claim_id": "c2", "success": False, "error": "Claim c2 is not approved"},
            ],
        }
        assert "FAILED Claim c2 is not approved" in report.to_summary()

    def test_user_sync_status_is_partial_with_errors(self):
        result = UserSyncResult(organization_id="org-1", users_created=2)
        assert result.status == UserSyncStatus.SUCCESS
        assert "errors" not in result.to_response()
        assert result.to_log_update()["errors"] is None

        result.add_error("User X has no email address")
        assert result.status == UserSyncStatus.PARTIAL
        assert result.to_response() == {
            "success": True,
            "usersCreated": 2,
            "usersUpdated": 0,
            "usersDeactivated": 0,
            "errors": [{"message": "User X has no email address"}],
        }
