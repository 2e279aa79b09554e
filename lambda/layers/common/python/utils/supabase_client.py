"""
Supabase Client Utilities
=========================

HTTP-based Supabase client for database, auth and storage operations.
Uses httpx for direct REST API calls to avoid heavy SDK dependencies.
"""

from typing import Optional
from datetime import date, datetime, timezone

import httpx
from aws_lambda_powertools import Logger

from models import UserSyncStatus, XeroSyncStatus
from .secrets import get_secret, validate_secrets

logger = Logger()

# Storage bucket for receipt uploads
RECEIPTS_BUCKET = "receipts"

# Claim row with embedded expenses and their category (for bills and emails)
CLAIM_WITH_EXPENSES_SELECT = (
    "*,expenses(id,title,description,amount,amount_before_vat,vat_amount,"
    "category:expense_categories(name,xero_account_code))"
)

# Cached configuration
_config: Optional[dict] = None


def _get_config() -> dict:
    """Get cached Supabase configuration."""
    global _config
    if _config is None:
        config = {
            "url": get_secret("SUPABASE_URL"),
            "key": get_secret("SUPABASE_SERVICE_ROLE_KEY"),
        }
        if not config["url"] or not config["key"]:
            raise ValueError(f"Supabase is not configured, missing: {validate_secrets()}")
        config["url"] = config["url"].rstrip("/")
        _config = config
    return _config


def _get_headers() -> dict:
    """Get headers for Supabase REST API."""
    config = _get_config()
    return {
        "apikey": config["key"],
        "Authorization": f"Bearer {config['key']}",
        "Content-Type": "application/json",
        "Prefer": "return=representation",
    }


def _rest_url(table: str) -> str:
    """Get REST API URL for a table."""
    return f"{_get_config()['url']}/rest/v1/{table}"


def _auth_url(path: str) -> str:
    """Get Auth (GoTrue) API URL."""
    return f"{_get_config()['url']}/auth/v1/{path}"


def _storage_url(path: str) -> str:
    """Get Storage API URL."""
    return f"{_get_config()['url']}/storage/v1/{path}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def describe_error(error: httpx.HTTPStatusError) -> str:
    """Pull the human-readable message out of a Supabase error response."""
    try:
        body = error.response.json()
    except ValueError:
        return error.response.text or str(error)
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return error.response.text


class SupabaseClient:
    """
    High-level Supabase operations for the expense claims backend.
    Uses httpx for direct REST API calls.
    """

    def __init__(self, http_client: Optional[httpx.Client] = None):
        self._client = http_client or httpx.Client(timeout=30.0)
        self._client.headers.update(_get_headers())

    def __del__(self):
        if hasattr(self, '_client'):
            self._client.close()

    def _query(self, table: str, params: dict = None) -> list[dict]:
        """Execute a SELECT query."""
        response = self._client.get(_rest_url(table), params=params or {})
        response.raise_for_status()
        return response.json()

    def _query_one(self, table: str, params: dict) -> Optional[dict]:
        """Execute a SELECT expecting at most one row."""
        results = self._query(table, {**params, "limit": "1"})
        return results[0] if results else None

    def _insert(self, table: str, data: dict) -> dict:
        """Insert a record."""
        response = self._client.post(_rest_url(table), json=data)
        response.raise_for_status()
        result = response.json()
        return result[0] if isinstance(result, list) and result else result

    def _upsert(self, table: str, data: dict, on_conflict: str) -> dict:
        """Insert or update a record keyed on a unique column."""
        response = self._client.post(
            _rest_url(table),
            json=data,
            params={"on_conflict": on_conflict},
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        response.raise_for_status()
        result = response.json()
        return result[0] if isinstance(result, list) and result else result

    def _update(self, table: str, data: dict, filters: dict) -> dict:
        """Update records matching filters."""
        params = {f"{k}": f"eq.{v}" for k, v in filters.items()}
        response = self._client.patch(_rest_url(table), json=data, params=params)
        response.raise_for_status()
        result = response.json()
        return result[0] if isinstance(result, list) and result else {}

    def _delete(self, table: str, filters: dict) -> None:
        """Delete records matching filters."""
        params = {f"{k}": f"eq.{v}" for k, v in filters.items()}
        response = self._client.delete(_rest_url(table), params=params)
        response.raise_for_status()

    # =========================================================================
    # XERO SETTINGS
    # =========================================================================

    def get_xero_settings(self) -> Optional[dict]:
        """Fetch the single Xero integration settings row."""
        return self._query_one("xero_settings", {})

    def update_xero_settings(self, settings_id: str, data: dict) -> dict:
        """Update Xero settings (tokens, tenant, connection flag)."""
        data["updated_at"] = _now()
        return self._update("xero_settings", data, {"id": settings_id})

    # =========================================================================
    # CLAIM OPERATIONS
    # =========================================================================

    def get_claim(self, claim_id: str, with_expenses: bool = True) -> Optional[dict]:
        """Fetch a claim, optionally with its expenses embedded."""
        params = {"id": f"eq.{claim_id}"}
        if with_expenses:
            params["select"] = CLAIM_WITH_EXPENSES_SELECT
        return self._query_one("expense_claims", params)

    def create_claim(self, data: dict) -> dict:
        return self._insert("expense_claims", data)

    def update_claim(self, claim_id: str, data: dict) -> dict:
        """Update claim fields."""
        data["updated_at"] = _now()
        return self._update("expense_claims", data, {"id": claim_id})

    def mark_claim_synced(self, claim_id: str, xero_bill_id: str) -> dict:
        """Record a successful Xero bill sync on the claim."""
        return self.update_claim(claim_id, {
            "xero_sync_status": XeroSyncStatus.SYNCED.value,
            "xero_bill_id": xero_bill_id,
            "xero_synced_at": _now(),
            "xero_sync_error": None,
        })

    def mark_claim_sync_failed(self, claim_id: str, error: str) -> dict:
        """Record a failed Xero bill sync on the claim."""
        return self.update_claim(claim_id, {
            "xero_sync_status": XeroSyncStatus.FAILED.value,
            "xero_sync_error": error,
        })

    # =========================================================================
    # EXPENSE OPERATIONS
    # =========================================================================

    def get_expense(self, expense_id: str) -> Optional[dict]:
        return self._query_one("expenses", {"id": f"eq.{expense_id}"})

    def create_expense(self, data: dict) -> dict:
        return self._insert("expenses", data)

    def update_expense(self, expense_id: str, data: dict) -> dict:
        data["updated_at"] = _now()
        return self._update("expenses", data, {"id": expense_id})

    def delete_expense(self, expense_id: str) -> None:
        self._delete("expenses", {"id": expense_id})

    def get_category(self, category_id: str) -> Optional[dict]:
        return self._query_one("expense_categories", {"id": f"eq.{category_id}"})

    def get_mileage_rates(self, on_date: date) -> list[dict]:
        """Mileage rates in effect on a date."""
        day = on_date.isoformat()
        return self._query("mileage_rates", {
            "effective_from": f"lte.{day}",
            "or": f"(effective_to.is.null,effective_to.gte.{day})",
        })

    def upsert_mileage_expense(self, data: dict) -> dict:
        """Create or replace the mileage row for an expense."""
        return self._upsert("mileage_expenses", data, on_conflict="expense_id")

    def delete_mileage_expense(self, expense_id: str) -> None:
        self._delete("mileage_expenses", {"expense_id": expense_id})

    # =========================================================================
    # RECEIPT STORAGE
    # =========================================================================

    def upload_receipt(self, path: str, content: bytes, content_type: str) -> str:
        """Upload a receipt to the receipts bucket and return its public URL."""
        response = self._client.post(
            _storage_url(f"object/{RECEIPTS_BUCKET}/{path}"),
            content=content,
            headers={"Content-Type": content_type},
        )
        response.raise_for_status()
        return _storage_url(f"object/public/{RECEIPTS_BUCKET}/{path}")

    # =========================================================================
    # PROFILE OPERATIONS
    # =========================================================================

    def get_profile(self, user_id: str) -> Optional[dict]:
        return self._query_one("profiles", {"id": f"eq.{user_id}"})

    def get_profiles_for_organization(self, organization_id: str) -> list[dict]:
        return self._query("profiles", {
            "organization_id": f"eq.{organization_id}",
            "select": "id,email,microsoft_user_id",
        })

    def create_profile(self, data: dict) -> dict:
        return self._insert("profiles", data)

    def update_profile(self, user_id: str, data: dict) -> dict:
        data["updated_at"] = _now()
        return self._update("profiles", data, {"id": user_id})

    def delete_profile(self, user_id: str) -> None:
        self._delete("profiles", {"id": user_id})

    def upsert_approver(self, user_id: str) -> dict:
        """Ensure an active approvers row exists for the user."""
        return self._upsert("approvers", {"user_id": user_id, "is_active": True}, on_conflict="user_id")

    def is_active_approver(self, user_id: str) -> bool:
        row = self._query_one("approvers", {"user_id": f"eq.{user_id}", "is_active": "eq.true"})
        return row is not None

    # =========================================================================
    # MICROSOFT 365 DIRECTORY SYNC
    # =========================================================================

    def get_tenant_config(self, organization_id: str) -> Optional[dict]:
        """Enabled Microsoft tenant configuration for an organization."""
        return self._query_one("microsoft_tenant_config", {
            "organization_id": f"eq.{organization_id}",
            "is_enabled": "eq.true",
        })

    def get_enabled_tenant_configs(self) -> list[dict]:
        return self._query("microsoft_tenant_config", {"is_enabled": "eq.true"})

    def update_tenant_config(self, config_id: str, data: dict) -> dict:
        data["updated_at"] = _now()
        return self._update("microsoft_tenant_config", data, {"id": config_id})

    def get_group_mappings(self, organization_id: str) -> list[dict]:
        """Active Azure AD group to application role mappings."""
        return self._query("azure_group_mappings", {
            "organization_id": f"eq.{organization_id}",
            "is_active": "eq.true",
        })

    def create_sync_log(self, organization_id: str, sync_type: str) -> dict:
        """Open a user_sync_log row in 'running' state."""
        return self._insert("user_sync_log", {
            "organization_id": organization_id,
            "sync_type": sync_type,
            "status": UserSyncStatus.RUNNING.value,
            "users_created": 0,
            "users_updated": 0,
            "users_deactivated": 0,
        })

    def update_sync_log(self, log_id: str, data: dict) -> dict:
        return self._update("user_sync_log", data, {"id": log_id})

    # =========================================================================
    # EMAIL TEMPLATES
    # =========================================================================

    def get_email_template(self, template_type: str) -> Optional[dict]:
        return self._query_one("email_templates", {
            "template_type": f"eq.{template_type}",
            "select": "subject,body",
        })

    def log_email(self, data: dict) -> dict:
        return self._insert("email_logs", data)

    # =========================================================================
    # AUTH (GoTrue) OPERATIONS
    # =========================================================================

    def get_user_for_token(self, access_token: str) -> Optional[dict]:
        """Resolve the Supabase Auth user behind a caller's JWT."""
        response = self._client.get(
            _auth_url("user"),
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code != 200:
            logger.info(f"Token rejected by Supabase Auth: {response.status_code}")
            return None
        return response.json()

    def create_auth_user(self, email: str, full_name: str) -> dict:
        """Create a confirmed auth user. Returns the user object."""
        response = self._client.post(_auth_url("admin/users"), json={
            "email": email,
            "email_confirm": True,
            "user_metadata": {"full_name": full_name},
        })
        if response.status_code not in (200, 201):
            raise SupabaseAuthError.from_response(response)
        user = response.json()
        logger.info(f"Created auth user {user.get('id')}")
        return user

    def delete_auth_user(self, user_id: str) -> None:
        response = self._client.delete(_auth_url(f"admin/users/{user_id}"))
        if response.status_code not in (200, 204):
            raise SupabaseAuthError.from_response(response)


class SupabaseAuthError(Exception):
    """Raised when the Supabase Auth admin API returns an error."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    @classmethod
    def from_response(cls, response: httpx.Response) -> "SupabaseAuthError":
        message = response.text
        try:
            body = response.json()
            if isinstance(body, dict):
                message = body.get("msg") or body.get("message") or body.get("error_description") or message
        except ValueError:
            pass
        return cls(message, status_code=response.status_code, response_body=response.text)
