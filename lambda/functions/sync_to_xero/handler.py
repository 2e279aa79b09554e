"""
Sync to Xero Lambda Handler
===========================

Pushes approved expense claims to Xero as draft bills.

Claims are processed one after another. A failing claim is marked
'failed' with the error text and does not stop the rest of the batch.
"""

from typing import Optional

import httpx
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from models import BillSyncReport, ClaimStatus, ClaimSyncResult, ExpenseClaim
from utils.api_gateway import (
    BadRequestError,
    cors_preflight_response,
    error_response,
    get_http_method,
    parse_request_body,
    success_response,
)
from utils.supabase_client import SupabaseClient
from utils.token_manager import TokenRefreshError, XeroTokenManager
from utils.xero_client import XeroClient

logger = Logger()
metrics = Metrics()
tracer = Tracer()

REQUIRED_SETTINGS = ("client_id", "client_secret", "refresh_token", "tenant_id")


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """
    Sync claims, or check the Xero connection.

    Expected payload from the Xero sync queue:
    {
        "claim_ids": ["uuid", ...],
        "test_connection": false,
        "action": "sync" | "list_draft_bills" | "list_tax_rates"
    }
    """
    if get_http_method(event) == "OPTIONS":
        return cors_preflight_response()

    try:
        body = parse_request_body(event)
        supabase = SupabaseClient()

        if body.get("test_connection"):
            check_connection(supabase)
            return success_response({"success": True, "message": "Successfully authenticated with Xero"})

        action = body.get("action", "sync")
        if action == "list_draft_bills":
            return success_response({"success": True, "bills": connect(supabase).get_draft_bills()})
        if action == "list_tax_rates":
            return success_response({"success": True, "tax_rates": connect(supabase).get_tax_rates()})
        if action != "sync":
            raise BadRequestError(f"Unknown action: {action}")

        report = sync_claims(body.get("claim_ids"), supabase)

        metrics.add_metric(name="ClaimsSynced", unit=MetricUnit.Count, value=report.synced_count)
        metrics.add_metric(name="ClaimSyncFailures", unit=MetricUnit.Count, value=report.failed_count)
        logger.info(report.to_summary())

        return success_response(report.to_dict())

    except BadRequestError as e:
        return error_response(400, str(e))
    except Exception as e:
        logger.exception(f"Error syncing to Xero: {e}")
        return error_response(500, str(e))


def connect(
    supabase: SupabaseClient,
    http_client: Optional[httpx.Client] = None,
    force_refresh: bool = False
) -> XeroClient:
    """
    Build an authenticated Xero client from the stored settings.

    force_refresh skips the stored access token so Xero has to
    accept the client credentials and refresh token.

    Raises:
        ValueError: If the integration is not fully configured
        TokenRefreshError: If Xero rejects the stored credentials
    """
    settings = supabase.get_xero_settings()
    if not settings or not all(settings.get(key) for key in REQUIRED_SETTINGS):
        raise ValueError(
            "Xero integration not fully configured. Please ensure Client ID, "
            "Client Secret, Refresh Token, and Tenant ID are set."
        )

    token_manager = XeroTokenManager(supabase, settings=settings, http_client=http_client)
    try:
        token_manager.get_access_token(force_refresh=force_refresh)
    except TokenRefreshError as e:
        raise TokenRefreshError(f"Failed to authenticate with Xero: {e}") from e

    return XeroClient(token_manager, settings["tenant_id"], http_client=http_client)


def check_connection(supabase: SupabaseClient, http_client: Optional[httpx.Client] = None) -> None:
    """Authenticate against Xero with a fresh token request."""
    connect(supabase, http_client=http_client, force_refresh=True)
    logger.info("Xero connection test succeeded")


@tracer.capture_method
def sync_claims(
    claim_ids: Optional[list],
    supabase: SupabaseClient,
    http_client: Optional[httpx.Client] = None
) -> BillSyncReport:
    """Sync each claim in order and collect the per-claim results."""
    if not claim_ids or not isinstance(claim_ids, list):
        raise BadRequestError("No claim IDs provided")

    xero = connect(supabase, http_client=http_client)

    report = BillSyncReport()
    for claim_id in claim_ids:
        report.add(sync_claim(claim_id, supabase, xero))
    return report


def sync_claim(claim_id: str, supabase: SupabaseClient, xero: XeroClient) -> ClaimSyncResult:
    """
    Create the draft bill for one claim and record the outcome on the claim row.
    """
    result = ClaimSyncResult(claim_id=claim_id)

    try:
        row = supabase.get_claim(claim_id)
        if not row:
            raise ValueError(f"Claim {claim_id} not found")

        claim = ExpenseClaim.from_dict(row)
        if claim.status != ClaimStatus.APPROVED:
            raise ValueError(f"Claim {claim_id} is not approved")

        bill = XeroClient.build_draft_bill(claim)
        result.xero_bill_id = xero.create_bill(bill)

        supabase.mark_claim_synced(claim_id, result.xero_bill_id)
        result.success = True

    except Exception as e:
        logger.warning(f"Claim {claim_id} failed to sync: {e}")
        result.success = False
        result.xero_bill_id = None
        result.error = str(e)

        try:
            supabase.mark_claim_sync_failed(claim_id, result.error)
        except Exception as update_error:
            logger.error(f"Failed to update claim sync status: {update_error}")

    return result
