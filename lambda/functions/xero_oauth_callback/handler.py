"""
Xero OAuth Callback Lambda Handler
==================================

Completes the Xero "Connect" flow started from the admin settings
screen: exchanges the authorization code for tokens, picks the first
authorised organisation and stores everything on xero_settings.
"""

from typing import Optional

import httpx
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from utils.api_gateway import (
    BadRequestError,
    cors_preflight_response,
    error_response,
    get_http_method,
    parse_request_body,
    success_response,
)
from utils.supabase_client import SupabaseClient
from utils.token_manager import XeroTokenManager
from utils.xero_client import XeroAPIError, get_connections

logger = Logger()
metrics = Metrics()
tracer = Tracer()


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """
    Exchange a Xero authorization code.

    Expected payload from the web app callback page:
    {
        "code": "authorization code from Xero",
        "redirect_uri": "https://app.example.com/xero/callback"
    }
    """
    if get_http_method(event) == "OPTIONS":
        return cors_preflight_response()

    try:
        body = parse_request_body(event)
        code = body.get("code")
        redirect_uri = body.get("redirect_uri")

        if not code:
            raise BadRequestError("Authorization code is required")
        if not redirect_uri:
            raise BadRequestError("Redirect URI is required")

        logger.info("Received Xero authorization code", extra={"redirect_uri": redirect_uri})

        result = connect_xero(code, redirect_uri, SupabaseClient())
        metrics.add_metric(name="XeroConnected", unit=MetricUnit.Count, value=1)
        return success_response(result)

    except BadRequestError as e:
        return error_response(400, str(e))
    except Exception as e:
        logger.exception(f"Error in Xero OAuth callback: {e}")
        metrics.add_metric(name="XeroConnectFailures", unit=MetricUnit.Count, value=1)
        return error_response(500, str(e))


@tracer.capture_method
def connect_xero(
    code: str,
    redirect_uri: str,
    supabase: SupabaseClient,
    http_client: Optional[httpx.Client] = None
) -> dict:
    """
    Exchange the code, resolve the tenant and persist the connection.

    Nothing is written until both the token exchange and the
    connections lookup have succeeded.
    """
    token_manager = XeroTokenManager(supabase, http_client=http_client)
    tokens = token_manager.exchange_authorization_code(code, redirect_uri)

    connections = get_connections(tokens["access_token"], http_client=http_client)
    if not connections:
        raise XeroAPIError("No Xero organizations found")

    tenant = connections[0]
    tenant_id = tenant["tenantId"]
    logger.info(f"Using tenant {tenant_id} ({tenant.get('tenantName')})")

    token_manager.store_tokens(tokens, tenant_id=tenant_id, is_connected=True)
    logger.info("Successfully saved Xero credentials")

    return {
        "success": True,
        "tenant_id": tenant_id,
        "tenant_name": tenant.get("tenantName"),
    }
