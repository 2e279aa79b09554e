"""
Xero Accounting API Client
==========================

Handles Xero API operations: draft bill creation for approved
claims, tenant connection lookup and a few diagnostic reads.
"""

import json
import os
from typing import Optional
from datetime import date

import httpx
from aws_lambda_powertools import Logger

from models import Expense, ExpenseClaim
from .token_manager import XeroTokenManager

logger = Logger()

# Xero API configuration
XERO_API_URL = "https://api.xero.com"
XERO_ACCOUNTING_URL = f"{XERO_API_URL}/api.xro/2.0"
XERO_CURRENCY_CODE = os.environ.get("XERO_CURRENCY_CODE", "GBP")

# Fallback expense account when a category has no code
DEFAULT_ACCOUNT_CODE = "400"

# UK tax types
TAX_TYPE_VAT = "INPUT2"
TAX_TYPE_NONE = "NONE"


def get_connections(access_token: str, http_client: Optional[httpx.Client] = None) -> list[dict]:
    """
    List the Xero organisations (tenants) an access token is authorised for.

    Raises:
        XeroAPIError: If the connections endpoint fails
    """
    client = http_client or httpx.Client(timeout=30.0)
    response = client.get(
        f"{XERO_API_URL}/connections",
        headers={
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        },
    )

    if response.status_code != 200:
        logger.error(f"Connections fetch failed: {response.status_code} - {response.text}")
        raise XeroAPIError(
            "Failed to fetch Xero connections",
            status_code=response.status_code,
            response_body=response.text
        )

    connections = response.json()
    logger.info(f"Connections received: {len(connections)}")
    return connections


class XeroClient:
    """
    Xero Accounting API client for one tenant with automatic token refresh.

    Handles:
    - Draft bill (ACCPAY invoice) creation
    - Draft bill and tax rate listing
    """

    def __init__(
        self,
        token_manager: XeroTokenManager,
        tenant_id: str,
        http_client: Optional[httpx.Client] = None
    ):
        self.token_manager = token_manager
        self.tenant_id = tenant_id
        self._http = http_client or httpx.Client(timeout=60.0)

    def _get_headers(self, force_refresh: bool = False) -> dict:
        """Get headers with current access token."""
        access_token = self.token_manager.get_access_token(force_refresh=force_refresh)
        return {
            "Authorization": f"Bearer {access_token}",
            "xero-tenant-id": self.tenant_id,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        params: Optional[dict] = None
    ) -> dict:
        """
        Make an API request to the Xero Accounting API.

        Handles token refresh on 401 errors.
        """
        url = f"{XERO_ACCOUNTING_URL}/{endpoint}"

        response = self._http.request(
            method=method,
            url=url,
            headers=self._get_headers(),
            json=data,
            params=params
        )

        # Handle token expiry
        if response.status_code == 401:
            logger.info("Received 401, refreshing token and retrying...")
            response = self._http.request(
                method=method,
                url=url,
                headers=self._get_headers(force_refresh=True),
                json=data,
                params=params
            )

        if response.status_code not in (200, 201):
            logger.error(f"Xero API error: {response.status_code} - {response.text}")
            raise XeroAPIError(
                f"Xero API returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                response_body=response.text
            )

        return response.json()

    # =========================================================================
    # BILL OPERATIONS
    # =========================================================================

    def create_bill(self, bill: dict) -> str:
        """
        Create a bill (ACCPAY invoice) in Xero.

        Args:
            bill: Invoice payload, see build_draft_bill

        Returns:
            Xero InvoiceID
        """
        logger.info(f"Xero bill request payload: {json.dumps(bill)}")

        result = self._make_request(
            method="POST",
            endpoint="Invoices",
            data={"Invoices": [bill]}
        )

        invoices = result.get("Invoices") or []
        if not invoices or not invoices[0].get("InvoiceID"):
            raise XeroAPIError("No invoice ID returned from Xero")

        invoice_id = invoices[0]["InvoiceID"]
        logger.info(f"Created Xero bill {invoice_id} ({bill.get('Reference')})")
        return invoice_id

    def get_draft_bills(self) -> list[dict]:
        """List draft bills awaiting approval in Xero."""
        result = self._make_request(
            method="GET",
            endpoint="Invoices",
            params={"where": 'Type=="ACCPAY" AND Status=="DRAFT"'}
        )
        return result.get("Invoices", [])

    def get_tax_rates(self) -> list[dict]:
        """List tax rates configured on the organisation."""
        result = self._make_request(method="GET", endpoint="TaxRates")
        return result.get("TaxRates", [])

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    @staticmethod
    def build_line_item(expense: Expense) -> dict:
        """
        Build a bill line for one expense.

        `amount` already includes VAT, so it is the gross unit amount.
        """
        return {
            "Description": expense.line_description,
            "Quantity": 1,
            "UnitAmount": round(expense.amount, 2),
            "AccountCode": expense.xero_account_code or DEFAULT_ACCOUNT_CODE,
            "TaxType": TAX_TYPE_VAT if expense.has_vat else TAX_TYPE_NONE,
        }

    @staticmethod
    def build_draft_bill(claim: ExpenseClaim, currency_code: str = XERO_CURRENCY_CODE) -> dict:
        """
        Build a DRAFT ACCPAY bill for an approved claim.

        Raises:
            ValueError: If the claim has no expenses
        """
        line_items = [XeroClient.build_line_item(e) for e in claim.expenses]
        if not line_items:
            raise ValueError(f"Claim {claim.id} has no expenses")

        bill_date = claim.start_date or date.today()
        due_date = claim.end_date or bill_date

        return {
            "Type": "ACCPAY",
            "Contact": {"Name": claim.claimant_name or "Unknown"},
            "Date": bill_date.isoformat(),
            "DueDate": due_date.isoformat(),
            "LineItems": line_items,
            "Reference": claim.bill_reference,
            "Status": "DRAFT",
            "CurrencyCode": currency_code,
        }


class XeroAPIError(Exception):
    """Raised when the Xero API returns an error."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
