"""
Claim Workflow Lambda Handler
=============================

Server-side claim lifecycle used by the web console and mobile app:

    create_claim    new draft claim
    save_expense    add/edit an expense on a draft claim (mileage priced here)
    delete_expense  remove an expense from a draft claim
    submit_claim    draft -> submitted
    review_claim    submitted -> approved | rejected

Status checks are the only rules enforced; everything else is
plain row writes.
"""

import base64
import binascii
import math
import time
from datetime import date, datetime, timezone
from typing import Optional

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from models import (
    MILEAGE_CATEGORY_NAME,
    ChargerType,
    ClaimStatus,
    ExpenseClaim,
    MileageExpense,
    MileageRate,
    Profile,
)
from models.expense import parse_date
from utils.api_gateway import (
    BadRequestError,
    NotFoundError,
    cors_preflight_response,
    error_response,
    get_bearer_token,
    get_http_method,
    parse_request_body,
    success_response,
)
from utils.mileage import calculate_mileage_amount, net_cost, select_mileage_rate
from utils.supabase_client import SupabaseClient

logger = Logger()
metrics = Metrics()
tracer = Tracer()


class ClaimStateError(Exception):
    """Raised when a claim is not in the status an action requires (HTTP 409)."""
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """
    Dispatch a workflow action for the authenticated caller.

    Expected payload:
    {
        "action": "create_claim" | "save_expense" | "delete_expense"
                  | "submit_claim" | "review_claim",
        ...action fields
    }
    """
    if get_http_method(event) == "OPTIONS":
        return cors_preflight_response()

    try:
        supabase = SupabaseClient()
        caller = _authenticate(get_bearer_token(event), supabase)
        if caller is None:
            return error_response(401, "Unauthorized")

        body = parse_request_body(event)
        action = body.get("action")
        operation = ACTIONS.get(action)
        if operation is None:
            raise BadRequestError(f"Unknown action: {action}")

        result = operation(body, caller, supabase)
        metrics.add_metric(name=f"Claim_{action}", unit=MetricUnit.Count, value=1)
        return success_response(result)

    except BadRequestError as e:
        return error_response(400, str(e))
    except PermissionError as e:
        return error_response(403, str(e))
    except NotFoundError as e:
        return error_response(404, str(e))
    except ClaimStateError as e:
        return error_response(409, str(e))
    except Exception as e:
        logger.exception(f"Error in claim workflow: {e}")
        return error_response(500, str(e))


def _authenticate(access_token: Optional[str], supabase: SupabaseClient) -> Optional[Profile]:
    if not access_token:
        return None
    user = supabase.get_user_for_token(access_token)
    if not user:
        return None
    row = supabase.get_profile(user["id"])
    return Profile.from_dict(row) if row else None


def _load_claim(claim_id: Optional[str], supabase: SupabaseClient, with_expenses: bool = False) -> ExpenseClaim:
    if not claim_id:
        raise BadRequestError("claim_id is required")
    row = supabase.get_claim(claim_id, with_expenses=with_expenses)
    if not row:
        raise NotFoundError(f"Claim {claim_id} not found")
    return ExpenseClaim.from_dict(row)


def _require_owner_or_admin(claim: ExpenseClaim, caller: Profile) -> None:
    if claim.user_id != caller.id and not caller.is_admin:
        raise PermissionError("You can only change your own claims")


def _require_editable(claim: ExpenseClaim) -> None:
    if not claim.is_editable:
        raise ClaimStateError(f"Claim {claim.id} is {claim.status.value}; only draft claims can be edited")


# =============================================================================
# CLAIMS
# =============================================================================

@tracer.capture_method
def create_claim(body: dict, caller: Profile, supabase: SupabaseClient) -> dict:
    """Create a draft claim for the caller."""
    start_date = parse_date(body.get("start_date"))
    end_date = parse_date(body.get("end_date"))
    if not start_date or not end_date:
        raise BadRequestError("start_date and end_date are required (YYYY-MM-DD)")
    if end_date < start_date:
        raise BadRequestError("end_date must not be before start_date")

    is_chargeable = body.get("is_chargeable")
    if is_chargeable is None:
        is_chargeable = False
    if not isinstance(is_chargeable, bool):
        raise BadRequestError("is_chargeable must be true or false")

    row = supabase.create_claim({
        "user_id": caller.id,
        "claimant_name": body.get("claimant_name") or caller.full_name,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "description": body.get("description") or "",
        "is_chargeable": is_chargeable,
        "client_id": body.get("client_id") if is_chargeable else None,
        "status": ClaimStatus.DRAFT.value,
    })

    logger.info(f"Created draft claim {row.get('id')} for {caller.id}")
    return {"success": True, "claim": row}


@tracer.capture_method
def submit_claim(body: dict, caller: Profile, supabase: SupabaseClient) -> dict:
    """Submit a draft claim for approval."""
    claim = _load_claim(body.get("claim_id"), supabase)
    _require_owner_or_admin(claim, caller)
    if claim.status != ClaimStatus.DRAFT:
        raise ClaimStateError(f"Claim {claim.id} is {claim.status.value}; only draft claims can be submitted")

    row = supabase.update_claim(claim.id, {
        "status": ClaimStatus.SUBMITTED.value,
        "submitted_at": _now(),
    })

    logger.info(f"Claim {claim.id} submitted")
    return {"success": True, "claim": row}


def _can_review(caller: Profile, supabase: SupabaseClient) -> bool:
    return caller.is_admin or supabase.is_active_approver(caller.id)


@tracer.capture_method
def review_claim(body: dict, caller: Profile, supabase: SupabaseClient) -> dict:
    """Approve or reject a submitted claim."""
    if not _can_review(caller, supabase):
        raise PermissionError("Only approvers can review claims")

    if not isinstance(body.get("approved"), bool):
        raise BadRequestError("approved must be true or false")

    claim = _load_claim(body.get("claim_id"), supabase)
    if claim.status != ClaimStatus.SUBMITTED:
        raise ClaimStateError(f"Claim {claim.id} is {claim.status.value}; only submitted claims can be reviewed")

    status = ClaimStatus.APPROVED if body["approved"] else ClaimStatus.REJECTED
    row = supabase.update_claim(claim.id, {
        "status": status.value,
        "reviewed_by": caller.id,
        "reviewed_at": _now(),
        "review_notes": body.get("review_notes") or "",
    })

    logger.info(f"Claim {claim.id} {status.value} by {caller.id}")
    return {"success": True, "claim": row}


# =============================================================================
# EXPENSES
# =============================================================================

def _parse_amount(value, field: str) -> float:
    """A finite number from a JSON value; missing or empty means zero."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise BadRequestError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise BadRequestError(f"{field} must be a number")
    if not math.isfinite(number):
        raise BadRequestError(f"{field} must be a finite number")
    return number


def _is_mileage_category(category: Optional[dict]) -> bool:
    return bool(category) and (category.get("name") or "").strip().lower() == MILEAGE_CATEGORY_NAME


def _upload_receipt(receipt: dict, user_id: str, supabase: SupabaseClient) -> str:
    """Store a base64 receipt under <user_id>/<millis>.<ext> and return its public URL."""
    filename = receipt.get("filename") or "receipt.jpg"
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "jpg"
    try:
        content = base64.b64decode(receipt.get("content_base64") or "", validate=True)
    except (binascii.Error, ValueError):
        raise BadRequestError("receipt.content_base64 is not valid base64")
    if not content:
        raise BadRequestError("receipt.content_base64 is empty")

    path = f"{user_id}/{int(time.time() * 1000)}.{ext}"
    return supabase.upload_receipt(path, content, receipt.get("content_type") or "application/octet-stream")


def _price_mileage(
    details: dict,
    claimant: Profile,
    supabase: SupabaseClient,
    on: date
) -> tuple[float, MileageRate]:
    """Before-VAT amount and the rate applied for a mileage journey."""
    distance = _parse_amount(details.get("distance_miles"), "mileage.distance_miles")
    if distance <= 0:
        raise BadRequestError("mileage.distance_miles must be greater than zero")

    charger_type = None
    if claimant.is_electric:
        try:
            charger_type = ChargerType(details.get("charger_type") or claimant.charger_type or ChargerType.HOME)
        except ValueError:
            raise BadRequestError(f"Unknown charger_type: {details.get('charger_type')}")

    rates = [MileageRate.from_dict(r) for r in supabase.get_mileage_rates(on)]
    rate = select_mileage_rate(rates, claimant.vehicle_type, charger_type, on)
    if rate is None:
        raise BadRequestError(f"No mileage rate configured for {claimant.vehicle_type.value} vehicles")

    return calculate_mileage_amount(distance, rate), rate


@tracer.capture_method
def save_expense(body: dict, caller: Profile, supabase: SupabaseClient, today: Optional[date] = None) -> dict:
    """
    Create or update an expense on a draft claim.

    For the mileage category the before-VAT amount is priced from
    the claimant's vehicle and the rate in effect today; VAT is zero.
    """
    today = today or date.today()
    claim = _load_claim(body.get("claim_id"), supabase)
    _require_owner_or_admin(claim, caller)
    _require_editable(claim)

    title = (body.get("title") or "").strip()
    if not title:
        raise BadRequestError("title is required")

    expense_date = parse_date(body.get("expense_date")) or today

    category_id = body.get("category_id") or None
    category = supabase.get_category(category_id) if category_id else None
    if category_id and not category:
        raise NotFoundError(f"Category {category_id} not found")

    amount_before_vat = _parse_amount(body.get("amount_before_vat"), "amount_before_vat")
    vat_amount = _parse_amount(body.get("vat_amount"), "vat_amount")
    if amount_before_vat < 0 or vat_amount < 0:
        raise BadRequestError("Amounts cannot be negative")

    mileage = None
    if _is_mileage_category(category):
        details = body.get("mileage") or {}
        owner_row = supabase.get_profile(claim.user_id) if claim.user_id != caller.id else None
        claimant = Profile.from_dict(owner_row) if owner_row else caller

        amount_before_vat, rate = _price_mileage(details, claimant, supabase, today)
        vat_amount = 0.0
        mileage = MileageExpense(
            expense_id="",
            start_location=details.get("start_location") or "",
            end_location=details.get("end_location") or "",
            distance_miles=float(details["distance_miles"]),
            vehicle_type=claimant.vehicle_type,
            charger_type=rate.charger_type,
            rate_applied=rate.rate_per_mile,
        )

    data = {
        "user_id": claim.user_id,
        "claim_id": claim.id,
        "title": title,
        "description": body.get("description") or "",
        "category_id": category_id,
        "amount_before_vat": amount_before_vat,
        "vat_amount": vat_amount,
        "amount": net_cost(amount_before_vat, vat_amount),
        "expense_date": expense_date.isoformat(),
        "notes": body.get("notes") or "",
    }

    if body.get("receipt"):
        data["receipt_url"] = _upload_receipt(body["receipt"], claim.user_id, supabase)
    elif "receipt_url" in body:
        data["receipt_url"] = body["receipt_url"]

    expense_id = body.get("expense_id")
    if expense_id:
        existing = supabase.get_expense(expense_id)
        if not existing or existing.get("claim_id") != claim.id:
            raise NotFoundError(f"Expense {expense_id} not found on claim {claim.id}")
        row = supabase.update_expense(expense_id, data)
        row = row or {**existing, **data}
        if mileage is None:
            supabase.delete_mileage_expense(expense_id)
    else:
        row = supabase.create_expense(data)

    if mileage is not None:
        mileage.expense_id = row.get("id") or expense_id
        supabase.upsert_mileage_expense(mileage.to_dict())

    logger.info(f"Saved expense {row.get('id')} on claim {claim.id}: {data['amount']:.2f}")
    return {"success": True, "expense": row}


@tracer.capture_method
def delete_expense(body: dict, caller: Profile, supabase: SupabaseClient) -> dict:
    """Delete an expense from a draft claim."""
    expense_id = body.get("expense_id")
    if not expense_id:
        raise BadRequestError("expense_id is required")

    expense = supabase.get_expense(expense_id)
    if not expense:
        raise NotFoundError(f"Expense {expense_id} not found")

    if expense.get("claim_id"):
        claim = _load_claim(expense["claim_id"], supabase)
        _require_owner_or_admin(claim, caller)
        _require_editable(claim)
    elif expense.get("user_id") != caller.id and not caller.is_admin:
        raise PermissionError("You can only change your own expenses")

    supabase.delete_expense(expense_id)
    logger.info(f"Deleted expense {expense_id}")
    return {"success": True}


ACTIONS = {
    "create_claim": create_claim,
    "save_expense": save_expense,
    "delete_expense": delete_expense,
    "submit_claim": submit_claim,
    "review_claim": review_claim,
}
