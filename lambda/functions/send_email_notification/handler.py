"""
Email Notification Lambda Handler
=================================

Renders a claim notification from its admin-editable template and
records it in email_logs. No mail is actually delivered.
"""

from typing import Optional

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from models import ExpenseClaim
from utils.api_gateway import (
    BadRequestError,
    NotFoundError,
    cors_preflight_response,
    error_response,
    get_http_method,
    parse_request_body,
    success_response,
)
from utils.supabase_client import SupabaseClient
from utils.templates import TEMPLATE_TYPES, build_placeholders, render

logger = Logger()
metrics = Metrics()
tracer = Tracer()


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """
    Render and log a claim notification.

    Expected payload:
    {
        "template_type": "claim_submitted" | "claim_approved" | "claim_rejected",
        "claim_id": "uuid",
        "recipient_email": "someone@example.com",
        "recipient_name": "optional",
        "reviewer_name": "optional",
        "review_notes": "optional"
    }
    """
    if get_http_method(event) == "OPTIONS":
        return cors_preflight_response()

    try:
        body = parse_request_body(event)

        template_type = body.get("template_type")
        if template_type not in TEMPLATE_TYPES:
            raise BadRequestError(f"Unsupported template_type: {template_type}")
        for field in ("claim_id", "recipient_email"):
            if not body.get(field):
                raise BadRequestError(f"{field} is required")

        email = send_notification(
            supabase=SupabaseClient(),
            template_type=template_type,
            claim_id=body["claim_id"],
            recipient_email=body["recipient_email"],
            recipient_name=body.get("recipient_name"),
            reviewer_name=body.get("reviewer_name"),
            review_notes=body.get("review_notes"),
        )

        metrics.add_metric(name="NotificationsLogged", unit=MetricUnit.Count, value=1)
        return success_response({
            "success": True,
            "message": "Email notification logged successfully",
            "subject": email["subject"],
        })

    except BadRequestError as e:
        return error_response(400, str(e))
    except NotFoundError as e:
        return error_response(404, str(e))
    except Exception as e:
        logger.exception(f"Error sending email notification: {e}")
        return error_response(500, str(e))


@tracer.capture_method
def send_notification(
    supabase: SupabaseClient,
    template_type: str,
    claim_id: str,
    recipient_email: str,
    recipient_name: Optional[str] = None,
    reviewer_name: Optional[str] = None,
    review_notes: Optional[str] = None
) -> dict:
    """
    Fill the template for a claim and log the result.

    Returns:
        The logged email (recipient, subject, body)

    Raises:
        NotFoundError: If the template or claim does not exist
    """
    template = supabase.get_email_template(template_type)
    if not template:
        raise NotFoundError(f"Template not found: {template_type}")

    row = supabase.get_claim(claim_id)
    if not row:
        raise NotFoundError("Claim not found")
    claim = ExpenseClaim.from_dict(row)

    placeholders = build_placeholders(claim, recipient_name, reviewer_name, review_notes)
    email = {
        "recipient_email": recipient_email,
        "template_type": template_type,
        "subject": render(template.get("subject") or "", placeholders),
        "body": render(template.get("body") or "", placeholders),
        "claim_id": claim_id,
        "status": "sent",
    }

    logger.info(
        f"Email would be sent to: {recipient_email}",
        extra={"subject": email["subject"], "template_type": template_type},
    )

    try:
        supabase.log_email(email)
    except Exception as e:
        logger.error(f"Error logging email: {e}")

    return email
