"""
Email Template Rendering
========================

Fills {{placeholder}} tokens in admin-editable email templates.
"""

from datetime import date
from typing import Optional

from models import ExpenseClaim

TEMPLATE_TYPES = ("claim_submitted", "claim_approved", "claim_rejected")

# en-GB short date, e.g. 05/03/2025
DATE_FORMAT = "%d/%m/%Y"


def _format_date(value: Optional[date]) -> str:
    return value.strftime(DATE_FORMAT) if value else ""


def build_placeholders(
    claim: ExpenseClaim,
    recipient_name: Optional[str] = None,
    reviewer_name: Optional[str] = None,
    review_notes: Optional[str] = None
) -> dict[str, str]:
    """Values for every supported placeholder."""
    return {
        "{{claimant_name}}": claim.claimant_name or "",
        "{{claim_description}}": claim.description or "",
        "{{claim_amount}}": f"{claim.total_amount:.2f}",
        "{{claim_start_date}}": _format_date(claim.start_date),
        "{{claim_end_date}}": _format_date(claim.end_date),
        "{{claim_status}}": claim.status.value,
        "{{recipient_name}}": recipient_name or "there",
        "{{reviewer_name}}": reviewer_name or "",
        "{{review_notes}}": review_notes or "",
    }


def render(text: str, placeholders: dict[str, str]) -> str:
    """Replace every occurrence of each placeholder. Unknown tokens are left alone."""
    for placeholder, value in placeholders.items():
        text = text.replace(placeholder, value)
    return text
