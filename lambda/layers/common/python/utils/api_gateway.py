"""
API Gateway Helpers
===================

Request parsing and CORS-enabled responses shared by the
HTTP-triggered functions.
"""

import json
from typing import Optional

CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}


class BadRequestError(Exception):
    """Raised for malformed or incomplete requests (HTTP 400)."""
    pass


class NotFoundError(Exception):
    """Raised when a referenced row does not exist (HTTP 404)."""
    pass


def get_http_method(event: dict) -> str:
    """HTTP method for REST (v1) and HTTP (v2) API events."""
    method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    return method.upper()



def get_header(event: dict, name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    for key, value in (event.get("headers") or {}).items():
        if key.lower() == name.lower():
            return value
    return None


def get_bearer_token(event: dict) -> Optional[str]:
    auth = get_header(event, "Authorization") or ""
    if not auth.startswith("Bearer "):
        return None
    return auth[len("Bearer "):].strip() or None


def parse_request_body(event: dict) -> dict:
    """Parse request body from API Gateway event."""
    body = event.get("body") or "{}"
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            raise BadRequestError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise BadRequestError("Request body must be a JSON object")
    return body


def cors_preflight_response() -> dict:
    """Handle CORS preflight OPTIONS request."""
    return {
        "statusCode": 200,
        "headers": CORS_HEADERS,
        "body": ""
    }


def success_response(data: dict) -> dict:
    """Create success API Gateway response."""
    return {
        "statusCode": 200,
        "headers": CORS_HEADERS,
        "body": json.dumps(data)
    }


def error_response(status_code: int, message: str) -> dict:
    """Create error API Gateway response."""
    return {
        "statusCode": status_code,
        "headers": CORS_HEADERS,
        "body": json.dumps({"success": False, "error": message})
    }
