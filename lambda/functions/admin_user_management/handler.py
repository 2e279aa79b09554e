"""
Admin User Management Lambda Handler
====================================

Admin-only endpoint for creating and deleting application users.
A user is a Supabase Auth account plus a row in profiles sharing its id.

Routes:
    POST   /admin-users              create user
    DELETE /admin-users/{user_id}    delete user
"""

import httpx
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from models import ChargerType, Profile, UserRole, VehicleType
from utils.api_gateway import (
    BadRequestError,
    cors_preflight_response,
    error_response,
    get_bearer_token,
    get_http_method,
    parse_request_body,
    success_response,
)
from utils.supabase_client import SupabaseAuthError, SupabaseClient, describe_error

logger = Logger()
metrics = Metrics()
tracer = Tracer()


class UnauthorizedError(Exception):
    pass


class ForbiddenError(Exception):
    pass


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """
    Create or delete a user on behalf of an admin.

    Expected POST payload:
    {
        "email": "new.user@example.com",
        "full_name": "New User",
        "role": "staff" | "admin",
        "vehicle_type": "standard" | "electric",
        "charger_type": "home" | "public" | null
    }
    """
    method = get_http_method(event)
    if method == "OPTIONS":
        return cors_preflight_response()

    try:
        supabase = SupabaseClient()
        caller = authorize_admin(get_bearer_token(event), supabase)

        user_id = (event.get("pathParameters") or {}).get("user_id")

        if method == "POST" and not user_id:
            result = create_user(parse_request_body(event), supabase)
            metrics.add_metric(name="UsersCreated", unit=MetricUnit.Count, value=1)
            return success_response(result)

        if method == "DELETE" and user_id:
            if user_id == caller.id:
                raise BadRequestError("You cannot delete your own account")
            result = delete_user(user_id, supabase)
            metrics.add_metric(name="UsersDeleted", unit=MetricUnit.Count, value=1)
            return success_response(result)

        return error_response(405, "Method not allowed")

    except UnauthorizedError as e:
        return error_response(401, str(e))
    except ForbiddenError as e:
        return error_response(403, str(e))
    except BadRequestError as e:
        return error_response(400, str(e))
    except Exception as e:
        logger.exception(f"Error in admin user management: {e}")
        return error_response(500, str(e))


def authorize_admin(access_token: str, supabase: SupabaseClient) -> Profile:
    """
    Resolve the caller and require the admin role.

    Raises:
        UnauthorizedError: Missing or invalid token
        ForbiddenError: Caller is not an admin
    """
    if not access_token:
        raise UnauthorizedError("Unauthorized")

    user = supabase.get_user_for_token(access_token)
    if not user or not user.get("id"):
        raise UnauthorizedError("Unauthorized")

    row = supabase.get_profile(user["id"])
    profile = Profile.from_dict(row) if row else None
    if profile is None or not profile.is_admin:
        logger.warning(f"Non-admin user {user['id']} attempted user management")
        raise ForbiddenError("Forbidden: Admin access required")

    return profile


@tracer.capture_method
def create_user(body: dict, supabase: SupabaseClient) -> dict:
    """
    Create the auth user, then its profile.

    If the profile insert fails the auth user is deleted again so no
    half-created account is left behind.
    """
    email = body.get("email")
    full_name = body.get("full_name")
    if not email or not full_name:
        raise BadRequestError("email and full_name are required")

    try:
        role = UserRole(body.get("role") or "staff")
        vehicle_type = VehicleType(body.get("vehicle_type") or "standard")
        charger_type = ChargerType(body["charger_type"]) if body.get("charger_type") else None
    except ValueError as e:
        raise BadRequestError(str(e))

    try:
        auth_user = supabase.create_auth_user(email, full_name)
    except SupabaseAuthError as e:
        raise BadRequestError(str(e))

    try:
        supabase.create_profile({
            "id": auth_user["id"],
            "email": email,
            "full_name": full_name,
            "role": role.value,
            "vehicle_type": vehicle_type.value,
            "charger_type": charger_type.value if charger_type else None,
        })
    except httpx.HTTPStatusError as e:
        logger.warning(f"Profile insert failed, removing auth user {auth_user['id']}")
        supabase.delete_auth_user(auth_user["id"])
        raise BadRequestError(describe_error(e))

    logger.info(f"Created user {auth_user['id']} ({role.value})")
    return {"success": True, "user": auth_user}


@tracer.capture_method
def delete_user(user_id: str, supabase: SupabaseClient) -> dict:
    """Delete the profile, then the auth user."""
    try:
        supabase.delete_profile(user_id)
    except httpx.HTTPStatusError as e:
        raise BadRequestError(describe_error(e))

    try:
        supabase.delete_auth_user(user_id)
    except SupabaseAuthError as e:
        logger.warning(f"Could not delete auth user {user_id}: {e}")

    logger.info(f"Deleted user {user_id}")
    return {"success": True}
