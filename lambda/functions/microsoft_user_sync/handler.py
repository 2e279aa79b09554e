"""
Microsoft 365 User Sync Lambda Handler
======================================

Pulls users from Microsoft Graph and upserts local profiles.

Invoked two ways:
- API Gateway, from the admin "Sync now" button, for one organization
- EventBridge schedule, for every enabled tenant whose sync interval
  has elapsed
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from models import GroupRole, SyncSource, UserRole, UserSyncResult, UserSyncStatus
from models.expense import parse_datetime
from utils.api_gateway import (
    BadRequestError,
    cors_preflight_response,
    error_response,
    get_http_method,
    parse_request_body,
    success_response,
)
from utils.graph_client import MicrosoftGraphClient
from utils.supabase_client import SupabaseClient, describe_error

logger = Logger()
metrics = Metrics()
tracer = Tracer()

DEFAULT_SYNC_FREQUENCY_MINUTES = 60


class TenantNotConfiguredError(Exception):
    """Raised when an organization has no enabled Microsoft tenant config."""
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """
    Sync directory users.

    Expected payload (API Gateway):
    {
        "organization_id": "uuid",
        "sync_type": "manual"
    }
    """
    if event.get("source") == "aws.events":
        return _handle_schedule()

    if get_http_method(event) == "OPTIONS":
        return cors_preflight_response()

    try:
        body = parse_request_body(event)
        organization_id = body.get("organization_id")
        if not organization_id:
            raise BadRequestError("organization_id is required")

        result = sync_organization(organization_id, body.get("sync_type", "manual"), SupabaseClient())
        _record_metrics(result)
        return success_response(result.to_response())

    except BadRequestError as e:
        return error_response(400, str(e))
    except TenantNotConfiguredError as e:
        return error_response(404, str(e))
    except Exception as e:
        logger.exception(f"Sync error: {e}")
        return error_response(500, str(e))


def _handle_schedule() -> dict:
    """Scheduled entry point (EventBridge)."""
    logger.info("Starting scheduled directory sync")
    try:
        summary = scheduled_sync(SupabaseClient())
        metrics.add_metric(name="TenantsSynced", unit=MetricUnit.Count, value=summary["synced"])
        metrics.add_metric(name="TenantSyncFailures", unit=MetricUnit.Count, value=summary["failed"])
        return {"statusCode": 200, "body": json.dumps(summary)}
    except Exception as e:
        logger.exception(f"Error in scheduled sync: {e}")
        return {"statusCode": 500, "body": json.dumps({"error": str(e)})}


def scheduled_sync(
    supabase: SupabaseClient,
    graph_factory: Callable[[], MicrosoftGraphClient] = MicrosoftGraphClient,
    now: Optional[datetime] = None
) -> dict:
    """Run an incremental sync for every enabled tenant that is due."""
    now = now or _now()
    configs = supabase.get_enabled_tenant_configs()

    synced = 0
    failed = 0
    for config in configs:
        if not is_sync_due(config, now):
            continue
        try:
            sync_organization(config["organization_id"], "incremental", supabase, graph=graph_factory())
            synced += 1
        except Exception as e:
            logger.exception(f"Scheduled sync failed for {config.get('organization_id')}: {e}")
            failed += 1

    return {"synced": synced, "failed": failed, "total_found": len(configs)}


def is_sync_due(config: dict, now: datetime) -> bool:
    """A tenant is due when its sync interval has elapsed since the last sync."""
    last_sync = parse_datetime(config.get("last_sync_at"))
    if last_sync is None:
        return True
    if last_sync.tzinfo is None:
        last_sync = last_sync.replace(tzinfo=timezone.utc)
    frequency = int(config.get("sync_frequency_minutes") or DEFAULT_SYNC_FREQUENCY_MINUTES)
    return now - last_sync >= timedelta(minutes=frequency)


@tracer.capture_method
def sync_organization(
    organization_id: str,
    sync_type: str,
    supabase: SupabaseClient,
    graph: Optional[MicrosoftGraphClient] = None
) -> UserSyncResult:
    """
    Sync one organization's directory into profiles.

    The user_sync_log row is opened first and always closed, whether
    the run succeeds, partially succeeds or fails outright.

    Raises:
        TenantNotConfiguredError: No enabled tenant config for the organization
    """
    log = supabase.create_sync_log(organization_id, sync_type)
    result = UserSyncResult(
        organization_id=organization_id,
        sync_type=sync_type,
        log_id=log.get("id"),
        started_at=_now(),
    )

    config = supabase.get_tenant_config(organization_id)
    if not config:
        supabase.update_sync_log(result.log_id, {
            "status": UserSyncStatus.FAILED.value,
            "completed_at": _now().isoformat(),
            "errors": [{"message": "Microsoft tenant configuration not found or disabled"}],
        })
        raise TenantNotConfiguredError("Microsoft tenant configuration not found")

    graph = graph or MicrosoftGraphClient()

    try:
        _sync_users(config, result, supabase, graph)
    except Exception as e:
        supabase.update_tenant_config(config["id"], {"sync_status": "failed"})
        supabase.update_sync_log(result.log_id, {
            "status": UserSyncStatus.FAILED.value,
            "completed_at": _now().isoformat(),
            "errors": result.errors + [{"message": str(e)}],
        })
        raise

    result.completed_at = _now()
    supabase.update_tenant_config(config["id"], {
        "last_sync_at": result.completed_at.isoformat(),
        "sync_status": "failed" if result.errors else "active",
    })
    supabase.update_sync_log(result.log_id, result.to_log_update())

    logger.info(
        f"Directory sync {result.status.value}: {result.users_created} created, "
        f"{result.users_updated} updated, {result.users_deactivated} deactivated, "
        f"{len(result.errors)} errors"
    )
    return result


def _sync_users(config: dict, result: UserSyncResult, supabase: SupabaseClient, graph: MicrosoftGraphClient) -> None:
    organization_id = config["organization_id"]

    token = graph.get_access_token(config["tenant_id"], config["client_id"], config["client_secret"])
    expires_at = _now() + timedelta(seconds=int(token.get("expires_in", 3600)))
    supabase.update_tenant_config(config["id"], {
        "access_token": token["access_token"],
        "token_expires_at": expires_at.isoformat(),
    })

    ms_users = graph.get_all_users()

    profiles = supabase.get_profiles_for_organization(organization_id)
    by_microsoft_id = {p["microsoft_user_id"]: p for p in profiles if p.get("microsoft_user_id")}
    by_email = {p["email"].lower(): p for p in profiles if p.get("email")}

    mappings = supabase.get_group_mappings(organization_id)

    for ms_user in ms_users:
        try:
            sync_user(ms_user, organization_id, by_microsoft_id, by_email, mappings, result, supabase, graph)
        except httpx.HTTPStatusError as e:
            result.add_error(f"Error processing user {ms_user.get('displayName')}: {describe_error(e)}")
        except Exception as e:
            result.add_error(f"Error processing user {ms_user.get('displayName')}: {e}")


def resolve_role(ms_user_id: str, mappings: list[dict], graph: MicrosoftGraphClient) -> GroupRole:
    """
    Role from the first active group mapping the user belongs to.

    Defaults to staff when there are no mappings, no match, or the
    group lookup fails.
    """
    if not mappings:
        return GroupRole.STAFF

    group_ids = {g.get("id") for g in graph.get_user_groups(ms_user_id)}

    for mapping in mappings:
        if mapping.get("azure_group_id") in group_ids:
            try:
                return GroupRole(mapping.get("application_role"))
            except ValueError:
                logger.warning(f"Unknown application role on mapping {mapping.get('id')}")
                return GroupRole.STAFF

    return GroupRole.STAFF


def sync_user(
    ms_user: dict,
    organization_id: str,
    by_microsoft_id: dict,
    by_email: dict,
    mappings: list[dict],
    result: UserSyncResult,
    supabase: SupabaseClient,
    graph: MicrosoftGraphClient
) -> None:
    """Create or update the profile for one directory user."""
    display_name = ms_user.get("displayName") or ""
    email = ms_user.get("mail") or ms_user.get("userPrincipalName")

    existing = by_microsoft_id.get(ms_user["id"])
    sync_source = SyncSource.MICROSOFT
    if existing is None and email:
        existing = by_email.get(email.lower())
        if existing:
            # Local account now linked to the directory
            sync_source = SyncSource.BOTH

    if not ms_user.get("accountEnabled", True):
        if existing:
            result.users_deactivated += 1
        return

    if not email:
        result.add_error(f"User {display_name} has no email address")
        return

    group_role = resolve_role(ms_user["id"], mappings, graph)

    profile_data = {
        "email": email,
        "full_name": display_name,
        "microsoft_user_id": ms_user["id"],
        "azure_upn": ms_user.get("userPrincipalName"),
        "sync_source": sync_source.value,
        "is_synced_user": True,
        "department": ms_user.get("department") or None,
        "job_title": ms_user.get("jobTitle") or None,
        "last_synced_at": _now().isoformat(),
        "organization_id": organization_id,
        "role": (UserRole.ADMIN if group_role == GroupRole.ADMIN else UserRole.STAFF).value,
    }

    if existing:
        try:
            supabase.update_profile(existing["id"], profile_data)
        except httpx.HTTPStatusError as e:
            result.add_error(f"Failed to update user {display_name}: {describe_error(e)}")
            return
        user_id = existing["id"]
        result.users_updated += 1
    else:
        auth_user = supabase.create_auth_user(email, display_name)
        user_id = auth_user["id"]
        try:
            supabase.create_profile({"id": user_id, **profile_data})
        except httpx.HTTPStatusError:
            supabase.delete_auth_user(user_id)
            raise
        result.users_created += 1

    if group_role == GroupRole.APPROVER:
        supabase.upsert_approver(user_id)


def _record_metrics(result: UserSyncResult) -> None:
    metrics.add_metric(name="UsersCreated", unit=MetricUnit.Count, value=result.users_created)
    metrics.add_metric(name="UsersUpdated", unit=MetricUnit.Count, value=result.users_updated)
    metrics.add_metric(name="UsersDeactivated", unit=MetricUnit.Count, value=result.users_deactivated)
    metrics.add_metric(name="UserSyncErrors", unit=MetricUnit.Count, value=len(result.errors))
