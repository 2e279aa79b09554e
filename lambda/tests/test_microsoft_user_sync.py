"""
Microsoft 365 User Sync Handler Tests
=====================================
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from conftest import api_event, load_handler, response_body
from models import GroupRole, UserSyncResult
from utils.graph_client import GraphAPIError, MicrosoftGraphClient

handler = load_handler("microsoft_user_sync")

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

TENANT_CONFIG = {
    "id": "cfg-1",
    "organization_id": "org-1",
    "tenant_id": "azure-tenant",
    "client_id": "azure-client",
    "client_secret": "azure-secret",
    "is_enabled": True,
}


def ms_user(user_id, email, enabled=True, **extra):
    return {
        "id": user_id,
        "displayName": f"User {user_id}",
        "mail": email,
        "userPrincipalName": email,
        "accountEnabled": enabled,
        **extra,
    }


@pytest.fixture
def graph():
    graph = MagicMock(spec=MicrosoftGraphClient)
    graph.get_access_token.return_value = {"access_token": "graph-token", "expires_in": 3600}
    graph.get_all_users.return_value = []
    graph.get_user_groups.return_value = []
    return graph


@pytest.fixture
def org_supabase(supabase):
    supabase.create_sync_log.return_value = {"id": "log-1"}
    supabase.get_tenant_config.return_value = dict(TENANT_CONFIG)
    supabase.get_profiles_for_organization.return_value = []
    supabase.get_group_mappings.return_value = []
    supabase.create_auth_user.side_effect = lambda email, name: {"id": f"auth-{email}"}
    return supabase


class TestSyncOrganization:
    """Tests for a full organization sync."""

    def test_creates_updates_and_links_users(self, org_supabase, graph):
        org_supabase.get_profiles_for_organization.return_value = [
            {"id": "p1", "email": "known@example.com", "microsoft_user_id": "ms-1"},
            {"id": "p2", "email": "Local@Example.com", "microsoft_user_id": None},
        ]
        graph.get_all_users.return_value = [
            ms_user("ms-1", "known@example.com", jobTitle="Engineer"),
            ms_user("ms-2", "local@example.com"),
            ms_user("ms-3", "new@example.com"),
        ]

        result = handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        assert (result.users_created, result.users_updated, result.users_deactivated) == (1, 2, 0)
        assert result.errors == []

        updates = {c.args[0]: c.args[1] for c in org_supabase.update_profile.call_args_list}
        assert updates["p1"]["sync_source"] == "microsoft"
        assert updates["p1"]["job_title"] == "Engineer"
        assert updates["p2"]["sync_source"] == "both"
        assert updates["p2"]["microsoft_user_id"] == "ms-2"

        created = org_supabase.create_profile.call_args.args[0]
        assert created["id"] == "auth-new@example.com"
        assert created["is_synced_user"] is True
        assert created["role"] == "staff"

    def test_log_and_tenant_closed_on_success(self, org_supabase, graph):
        graph.get_all_users.return_value = [ms_user("ms-1", "a@example.com")]

        handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        org_supabase.create_sync_log.assert_called_once_with("org-1", "manual")
        log_id, log_update = org_supabase.update_sync_log.call_args.args
        assert log_id == "log-1"
        assert log_update["status"] == "success"
        assert log_update["users_created"] == 1

        tenant_update = org_supabase.update_tenant_config.call_args.args[1]
        assert tenant_update["sync_status"] == "active"
        assert "last_sync_at" in tenant_update

    def test_graph_token_is_persisted(self, org_supabase, graph):
        handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        graph.get_access_token.assert_called_once_with("azure-tenant", "azure-client", "azure-secret")
        first_update = org_supabase.update_tenant_config.call_args_list[0].args
        assert first_update[0] == "cfg-1"
        assert first_update[1]["access_token"] == "graph-token"

    def test_disabled_and_emailless_users(self, org_supabase, graph):
        org_supabase.get_profiles_for_organization.return_value = [
            {"id": "p1", "email": "gone@example.com", "microsoft_user_id": "ms-1"},
        ]
        graph.get_all_users.return_value = [
            ms_user("ms-1", "gone@example.com", enabled=False),
            ms_user("ms-2", "never-synced@example.com", enabled=False),
            ms_user("ms-3", None),
        ]

        result = handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        assert result.users_deactivated == 1
        assert result.users_created == 0
        assert result.errors == [{"message": "User User ms-3 has no email address"}]
        assert org_supabase.update_sync_log.call_args.args[1]["status"] == "partial"
        assert org_supabase.update_tenant_config.call_args.args[1]["sync_status"] == "failed"

    def test_profile_insert_failure_rolls_back_auth_user(self, org_supabase, graph):
        graph.get_all_users.return_value = [ms_user("ms-1", "a@example.com")]
        request = httpx.Request("POST", "https://test.supabase.co/rest/v1/profiles")
        org_supabase.create_profile.side_effect = httpx.HTTPStatusError(
            "conflict", request=request, response=httpx.Response(409, json={"message": "duplicate"}, request=request)
        )

        result = handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        org_supabase.delete_auth_user.assert_called_once_with("auth-a@example.com")
        assert result.users_created == 0
        assert "duplicate" in result.errors[0]["message"]

    def test_missing_tenant_config(self, org_supabase, graph):
        org_supabase.get_tenant_config.return_value = None

        with pytest.raises(handler.TenantNotConfiguredError):
            handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        assert org_supabase.update_sync_log.call_args.args[1]["status"] == "failed"

    def test_token_failure_marks_log_and_tenant_failed(self, org_supabase, graph):
        graph.get_access_token.side_effect = GraphAPIError("Failed to get access token: invalid_client")

        with pytest.raises(GraphAPIError):
            handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        assert org_supabase.update_tenant_config.call_args.args[1] == {"sync_status": "failed"}
        log_update = org_supabase.update_sync_log.call_args.args[1]
        assert log_update["status"] == "failed"
        assert "invalid_client" in log_update["errors"][0]["message"]


class TestRoles:
    """Tests for group mapping."""

    MAPPINGS = [
        {"id": "m1", "azure_group_id": "g-approvers", "application_role": "approver"},
        {"id": "m2", "azure_group_id": "g-admins", "application_role": "admin"},
    ]

    def test_no_mappings_skips_group_lookup(self, graph):
        assert handler.resolve_role("ms-1", [], graph) == GroupRole.STAFF
        graph.get_user_groups.assert_not_called()

    def test_first_matching_mapping_wins(self, graph):
        graph.get_user_groups.return_value = [{"id": "g-admins"}, {"id": "g-approvers"}]
        assert handler.resolve_role("ms-1", self.MAPPINGS, graph) == GroupRole.APPROVER

    def test_no_matching_group(self, graph):
        graph.get_user_groups.return_value = [{"id": "g-other"}]
        assert handler.resolve_role("ms-1", self.MAPPINGS, graph) == GroupRole.STAFF

    def test_approver_mapping_creates_approver_row(self, org_supabase, graph):
        org_supabase.get_group_mappings.return_value = self.MAPPINGS
        graph.get_all_users.return_value = [ms_user("ms-1", "a@example.com")]
        graph.get_user_groups.return_value = [{"id": "g-approvers"}]

        handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        org_supabase.upsert_approver.assert_called_once_with("auth-a@example.com")
        assert org_supabase.create_profile.call_args.args[0]["role"] == "staff"

    def test_admin_mapping_sets_admin_role(self, org_supabase, graph):
        org_supabase.get_group_mappings.return_value = self.MAPPINGS
        graph.get_all_users.return_value = [ms_user("ms-1", "a@example.com")]
        graph.get_user_groups.return_value = [{"id": "g-admins"}]

        handler.sync_organization("org-1", "manual", org_supabase, graph=graph)

        assert org_supabase.create_profile.call_args.args[0]["role"] == "admin"
        org_supabase.upsert_approver.assert_not_called()


class TestScheduledSync:
    """Tests for the EventBridge-driven sync."""

    def test_sync_due(self):
        assert handler.is_sync_due({}, NOW)
        assert handler.is_sync_due({"last_sync_at": (NOW - timedelta(minutes=61)).isoformat()}, NOW)
        assert not handler.is_sync_due({"last_sync_at": (NOW - timedelta(minutes=30)).isoformat()}, NOW)
        assert not handler.is_sync_due({
            "last_sync_at": (NOW - timedelta(hours=2)).isoformat(),
            "sync_frequency_minutes": 240,
        }, NOW)

    def test_naive_timestamps_are_utc(self):
        assert handler.is_sync_due({"last_sync_at": "2025-06-01T10:00:00"}, NOW)

    def test_only_due_tenants_are_synced(self, monkeypatch, supabase):
        supabase.get_enabled_tenant_configs.return_value = [
            {"organization_id": "org-due", "last_sync_at": None},
            {"organization_id": "org-recent", "last_sync_at": (NOW - timedelta(minutes=5)).isoformat()},
            {"organization_id": "org-broken", "last_sync_at": None},
        ]
        synced = []

        def fake_sync(organization_id, sync_type, supabase, graph=None):
            if organization_id == "org-broken":
                raise GraphAPIError("boom")
            synced.append((organization_id, sync_type))
            return UserSyncResult(organization_id=organization_id)

        monkeypatch.setattr(handler, "sync_organization", fake_sync)

        summary = handler.scheduled_sync(supabase, graph_factory=MagicMock, now=NOW)

        assert synced == [("org-due", "incremental")]
        assert summary == {"synced": 1, "failed": 1, "total_found": 3}


class TestLambdaHandler:
    """Tests for the entry point."""

    @pytest.fixture(autouse=True)
    def patch_supabase(self, monkeypatch, supabase):
        monkeypatch.setattr(handler, "SupabaseClient", lambda: supabase)

    def test_missing_organization(self, lambda_context):
        response = handler.lambda_handler(api_event({}), lambda_context)
        assert response["statusCode"] == 400

    def test_tenant_not_configured(self, monkeypatch, lambda_context):
        def not_configured(organization_id, sync_type, supabase):
            raise handler.TenantNotConfiguredError("Microsoft tenant configuration not found")

        monkeypatch.setattr(handler, "sync_organization", not_configured)

        response = handler.lambda_handler(api_event({"organization_id": "org-1"}), lambda_context)

        assert response["statusCode"] == 404

    def test_manual_sync_response(self, monkeypatch, lambda_context):
        monkeypatch.setattr(
            handler,
            "sync_organization",
            lambda organization_id, sync_type, supabase: UserSyncResult(
                organization_id=organization_id, users_created=3, users_updated=1
            ),
        )

        response = handler.lambda_handler(api_event({"organization_id": "org-1"}), lambda_context)

        assert response_body(response) == {
            "success": True,
            "usersCreated": 3,
            "usersUpdated": 1,
            "usersDeactivated": 0,
        }

    def test_scheduled_event(self, monkeypatch, lambda_context):
        monkeypatch.setattr(
            handler,
            "scheduled_sync",
            lambda supabase: {"synced": 2, "failed": 0, "total_found": 2},
        )

        response = handler.lambda_handler({"source": "aws.events", "detail-type": "Scheduled Event"}, lambda_context)

        assert response["statusCode"] == 200
        assert response_body(response) == {"synced": 2, "failed": 0, "total_found": 2}
