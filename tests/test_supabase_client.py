"""
Tests for the Supabase admin client.

HTTP is served by httpx.MockTransport; each test records the requests it
receives and answers like GoTrue / PostgREST would.
"""

import json

import httpx
import pytest

from shared.config import Settings
from shared.errors import ConfigError
from shared.supabase_client import SupabaseAdmin, SupabaseError, get_supabase_admin

BASE_URL = "https://project.supabase.co"


def _client(handler):
    requests = []

    def recording_handler(request):
        requests.append(request)
        return handler(request)

    client = SupabaseAdmin(BASE_URL, "service-role-key", transport=httpx.MockTransport(recording_handler))
    return client, requests


class TestAuth:
    def test_get_user_uses_access_token(self):
        client, requests = _client(lambda r: httpx.Response(200, json={"id": "user-123", "email": "a@b.c"}))

        user = client.get_user("access-token")

        assert user["id"] == "user-123"
        assert requests[0].url.path == "/auth/v1/user"
        assert requests[0].headers["Authorization"] == "Bearer access-token"
        assert requests[0].headers["apikey"] == "service-role-key"

    def test_get_user_rejected_token(self):
        client, _ = _client(lambda r: httpx.Response(401, json={"msg": "invalid JWT"}))

        with pytest.raises(SupabaseError) as exc_info:
            client.get_user("expired")

        assert exc_info.value.status_code == 401
        assert exc_info.value.operation == "auth.get_user"

    def test_get_user_without_id_is_unauthorized(self):
        client, _ = _client(lambda r: httpx.Response(200, json={}))

        with pytest.raises(SupabaseError) as exc_info:
            client.get_user("token")

        assert exc_info.value.status_code == 401

    def test_transport_error(self):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _client(fail)

        with pytest.raises(SupabaseError) as exc_info:
            client.get_user("token")

        assert exc_info.value.status_code is None

    def test_merge_user_metadata_keeps_other_fields(self):
        stored = {"plan": "pro", "display_name": "Ada", "paused": False}

        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"id": "user-123", "user_metadata": stored})
            return httpx.Response(200, json={"id": "user-123", "user_metadata": json.loads(request.content)})

        client, requests = _client(handler)

        client.merge_user_metadata("user-123", {"paused": True, "paused_at": "2026-01-01T00:00:00+00:00"})

        put = requests[-1]
        assert put.method == "PUT"
        assert put.url.path == "/auth/v1/admin/users/user-123"
        assert json.loads(put.content) == {
            "user_metadata": {
                "plan": "pro",
                "display_name": "Ada",
                "paused": True,
                "paused_at": "2026-01-01T00:00:00+00:00",
            }
        }

    def test_delete_user(self):
        client, requests = _client(lambda r: httpx.Response(200, json={}))

        client.delete_user("user-123")

        assert requests[0].method == "DELETE"
        assert requests[0].url.path == "/auth/v1/admin/users/user-123"


class TestPostgrest:
    def test_rpc(self):
        client, requests = _client(lambda r: httpx.Response(200, json=[{"allowed": True, "reset_at": None}]))

        result = client.rpc("check_rate_limit", {"p_key": "k", "p_window_seconds": 60, "p_max_count": 6})

        assert result == [{"allowed": True, "reset_at": None}]
        assert requests[0].url.path == "/rest/v1/rpc/check_rate_limit"
        assert json.loads(requests[0].content)["p_key"] == "k"

    def test_select_builds_eq_filters(self):
        client, requests = _client(lambda r: httpx.Response(200, json=[{"user_id": "user-123"}]))

        rows = client.select("stripe_customers", {"customer_id": "cus_1"}, limit=1, order="updated_at.desc")

        assert rows == [{"user_id": "user-123"}]
        params = requests[0].url.params
        assert params["customer_id"] == "eq.cus_1"
        assert params["limit"] == "1"
        assert params["order"] == "updated_at.desc"

    def test_upsert_merges_duplicates(self):
        client, requests = _client(lambda r: httpx.Response(201))

        client.upsert("stripe_webhook_events", {"event_id": "evt_1"}, on_conflict="event_id")

        request = requests[0]
        assert request.method == "POST"
        assert request.url.params["on_conflict"] == "event_id"
        assert "resolution=merge-duplicates" in request.headers["Prefer"]

    def test_server_error_raises(self):
        client, _ = _client(lambda r: httpx.Response(503))

        with pytest.raises(SupabaseError) as exc_info:
            client.rpc("claim_stripe_webhook_event", {"p_event_id": "evt_1", "p_event_type": "x"})

        assert exc_info.value.status_code == 503


class TestGetSupabaseAdmin:
    def test_cached_per_configuration(self, settings):
        first = get_supabase_admin(settings)
        assert get_supabase_admin(settings) is first

    def test_requires_configuration(self):
        with pytest.raises(ConfigError):
            get_supabase_admin(Settings())
