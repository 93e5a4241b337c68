"""
Shared pytest fixtures for the billing and account function tests.
"""

import json
import os
import sys
from contextlib import ExitStack
from unittest.mock import MagicMock, patch

import pytest

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))

SITE_URL = "https://1minute.academy"

# Handler modules that look up the Supabase client themselves
HANDLER_MODULES = (
    "api.account_delete",
    "api.account_pause",
    "api.create_checkout_session",
    "api.create_portal_session",
    "api.subscription_status",
    "api.stripe_webhook",
)


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 client creation
    during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Reset cached settings and client singletons between tests."""
    from shared.aws_clients import reset_clients
    from shared.config import reset_settings
    from shared.logging_utils import user_id_var
    from shared.supabase_client import reset_supabase_admin

    reset_settings()
    yield
    reset_settings()
    reset_clients()
    reset_supabase_admin()
    user_id_var.set("")


@pytest.fixture
def settings():
    """Fully configured settings."""
    from shared.config import Settings

    return Settings(
        supabase_url="https://project.supabase.co",
        supabase_service_key="service-role-key",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
        stripe_price_id_monthly="price_monthly",
        stripe_price_id_yearly="price_yearly",
        site_url=SITE_URL,
    )


@pytest.fixture
def user():
    """Supabase user as returned by GoTrue."""
    return {
        "id": "user-123",
        "email": "ada@example.com",
        "user_metadata": {"plan": "free", "display_name": "Ada"},
    }


def _rpc_allow_all(function, params):
    if function == "check_rate_limit":
        return [{"allowed": True, "reset_at": "2026-01-01T00:01:00Z"}]
    if function == "claim_stripe_webhook_event":
        return True
    return None


@pytest.fixture
def mock_supabase(user):
    """MagicMock SupabaseAdmin injected into every handler module.

    Defaults: the bearer token resolves to ``user``, every rate limit allows,
    every webhook claim wins and table selects come back empty.
    """
    supabase = MagicMock(name="SupabaseAdmin")
    supabase.get_user.return_value = user
    supabase.get_user_by_id.return_value = user
    supabase.rpc.side_effect = _rpc_allow_all
    supabase.select.return_value = []

    with ExitStack() as stack:
        for module in HANDLER_MODULES:
            stack.enter_context(patch(f"{module}.get_supabase_admin", return_value=supabase))
        yield supabase


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event for function handler tests."""
    return {
        "httpMethod": "GET",
        "path": "/",
        "headers": {},
        "queryStringParameters": {},
        "body": None,
        "requestContext": {
            "requestId": "req-test",
            "identity": {"sourceIp": "127.0.0.1"},
        },
    }


@pytest.fixture
def make_event(api_gateway_event):
    """Build an authenticated browser request."""

    def _make(method="POST", body=None, path="/", token="valid-token", origin=None, headers=None):
        event = dict(api_gateway_event)
        event["httpMethod"] = method
        event["path"] = path
        event["headers"] = dict(headers or {})
        if token:
            event["headers"]["Authorization"] = f"Bearer {token}"
        if origin:
            event["headers"]["Origin"] = origin
        if body is not None:
            event["body"] = body if isinstance(body, str) else json.dumps(body)
        return event

    return _make
