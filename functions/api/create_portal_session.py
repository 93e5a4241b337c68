"""
Create Portal Session Endpoint - POST /api/stripe/create-portal-session

Creates a Stripe Billing Portal session for subscription management.
Requires a Supabase bearer token and a known Stripe customer.
"""

import logging
import time

import stripe

from shared.auth import authenticate, require_bearer_token
from shared.billing_utils import configure_stripe
from shared.constants import DEFAULT_PORTAL_RETURN_PATH
from shared.cors import with_cors
from shared.errors import APIError, ConfigError, MethodNotAllowedError, UpstreamError, ValidationError
from shared.logging_utils import configure_structured_logging, log_api_request, log_external_call, set_request_id
from shared.request_utils import get_method, get_path, parse_json_body
from shared.response_utils import error_response, success_response
from shared.supabase_client import get_supabase_admin

logger = logging.getLogger(__name__)

ALLOW_METHODS = "POST, OPTIONS"


def validate_return_path(value) -> str:
    """Only same-origin absolute paths are accepted as portal return targets."""
    if not isinstance(value, str):
        return DEFAULT_PORTAL_RETURN_PATH

    path = value.strip()
    if not path.startswith("/") or path.startswith("//") or "://" in path or "\\" in path:
        raise ValidationError("Invalid returnPath", code="invalid_return_path")
    return path


def _create_portal_session(event: dict, settings) -> dict:
    if get_method(event) != "POST":
        raise MethodNotAllowedError(ALLOW_METHODS)

    settings.require("stripe_secret_key", "supabase_url", "supabase_service_key")
    require_bearer_token(event)

    body = parse_json_body(event)
    return_path = validate_return_path(body.get("returnPath"))

    if not settings.site_url:
        raise ConfigError(["SITE_URL"], message="Missing SITE_URL")

    supabase = get_supabase_admin(settings)
    configure_stripe(settings)
    user = authenticate(event, supabase)

    customer_id = (user.get("user_metadata") or {}).get("stripe_customer_id")
    if not customer_id:
        raise ValidationError(
            "No Stripe customer found for this user yet. If you just upgraded, wait a few seconds and refresh.",
            code="no_customer",
        )

    start = time.time()
    try:
        portal_session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{settings.site_url}{return_path}",
        )
    except stripe.StripeError as e:
        log_external_call(
            logger, "stripe", "billing_portal.sessions.create", False, (time.time() - start) * 1000,
            error=type(e).__name__,
        )
        logger.error(f"Stripe error creating billing portal session: {e}")
        raise UpstreamError("Failed to create billing portal session", code="stripe_error") from e
    log_external_call(logger, "stripe", "billing_portal.sessions.create", True, (time.time() - start) * 1000)

    logger.info(f"Created billing portal session for user {user['id']}")
    return success_response({"url": portal_session.get("url")})


@with_cors(allow_methods=ALLOW_METHODS)
def handler(event, context=None, settings=None):
    """Lambda handler for POST /api/stripe/create-portal-session."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()

    try:
        response = _create_portal_session(event, settings)
    except ConfigError as e:
        logger.error(f"Billing portal misconfigured: {e}")
        response = e.to_response()
    except APIError as e:
        response = e.to_response()
    except Exception as e:
        logger.error(f"Error creating billing portal session: {e}", exc_info=True)
        response = error_response(500, "internal_error", "Server error")

    log_api_request(logger, get_method(event), get_path(event), response["statusCode"], (time.time() - start) * 1000)
    return response
