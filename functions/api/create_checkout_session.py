"""
Create Checkout Session Endpoint - POST /api/stripe/create-checkout-session

Creates (or reuses) a Stripe Checkout session for a Pro subscription.
Requires a Supabase bearer token.

Request body:
{
    "interval": "month" | "year"   (default "month")
}

Returns:
{
    "url": "https://checkout.stripe.com/...",
    "reused": true                 (only when a cached session was returned)
}
"""

import logging
import time

import stripe

from shared.auth import authenticate, require_bearer_token
from shared.billing_utils import configure_stripe
from shared.checkout_cache import (
    build_cache_key,
    build_idempotency_key,
    get_cached_session,
    is_locally_fresh,
    is_session_reusable,
    save_cached_session,
)
from shared.cors import with_cors
from shared.errors import APIError, ConfigError, MethodNotAllowedError, UpstreamError, ValidationError
from shared.logging_utils import configure_structured_logging, log_api_request, log_external_call, set_request_id
from shared.rate_limit_utils import CHECKOUT_IP, CHECKOUT_USER, enforce_rate_limit
from shared.request_utils import get_client_ip, get_method, get_path, parse_json_body
from shared.response_utils import error_response, success_response
from shared.subscription_state import VALID_INTERVALS
from shared.supabase_client import get_supabase_admin

logger = logging.getLogger(__name__)

ALLOW_METHODS = "POST, OPTIONS"


def _parse_interval(body: dict) -> str:
    value = body.get("interval")
    interval = "month" if value is None else str(value).strip().lower()
    if interval not in VALID_INTERVALS:
        raise ValidationError("Invalid interval", code="invalid_interval")
    return interval


def _reuse_cached_session(cached: dict, now: float):
    """Re-verify a cached session with Stripe. Returns the URL to reuse or None."""
    start = time.time()
    try:
        session = stripe.checkout.Session.retrieve(cached["checkout_session_id"])
    except stripe.StripeError as e:
        log_external_call(
            logger, "stripe", "checkout.sessions.retrieve", False, (time.time() - start) * 1000, error=type(e).__name__
        )
        # Verification is best-effort: hand back the cached URL rather than block the user
        logger.warning(f"Could not verify cached checkout session, reusing cached URL: {e}")
        return cached["checkout_url"]
    log_external_call(logger, "stripe", "checkout.sessions.retrieve", True, (time.time() - start) * 1000)

    if is_session_reusable(session, now):
        return session.get("url") or cached["checkout_url"]
    return None


def _create_session(user: dict, price_id: str, interval: str, site_url: str, now: float):
    user_id = user["id"]
    metadata = {"user_id": user_id, "interval": interval, "price_id": price_id}
    params = {
        "mode": "subscription",
        "allow_promotion_codes": True,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": f"{site_url}/pricing?checkout=success",
        "cancel_url": f"{site_url}/pricing?checkout=cancel",
        "client_reference_id": user_id,
        "metadata": metadata,
        "subscription_data": {"metadata": dict(metadata)},
    }

    # Returning customers keep a single Stripe customer
    customer_id = (user.get("user_metadata") or {}).get("stripe_customer_id")
    if customer_id:
        params["customer"] = customer_id
    elif user.get("email"):
        params["customer_email"] = user["email"]

    start = time.time()
    try:
        session = stripe.checkout.Session.create(
            **params,
            idempotency_key=build_idempotency_key(user_id, price_id, interval, now),
        )
    except stripe.StripeError as e:
        log_external_call(
            logger, "stripe", "checkout.sessions.create", False, (time.time() - start) * 1000, error=type(e).__name__
        )
        logger.error(f"Stripe error creating checkout session: {e}")
        raise UpstreamError("Failed to create checkout session", code="stripe_error") from e
    log_external_call(logger, "stripe", "checkout.sessions.create", True, (time.time() - start) * 1000)
    return session


def _create_checkout_session(event: dict, settings) -> dict:
    if get_method(event) != "POST":
        raise MethodNotAllowedError(ALLOW_METHODS)

    settings.require("stripe_secret_key", "supabase_url", "supabase_service_key")
    require_bearer_token(event)

    body = parse_json_body(event)
    interval = _parse_interval(body)
    price_id = settings.price_id_for(interval)

    # Redirect targets come from configuration only, never from request headers
    if not settings.site_url:
        raise ConfigError(["SITE_URL"], message="Missing SITE_URL")

    supabase = get_supabase_admin(settings)
    configure_stripe(settings)
    user = authenticate(event, supabase)

    enforce_rate_limit(supabase, CHECKOUT_IP, get_client_ip(event))
    enforce_rate_limit(supabase, CHECKOUT_USER, user["id"])

    now = time.time()
    cache_key = build_cache_key(user["id"], price_id, interval)
    cached = get_cached_session(supabase, cache_key)
    if is_locally_fresh(cached, now):
        url = _reuse_cached_session(cached, now)
        if url:
            logger.info(f"Reusing checkout session for user {user['id']}")
            return success_response({"url": url, "reused": True})

    session = _create_session(user, price_id, interval, settings.site_url, now)
    save_cached_session(
        supabase,
        cache_key=cache_key,
        user_id=user["id"],
        price_id=price_id,
        interval=interval,
        session=session,
        now=now,
    )

    logger.info(f"Created checkout session for user {user['id']} ({interval})")
    return success_response({"url": session.get("url")})


@with_cors(allow_methods=ALLOW_METHODS)
def handler(event, context=None, settings=None):
    """Lambda handler for POST /api/stripe/create-checkout-session."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()

    try:
        response = _create_checkout_session(event, settings)
    except ConfigError as e:
        logger.error(f"Checkout misconfigured: {e}")
        response = e.to_response()
    except APIError as e:
        response = e.to_response()
    except Exception as e:
        logger.error(f"Error creating checkout session: {e}", exc_info=True)
        response = error_response(500, "internal_error", "Server error")

    log_api_request(logger, get_method(event), get_path(event), response["statusCode"], (time.time() - start) * 1000)
    return response
