"""
Subscription Status Endpoint - GET /api/stripe/subscription-status

Returns a snapshot of the signed-in user's Stripe subscription for the
account page. Requires a Supabase bearer token.
"""

import logging
import time

import stripe

from shared.auth import authenticate, require_bearer_token
from shared.billing_utils import (
    configure_stripe,
    empty_subscription_status,
    list_subscriptions,
    retrieve_subscription,
    shape_subscription_status,
)
from shared.cors import with_cors
from shared.errors import APIError, ConfigError, MethodNotAllowedError, UpstreamError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.request_utils import get_method, get_path
from shared.response_utils import error_response, success_response
from shared.supabase_client import get_supabase_admin

logger = logging.getLogger(__name__)

ALLOW_METHODS = "GET, OPTIONS"


def _latest_subscription(customer_id: str):
    """Newest subscription of a customer, or None (lookup failures fall through)."""
    try:
        subscriptions = list_subscriptions(customer_id, limit=1)
    except stripe.StripeError as e:
        logger.warning(f"Could not list subscriptions for customer {customer_id}: {e}")
        return None
    return subscriptions[0] if subscriptions else None


def _subscription_status(event: dict, settings) -> dict:
    if get_method(event) != "GET":
        raise MethodNotAllowedError(ALLOW_METHODS)

    settings.require("stripe_secret_key", "supabase_url", "supabase_service_key")
    require_bearer_token(event)

    supabase = get_supabase_admin(settings)
    configure_stripe(settings)
    user = authenticate(event, supabase)

    metadata = user.get("user_metadata") or {}
    subscription_id = metadata.get("stripe_subscription_id")
    customer_id = metadata.get("stripe_customer_id")
    plan_interval = metadata.get("plan_interval")

    if subscription_id:
        try:
            subscription = retrieve_subscription(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe error retrieving subscription {subscription_id}: {e}")
            raise UpstreamError("Failed to load subscription", code="stripe_error") from e
        return success_response(shape_subscription_status(subscription, plan_interval))

    # Metadata propagation can lag behind checkout; infer the latest subscription
    if customer_id:
        subscription = _latest_subscription(customer_id)
        if subscription:
            return success_response(shape_subscription_status(subscription, plan_interval))

    return success_response(empty_subscription_status(plan_interval))


@with_cors(allow_methods=ALLOW_METHODS)
def handler(event, context=None, settings=None):
    """Lambda handler for GET /api/stripe/subscription-status."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()

    try:
        response = _subscription_status(event, settings)
    except ConfigError as e:
        logger.error(f"Subscription status misconfigured: {e}")
        response = e.to_response()
    except APIError as e:
        response = e.to_response()
    except Exception as e:
        logger.error(f"Error loading subscription status: {e}", exc_info=True)
        response = error_response(500, "internal_error", "Server error")

    log_api_request(logger, get_method(event), get_path(event), response["statusCode"], (time.time() - start) * 1000)
    return response
