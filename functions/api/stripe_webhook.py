"""
Stripe Webhook Endpoint - POST /api/stripe/webhook

Reconciles Stripe subscription state into the Supabase user metadata bag.
Uses Stripe signature verification instead of bearer auth and answers in
plain text (Stripe only looks at the status code).

Per event id: claim (RPC) -> process -> record succeeded | failed.
A duplicate delivery of an already claimed event is acknowledged with 200
without running any side effect.
"""

import logging
import time

import stripe

from shared.billing_utils import configure_stripe, retrieve_subscription_safe
from shared.config import get_settings
from shared.customer_mapping import upsert_customer_mapping
from shared.errors import ConfigError
from shared.logging_utils import configure_structured_logging, log_api_request, log_webhook_outcome, set_request_id
from shared.request_utils import get_header, get_method, get_path, get_raw_body
from shared.response_utils import text_response
from shared.subscription_state import checkout_patch, deleted_patch, subscription_patch
from shared.supabase_client import get_supabase_admin
from shared.user_resolution import CHECKOUT_RESOLVERS, SUBSCRIPTION_RESOLVERS, resolve_user_id
from shared.webhook_events import (
    STATUS_FAILED,
    STATUS_SUCCEEDED,
    claim_event,
    record_event_outcome,
    should_process,
)

logger = logging.getLogger(__name__)


def _apply_patch(supabase, obj: dict, user_id: str, patch: dict, subscription=None) -> None:
    customer_id = obj.get("customer")
    if customer_id:
        upsert_customer_mapping(supabase, customer_id, user_id, subscription)
    supabase.merge_user_metadata(user_id, patch)


def _handle_checkout_completed(session: dict, supabase) -> None:
    """Upgrade the user once Checkout completes."""
    # Best-effort: without the subscription the plan follows payment_status
    subscription = retrieve_subscription_safe(session.get("subscription"))

    user_id = resolve_user_id(session, supabase, CHECKOUT_RESOLVERS)
    if not user_id:
        logger.warning(f"No user found for checkout session {session.get('id')}")
        return

    patch = checkout_patch(session, subscription)
    _apply_patch(supabase, session, user_id, patch, subscription)
    logger.info(f"Checkout completed for user {user_id}: plan={patch.get('plan')}")


def _handle_subscription_updated(subscription: dict, supabase) -> None:
    """Handle customer.subscription.created and customer.subscription.updated."""
    user_id = resolve_user_id(subscription, supabase, SUBSCRIPTION_RESOLVERS)
    if not user_id:
        logger.warning(f"No user found for subscription {subscription.get('id')}")
        return

    patch = subscription_patch(subscription)
    _apply_patch(supabase, subscription, user_id, patch, subscription)
    logger.info(f"Subscription {subscription.get('id')} is {subscription.get('status')}: plan={patch.get('plan')}")


def _handle_subscription_deleted(subscription: dict, supabase) -> None:
    """Downgrade to free; the subscription id is kept for display."""
    user_id = resolve_user_id(subscription, supabase, SUBSCRIPTION_RESOLVERS)
    if not user_id:
        logger.warning(f"No user found for deleted subscription {subscription.get('id')}")
        return

    _apply_patch(supabase, subscription, user_id, deleted_patch(subscription), subscription)
    logger.info(f"Subscription {subscription.get('id')} deleted, user {user_id} downgraded to free")


EVENT_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.created": _handle_subscription_updated,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
}


def _process_webhook(event: dict, settings) -> dict:
    start = time.time()

    if get_method(event) != "POST":
        return text_response(405, "Method not allowed")

    try:
        settings.require("stripe_secret_key", "stripe_webhook_secret", "supabase_url", "supabase_service_key")
    except ConfigError as e:
        logger.error(f"Stripe webhook misconfigured: {e}")
        return text_response(500, "Server error")

    signature = get_header(event, "stripe-signature")
    if not signature:
        logger.warning("Missing Stripe signature")
        return text_response(400, "Missing stripe-signature")

    # Verify webhook signature over the exact raw body
    try:
        stripe_event = stripe.Webhook.construct_event(get_raw_body(event), signature, settings.stripe_webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid Stripe signature: {e}")
        return text_response(400, "Webhook Error: Invalid signature")
    except ValueError as e:
        logger.warning(f"Invalid webhook payload: {e}")
        return text_response(400, "Webhook Error: Invalid payload")

    configure_stripe(settings)
    supabase = get_supabase_admin(settings)

    event_id = stripe_event["id"]
    event_type = stripe_event["type"]
    logger.info(f"Processing Stripe event: {event_type} (id={event_id})")

    decision = claim_event(supabase, event_id, event_type)
    if not should_process(decision):
        log_webhook_outcome(logger, event_id, event_type, "duplicate", (time.time() - start) * 1000)
        return text_response(200, "ok")

    handle = EVENT_HANDLERS.get(event_type)
    try:
        if handle is None:
            logger.info(f"Unhandled event type: {event_type}")
        else:
            handle(stripe_event["data"]["object"], supabase)
    except Exception as e:
        # Stripe retries on 5xx; a failed event can be claimed again
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        record_event_outcome(supabase, event_id, event_type, STATUS_FAILED, error=str(e))
        log_webhook_outcome(logger, event_id, event_type, STATUS_FAILED, (time.time() - start) * 1000)
        return text_response(500, "Server error")

    record_event_outcome(supabase, event_id, event_type, STATUS_SUCCEEDED)
    log_webhook_outcome(logger, event_id, event_type, STATUS_SUCCEEDED, (time.time() - start) * 1000)
    return text_response(200, "ok")


def handler(event, context=None, settings=None):
    """
    Lambda handler for Stripe webhooks.

    Handles:
    - checkout.session.completed: upgrade the user
    - customer.subscription.created / updated: plan follows the status
    - customer.subscription.deleted: downgrade to free
    """
    configure_structured_logging()
    set_request_id(event)
    start = time.time()

    settings = settings or get_settings()

    try:
        response = _process_webhook(event, settings)
    except Exception as e:
        logger.error(f"Unexpected webhook error: {e}", exc_info=True)
        response = text_response(500, "Server error")

    log_api_request(logger, get_method(event), get_path(event), response["statusCode"], (time.time() - start) * 1000)
    return response
