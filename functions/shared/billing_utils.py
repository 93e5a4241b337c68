"""Shared billing utilities for Stripe-related operations."""

import logging
import time
from typing import Optional

import stripe

from shared.constants import ACTIVE_LIKE_STATUSES, CANCEL_LIST_LIMIT
from shared.logging_utils import log_external_call
from shared.subscription_state import PRO_STATUSES, current_period_end, epoch_to_iso

logger = logging.getLogger(__name__)


def configure_stripe(settings) -> None:
    """Point the Stripe SDK at the configured account.

    Raises:
        ConfigError: STRIPE_SECRET_KEY is not configured
    """
    settings.require("stripe_secret_key")
    stripe.api_key = settings.stripe_secret_key
    if settings.stripe_api_version:
        stripe.api_version = settings.stripe_api_version


def is_active_like(status: Optional[str]) -> bool:
    """Statuses that still bill (or may bill) the customer."""
    return str(status or "").lower() in ACTIVE_LIKE_STATUSES


def _timed(operation: str, func, *args, **kwargs):
    start = time.time()
    try:
        result = func(*args, **kwargs)
    except stripe.StripeError as e:
        log_external_call(logger, "stripe", operation, False, (time.time() - start) * 1000, error=type(e).__name__)
        raise
    log_external_call(logger, "stripe", operation, True, (time.time() - start) * 1000)
    return result


def retrieve_subscription(subscription_id: str):
    """Retrieve a subscription. Raises stripe.StripeError."""
    return _timed("subscriptions.retrieve", stripe.Subscription.retrieve, subscription_id)


def retrieve_subscription_safe(subscription_id: Optional[str]):
    """Best-effort retrieve: None when missing or on any Stripe error."""
    if not subscription_id:
        return None
    try:
        return retrieve_subscription(subscription_id)
    except stripe.StripeError as e:
        logger.warning(f"Could not retrieve subscription {subscription_id}: {e}")
        return None


def list_subscriptions(customer_id: str, limit: int = CANCEL_LIST_LIMIT) -> list:
    """All subscriptions of a customer, newest first. Raises stripe.StripeError."""
    result = _timed(
        "subscriptions.list",
        stripe.Subscription.list,
        customer=customer_id,
        status="all",
        limit=limit,
    )
    return list(result.get("data") or [])


def cancel_subscription(subscription_id: str):
    return _timed("subscriptions.cancel", stripe.Subscription.cancel, subscription_id)


def cancel_active_subscriptions(
    customer_id: Optional[str],
    subscription_id: Optional[str],
) -> dict:
    """Cancel whatever still bills this user before the account goes away.

    An explicit subscription id is preferred. Without one, every active-like
    subscription of the customer is cancelled (metadata can be out of sync).

    Returns:
        {"canceled": bool, "subscription_id": str | None}

    Raises:
        stripe.StripeError: any lookup or cancellation failed; other errors
            propagate unchanged
    """
    if subscription_id:
        subscription = retrieve_subscription(subscription_id)
        if subscription and is_active_like(subscription.get("status")):
            cancel_subscription(subscription["id"])
            logger.info(f"Cancelled subscription {subscription['id']}")
            return {"canceled": True, "subscription_id": subscription["id"]}
        return {"canceled": False, "subscription_id": subscription_id}

    if not customer_id:
        return {"canceled": False, "subscription_id": None}

    canceled_any = False
    for subscription in list_subscriptions(customer_id):
        if is_active_like(subscription.get("status")):
            cancel_subscription(subscription["id"])
            logger.info(f"Cancelled subscription {subscription['id']} for customer {customer_id}")
            canceled_any = True

    return {"canceled": canceled_any, "subscription_id": None}


def empty_subscription_status(plan_interval: Optional[str]) -> dict:
    return {
        "subscription_id": None,
        "active": False,
        "status": None,
        "current_period_end": None,
        "cancel_at_period_end": None,
        "cancel_at": None,
        "canceled_at": None,
        "ended_at": None,
        "created": None,
        "plan_interval": plan_interval,
    }


def shape_subscription_status(subscription, plan_interval: Optional[str]) -> dict:
    """Snapshot of a subscription for the account page."""
    # Some portal flows set cancel_at while current_period_end is absent
    period_end = current_period_end(subscription) or subscription.get("cancel_at")
    status = subscription.get("status")

    return {
        "subscription_id": subscription.get("id"),
        "active": status in PRO_STATUSES,
        "status": status,
        "current_period_end": epoch_to_iso(period_end),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "cancel_at": epoch_to_iso(subscription.get("cancel_at")),
        "canceled_at": epoch_to_iso(subscription.get("canceled_at")),
        "ended_at": epoch_to_iso(subscription.get("ended_at")),
        "created": epoch_to_iso(subscription.get("created")),
        "plan_interval": plan_interval,
    }
