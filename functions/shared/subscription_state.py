"""
Subscription state stored in the Supabase user metadata bag.

The metadata bag is the de facto subscription store. This module gives it a
named shape (``SubscriptionState``) and builds *patches*: dicts holding only
the keys a write should touch. In a patch, an omitted key is left alone and
``None`` clears the value. ``merge_metadata`` applies a patch without any
network access, so every write path is unit-testable.

Tiers (what the app unlocks):
- guest: no account
- paused: account paused by the user
- free: signed in, no active subscription
- pro: signed in with plan "pro" (or legacy "premium")
"""

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Optional

PLAN_FREE = "free"
PLAN_PRO = "pro"

TIER_GUEST = "guest"
TIER_PAUSED = "paused"

VALID_INTERVALS = ("month", "year")

# Statuses that keep Pro access (past_due stays Pro during Stripe's dunning)
PRO_STATUSES = frozenset({"active", "trialing", "past_due"})

# Checkout session payment statuses that mean the customer paid
PAID_CHECKOUT_STATUSES = frozenset({"paid", "no_payment_required"})

# Sentinel for distinguishing "not provided" from None
UNSET = object()


@dataclass
class SubscriptionState:
    """Typed view over the subscription keys of the metadata bag."""

    plan: str = PLAN_FREE
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    plan_interval: Optional[str] = None
    stripe_price_id: Optional[str] = None
    paused: bool = False
    paused_at: Optional[str] = None

    @classmethod
    def from_metadata(cls, metadata: Optional[dict]) -> "SubscriptionState":
        metadata = metadata or {}
        plan = str(metadata.get("plan") or PLAN_FREE).lower()
        return cls(
            plan=PLAN_PRO if plan in (PLAN_PRO, "premium") else PLAN_FREE,
            stripe_customer_id=metadata.get("stripe_customer_id") or None,
            stripe_subscription_id=metadata.get("stripe_subscription_id") or None,
            plan_interval=metadata.get("plan_interval") or None,
            stripe_price_id=metadata.get("stripe_price_id") or None,
            paused=bool(metadata.get("paused")),
            paused_at=metadata.get("paused_at") or None,
        )

    def to_metadata(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def has_billing(self) -> bool:
        return bool(self.stripe_customer_id or self.stripe_subscription_id)


def build_patch(
    *,
    plan: Any = UNSET,
    stripe_customer_id: Any = UNSET,
    stripe_subscription_id: Any = UNSET,
    plan_interval: Any = UNSET,
    stripe_price_id: Any = UNSET,
    paused: Any = UNSET,
    paused_at: Any = UNSET,
) -> dict:
    """Build a metadata patch from the provided fields only."""
    values = {
        "plan": plan,
        "stripe_customer_id": stripe_customer_id,
        "stripe_subscription_id": stripe_subscription_id,
        "plan_interval": plan_interval,
        "stripe_price_id": stripe_price_id,
        "paused": paused,
        "paused_at": paused_at,
    }
    return {key: value for key, value in values.items() if value is not UNSET}


def merge_metadata(old: Optional[dict], patch: dict) -> dict:
    """Apply a patch to a metadata bag, returning a new dict.

    Keys not in the patch (including ones this module does not know about)
    are preserved.
    """
    merged = dict(old or {})
    merged.update(patch)
    return merged


def derive_plan(status: Optional[str]) -> str:
    """Map a Stripe subscription status to a plan."""
    return PLAN_PRO if str(status or "").lower() in PRO_STATUSES else PLAN_FREE


def subscription_price(subscription: Optional[dict]) -> tuple[Optional[str], Optional[str]]:
    """Return ``(price_id, interval)`` of the subscription's first item."""
    if not subscription:
        return None, None
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None, None
    price = items[0].get("price") or {}
    recurring = price.get("recurring") or {}
    return price.get("id"), recurring.get("interval")


def _present(value: Any) -> Any:
    return value if value else UNSET


def subscription_patch(subscription: dict) -> dict:
    """Patch for customer.subscription.created/updated events."""
    price_id, interval = subscription_price(subscription)
    return build_patch(
        plan=derive_plan(subscription.get("status")),
        stripe_customer_id=_present(subscription.get("customer")),
        stripe_subscription_id=_present(subscription.get("id")),
        plan_interval=_present(interval),
        stripe_price_id=_present(price_id),
    )


def checkout_patch(session: dict, subscription: Optional[dict]) -> dict:
    """Patch for checkout.session.completed.

    ``subscription`` is None when it could not be retrieved; the plan then
    follows the session's payment status.
    """
    metadata = session.get("metadata") or {}
    price_id, interval = subscription_price(subscription)
    price_id = price_id or metadata.get("price_id")
    interval = interval or metadata.get("interval")

    if subscription is not None:
        plan = derive_plan(subscription.get("status"))
    else:
        paid = str(session.get("payment_status") or "").lower() in PAID_CHECKOUT_STATUSES
        plan = PLAN_PRO if paid else PLAN_FREE

    return build_patch(
        plan=plan,
        stripe_customer_id=_present(session.get("customer")),
        stripe_subscription_id=_present(session.get("subscription")),
        plan_interval=_present(interval if interval in VALID_INTERVALS else None),
        stripe_price_id=_present(price_id if isinstance(price_id, str) else None),
    )


def deleted_patch(subscription: dict) -> dict:
    """Patch for customer.subscription.deleted.

    The subscription id is kept so the account page can still show the
    ended subscription.
    """
    return build_patch(
        plan=PLAN_FREE,
        stripe_customer_id=_present(subscription.get("customer")),
        stripe_subscription_id=_present(subscription.get("id")),
        plan_interval=None,
        stripe_price_id=None,
    )


def paused_patch(now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    return build_patch(paused=True, paused_at=now.isoformat())


def resumed_patch() -> dict:
    return build_patch(paused=False, paused_at=None)


def get_tier_from_user(user: Optional[dict]) -> str:
    """Tier for a Supabase user object (None for a signed-out visitor)."""
    if not user:
        return TIER_GUEST
    metadata = user.get("user_metadata") or {}
    if metadata.get("paused"):
        return TIER_PAUSED
    plan = metadata.get("plan") or (user.get("app_metadata") or {}).get("plan") or PLAN_FREE
    if str(plan).lower() in (PLAN_PRO, "premium"):
        return PLAN_PRO
    return PLAN_FREE


def current_period_end(subscription: Optional[dict]) -> Optional[int]:
    """Period end lives on the subscription in older API versions, on the item in newer ones."""
    if not subscription:
        return None
    value = subscription.get("current_period_end")
    if value:
        return value
    items = (subscription.get("items") or {}).get("data") or []
    return items[0].get("current_period_end") if items else None


def epoch_to_iso(value) -> Optional[str]:
    """Stripe epoch seconds -> ISO-8601 UTC (None stays None)."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat().replace("+00:00", "Z")
