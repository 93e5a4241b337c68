"""
Row shapes of the Supabase tables the billing functions read and write.
"""

from typing import TypedDict, Optional


class CustomerMappingRow(TypedDict, total=False):
    """Row in the stripe_customers table (unique on customer_id)."""

    customer_id: str
    user_id: str
    subscription_id: Optional[str]
    status: Optional[str]
    price_id: Optional[str]
    interval: Optional[str]
    current_period_end: Optional[str]
    updated_at: str


class CheckoutCacheRow(TypedDict, total=False):
    """Row in the stripe_checkout_sessions table (unique on cache_key)."""

    cache_key: str
    user_id: str
    price_id: str
    interval: str
    checkout_session_id: str
    checkout_url: str
    expires_at: str


class WebhookEventRow(TypedDict, total=False):
    """Row in the stripe_webhook_events table (unique on event_id)."""

    event_id: str
    event_type: str
    status: str
    processed_at: Optional[str]
    last_error: Optional[str]
    last_seen_at: str
