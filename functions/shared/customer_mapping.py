"""
Stripe customer -> Supabase user mapping.

``stripe_customers`` is keyed by ``customer_id``, the stable join key between
Stripe and the user. It is upserted on every subscription-related webhook
and used to find the user when an event carries no ``user_id`` metadata.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from shared.constants import CUSTOMERS_TABLE
from shared.subscription_state import current_period_end, epoch_to_iso, subscription_price
from shared.types import CustomerMappingRow

logger = logging.getLogger(__name__)


def build_mapping_row(customer_id: str, user_id: str, subscription: Optional[dict] = None) -> CustomerMappingRow:
    row: CustomerMappingRow = {
        "customer_id": customer_id,
        "user_id": user_id,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    if subscription:
        price_id, interval = subscription_price(subscription)
        row.update(
            {
                "subscription_id": subscription.get("id"),
                "status": subscription.get("status"),
                "price_id": price_id,
                "interval": interval,
                "current_period_end": epoch_to_iso(current_period_end(subscription)),
            }
        )
    return row


def upsert_customer_mapping(supabase, customer_id: str, user_id: str, subscription: Optional[dict] = None) -> None:
    """Create or refresh the mapping row. Raises SupabaseError on failure."""
    row = build_mapping_row(customer_id, user_id, subscription)
    supabase.upsert(CUSTOMERS_TABLE, row, on_conflict="customer_id")
    logger.info(f"Upserted customer mapping for {customer_id}")


def get_user_id_by_customer_id(supabase, customer_id: str) -> Optional[str]:
    rows = supabase.select(CUSTOMERS_TABLE, {"customer_id": customer_id}, limit=1)
    return rows[0].get("user_id") if rows else None


def get_user_id_by_subscription_id(supabase, subscription_id: str) -> Optional[str]:
    rows = supabase.select(
        CUSTOMERS_TABLE,
        {"subscription_id": subscription_id},
        limit=1,
        order="updated_at.desc",
    )
    return rows[0].get("user_id") if rows else None
