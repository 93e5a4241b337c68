"""
Resolve the Supabase user id a Stripe object belongs to.

Resolvers are tried in order and the first non-empty answer wins:

1. ids we put on the object ourselves (client_reference_id, metadata.user_id)
2. the customer mapping, by customer id
3. the customer mapping, by subscription id

Mapping lookups raise SupabaseError on failure so the webhook is retried
instead of silently dropping the update.
"""

import logging
from typing import Callable, Iterable, Optional

from shared.customer_mapping import get_user_id_by_customer_id, get_user_id_by_subscription_id

logger = logging.getLogger(__name__)

Resolver = Callable[[dict, object], Optional[str]]


def _subscription_id(obj: dict) -> Optional[str]:
    if obj.get("object") == "subscription":
        return obj.get("id")
    return obj.get("subscription")


def from_client_reference(obj: dict, supabase) -> Optional[str]:
    return obj.get("client_reference_id") or None


def from_metadata(obj: dict, supabase) -> Optional[str]:
    return (obj.get("metadata") or {}).get("user_id") or None


def from_customer_mapping(obj: dict, supabase) -> Optional[str]:
    customer_id = obj.get("customer")
    if not customer_id:
        return None
    return get_user_id_by_customer_id(supabase, customer_id)


def from_subscription_mapping(obj: dict, supabase) -> Optional[str]:
    subscription_id = _subscription_id(obj)
    if not subscription_id:
        return None
    return get_user_id_by_subscription_id(supabase, subscription_id)


SUBSCRIPTION_RESOLVERS: tuple[Resolver, ...] = (
    from_metadata,
    from_customer_mapping,
    from_subscription_mapping,
)

CHECKOUT_RESOLVERS: tuple[Resolver, ...] = (
    from_client_reference,
    from_metadata,
    from_customer_mapping,
    from_subscription_mapping,
)


def resolve_user_id(obj: dict, supabase, resolvers: Iterable[Resolver] = SUBSCRIPTION_RESOLVERS) -> Optional[str]:
    for resolver in resolvers:
        user_id = resolver(obj, supabase)
        if user_id:
            logger.debug(f"Resolved user via {resolver.__name__}")
            return user_id
    return None
