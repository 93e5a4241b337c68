"""
Checkout session cache.

Repeated clicks on "Upgrade" should land on the same Stripe Checkout page
instead of creating a new session each time. Two mechanisms cooperate:

- a row in ``stripe_checkout_sessions`` keyed by ``v1:{user}:{price}:{interval}``
  that remembers the last session URL until it expires
- a time-bucketed Stripe idempotency key, so concurrent requests in the same
  10-minute window that both miss the cache still collapse into one session
  on Stripe's side

All cache reads and writes are best-effort: a failure is logged and treated
as a cache miss (or ignored on write).
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from shared.constants import (
    CHECKOUT_CACHE_DEFAULT_TTL_SECONDS,
    CHECKOUT_CACHE_KEY_VERSION,
    CHECKOUT_CACHE_SKEW_SECONDS,
    CHECKOUT_IDEMPOTENCY_BUCKET_SECONDS,
    CHECKOUT_SESSIONS_TABLE,
)
from shared.supabase_client import SupabaseError
from shared.types import CheckoutCacheRow

logger = logging.getLogger(__name__)


def build_cache_key(user_id: str, price_id: str, interval: str) -> str:
    return f"{CHECKOUT_CACHE_KEY_VERSION}:{user_id}:{price_id}:{interval}"


def build_idempotency_key(user_id: str, price_id: str, interval: str, now: float) -> str:
    """Stripe idempotency key, stable for the current 10-minute bucket."""
    bucket = int(now // CHECKOUT_IDEMPOTENCY_BUCKET_SECONDS)
    return f"checkout:{user_id}:{price_id}:{interval}:{bucket}"


def _parse_timestamp(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def is_locally_fresh(row: Optional[dict], now: float) -> bool:
    """True if the cached row has a URL and has not expired (with skew)."""
    if not row or not row.get("checkout_url") or not row.get("checkout_session_id"):
        return False
    expires_at = _parse_timestamp(row.get("expires_at"))
    if expires_at is None:
        return False
    return expires_at - CHECKOUT_CACHE_SKEW_SECONDS > now


def is_session_reusable(session, now: float) -> bool:
    """True if a live Stripe Checkout session can still be completed."""
    if not session or session.get("status") != "open":
        return False
    expires_at = session.get("expires_at")
    return expires_at is None or float(expires_at) > now


def get_cached_session(supabase, cache_key: str) -> Optional[CheckoutCacheRow]:
    try:
        rows = supabase.select(CHECKOUT_SESSIONS_TABLE, {"cache_key": cache_key}, limit=1)
    except SupabaseError as e:
        logger.warning(f"Checkout cache read failed: {e}")
        return None
    return rows[0] if rows else None


def save_cached_session(
    supabase,
    *,
    cache_key: str,
    user_id: str,
    price_id: str,
    interval: str,
    session,
    now: float,
) -> bool:
    """Remember a freshly created session. Returns False if the write failed."""
    expires_at = session.get("expires_at") or (now + CHECKOUT_CACHE_DEFAULT_TTL_SECONDS)
    row: CheckoutCacheRow = {
        "cache_key": cache_key,
        "user_id": user_id,
        "price_id": price_id,
        "interval": interval,
        "checkout_session_id": session.get("id"),
        "checkout_url": session.get("url"),
        "expires_at": datetime.fromtimestamp(float(expires_at), tz=timezone.utc).isoformat(),
    }
    try:
        supabase.upsert(CHECKOUT_SESSIONS_TABLE, row, on_conflict="cache_key")
    except SupabaseError as e:
        logger.warning(f"Checkout cache write failed: {e}")
        return False
    return True
