"""
Rate Limiting Utilities

Counting happens in the ``check_rate_limit`` Supabase RPC, which atomically
increments the counter for ``(key, window)`` and reports whether the request
is within ``max_count``. This module only asks and interprets the answer.

The answer is a tri-state: ALLOWED, DENIED, or UNKNOWN when the RPC itself
failed. What UNKNOWN means is declared per rule (``on_unknown``); every rule
shipped today fails open so an outage of the counter never locks users out of
their account actions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from shared.constants import RATE_LIMIT_RPC
from shared.errors import RateLimitedError
from shared.supabase_client import SupabaseError

logger = logging.getLogger(__name__)


class RateLimitDecision(Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    UNKNOWN = "unknown"


class UnknownPolicy(Enum):
    """What to do when the limiter cannot give an answer."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class RateLimitRule:
    """``max_count`` requests per ``window_seconds`` for one key prefix."""

    prefix: str
    window_seconds: int
    max_count: int
    on_unknown: UnknownPolicy = UnknownPolicy.FAIL_OPEN

    def key(self, subject: str) -> str:
        return f"{self.prefix}:{subject}"


@dataclass(frozen=True)
class RateLimitResult:
    decision: RateLimitDecision
    reset_at: Optional[str] = None


# Account deletion is the most sensitive action
ACCOUNT_DELETE_IP = RateLimitRule("account:delete:ip", window_seconds=60, max_count=6)
ACCOUNT_DELETE_USER = RateLimitRule("account:delete:user", window_seconds=3600, max_count=3)

ACCOUNT_PAUSE_IP = RateLimitRule("account:pause:ip", window_seconds=60, max_count=20)
ACCOUNT_PAUSE_USER = RateLimitRule("account:pause:user", window_seconds=300, max_count=10)

ACCOUNT_RESUME_IP = RateLimitRule("account:resume:ip", window_seconds=60, max_count=20)
ACCOUNT_RESUME_USER = RateLimitRule("account:resume:user", window_seconds=300, max_count=10)

CHECKOUT_IP = RateLimitRule("stripe:checkout:ip", window_seconds=60, max_count=12)
CHECKOUT_USER = RateLimitRule("stripe:checkout:user", window_seconds=600, max_count=4)


def _first_row(data) -> Optional[dict]:
    """RPCs returning a table come back as a list; scalar records as a dict."""
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, dict) else None


def check_rate_limit(supabase, key: str, window_seconds: int, max_count: int) -> RateLimitResult:
    """Ask the limiter RPC about one request. Never raises."""
    try:
        data = supabase.rpc(
            RATE_LIMIT_RPC,
            {"p_key": key, "p_window_seconds": window_seconds, "p_max_count": max_count},
        )
    except SupabaseError as e:
        logger.warning(f"Rate limit check failed for {key}: {e}")
        return RateLimitResult(RateLimitDecision.UNKNOWN)

    row = _first_row(data)
    if row is None or not isinstance(row.get("allowed"), bool):
        logger.warning(f"Unexpected rate limit reply for {key}")
        return RateLimitResult(RateLimitDecision.UNKNOWN)

    reset_at = row.get("reset_at")
    if row["allowed"]:
        return RateLimitResult(RateLimitDecision.ALLOWED, reset_at)
    return RateLimitResult(RateLimitDecision.DENIED, reset_at)


def seconds_until(reset_at: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Seconds from now until an ISO-8601 timestamp (0 if in the past)."""
    if not reset_at:
        return None
    try:
        reset = datetime.fromisoformat(str(reset_at).replace("Z", "+00:00"))
    except ValueError:
        return None
    if reset.tzinfo is None:
        reset = reset.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int((reset - now).total_seconds()))


def enforce_rate_limit(supabase, rule: RateLimitRule, subject: str) -> RateLimitResult:
    """Check one rule for one subject (IP or user id).

    Raises:
        RateLimitedError: the limiter denied the request, or could not answer
            and the rule fails closed
    """
    key = rule.key(subject)
    result = check_rate_limit(supabase, key, rule.window_seconds, rule.max_count)

    if result.decision is RateLimitDecision.DENIED:
        logger.info(f"Rate limit exceeded for {rule.prefix}")
        raise RateLimitedError(key, reset_at=result.reset_at, retry_after_seconds=seconds_until(result.reset_at))

    if result.decision is RateLimitDecision.UNKNOWN:
        if rule.on_unknown is UnknownPolicy.FAIL_CLOSED:
            logger.warning(f"Rate limiter unavailable, failing closed for {rule.prefix}")
            raise RateLimitedError(key)
        logger.warning(f"Rate limiter unavailable, failing open for {rule.prefix}")

    return result
