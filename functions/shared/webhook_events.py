"""Stripe webhook event claims and audit trail.

Stripe delivers events at least once. Before any side effect, the webhook
claims the event id through the ``claim_stripe_webhook_event`` RPC, which
atomically inserts (or re-opens a failed) row in ``stripe_webhook_events``
and reports whether this caller won. Only the winner processes the event.

Per event id: unclaimed -> claimed -> succeeded | failed. A failed event can
be claimed again by Stripe's next retry.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from shared.constants import CLAIM_WEBHOOK_EVENT_RPC, WEBHOOK_EVENTS_TABLE
from shared.rate_limit_utils import UnknownPolicy
from shared.supabase_client import SupabaseError
from shared.types import WebhookEventRow

logger = logging.getLogger(__name__)

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"

# An outage of the claim RPC must not stall billing updates; handlers are
# written so that a duplicate run converges to the same metadata.
CLAIM_UNKNOWN_POLICY = UnknownPolicy.FAIL_OPEN

MAX_ERROR_LENGTH = 500


class ClaimDecision(Enum):
    CLAIMED = "claimed"
    DUPLICATE = "duplicate"
    UNKNOWN = "unknown"


def _parse_claim_reply(data) -> Optional[bool]:
    if isinstance(data, bool):
        return data
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        claimed = data.get("claimed")
        if isinstance(claimed, bool):
            return claimed
    return None


def claim_event(supabase, event_id: str, event_type: str) -> ClaimDecision:
    """Atomically claim a webhook event. Never raises."""
    try:
        data = supabase.rpc(
            CLAIM_WEBHOOK_EVENT_RPC,
            {"p_event_id": event_id, "p_event_type": event_type},
        )
    except SupabaseError as e:
        logger.warning(f"Claim RPC failed for event {event_id}: {e}")
        return ClaimDecision.UNKNOWN

    claimed = _parse_claim_reply(data)
    if claimed is None:
        logger.warning(f"Unexpected claim reply for event {event_id}")
        return ClaimDecision.UNKNOWN
    return ClaimDecision.CLAIMED if claimed else ClaimDecision.DUPLICATE


def should_process(decision: ClaimDecision) -> bool:
    if decision is ClaimDecision.CLAIMED:
        return True
    if decision is ClaimDecision.DUPLICATE:
        return False
    return CLAIM_UNKNOWN_POLICY is UnknownPolicy.FAIL_OPEN


def record_event_outcome(
    supabase,
    event_id: str,
    event_type: str,
    status: str,
    error: Optional[str] = None,
) -> bool:
    """Record the processing outcome (best-effort). Returns False on failure."""
    now = datetime.now(timezone.utc).isoformat()
    row: WebhookEventRow = {
        "event_id": event_id,
        "event_type": event_type,
        "status": status,
        "processed_at": now if status == STATUS_SUCCEEDED else None,
        "last_error": error[:MAX_ERROR_LENGTH] if error else None,
        "last_seen_at": now,
    }
    try:
        supabase.upsert(WEBHOOK_EVENTS_TABLE, row, on_conflict="event_id")
    except SupabaseError as e:
        logger.error(f"Failed to record webhook event {event_id}: {e}")
        return False
    return True
