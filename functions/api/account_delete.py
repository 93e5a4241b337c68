"""
Delete Account Endpoint - POST /api/account/delete

Permanently deletes the signed-in user's identity.

Request body:
{
    "confirmation": "DELETE"
}

Billing safety: if the user has any Stripe identifier, every subscription
that still bills is cancelled first. If cancellation fails the account is
NOT deleted (409) so billing is never orphaned.
"""

import logging
import time

from shared.auth import authenticate, require_bearer_token
from shared.billing_utils import cancel_active_subscriptions, configure_stripe
from shared.constants import DELETE_CONFIRMATION
from shared.cors import with_cors
from shared.errors import APIError, ConfigError, ConflictError, MethodNotAllowedError, UpstreamError, ValidationError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.rate_limit_utils import ACCOUNT_DELETE_IP, ACCOUNT_DELETE_USER, enforce_rate_limit
from shared.request_utils import get_client_ip, get_method, get_path, parse_json_body
from shared.response_utils import error_response, success_response
from shared.subscription_state import SubscriptionState, get_tier_from_user
from shared.supabase_client import SupabaseError, get_supabase_admin

logger = logging.getLogger(__name__)

ALLOW_METHODS = "POST, OPTIONS"

CANCELLATION_FAILED_MESSAGE = (
    "Could not cancel your active subscription automatically. "
    "Please cancel it in the billing portal, then try deleting again."
)


def _delete_account(event: dict, settings) -> dict:
    if get_method(event) != "POST":
        raise MethodNotAllowedError(ALLOW_METHODS)

    require_bearer_token(event)

    body = parse_json_body(event)
    confirmation = str(body.get("confirmation") or "").strip()
    if confirmation != DELETE_CONFIRMATION:
        raise ValidationError(
            "Confirmation required. Type DELETE to confirm.",
            code="confirmation_required",
        )

    settings.require("supabase_url", "supabase_service_key")
    supabase = get_supabase_admin(settings)
    user = authenticate(event, supabase)
    user_id = user["id"]

    enforce_rate_limit(supabase, ACCOUNT_DELETE_IP, get_client_ip(event))
    enforce_rate_limit(supabase, ACCOUNT_DELETE_USER, user_id)

    # The token's user object may be stale; the admin view is authoritative
    try:
        existing = supabase.get_user_by_id(user_id)
    except SupabaseError as e:
        logger.error(f"Could not load user profile for {user_id}: {e}")
        raise UpstreamError("Could not load user profile") from e

    state = SubscriptionState.from_metadata(existing.get("user_metadata"))
    if state.has_billing:
        configure_stripe(settings)
        try:
            result = cancel_active_subscriptions(state.stripe_customer_id, state.stripe_subscription_id)
        except Exception as e:
            # Billing state is unknown after any failure here, so the account stays
            logger.error(f"Subscription cancellation failed for user {user_id}, refusing to delete: {e}", exc_info=True)
            raise ConflictError(CANCELLATION_FAILED_MESSAGE, code="billing_cancel_failed") from e
        logger.info(f"Billing cleanup for user {user_id}: canceled={result['canceled']}")

    try:
        supabase.delete_user(user_id)
    except SupabaseError as e:
        logger.error(f"Supabase delete failed for user {user_id}: {e}")
        raise UpstreamError() from e

    logger.info(f"Deleted account {user_id} (tier={get_tier_from_user(existing)})")
    return success_response({"ok": True})


@with_cors(allow_methods=ALLOW_METHODS)
def handler(event, context=None, settings=None):
    """Lambda handler for POST /api/account/delete."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()

    try:
        response = _delete_account(event, settings)
    except ConfigError as e:
        logger.error(f"Account delete misconfigured: {e}")
        response = e.to_response()
    except APIError as e:
        response = e.to_response()
    except Exception as e:
        logger.error(f"Error deleting account: {e}", exc_info=True)
        response = error_response(500, "internal_error", "Server error")

    log_api_request(logger, get_method(event), get_path(event), response["statusCode"], (time.time() - start) * 1000)
    return response
