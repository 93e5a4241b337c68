"""
Pause Account Endpoint - POST /api/account/pause

Marks the signed-in user's account as paused. Only ``paused`` and
``paused_at`` are merged into the metadata bag; every other field is kept.
Re-pausing a paused account just refreshes ``paused_at``.
"""

import logging
import time

from shared.auth import authenticate, require_bearer_token
from shared.cors import with_cors
from shared.errors import APIError, ConfigError, MethodNotAllowedError, UpstreamError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.rate_limit_utils import ACCOUNT_PAUSE_IP, ACCOUNT_PAUSE_USER, RateLimitRule, enforce_rate_limit
from shared.request_utils import get_client_ip, get_method, get_path
from shared.response_utils import error_response, success_response
from shared.subscription_state import paused_patch
from shared.supabase_client import SupabaseError, get_supabase_admin

logger = logging.getLogger(__name__)

ALLOW_METHODS = "POST, OPTIONS"


def update_pause_state(
    event: dict,
    settings,
    patch: dict,
    ip_rule: RateLimitRule,
    user_rule: RateLimitRule,
) -> dict:
    """Shared flow of pause and resume: auth, rate limits, metadata merge."""
    if get_method(event) != "POST":
        raise MethodNotAllowedError(ALLOW_METHODS)

    require_bearer_token(event)
    settings.require("supabase_url", "supabase_service_key")

    supabase = get_supabase_admin(settings)
    user = authenticate(event, supabase)

    enforce_rate_limit(supabase, ip_rule, get_client_ip(event))
    enforce_rate_limit(supabase, user_rule, user["id"])

    try:
        supabase.merge_user_metadata(user["id"], patch)
    except SupabaseError as e:
        logger.error(f"Failed to update pause state for user {user['id']}: {e}")
        raise UpstreamError() from e

    logger.info(f"Set paused={patch.get('paused')} for user {user['id']}")
    return success_response({"ok": True})


@with_cors(allow_methods=ALLOW_METHODS)
def handler(event, context=None, settings=None):
    """Lambda handler for POST /api/account/pause."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()

    try:
        response = update_pause_state(event, settings, paused_patch(), ACCOUNT_PAUSE_IP, ACCOUNT_PAUSE_USER)
    except ConfigError as e:
        logger.error(f"Account pause misconfigured: {e}")
        response = e.to_response()
    except APIError as e:
        response = e.to_response()
    except Exception as e:
        logger.error(f"Error pausing account: {e}", exc_info=True)
        response = error_response(500, "internal_error", "Server error")

    log_api_request(logger, get_method(event), get_path(event), response["statusCode"], (time.time() - start) * 1000)
    return response
