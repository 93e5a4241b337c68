"""
Bearer-token authentication against Supabase Auth.

Every browser-invoked endpoint sends ``Authorization: Bearer <access token>``.
The token is resolved to a user through GoTrue's ``/auth/v1/user`` using the
service-role client.
"""

import logging

from shared.errors import AuthError, UpstreamError
from shared.logging_utils import set_user_id
from shared.request_utils import get_bearer_token
from shared.supabase_client import SupabaseError

logger = logging.getLogger(__name__)


def require_bearer_token(event: dict) -> str:
    """Raises AuthError if the request carries no bearer token."""
    token = get_bearer_token(event)
    if not token:
        raise AuthError("Missing Authorization bearer token")
    return token


def authenticate(event: dict, supabase) -> dict:
    """
    Resolve the request's bearer token to a Supabase user.

    Returns:
        The Supabase user object (``id``, ``email``, ``user_metadata``, ...)

    Raises:
        AuthError: no token, or the token is rejected by Supabase
        UpstreamError: Supabase Auth could not be reached
    """
    token = require_bearer_token(event)
    try:
        user = supabase.get_user(token)
    except SupabaseError as e:
        if e.status_code is not None and 400 <= e.status_code < 500:
            raise AuthError("Invalid Supabase session") from e
        logger.error(f"Supabase auth lookup failed: {e}")
        raise UpstreamError() from e
    set_user_id(user.get("id", ""))
    return user
