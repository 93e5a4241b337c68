# Shared utilities package
from .config import Settings, get_settings
from .errors import APIError
from .response_utils import error_response, success_response
from .subscription_state import SubscriptionState, get_tier_from_user, merge_metadata

__all__ = [
    "Settings",
    "get_settings",
    "APIError",
    "error_response",
    "success_response",
    "SubscriptionState",
    "get_tier_from_user",
    "merge_metadata",
]
