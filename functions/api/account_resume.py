"""
Resume Account Endpoint - POST /api/account/resume

Clears the paused flag set by /api/account/pause.
"""

import logging
import time

from api.account_pause import ALLOW_METHODS, update_pause_state
from shared.cors import with_cors
from shared.errors import APIError, ConfigError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.rate_limit_utils import ACCOUNT_RESUME_IP, ACCOUNT_RESUME_USER
from shared.request_utils import get_method, get_path
from shared.response_utils import error_response
from shared.subscription_state import resumed_patch

logger = logging.getLogger(__name__)


@with_cors(allow_methods=ALLOW_METHODS)
def handler(event, context=None, settings=None):
    """Lambda handler for POST /api/account/resume."""
    configure_structured_logging()
    set_request_id(event)
    start = time.time()

    try:
        response = update_pause_state(event, settings, resumed_patch(), ACCOUNT_RESUME_IP, ACCOUNT_RESUME_USER)
    except ConfigError as e:
        logger.error(f"Account resume misconfigured: {e}")
        response = e.to_response()
    except APIError as e:
        response = e.to_response()
    except Exception as e:
        logger.error(f"Error resuming account: {e}", exc_info=True)
        response = error_response(500, "internal_error", "Server error")

    log_api_request(logger, get_method(event), get_path(event), response["statusCode"], (time.time() - start) * 1000)
    return response
