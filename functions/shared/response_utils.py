"""
Response utilities for function handlers.

Provides consistent response formatting for success and error responses.
CORS headers are not added here; the ``with_cors`` decorator merges them in.
"""

import json
from typing import Any


def json_response(status_code: int, body: dict) -> dict:
    """
    Create standardized JSON response.

    Args:
        status_code: HTTP status code
        body: Response body dictionary

    Returns:
        Function response dictionary
    """
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


def error_response(status_code: int, code: str, message: str) -> dict:
    """
    Create an error response.

    Args:
        status_code: HTTP status code
        code: Machine-readable error code (snake_case)
        message: Human-readable error message

    Returns:
        Function response dict
    """
    return json_response(status_code, {"error": {"code": code, "message": message}})


def success_response(data: Any) -> dict:
    """Create a 200 JSON response."""
    return json_response(200, data)


def text_response(status_code: int, body: str) -> dict:
    """Plain-text response (used by the Stripe webhook)."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "text/plain"},
        "body": body,
    }
