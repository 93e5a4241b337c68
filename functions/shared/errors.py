"""
Standardized error responses for the billing and account functions.

Every handler failure maps onto one of these classes:

- ConfigError       500  missing required configuration (operator-facing)
- AuthError         401  missing/invalid bearer token or session
- ValidationError   400  malformed body, interval or confirmation
- RateLimitedError  429  carries reset_at
- ConflictError     409  e.g. billing must be cancelled before deletion
- UpstreamError     500  Stripe or Supabase call failed
"""

import json
from typing import Optional


class APIError(Exception):
    """Base class for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to function response format."""
        body = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            body["error"]["details"] = self.details

        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }


class ConfigError(APIError):
    """Raised when required environment configuration is missing.

    ``missing`` holds the variable names for server-side logs. The client
    only sees ``message``, which defaults to a generic text.
    """

    def __init__(self, missing: list[str], message: str = "Server error"):
        super().__init__(code="config", message=message, status_code=500)
        self.missing = list(missing)

    def __str__(self) -> str:
        return f"Missing configuration: {', '.join(self.missing)}"


class AuthError(APIError):
    """Raised when the bearer token is missing or the session is invalid."""

    def __init__(self, message: str = "Unauthorized", code: str = "unauthorized"):
        super().__init__(code=code, message=message, status_code=401)


class ValidationError(APIError):
    """Raised for malformed request input."""

    def __init__(self, message: str, code: str = "invalid_request", details: Optional[dict] = None):
        super().__init__(code=code, message=message, status_code=400, details=details)


class MethodNotAllowedError(APIError):
    """Raised when the HTTP method is not supported by the endpoint."""

    def __init__(self, allowed: str):
        super().__init__(code="method_not_allowed", message="Method not allowed", status_code=405)
        self.allowed = allowed

    def to_response(self) -> dict:
        response = super().to_response()
        response["headers"]["Allow"] = self.allowed
        return response


class RateLimitedError(APIError):
    """Raised when a rate limit rule denies the request."""

    def __init__(self, key: str, reset_at: Optional[str] = None, retry_after_seconds: Optional[int] = None):
        details = {}
        if reset_at:
            details["reset_at"] = reset_at
        super().__init__(
            code="rate_limited",
            message="Too many requests. Please wait and try again.",
            status_code=429,
            details=details,
        )
        self.key = key
        self.reset_at = reset_at
        self.retry_after_seconds = retry_after_seconds

    def to_response(self) -> dict:
        response = super().to_response()
        if self.retry_after_seconds is not None:
            response["headers"]["Retry-After"] = str(self.retry_after_seconds)
        return response


class ConflictError(APIError):
    """Raised when the request conflicts with current billing state."""

    def __init__(self, message: str, code: str = "conflict"):
        super().__init__(code=code, message=message, status_code=409)


class UpstreamError(APIError):
    """Raised when a Stripe or Supabase call fails."""

    def __init__(self, message: str = "Server error", code: str = "upstream_error", status_code: int = 500):
        super().__init__(code=code, message=message, status_code=status_code)

