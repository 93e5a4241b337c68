"""Shared request utilities for function handlers.

Handlers run behind API Gateway (v1 and v2 payloads) and Netlify Functions,
which share the Lambda proxy event shape with small differences. Everything
that reads from the raw event goes through here.
"""

import base64
import json
import logging
from typing import Optional

from shared.errors import ValidationError

logger = logging.getLogger(__name__)


def get_header(event: dict, name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def get_method(event: dict) -> str:
    """HTTP method from a v1 (httpMethod) or v2 (requestContext.http) event."""
    method = event.get("httpMethod")
    if not method:
        method = ((event.get("requestContext") or {}).get("http") or {}).get("method")
    return (method or "").upper()


def get_path(event: dict) -> str:
    return event.get("path") or event.get("rawPath") or ""


def get_client_ip(event: dict) -> str:
    """Extract client IP from the hosting platform's verified source.

    SECURITY: requestContext is populated by API Gateway and cannot be
    spoofed. Netlify sets x-nf-client-connection-ip and Vercel sets
    x-real-ip at the edge, overwriting anything the client sent. Never
    trust X-Forwarded-For for rate limiting as it can be forged.
    """
    request_context = event.get("requestContext") or {}
    source_ip = (request_context.get("identity") or {}).get("sourceIp") or (
        request_context.get("http") or {}
    ).get("sourceIp")
    if source_ip:
        return source_ip

    for header in ("x-nf-client-connection-ip", "x-real-ip"):
        value = get_header(event, header)
        if value:
            return value.strip()

    logger.warning("Missing client IP in request - possible misconfiguration")
    return "unknown"


def get_bearer_token(event: dict) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    auth_header = get_header(event, "authorization")
    if not isinstance(auth_header, str) or not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer "):].strip()
    return token or None


def get_raw_body(event: dict) -> str:
    """Request body as text, decoding base64 payloads.

    Stripe signatures are computed over the exact bytes, so the body must not
    be re-serialized.
    """
    body = event.get("body") or ""
    if event.get("isBase64Encoded") and body:
        return base64.b64decode(body).decode("utf-8")
    return body


def parse_json_body(event: dict) -> dict:
    """Parse the JSON request body. An empty body is treated as ``{}``.

    Raises:
        ValidationError: body is not valid JSON or not an object
    """
    try:
        raw = get_raw_body(event)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body", code="invalid_json")

    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON body", code="invalid_json")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body", code="invalid_json")
    return body
