"""
Strict CORS policy for the browser-invoked endpoints.

Only the configured SITE_URL origin is allowed, plus localhost origins when
ALLOW_DEV_CORS=true. Requests without an Origin header (server-to-server) are
passed through untouched. The Stripe webhook is not wrapped.
"""

import functools
import re
from typing import Callable, Optional
from urllib.parse import urlsplit

from shared.request_utils import get_header, get_method

DEFAULT_ALLOW_METHODS = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
DEFAULT_ALLOW_HEADERS = "Authorization, Content-Type, Stripe-Signature"
DEFAULT_MAX_AGE_SECONDS = 600

_DEV_ORIGIN_PREFIXES = (
    "http://localhost:",
    "http://127.0.0.1:",
    "http://[::1]:",
)

# Typos seen in hand-edited env vars, e.g. `https;//example.com`
_SEMICOLON_HTTPS = re.compile(r"^https?;//", re.IGNORECASE)
_COLON_SEMICOLON_HTTPS = re.compile(r"^https?:;//", re.IGNORECASE)
_EXTRA_SLASHES = re.compile(r"^(https?://)/+", re.IGNORECASE)
_HAS_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def normalize_origin(value) -> Optional[str]:
    """Normalize an origin-ish string to ``scheme://host[:port]``.

    Returns None for empty or unparseable input.
    """
    raw = str(value if value is not None else "").strip()
    if not raw:
        return None

    # `https;//` and `http;//` both become `https://`, matching how the
    # values are written in the deploy dashboards
    raw = _SEMICOLON_HTTPS.sub("https://", raw)
    raw = _COLON_SEMICOLON_HTTPS.sub("https://", raw)
    raw = _EXTRA_SLASHES.sub(lambda m: m.group(1), raw)

    with_scheme = raw if _HAS_SCHEME.match(raw) else f"https://{raw}"

    try:
        parts = urlsplit(with_scheme)
        # Accessing .port validates it
        parts.port
    except ValueError:
        return None

    if not parts.scheme or not parts.netloc or not parts.hostname:
        return None
    if any(ch.isspace() for ch in parts.netloc):
        return None

    host = parts.netloc.rsplit("@", 1)[-1].lower()
    return f"{parts.scheme.lower()}://{host}"


def add_vary(headers: dict, value: str) -> None:
    """Add a token to the Vary header without duplicating existing tokens."""
    existing_key = next((k for k in headers if k.lower() == "vary"), None)
    previous = headers.pop(existing_key, "") if existing_key else ""
    if isinstance(previous, (list, tuple)):
        previous = ", ".join(previous)

    parts = [p.strip() for p in str(previous).split(",") if p.strip()]
    if not any(p.lower() == value.lower() for p in parts):
        parts.append(value)
    headers["Vary"] = ", ".join(parts)


def is_allowed_dev_origin(origin: Optional[str]) -> bool:
    if not origin:
        return False
    return origin.startswith(_DEV_ORIGIN_PREFIXES)


def _preflight(status_code: int, headers: dict) -> dict:
    return {"statusCode": status_code, "headers": headers, "body": ""}


def apply_cors(
    event: dict,
    headers: dict,
    site_url: Optional[str],
    allow_dev: bool = False,
    allow_methods: str = DEFAULT_ALLOW_METHODS,
    allow_headers: str = DEFAULT_ALLOW_HEADERS,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
) -> Optional[dict]:
    """Apply the CORS policy for a request.

    Adds the CORS response headers to ``headers`` in place. Returns a
    finished preflight response for OPTIONS requests, None otherwise (the
    handler should continue).
    """
    is_preflight = get_method(event) == "OPTIONS"
    site_origin = normalize_origin(site_url)
    request_origin = normalize_origin(get_header(event, "origin"))

    if not request_origin:
        return _preflight(204, headers) if is_preflight else None

    allowed = (site_origin is not None and request_origin == site_origin) or (
        allow_dev and is_allowed_dev_origin(request_origin)
    )
    if not allowed:
        return _preflight(403, headers) if is_preflight else None

    add_vary(headers, "Origin")
    headers["Access-Control-Allow-Origin"] = request_origin
    headers["Access-Control-Allow-Credentials"] = "true"

    if is_preflight:
        requested_headers = get_header(event, "access-control-request-headers")
        headers["Access-Control-Allow-Methods"] = allow_methods
        headers["Access-Control-Allow-Headers"] = requested_headers or allow_headers
        headers["Access-Control-Max-Age"] = str(max_age_seconds)
        return _preflight(204, headers)

    return None


def merge_cors_headers(response: dict, cors_headers: dict) -> dict:
    """Merge CORS headers into a handler response, keeping Vary additive."""
    response_headers = response.setdefault("headers", {})
    for key, value in cors_headers.items():
        if key.lower() == "vary":
            for token in value.split(","):
                if token.strip():
                    add_vary(response_headers, token.strip())
        else:
            response_headers[key] = value
    return response


def with_cors(allow_methods: str = DEFAULT_ALLOW_METHODS) -> Callable:
    """Decorator applying the CORS policy around a function handler.

    Preflight requests are answered without calling the wrapped handler.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(event, context=None, settings=None):
            if settings is None:
                # Import here to avoid circular imports at module level
                from shared.config import get_settings

                settings = get_settings()

            cors_headers: dict = {}
            preflight = apply_cors(
                event,
                cors_headers,
                site_url=settings.site_url,
                allow_dev=settings.allow_dev_cors,
                allow_methods=allow_methods,
            )
            if preflight is not None:
                return preflight

            response = func(event, context, settings=settings)
            return merge_cors_headers(response, cors_headers)

        return wrapper

    return decorator
