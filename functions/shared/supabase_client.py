"""
Supabase admin client.

Thin synchronous wrapper over the Supabase HTTP APIs used by the billing
functions:

- GoTrue auth (``/auth/v1``): resolve a user from an access token, read,
  update and delete users with the service-role key
- PostgREST (``/rest/v1``): table reads/upserts and RPC calls

Every call is logged with ``log_external_call``. Failures raise
``SupabaseError``; callers decide whether a failure is fatal or best-effort.

Testing:
    Pass ``transport=httpx.MockTransport(handler)`` to SupabaseAdmin, or patch
    ``get_supabase_admin`` in the handler module.
"""

import logging
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx

from shared.logging_utils import log_external_call
from shared.subscription_state import merge_metadata

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class SupabaseError(Exception):
    """A Supabase call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None, operation: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation


class SupabaseAdmin:
    """Service-role Supabase client. One instance per cold start."""

    def __init__(
        self,
        url: str,
        service_key: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.url,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        start = time.time()
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            latency_ms = (time.time() - start) * 1000
            log_external_call(logger, "supabase", operation, False, latency_ms, error=type(e).__name__)
            raise SupabaseError(f"{operation} failed: {e}", operation=operation) from e

        latency_ms = (time.time() - start) * 1000
        if response.status_code >= 400:
            log_external_call(
                logger, "supabase", operation, False, latency_ms, error=f"HTTP {response.status_code}"
            )
            raise SupabaseError(
                f"{operation} returned HTTP {response.status_code}",
                status_code=response.status_code,
                operation=operation,
            )

        log_external_call(logger, "supabase", operation, True, latency_ms)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # Auth (GoTrue)
    # ------------------------------------------------------------------

    def get_user(self, access_token: str) -> dict:
        """Resolve the user owning an access token."""
        response = self._request(
            "auth.get_user",
            "GET",
            "/auth/v1/user",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        user = self._json(response)
        if not isinstance(user, dict) or not user.get("id"):
            raise SupabaseError("auth.get_user returned no user", status_code=401, operation="auth.get_user")
        return user

    def get_user_by_id(self, user_id: str) -> dict:
        response = self._request("auth.admin.get_user", "GET", f"/auth/v1/admin/users/{quote(user_id, safe='')}")
        user = self._json(response)
        if not isinstance(user, dict) or not user.get("id"):
            raise SupabaseError(
                "auth.admin.get_user returned no user", status_code=404, operation="auth.admin.get_user"
            )
        return user

    def update_user_metadata(self, user_id: str, metadata: dict) -> dict:
        """Replace the user's metadata bag with ``metadata``."""
        response = self._request(
            "auth.admin.update_user",
            "PUT",
            f"/auth/v1/admin/users/{quote(user_id, safe='')}",
            json={"user_metadata": metadata},
        )
        return self._json(response) or {}

    def merge_user_metadata(self, user_id: str, patch: dict) -> dict:
        """Read the authoritative metadata, merge ``patch`` and write it back.

        Last write wins for concurrent writers of the same field.
        """
        user = self.get_user_by_id(user_id)
        merged = merge_metadata(user.get("user_metadata") or {}, patch)
        return self.update_user_metadata(user_id, merged)

    def delete_user(self, user_id: str) -> None:
        self._request("auth.admin.delete_user", "DELETE", f"/auth/v1/admin/users/{quote(user_id, safe='')}")

    # ------------------------------------------------------------------
    # PostgREST
    # ------------------------------------------------------------------

    def rpc(self, function: str, params: dict) -> Any:
        response = self._request(f"rpc.{function}", "POST", f"/rest/v1/rpc/{function}", json=params)
        return self._json(response)

    def select(
        self,
        table: str,
        filters: dict,
        limit: Optional[int] = None,
        order: Optional[str] = None,
    ) -> list[dict]:
        """Select rows matching equality ``filters``."""
        params = {"select": "*"}
        for column, value in filters.items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)

        response = self._request(f"select.{table}", "GET", f"/rest/v1/{table}", params=params)
        rows = self._json(response)
        return rows if isinstance(rows, list) else []

    def upsert(self, table: str, row: dict, on_conflict: str) -> None:
        """Insert ``row`` or merge it into the existing row with the same key."""
        self._request(
            f"upsert.{table}",
            "POST",
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )


_admin: Optional[SupabaseAdmin] = None
_admin_key: Optional[tuple] = None


def get_supabase_admin(settings) -> SupabaseAdmin:
    """Get the shared SupabaseAdmin, creating it lazily on first use."""
    global _admin, _admin_key
    settings.require("supabase_url", "supabase_service_key")

    key = (settings.supabase_url, settings.supabase_service_key)
    if _admin is None or _admin_key != key:
        _admin = SupabaseAdmin(
            settings.supabase_url,
            settings.supabase_service_key,
            timeout=settings.supabase_timeout_seconds,
        )
        _admin_key = key
    return _admin


def reset_supabase_admin() -> None:
    """Drop the cached client. Used in tests for clean state."""
    global _admin, _admin_key
    if _admin is not None:
        _admin.close()
    _admin = None
    _admin_key = None
