"""
Function configuration.

All environment reads happen here, once per cold start. Handlers receive a
``Settings`` instance (``handler(event, context, settings=None)``) and call
``settings.require(...)`` for the values they cannot run without.

Stripe secrets can be provided directly (STRIPE_SECRET_KEY,
STRIPE_WEBHOOK_SECRET) or through AWS Secrets Manager (STRIPE_SECRET_ARN,
STRIPE_WEBHOOK_SECRET_ARN). Direct values win when both are set.
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from shared.aws_clients import get_secretsmanager
from shared.cors import normalize_origin
from shared.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SUPABASE_TIMEOUT_SECONDS = 10.0

# Settings field -> environment variable reported when missing
ENV_NAMES = {
    "supabase_url": "SUPABASE_URL",
    "supabase_service_key": "SUPABASE_SERVICE_ROLE_KEY",
    "stripe_secret_key": "STRIPE_SECRET_KEY",
    "stripe_webhook_secret": "STRIPE_WEBHOOK_SECRET",
    "stripe_price_id_monthly": "STRIPE_PRICE_ID_MONTHLY",
    "stripe_price_id_yearly": "STRIPE_PRICE_ID_YEARLY",
    "site_url": "SITE_URL",
}


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_id_monthly: Optional[str] = None
    stripe_price_id_yearly: Optional[str] = None
    stripe_api_version: Optional[str] = None
    site_url: Optional[str] = None
    allow_dev_cors: bool = False
    supabase_timeout_seconds: float = DEFAULT_SUPABASE_TIMEOUT_SECONDS

    def missing(self, *names: str) -> list[str]:
        """Return the environment variable names of unset settings."""
        return [ENV_NAMES.get(name, name.upper()) for name in names if not getattr(self, name)]

    def require(self, *names: str) -> None:
        """Raise ConfigError if any of the named settings is unset."""
        missing = self.missing(*names)
        if missing:
            raise ConfigError(missing)

    def price_id_for(self, interval: str) -> str:
        """Resolve the Stripe price for a billing interval.

        The price variables are not secrets, so the error names them.
        """
        field = "stripe_price_id_yearly" if interval == "year" else "stripe_price_id_monthly"
        price_id = getattr(self, field)
        if not price_id:
            env_name = ENV_NAMES[field]
            raise ConfigError([env_name], message=f"Missing {env_name}")
        return price_id


def _clean(value: Optional[str]) -> Optional[str]:
    # Deploy tooling sets "" for unconfigured values
    if value is None:
        return None
    value = value.strip()
    return value or None


def _read_secret(arn: Optional[str], json_field: str) -> Optional[str]:
    """Read a secret string from Secrets Manager.

    JSON secrets are unwrapped via ``json_field``; anything else is used as-is.
    Returns None when the ARN is unset or the read fails.
    """
    if not arn:
        return None
    try:
        response = get_secretsmanager().get_secret_value(SecretId=arn)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to retrieve secret {json_field}: {e}")
        return None

    secret_value = response.get("SecretString", "")
    try:
        secret_json = json.loads(secret_value)
    except json.JSONDecodeError:
        return _clean(secret_value)
    if isinstance(secret_json, dict):
        value = secret_json.get(json_field)
        return _clean(value) if isinstance(value, str) else None
    return _clean(secret_value)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment (and Secrets Manager if configured)."""
    env = os.environ if environ is None else environ

    stripe_secret_key = _clean(env.get("STRIPE_SECRET_KEY")) or _read_secret(
        _clean(env.get("STRIPE_SECRET_ARN")), "key"
    )
    stripe_webhook_secret = _clean(env.get("STRIPE_WEBHOOK_SECRET")) or _read_secret(
        _clean(env.get("STRIPE_WEBHOOK_SECRET_ARN")), "secret"
    )

    try:
        timeout = float(env.get("SUPABASE_TIMEOUT_SECONDS") or DEFAULT_SUPABASE_TIMEOUT_SECONDS)
    except ValueError:
        logger.warning("Invalid SUPABASE_TIMEOUT_SECONDS, using default")
        timeout = DEFAULT_SUPABASE_TIMEOUT_SECONDS

    supabase_url = _clean(env.get("SUPABASE_URL"))
    if supabase_url:
        supabase_url = supabase_url.rstrip("/")

    settings = Settings(
        supabase_url=supabase_url,
        supabase_service_key=_clean(env.get("SUPABASE_SERVICE_ROLE_KEY")) or _clean(env.get("SUPABASE_SERVICE_KEY")),
        stripe_secret_key=stripe_secret_key,
        stripe_webhook_secret=stripe_webhook_secret,
        stripe_price_id_monthly=_clean(env.get("STRIPE_PRICE_ID_MONTHLY")),
        stripe_price_id_yearly=_clean(env.get("STRIPE_PRICE_ID_YEARLY")),
        stripe_api_version=_clean(env.get("STRIPE_API_VERSION")),
        site_url=normalize_origin(env.get("SITE_URL")),
        allow_dev_cors=(env.get("ALLOW_DEV_CORS") or "").lower() == "true",
        supabase_timeout_seconds=timeout,
    )

    unset = [ENV_NAMES[f.name] for f in fields(settings) if f.name in ENV_NAMES and not getattr(settings, f.name)]
    if unset:
        logger.warning(f"Unset configuration: {', '.join(unset)}")
    return settings


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the Settings for this cold start, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached Settings. Used in tests for clean state."""
    global _settings
    _settings = None
