"""Runtime settings, read from environment variables."""
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


def _split_list(value: Optional[str]) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value not in (None, "") else None


def _optional_float(value: Optional[str]) -> Optional[float]:
    return float(value) if value not in (None, "") else None


@dataclass
class Settings:
    """Proxy configuration.

    Environment variables:
        API_SECRET              - Shared X-App-Token value expected from the dashboard (required)
        JWT_SECRET              - HS256 signing secret for session tokens (required)
        JWT_EXPIRES_MINUTES     - Session token lifetime (default: 120)
        ADMIN_USERNAME          - Dashboard login name
        ADMIN_PASSWORD_HASH     - bcrypt hash of the dashboard password
        ALLOWED_IPS             - Comma-separated client IP allowlist (empty = allow all)
        RATE_LIMIT              - slowapi limit string for /api routes (default: 50/5minutes)
        SHOPIFY_SHOP_DOMAIN     - Default shop domain (required)
        SHOPIFY_TOKEN           - Default shop access token (required)
        SHOPIFY_API_VERSION     - Admin API version (default: 2024-01)
        UPSTREAM_TIMEOUT        - Upstream HTTP timeout in seconds (default: 30)
        AGGREGATION_MAX_PAGES   - Optional page budget for tag counts
        AGGREGATION_MAX_SECONDS - Optional time budget for tag counts
        LOG_LEVEL               - Logging level (default: INFO)
    """
    jwt_secret: str
    shop_domain: str
    shop_token: str
    api_secret: str
    jwt_expires_minutes: int = 120
    admin_username: str = ""
    admin_password_hash: str = ""
    allowed_ips: list[str] = field(default_factory=list)
    rate_limit: str = "50/5minutes"
    api_version: str = "2024-01"
    upstream_timeout: float = 30.0
    max_pages: Optional[int] = None
    max_seconds: Optional[float] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the environment.

        Raises:
            ValueError: If a required variable is missing
        """
        env = os.environ if environ is None else environ

        jwt_secret = env.get("JWT_SECRET", "")
        if not jwt_secret:
            raise ValueError("JWT_SECRET environment variable required")

        api_secret = env.get("API_SECRET", "")
        if not api_secret:
            raise ValueError("API_SECRET environment variable required")

        shop_token = env.get("SHOPIFY_TOKEN", "")
        shop_domain = env.get("SHOPIFY_SHOP_DOMAIN", "")
        if not shop_token or not shop_domain:
            raise ValueError("SHOPIFY_TOKEN and SHOPIFY_SHOP_DOMAIN environment variables required")

        return cls(
            jwt_secret=jwt_secret,
            shop_domain=shop_domain,
            shop_token=shop_token,
            api_secret=api_secret,
            jwt_expires_minutes=int(env.get("JWT_EXPIRES_MINUTES", "120")),
            admin_username=env.get("ADMIN_USERNAME", ""),
            admin_password_hash=env.get("ADMIN_PASSWORD_HASH", ""),
            allowed_ips=_split_list(env.get("ALLOWED_IPS")),
            rate_limit=env.get("RATE_LIMIT", "50/5minutes"),
            api_version=env.get("SHOPIFY_API_VERSION", "2024-01"),
            upstream_timeout=float(env.get("UPSTREAM_TIMEOUT", "30")),
            max_pages=_optional_int(env.get("AGGREGATION_MAX_PAGES")),
            max_seconds=_optional_float(env.get("AGGREGATION_MAX_SECONDS")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


def cors_origins_from_env(environ: Optional[Mapping[str, str]] = None) -> list[str]:
    """Allowed CORS origins from CORS_ORIGINS (comma-separated).

    Read at import time because middleware is installed before startup.
    """
    env = os.environ if environ is None else environ
    return _split_list(env.get("CORS_ORIGINS"))
