"""Resolve which shop domain and access token a request should use.

Credentials come from the environment (or any other mapping) and are
copied once at construction. Resolvers hold no mutable state, so they are
safe to share across concurrent requests.
"""
import logging
import os
import re
from types import MappingProxyType
from typing import Mapping, Optional, Protocol

from .errors import CredentialError
from .models import ShopContext

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-01"


def normalize_shop_domain(value: str) -> str:
    """Strip protocol, whitespace and slashes from a shop domain."""
    v = (value or "").strip()
    if v.lower().startswith("https://"):
        v = v[8:]
    elif v.lower().startswith("http://"):
        v = v[7:]
    return v.strip().strip("/")


def shop_env_suffix(shop_id: str) -> str:
    """``my-store`` -> ``_MY_STORE``"""
    return "_" + re.sub(r"[^A-Za-z0-9]", "_", shop_id.strip().upper())


def matches_shop_domain(shop_id: str, shop_domain: str) -> bool:
    """True if ``shop_id`` names ``shop_domain`` or its first label."""
    wanted = normalize_shop_domain(shop_id).lower()
    domain = shop_domain.lower()
    return bool(domain) and (wanted == domain or wanted == domain.split(".")[0])


class CredentialResolver(Protocol):
    """Anything that maps a shop id to a ShopContext."""

    def resolve(self, shop_id: Optional[str] = None) -> ShopContext: ...


class StaticCredentialResolver:
    """A single shop with a single token.

    ``shop_id`` may be omitted or equal the configured domain (or its
    ``*.myshopify.com`` prefix); anything else is rejected.
    """

    def __init__(self, shop_domain: str, access_token: str, api_version: str = DEFAULT_API_VERSION):
        self._context = ShopContext(
            shop_domain=normalize_shop_domain(shop_domain),
            access_token=access_token,
            api_version=api_version,
        )

    def resolve(self, shop_id: Optional[str] = None) -> ShopContext:
        if not shop_id or matches_shop_domain(shop_id, self._context.shop_domain):
            return self._context
        raise CredentialError(shop_id)


class EnvCredentialResolver:
    """
    Per-shop credentials read from environment variables.

    For shop id ``acme`` the resolver looks up ``SHOPIFY_TOKEN_ACME`` and
    ``SHOPIFY_SHOP_DOMAIN_ACME`` (domain defaults to
    ``acme.myshopify.com``). Without a shop id, or with one naming the
    base ``SHOPIFY_SHOP_DOMAIN``, the base ``SHOPIFY_TOKEN`` is used.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        api_version: Optional[str] = None,
    ):
        source = os.environ if environ is None else environ
        self._env = MappingProxyType(
            {k: v for k, v in source.items() if k.startswith("SHOPIFY_")}
        )
        self.api_version = api_version or self._env.get("SHOPIFY_API_VERSION", DEFAULT_API_VERSION)
        self._default_domain = normalize_shop_domain(self._env.get("SHOPIFY_SHOP_DOMAIN", ""))

    def resolve(self, shop_id: Optional[str] = None) -> ShopContext:
        if not shop_id:
            return self._default_context()

        suffix = shop_env_suffix(shop_id)
        token = self._env.get(f"SHOPIFY_TOKEN{suffix}", "")
        if not token:
            if matches_shop_domain(shop_id, self._default_domain):
                return self._default_context()
            logger.warning(f"No token configured for shop '{shop_id}'")
            raise CredentialError(shop_id)

        domain = self._env.get(f"SHOPIFY_SHOP_DOMAIN{suffix}") or f"{shop_id.strip().lower()}.myshopify.com"
        version = self._env.get(f"SHOPIFY_API_VERSION{suffix}") or self.api_version
        return ShopContext(
            shop_domain=normalize_shop_domain(domain),
            access_token=token,
            api_version=version,
        )

    def _default_context(self) -> ShopContext:
        token = self._env.get("SHOPIFY_TOKEN", "")
        if not token or not self._default_domain:
            raise CredentialError("default")
        return ShopContext(shop_domain=self._default_domain, access_token=token, api_version=self.api_version)
