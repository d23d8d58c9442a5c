from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional


@dataclass(frozen=True)
class AuthConfig:
    # Federated identity (OIDC, optional)
    oidc_discovery_url: Optional[str]
    oidc_client_id: Optional[str]
    oidc_client_secret: Optional[str]
    oidc_provider_name: Optional[str]  # Display name (default: auto-detected)
    oidc_provider_logo: Optional[str]  # Logo URL (default: auto-detected)

    # Client store (signed cookies)
    public_base_url: Optional[str]  # Required for the OAuth redirect URI
    session_secret: Optional[str]  # Required for cookie signing
    session_ttl_seconds: int
    cookie_secure: bool

    # Federated email domain enforcement (optional)
    allowed_domains: List[str]

    # Device fingerprint strategy
    device_header: str

    # Administrative override
    admin_secret: Optional[str]  # Plain key or bcrypt hash
    admin_session_id: str

    # Usage quota (units per identity per action per UTC day)
    usage_daily_limit: int

    @property
    def oidc_enabled(self) -> bool:
        """Federated strategy is enabled if discovery URL and credentials are configured."""
        return bool(self.oidc_discovery_url and self.oidc_client_id and self.oidc_client_secret)

    @property
    def admin_enabled(self) -> bool:
        return bool(self.admin_secret)


def _parse_csv(value: str) -> List[str]:
    items = [x.strip().lower() for x in (value or "").split(",")]
    return [x for x in items if x]


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    The federated strategy is enabled if OIDC_DISCOVERY_URL, OIDC_CLIENT_ID and
    OIDC_CLIENT_SECRET are set. The device fingerprint strategy is always on.
    """
    public_base_url = (os.getenv("AUTH_PUBLIC_BASE_URL", "") or "").strip() or None
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = True if (public_base_url or "").startswith("https://") else False

    # Persisted sessions are reused until cleared, so the cookie outlives a login session.
    ttl = _env_int("AUTH_SESSION_TTL_SECONDS", 365 * 24 * 3600)
    if ttl <= 60:
        ttl = 60

    usage_limit = _env_int("USAGE_DAILY_LIMIT", 2)
    if usage_limit < 0:
        usage_limit = 0

    return AuthConfig(
        # Federated identity
        oidc_discovery_url=(os.getenv("OIDC_DISCOVERY_URL", "") or "").strip() or None,
        oidc_client_id=(os.getenv("OIDC_CLIENT_ID", "") or "").strip() or None,
        oidc_client_secret=(os.getenv("OIDC_CLIENT_SECRET", "") or "").strip() or None,
        oidc_provider_name=(os.getenv("OIDC_PROVIDER_NAME", "") or "").strip() or None,
        oidc_provider_logo=(os.getenv("OIDC_PROVIDER_LOGO", "") or "").strip() or None,
        # Client store
        public_base_url=public_base_url,
        session_secret=(os.getenv("AUTH_SESSION_SECRET", "") or "").strip() or None,
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        allowed_domains=_parse_csv(os.getenv("AUTH_ALLOWED_DOMAINS", "")),
        # Device fingerprint
        device_header=(os.getenv("AUTH_DEVICE_HEADER", "") or "x-device-auth").strip().lower(),
        # Administrative override
        admin_secret=(os.getenv("ADMIN_SECRET", "") or "").strip() or None,
        admin_session_id=(os.getenv("ADMIN_SESSION_ID", "") or "admin_testing_user").strip(),
        usage_daily_limit=usage_limit,
    )
