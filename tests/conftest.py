"""
Pytest config.

Tests import the local `calonik/` package from the repo root. When pytest is
invoked through a global entrypoint that doesn't happen reliably during
collection, so the repo root is pinned on sys.path here.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

_AUTH_ENV = (
    "OIDC_DISCOVERY_URL",
    "OIDC_CLIENT_ID",
    "OIDC_CLIENT_SECRET",
    "OIDC_PROVIDER_NAME",
    "OIDC_PROVIDER_LOGO",
    "AUTH_PUBLIC_BASE_URL",
    "AUTH_SESSION_SECRET",
    "AUTH_SESSION_TTL_SECONDS",
    "AUTH_COOKIE_SECURE",
    "AUTH_ALLOWED_DOMAINS",
    "AUTH_DEVICE_HEADER",
    "ADMIN_SECRET",
    "ADMIN_SESSION_ID",
    "USAGE_DAILY_LIMIT",
)


@pytest.fixture(autouse=True)
def _isolate_auth_state(monkeypatch: pytest.MonkeyPatch):
    """
    Auth config is lru-cached and the resolver / limiters are process-wide.
    Start every test from a clean environment and clean globals.
    """
    from calonik.auth import oidc
    from calonik.auth.config import load_auth_config
    from calonik.auth.deps import set_resolver
    from calonik.auth.rate_limit import reset_globals

    for name in _AUTH_ENV:
        monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()
    set_resolver(None)
    reset_globals()
    oidc._discovery_cache.clear()
    oidc._jwks_cache.clear()
    yield
    load_auth_config.cache_clear()
    set_resolver(None)
    reset_globals()
