from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from calonik.auth.config import AuthConfig

logger = logging.getLogger(__name__)

STORE_SALT = "calonik-client-store-v1"

_DELETED = object()


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=STORE_SALT)


def cookie_kwargs(cfg: AuthConfig, key: str, value: str) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def clear_cookie_kwargs(cfg: AuthConfig, key: str) -> dict:
    return {
        "key": key,
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


class SignedCookieStore:
    """
    ClientStore over request cookies.

    Every value is signed (itsdangerous) with the key as part of the payload, so
    a value cannot be moved from one cookie to another. Reads see pending writes
    from the same request; `apply()` flushes them onto the response.
    Without a signing secret nothing is read or written.
    """

    def __init__(self, cfg: AuthConfig, cookies: Mapping[str, str]) -> None:
        self._cfg = cfg
        self._cookies = cookies
        self._serializer = _serializer(cfg)
        self._pending: Dict[str, Any] = {}

    @property
    def enabled(self) -> bool:
        return self._serializer is not None

    def get(self, key: str) -> Optional[str]:
        if key in self._pending:
            pending = self._pending[key]
            return None if pending is _DELETED else pending
        raw = self._cookies.get(key)
        if not raw or self._serializer is None:
            return None
        try:
            data = self._serializer.loads(raw, max_age=self._cfg.session_ttl_seconds)
        except (BadSignature, BadTimeSignature):
            logger.info("Ignoring cookie %s with invalid signature", key)
            return None
        if not isinstance(data, list) or len(data) != 2 or data[0] != key:
            return None
        return str(data[1]) if data[1] is not None else None

    def set(self, key: str, value: str) -> None:
        self._pending[key] = value

    def delete(self, key: str) -> None:
        self._pending[key] = _DELETED

    def apply(self, response: Any) -> None:
        """Write pending changes as Set-Cookie headers on a Starlette response."""
        if self._serializer is None:
            if self._pending:
                logger.debug("Client store disabled (no AUTH_SESSION_SECRET); dropping %d writes", len(self._pending))
            self._pending.clear()
            return
        for key, value in self._pending.items():
            if value is _DELETED:
                response.set_cookie(**clear_cookie_kwargs(self._cfg, key))
            else:
                response.set_cookie(**cookie_kwargs(self._cfg, key, self._serializer.dumps([key, value])))
        self._pending.clear()
