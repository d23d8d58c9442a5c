from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

from calonik.auth.models import SessionOrigin, SessionRecord
from calonik.auth.util import random_token

logger = logging.getLogger(__name__)

SESSION_TOKEN_KEY = "calonik_session"
ADMIN_MODE_KEY = "calonik_admin_mode"
ADMIN_SESSION_KEY = "calonik_admin_session"
RECOVERED_TOKEN_KEY = "calonik_auth_token"

# 16 random bytes -> 22 url-safe chars (128 bits).
SESSION_TOKEN_BYTES = 16


class ClientStore(Protocol):
    """Client-local key/value storage (browser storage, signed cookies, ...)."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


@dataclass
class MemoryClientStore:
    """Dict-backed ClientStore, for one client context held in memory."""

    values: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


@dataclass(frozen=True)
class SessionContext:
    """
    Everything session resolution needs about one client, captured once at the
    request/client boundary. The override flag is read here, not from ambient state.
    """

    store: ClientStore
    admin_override: bool = False
    override_session_id: Optional[str] = None

    @classmethod
    def load(cls, store: ClientStore) -> "SessionContext":
        flag = (store.get(ADMIN_MODE_KEY) or "").strip().lower() == "true"
        override_id = (store.get(ADMIN_SESSION_KEY) or "").strip() or None
        return cls(store=store, admin_override=flag, override_session_id=override_id)


def new_session_token() -> str:
    return random_token(SESSION_TOKEN_BYTES)


def resolve_session_id(ctx: SessionContext) -> SessionRecord:
    """
    Resolve the canonical session id for a client. First match wins:

    1. active administrative override with an override id
    2. persisted session token
    3. a freshly generated token, persisted for next time
    """
    if ctx.admin_override and ctx.override_session_id:
        return SessionRecord(session_id=ctx.override_session_id, origin=SessionOrigin.ADMINISTRATIVE_OVERRIDE)

    persisted = (ctx.store.get(SESSION_TOKEN_KEY) or "").strip()
    if persisted:
        return SessionRecord(session_id=persisted, origin=SessionOrigin.PERSISTED)

    token = new_session_token()
    ctx.store.set(SESSION_TOKEN_KEY, token)
    logger.debug("Generated new session token")
    return SessionRecord(session_id=token, origin=SessionOrigin.EPHEMERAL)


def clear_session(ctx: SessionContext) -> None:
    """Drop the persisted session token. An active override is left alone."""
    ctx.store.delete(SESSION_TOKEN_KEY)


def enable_admin_override(store: ClientStore, session_id: str) -> None:
    if not (session_id or "").strip():
        raise ValueError("Override session id must not be empty")
    store.set(ADMIN_MODE_KEY, "true")
    store.set(ADMIN_SESSION_KEY, session_id.strip())


def disable_admin_override(store: ClientStore) -> None:
    store.delete(ADMIN_MODE_KEY)
    store.delete(ADMIN_SESSION_KEY)
