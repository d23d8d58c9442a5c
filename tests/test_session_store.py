from __future__ import annotations

import pytest

from calonik.auth.models import SessionOrigin
from calonik.auth.session import (
    ADMIN_MODE_KEY,
    ADMIN_SESSION_KEY,
    SESSION_TOKEN_KEY,
    MemoryClientStore,
    SessionContext,
    clear_session,
    disable_admin_override,
    enable_admin_override,
    resolve_session_id,
)


def test_active_override_wins_over_persisted_token() -> None:
    store = MemoryClientStore({SESSION_TOKEN_KEY: "abc123"})
    enable_admin_override(store, "admin_testing_user")
    record = resolve_session_id(SessionContext.load(store))
    assert record.session_id == "admin_testing_user"
    assert record.origin is SessionOrigin.ADMINISTRATIVE_OVERRIDE
    # The persisted token is untouched underneath.
    assert store.get(SESSION_TOKEN_KEY) == "abc123"


def test_override_flag_without_id_is_ignored() -> None:
    store = MemoryClientStore({ADMIN_MODE_KEY: "true", SESSION_TOKEN_KEY: "abc123"})
    record = resolve_session_id(SessionContext.load(store))
    assert record.origin is SessionOrigin.PERSISTED


def test_override_id_without_flag_is_ignored() -> None:
    store = MemoryClientStore({ADMIN_SESSION_KEY: "admin_testing_user", SESSION_TOKEN_KEY: "abc123"})
    record = resolve_session_id(SessionContext.load(store))
    assert record.session_id == "abc123"


def test_persisted_token_is_reused_every_time() -> None:
    store = MemoryClientStore({SESSION_TOKEN_KEY: "abc123"})
    for _ in range(5):
        record = resolve_session_id(SessionContext.load(store))
        assert record.session_id == "abc123"
        assert record.origin is SessionOrigin.PERSISTED


def test_first_resolution_generates_and_persists() -> None:
    store = MemoryClientStore()
    first = resolve_session_id(SessionContext.load(store))
    assert first.origin is SessionOrigin.EPHEMERAL
    assert len(first.session_id) >= 21
    assert store.get(SESSION_TOKEN_KEY) == first.session_id

    second = resolve_session_id(SessionContext.load(store))
    assert second.session_id == first.session_id
    assert second.origin is SessionOrigin.PERSISTED


def test_clear_then_resolve_generates_a_fresh_id() -> None:
    store = MemoryClientStore({SESSION_TOKEN_KEY: "abc123"})
    clear_session(SessionContext.load(store))
    assert store.get(SESSION_TOKEN_KEY) is None

    record = resolve_session_id(SessionContext.load(store))
    assert record.origin is SessionOrigin.EPHEMERAL
    assert record.session_id != "abc123"


def test_clear_cannot_remove_an_active_override() -> None:
    store = MemoryClientStore({SESSION_TOKEN_KEY: "abc123"})
    enable_admin_override(store, "admin_testing_user")
    clear_session(SessionContext.load(store))

    record = resolve_session_id(SessionContext.load(store))
    assert record.session_id == "admin_testing_user"
    assert record.origin is SessionOrigin.ADMINISTRATIVE_OVERRIDE


def test_disabling_override_returns_to_persisted_session() -> None:
    store = MemoryClientStore({SESSION_TOKEN_KEY: "abc123"})
    enable_admin_override(store, "admin_testing_user")
    disable_admin_override(store)
    assert resolve_session_id(SessionContext.load(store)).session_id == "abc123"


def test_override_is_read_once_per_context() -> None:
    store = MemoryClientStore({SESSION_TOKEN_KEY: "abc123"})
    ctx = SessionContext.load(store)
    enable_admin_override(store, "admin_testing_user")
    # The toggle shows up in the next context, not the one already built.
    assert resolve_session_id(ctx).session_id == "abc123"
    assert resolve_session_id(SessionContext.load(store)).session_id == "admin_testing_user"


def test_generated_ids_are_distinct() -> None:
    ids = {resolve_session_id(SessionContext.load(MemoryClientStore())).session_id for _ in range(200)}
    assert len(ids) == 200


def test_enable_override_requires_an_id() -> None:
    with pytest.raises(ValueError):
        enable_admin_override(MemoryClientStore(), "  ")
