from __future__ import annotations

from typing import Dict, List

import pytest

from calonik.auth.config import load_auth_config
from calonik.auth.cookies import SignedCookieStore


class _FakeResponse:
    def __init__(self) -> None:
        self.cookies: List[Dict] = []

    def set_cookie(self, **kwargs) -> None:  # type: ignore[no-untyped-def]
        self.cookies.append(kwargs)

    def by_key(self) -> Dict[str, Dict]:
        return {c["key"]: c for c in self.cookies}


@pytest.fixture
def cfg(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AUTH_SESSION_SECRET", "test-secret-key-for-testing-purposes-only")
    load_auth_config.cache_clear()
    return load_auth_config()


def _roundtrip(cfg, key: str, value: str) -> Dict[str, str]:
    store = SignedCookieStore(cfg, {})
    store.set(key, value)
    resp = _FakeResponse()
    store.apply(resp)
    return {c["key"]: c["value"] for c in resp.cookies}


def test_written_values_read_back_from_next_request(cfg) -> None:
    jar = _roundtrip(cfg, "calonik_session", "abc123")
    assert SignedCookieStore(cfg, jar).get("calonik_session") == "abc123"


def test_cookie_attributes(cfg) -> None:
    store = SignedCookieStore(cfg, {})
    store.set("calonik_session", "abc123")
    resp = _FakeResponse()
    store.apply(resp)
    c = resp.by_key()["calonik_session"]
    assert c["httponly"] is True
    assert c["samesite"] == "lax"
    assert c["path"] == "/"
    assert c["max_age"] == cfg.session_ttl_seconds
    assert c["value"] != "abc123"


def test_tampered_value_reads_as_absent(cfg) -> None:
    jar = _roundtrip(cfg, "calonik_session", "abc123")
    original = jar["calonik_session"]
    jar["calonik_session"] = original[:-2] + ("yy" if original.endswith("xx") else "xx")
    assert SignedCookieStore(cfg, jar).get("calonik_session") is None


def test_unsigned_value_reads_as_absent(cfg) -> None:
    assert SignedCookieStore(cfg, {"calonik_admin_mode": "true"}).get("calonik_admin_mode") is None


def test_value_cannot_be_moved_between_keys(cfg) -> None:
    jar = _roundtrip(cfg, "calonik_session", "admin_testing_user")
    forged = {"calonik_admin_session": jar["calonik_session"]}
    assert SignedCookieStore(cfg, forged).get("calonik_admin_session") is None


def test_pending_writes_and_deletes_are_visible_within_request(cfg) -> None:
    jar = _roundtrip(cfg, "calonik_session", "abc123")
    store = SignedCookieStore(cfg, jar)
    store.delete("calonik_session")
    assert store.get("calonik_session") is None
    store.set("calonik_session", "def456")
    assert store.get("calonik_session") == "def456"


def test_delete_expires_cookie(cfg) -> None:
    store = SignedCookieStore(cfg, {})
    store.delete("calonik_session")
    resp = _FakeResponse()
    store.apply(resp)
    c = resp.by_key()["calonik_session"]
    assert c["max_age"] == 0
    assert c["value"] == ""


def test_without_secret_nothing_is_read_or_written(monkeypatch: pytest.MonkeyPatch, cfg) -> None:
    jar = _roundtrip(cfg, "calonik_session", "abc123")
    monkeypatch.delenv("AUTH_SESSION_SECRET")
    load_auth_config.cache_clear()
    no_secret = load_auth_config()

    store = SignedCookieStore(no_secret, jar)
    assert store.enabled is False
    assert store.get("calonik_session") is None
    store.set("calonik_session", "x")
    resp = _FakeResponse()
    store.apply(resp)
    assert resp.cookies == []
