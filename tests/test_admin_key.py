from __future__ import annotations

import bcrypt
import pytest

from calonik.auth.admin import hash_admin_key, verify_admin_key
from calonik.auth.config import load_auth_config


def _cfg(monkeypatch: pytest.MonkeyPatch, secret: str | None):
    if secret is None:
        monkeypatch.delenv("ADMIN_SECRET", raising=False)
    else:
        monkeypatch.setenv("ADMIN_SECRET", secret)
    load_auth_config.cache_clear()
    return load_auth_config()


def test_plain_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = _cfg(monkeypatch, "letmein")
    assert verify_admin_key(cfg, "letmein") is True
    assert verify_admin_key(cfg, "letmein ") is False
    assert verify_admin_key(cfg, "") is False


def test_bcrypt_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    hashed = bcrypt.hashpw(b"letmein", bcrypt.gensalt(rounds=4)).decode("utf-8")
    cfg = _cfg(monkeypatch, hashed)
    assert verify_admin_key(cfg, "letmein") is True
    assert verify_admin_key(cfg, "nope") is False


def test_malformed_hash_never_matches(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = _cfg(monkeypatch, "$2b$broken")
    assert verify_admin_key(cfg, "$2b$broken") is False


def test_disabled_without_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = _cfg(monkeypatch, None)
    assert cfg.admin_enabled is False
    assert verify_admin_key(cfg, "anything") is False


def test_hash_admin_key_produces_verifiable_hash() -> None:
    hashed = hash_admin_key("letmein")
    assert hashed.startswith("$2b$12$")
    assert bcrypt.checkpw(b"letmein", hashed.encode("utf-8"))
