from __future__ import annotations

import hmac

import bcrypt

from calonik.auth.config import AuthConfig

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def hash_admin_key(key: str) -> str:
    """
    Hash an admin key with bcrypt (cost factor 12), for storing in ADMIN_SECRET
    instead of the plain key.
    """
    return bcrypt.hashpw(key.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def _is_bcrypt_hash(value: str) -> bool:
    return value.startswith(_BCRYPT_PREFIXES)


def verify_admin_key(cfg: AuthConfig, key: str) -> bool:
    """
    Check a submitted admin key against ADMIN_SECRET.

    ADMIN_SECRET may be the plain key (constant-time compare) or a bcrypt hash.
    Admin login is disabled when ADMIN_SECRET is unset.
    """
    secret = cfg.admin_secret
    if not secret or not key:
        return False
    if _is_bcrypt_hash(secret):
        try:
            return bcrypt.checkpw(key.encode("utf-8"), secret.encode("utf-8"))
        except ValueError:
            # Malformed hash in config.
            return False
    return hmac.compare_digest(key.encode("utf-8"), secret.encode("utf-8"))
