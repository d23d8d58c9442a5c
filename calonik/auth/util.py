from __future__ import annotations

import base64
import os
from typing import Optional
from urllib.parse import urlencode, urlsplit


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def sanitize_next_path(next_path: str | None) -> str:
    """
    Prevent open-redirects: allow only relative paths like `/tracker`.
    """
    p = (next_path or "").strip().replace("\r", "").replace("\n", "")
    # Disallow absolute URLs and scheme-relative `//evil.com`.
    if not p.startswith("/") or p.startswith("//"):
        return "/"
    return p


def with_query(path: str, **params: Optional[str]) -> str:
    """Append non-empty query parameters to a relative path."""
    items = [(k, v) for k, v in params.items() if v is not None and v != ""]
    if not items:
        return path
    sep = "&" if "?" in path else "?"
    return f"{path}{sep}{urlencode(items)}"


def exact_origin(url: str | None) -> Optional[str]:
    """
    `scheme://host[:port]` for an absolute http(s) URL; None for anything else,
    including the `*` wildcard.
    """
    raw = (url or "").strip()
    if not raw or raw == "*":
        return None
    parts = urlsplit(raw)
    if parts.scheme not in ("http", "https") or not parts.netloc or "@" in parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"
