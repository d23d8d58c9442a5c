from __future__ import annotations

import re

USAGE_LIMIT_MARKERS = ("Daily limit reached", "upgrade to premium")

_UNAUTHORIZED_RE = re.compile(r"^401: .*Unauthorized")


class AuthError(Exception):
    """Base class for identity/session failures."""


class TokenRejected(AuthError):
    """The introspection service looked at the token and said no (expired, forged, wrong audience)."""


class IntrospectionUnavailable(AuthError):
    """The introspection service could not be reached or returned garbage."""


class HandshakeTimeout(AuthError):
    """The completion page never received its invocation parameters."""

    def __init__(self, reloads: int) -> None:
        super().__init__(f"Authentication result never arrived after {reloads} reloads")
        self.reloads = reloads


class UsageLimitExceeded(AuthError):
    """
    Quota exhaustion. Distinct from authentication failures.

    Callers branch on the message text (see `is_usage_limit_error`), so the
    message always carries one of `USAGE_LIMIT_MARKERS`.
    """

    def __init__(self, action: str, limit: int, *, requires_upgrade: bool = True) -> None:
        if requires_upgrade:
            message = (
                f"Daily limit reached. Free users get {limit} {action} per day. "
                "Please upgrade to premium for more."
            )
        else:
            message = f"Daily limit reached. You get {limit} {action} per day."
        super().__init__(message)
        self.action = action
        self.limit = limit
        self.message = message
        self.requires_upgrade = requires_upgrade


def is_unauthorized_error(message: str) -> bool:
    """Match client errors formatted as `<status>: <body>`."""
    return bool(_UNAUTHORIZED_RE.match(message or ""))


def is_usage_limit_error(message: str) -> bool:
    text = message or ""
    return any(marker in text for marker in USAGE_LIMIT_MARKERS)
