from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Protocol, Union

from calonik.auth.errors import TokenRejected
from calonik.auth.models import (
    BearerCredential,
    Credential,
    CredentialKind,
    DeviceCredential,
    Principal,
    Rejected,
    Strategy,
)

logger = logging.getLogger(__name__)

DEVICE_USER_NAME = "Device User"
DEVICE_EMAIL_DOMAIN = "temp.local"


class Verifier(Protocol):
    """
    One trust mechanism. A verifier only ever sees credentials of its own kind.
    """

    kind: CredentialKind

    def verify(self, credential: Credential) -> Union[Principal, Rejected]:
        """Return a Principal, or Rejected(reason). Infrastructure faults raise."""


class TokenIntrospector(Protocol):
    def introspect(self, token: str) -> Dict[str, Any]:
        """
        Return verified claims for `token`.

        Raises TokenRejected when the token is invalid and
        IntrospectionUnavailable when the service cannot answer.
        """


class FederatedVerifier:
    kind = CredentialKind.BEARER

    def __init__(self, introspector: TokenIntrospector, *, allowed_domains: Iterable[str] = ()) -> None:
        self._introspector = introspector
        self._allowed_domains = {d.strip().lower() for d in allowed_domains if d and d.strip()}

    def verify(self, credential: Credential) -> Union[Principal, Rejected]:
        if not isinstance(credential, BearerCredential):
            return Rejected("not a bearer credential")
        try:
            claims = self._introspector.introspect(credential.token)
        except TokenRejected as e:
            # Expiry, bad signature, wrong audience: all the same to callers.
            logger.debug("Federated token rejected: %s", str(e))
            return Rejected(str(e) or "token rejected")

        subject = str(claims.get("sub") or "").strip()
        if not subject:
            return Rejected("token has no subject")

        email = str(claims.get("email") or "").strip().lower() or None
        if self._allowed_domains:
            domain = email.split("@", 1)[1] if email and "@" in email else ""
            if domain not in self._allowed_domains:
                return Rejected("account domain not allowed")

        name = str(claims.get("name") or "").strip() or None
        return Principal(subject_id=subject, email=email, display_name=name, strategy=Strategy.FEDERATED)


class DeviceFingerprintVerifier:
    """
    Accept any syntactically valid `device_<alnum>` tag.

    No external call, no persistence: uniqueness comes from whoever generated the tag.
    """

    kind = CredentialKind.DEVICE_FINGERPRINT

    def verify(self, credential: Credential) -> Union[Principal, Rejected]:
        if not isinstance(credential, DeviceCredential) or not credential.well_formed:
            return Rejected("invalid device id format")
        tag = credential.tag
        return Principal(
            subject_id=tag,
            email=f"{tag}@{DEVICE_EMAIL_DOMAIN}",
            display_name=DEVICE_USER_NAME,
            strategy=Strategy.DEVICE_FINGERPRINT,
        )


class DisabledIntrospector:
    """Used when no federated provider is configured: every bearer token is rejected."""

    def introspect(self, token: str) -> Dict[str, Any]:
        raise TokenRejected("federated authentication is not configured")
