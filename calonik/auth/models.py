from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

DEVICE_TAG_RE = re.compile(r"device_[A-Za-z0-9]+")


class CredentialKind(str, Enum):
    BEARER = "bearer"
    DEVICE_FINGERPRINT = "device_fingerprint"


class Strategy(str, Enum):
    FEDERATED = "federated"
    DEVICE_FINGERPRINT = "device_fingerprint"
    ADMINISTRATIVE_OVERRIDE = "administrative_override"


@dataclass(frozen=True)
class BearerCredential:
    """Raw `Authorization: Bearer` token, not yet verified."""

    token: str

    @property
    def kind(self) -> CredentialKind:
        return CredentialKind.BEARER

    @property
    def well_formed(self) -> bool:
        t = self.token or ""
        return bool(t) and not any(c.isspace() for c in t)


@dataclass(frozen=True)
class DeviceCredential:
    """Raw device fingerprint tag, not yet validated."""

    tag: str

    @property
    def kind(self) -> CredentialKind:
        return CredentialKind.DEVICE_FINGERPRINT

    @property
    def well_formed(self) -> bool:
        # fullmatch: `$` would accept a trailing newline.
        return DEVICE_TAG_RE.fullmatch(self.tag or "") is not None


Credential = Union[BearerCredential, DeviceCredential]


@dataclass(frozen=True)
class Principal:
    """Verified identity (from a federated token or a device fingerprint)."""

    subject_id: str
    strategy: Strategy
    email: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class Rejected:
    reason: str


class UnauthenticatedReason(str, Enum):
    NO_CREDENTIAL = "no_credential"
    MALFORMED_CREDENTIAL = "malformed_credential"
    VERIFIER_REJECTED = "verifier_rejected"


@dataclass(frozen=True)
class Authenticated:
    principal: Principal

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass(frozen=True)
class Unauthenticated:
    reason: UnauthenticatedReason

    @property
    def is_authenticated(self) -> bool:
        return False


AuthenticationOutcome = Union[Authenticated, Unauthenticated]


class SessionOrigin(str, Enum):
    ADMINISTRATIVE_OVERRIDE = "administrative_override"
    PERSISTED = "persisted"
    EPHEMERAL = "ephemeral"


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    origin: SessionOrigin
