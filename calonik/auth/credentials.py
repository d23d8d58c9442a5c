from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from calonik.auth.models import BearerCredential, Credential, CredentialKind, DeviceCredential

BEARER_PREFIX = "Bearer "
DEFAULT_DEVICE_HEADER = "x-device-auth"


@dataclass(frozen=True)
class Credentials:
    """Raw credential candidates carried by one request (at most one per kind)."""

    bearer: Optional[BearerCredential] = None
    device: Optional[DeviceCredential] = None

    @property
    def empty(self) -> bool:
        return self.bearer is None and self.device is None

    def get(self, kind: CredentialKind) -> Optional[Credential]:
        if kind is CredentialKind.BEARER:
            return self.bearer
        if kind is CredentialKind.DEVICE_FINGERPRINT:
            return self.device
        return None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette headers are not.
        lowered = name.lower()
        for k, v in headers.items():
            if k.lower() == lowered:
                return v
    return value


def extract_credentials(headers: Mapping[str, str], *, device_header: str = DEFAULT_DEVICE_HEADER) -> Credentials:
    """
    Parse request headers into credential candidates.

    Only the `Bearer ` scheme counts as a bearer credential; other
    Authorization schemes are ignored. Values are not validated here.
    """
    bearer = None
    auth = _header(headers, "authorization")
    # Scheme match is case-sensitive (`bearer x` is not a bearer credential), unlike RFC 7235.
    if auth is not None and auth.startswith(BEARER_PREFIX):
        bearer = BearerCredential(token=auth[len(BEARER_PREFIX) :].strip())

    device = None
    raw_tag = _header(headers, device_header)
    if raw_tag is not None:
        device = DeviceCredential(tag=raw_tag)

    return Credentials(bearer=bearer, device=device)
