from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from calonik.auth.config import AuthConfig
from calonik.auth.credentials import DEFAULT_DEVICE_HEADER, Credentials, extract_credentials
from calonik.auth.models import (
    Authenticated,
    AuthenticationOutcome,
    Principal,
    Unauthenticated,
    UnauthenticatedReason,
)
from calonik.auth.verifiers import (
    DeviceFingerprintVerifier,
    DisabledIntrospector,
    FederatedVerifier,
    TokenIntrospector,
    Verifier,
)

logger = logging.getLogger(__name__)


class IdentityResolver:
    """
    Decide who is making a request.

    Verifiers are consulted in list order. The first verifier whose credential
    kind is present on the request decides the outcome, whatever that outcome
    is: a malformed or rejected federated token never falls through to the
    device fingerprint strategy.
    """

    def __init__(self, verifiers: Sequence[Verifier], *, device_header: str = DEFAULT_DEVICE_HEADER) -> None:
        kinds = [v.kind for v in verifiers]
        if len(set(kinds)) != len(kinds):
            raise ValueError("At most one verifier per credential kind")
        self._verifiers = list(verifiers)
        self._device_header = device_header

    @property
    def verifiers(self) -> Sequence[Verifier]:
        return tuple(self._verifiers)

    def resolve(self, credentials: Credentials) -> AuthenticationOutcome:
        for verifier in self._verifiers:
            credential = credentials.get(verifier.kind)
            if credential is None:
                continue

            if not credential.well_formed:
                logger.info("Malformed %s credential", verifier.kind.value)
                return Unauthenticated(UnauthenticatedReason.MALFORMED_CREDENTIAL)

            result = verifier.verify(credential)
            if isinstance(result, Principal):
                return Authenticated(result)

            logger.info("%s credential rejected: %s", verifier.kind.value, result.reason)
            return Unauthenticated(UnauthenticatedReason.VERIFIER_REJECTED)

        # Anonymous and first-time clients land here; not a failure.
        logger.debug("No credential on request")
        return Unauthenticated(UnauthenticatedReason.NO_CREDENTIAL)

    def resolve_request(self, headers: Mapping[str, str]) -> AuthenticationOutcome:
        return self.resolve(extract_credentials(headers, device_header=self._device_header))


def build_default_resolver(cfg: AuthConfig, *, introspector: Optional[TokenIntrospector] = None) -> IdentityResolver:
    """Federated bearer token first, device fingerprint second."""
    if introspector is None:
        if cfg.oidc_enabled:
            from calonik.auth.oidc import OidcTokenIntrospector

            introspector = OidcTokenIntrospector(cfg)
        else:
            introspector = DisabledIntrospector()

    return IdentityResolver(
        [
            FederatedVerifier(introspector, allowed_domains=cfg.allowed_domains),
            DeviceFingerprintVerifier(),
        ],
        device_header=cfg.device_header,
    )
