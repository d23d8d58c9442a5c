from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, Request

from calonik.auth.config import load_auth_config
from calonik.auth.errors import IntrospectionUnavailable
from calonik.auth.models import (
    Authenticated,
    AuthenticationOutcome,
    Principal,
    SessionRecord,
    Unauthenticated,
    UnauthenticatedReason,
)
from calonik.auth.resolver import IdentityResolver, build_default_resolver
from calonik.auth.session import SessionContext, resolve_session_id

logger = logging.getLogger(__name__)

_resolver: Optional[IdentityResolver] = None


def get_resolver() -> IdentityResolver:
    global _resolver
    if _resolver is None:
        _resolver = build_default_resolver(load_auth_config())
    return _resolver


def set_resolver(resolver: Optional[IdentityResolver]) -> None:
    """Swap the process-wide resolver (tests, alternate providers). None rebuilds from config."""
    global _resolver
    _resolver = resolver


def authenticate_request(request: Request) -> AuthenticationOutcome:
    """
    Resolve the request's authentication outcome.

    An unreachable introspection service is logged and treated as a rejected
    credential; it never fails the request.
    """
    try:
        return get_resolver().resolve_request(request.headers)
    except IntrospectionUnavailable as e:
        logger.warning("Identity verification unavailable: %s", str(e))
        return Unauthenticated(UnauthenticatedReason.VERIFIER_REJECTED)


def get_outcome(request: Request) -> AuthenticationOutcome:
    outcome = getattr(request.state, "auth_outcome", None)
    if outcome is None:
        outcome = authenticate_request(request)
        request.state.auth_outcome = outcome
    return outcome


def require_principal(request: Request) -> Principal:
    outcome = get_outcome(request)
    if isinstance(outcome, Authenticated):
        return outcome.principal
    # No WWW-Authenticate: browsers would pop a basic-auth dialog over the app's own login UI.
    raise HTTPException(status_code=401, detail="Unauthorized")


def get_session_record(request: Request) -> SessionRecord:
    record = getattr(request.state, "session_record", None)
    if record is None:
        ctx: SessionContext = request.state.session_context
        record = resolve_session_id(ctx)
        request.state.session_record = record
    return record


def effective_identity(request: Request) -> str:
    """The authenticated subject if there is one, else the client's session id."""
    outcome = get_outcome(request)
    if isinstance(outcome, Authenticated):
        return outcome.principal.subject_id
    return get_session_record(request).session_id
