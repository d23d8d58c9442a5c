"""
HTTP surface for identity resolution.

Every request gets an authentication outcome and a session context attached
to `request.state`; handlers decide what `Unauthenticated` means for them.
"""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from calonik.auth.config import load_auth_config
from calonik.auth.cookies import SignedCookieStore
from calonik.auth.deps import authenticate_request, effective_identity, get_session_record, require_principal
from calonik.auth.errors import UsageLimitExceeded
from calonik.auth.models import SessionOrigin
from calonik.auth.session import SessionContext, clear_session, disable_admin_override, enable_admin_override
from calonik.auth.util import with_query

logger = logging.getLogger(__name__)

app = FastAPI(title="calonik identity API")

COMPLETION_PATH = "/oauth-callback"

_OAUTH_COOKIE_PATH = "/api/auth"
_OAUTH_TTL_SECONDS = 10 * 60
_OAUTH_COOKIES = ("calonik_oauth_state", "calonik_oauth_nonce", "calonik_oauth_verifier")

_ACTION_RE = re.compile(r"[a-z0-9_-]{1,64}")
_ERROR_CODE_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _oauth_cookie_kwargs(cfg, *, key: str, value: str, max_age: int) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": bool(getattr(cfg, "cookie_secure", False)),
        "samesite": "lax",
        "path": _OAUTH_COOKIE_PATH,
    }


def _public_base_url(cfg) -> str:
    base = (getattr(cfg, "public_base_url", None) or "").strip().rstrip("/")
    if not base:
        raise HTTPException(status_code=500, detail="AUTH_PUBLIC_BASE_URL is required for OIDC")
    return base


def _completion_redirect(cfg, **params: Optional[str]) -> RedirectResponse:
    resp = RedirectResponse(url=with_query(COMPLETION_PATH, **params), status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    for key in _OAUTH_COOKIES:
        resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=key, value="", max_age=0))
    return resp


def _client_id(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class AdminLoginRequest(BaseModel):
    adminKey: str = ""


@app.on_event("startup")
def _startup_check_auth_config() -> None:
    cfg = load_auth_config()
    if not cfg.session_secret:
        logger.warning("AUTH_SESSION_SECRET is not set: session ids and admin override will not persist")
    logger.info(
        "Auth config: federated=%s device_header=%s admin=%s allowed_domains=%s",
        cfg.oidc_enabled,
        cfg.device_header,
        cfg.admin_enabled,
        ",".join(cfg.allowed_domains) or "-",
    )


@app.middleware("http")
async def resolve_identity(request: Request, call_next):
    """Attach auth outcome + session context, log the request, flush client store writes."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)

    cfg = load_auth_config()
    store = SignedCookieStore(cfg, request.cookies)
    request.state.client_store = store
    request.state.session_context = SessionContext.load(store)
    # Introspection may hit the network.
    outcome = await run_in_threadpool(authenticate_request, request)
    request.state.auth_outcome = outcome

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise

    store.apply(response)
    process_time = time.time() - start_time
    logger.debug(
        "%s %s - %d (%.3fs, authenticated=%s)",
        request.method,
        request.url.path,
        response.status_code,
        process_time,
        outcome.is_authenticated,
    )
    return response


@app.exception_handler(UsageLimitExceeded)
async def _usage_limit_handler(_request: Request, exc: UsageLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=402,
        content={"message": exc.message, "requiresUpgrade": exc.requires_upgrade, "isLimitReached": True},
    )


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/auth/user")
async def auth_user(request: Request) -> Dict[str, Any]:
    principal = require_principal(request)
    return {
        "ok": True,
        "user": {
            "id": principal.subject_id,
            "email": principal.email,
            "name": principal.display_name,
            "strategy": principal.strategy.value,
        },
    }


@app.get("/api/auth/mode")
async def auth_mode() -> Dict[str, Any]:
    """
    Which strategies are enabled, so the UI can render the right login options.
    Public; returns no secrets.
    """
    cfg = load_auth_config()
    result: Dict[str, Any] = {
        "ok": True,
        "federatedEnabled": cfg.oidc_enabled,
        "deviceEnabled": True,
        "deviceHeader": cfg.device_header,
        "adminEnabled": cfg.admin_enabled,
    }

    if cfg.oidc_enabled:
        try:
            from calonik.auth.oidc import get_provider_metadata

            metadata = get_provider_metadata(cfg)
            result["federatedProvider"] = {"name": metadata["name"], "logo": metadata["logo"]}
        except Exception as e:
            logger.warning("Failed to get OIDC provider metadata: %s", str(e))
            result["federatedProvider"] = {"name": "SSO", "logo": ""}

    return result


@app.get("/api/session")
async def session_info(request: Request) -> Dict[str, Any]:
    record = get_session_record(request)
    outcome = request.state.auth_outcome
    return {
        "ok": True,
        "sessionId": record.session_id,
        "origin": record.origin.value,
        "authenticated": outcome.is_authenticated,
        "effectiveId": effective_identity(request),
    }


@app.post("/api/session/clear")
async def session_clear(request: Request) -> Dict[str, Any]:
    clear_session(request.state.session_context)
    return {"ok": True}


@app.post("/api/admin-login")
def admin_login(request: Request, body: AdminLoginRequest) -> JSONResponse:
    """
    Enable the administrative session override.
    Rate-limited per client to prevent brute force attacks.
    """
    from calonik.auth.admin import verify_admin_key
    from calonik.auth.rate_limit import get_rate_limiter

    cfg = load_auth_config()
    if not cfg.admin_enabled:
        raise HTTPException(status_code=403, detail="Admin login is not enabled")

    admin_key = (body.adminKey or "").strip()
    if not admin_key:
        raise HTTPException(status_code=400, detail="Missing admin key")

    client = _client_id(request)
    rate_limiter = get_rate_limiter()
    allowed, remaining = rate_limiter.check_and_increment(client)
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many failed admin login attempts. Please try again later.")

    if not verify_admin_key(cfg, admin_key):
        logger.warning("Rejected admin login from %s", client)
        raise HTTPException(status_code=401, detail=f"Invalid admin key ({remaining} attempts remaining)")

    rate_limiter.reset(client)
    enable_admin_override(request.state.client_store, cfg.admin_session_id)
    logger.info("Admin override enabled for %s", client)

    resp = JSONResponse(
        content={
            "success": True,
            "sessionId": cfg.admin_session_id,
            "message": "Admin access granted with unlimited usage",
        }
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@app.post("/api/admin-logout")
async def admin_logout(request: Request) -> Dict[str, Any]:
    disable_admin_override(request.state.client_store)
    return {"ok": True}


@app.post("/api/usage/{action}")
async def consume_usage(request: Request, action: str) -> Dict[str, Any]:
    """
    Spend one unit of today's quota for `action`.
    Administrative override sessions are not metered.
    """
    from calonik.auth.rate_limit import get_usage_quota

    if not _ACTION_RE.fullmatch(action):
        raise HTTPException(status_code=400, detail="Invalid action")

    record = get_session_record(request)
    if record.origin is SessionOrigin.ADMINISTRATIVE_OVERRIDE:
        return {"ok": True, "unlimited": True, "remaining": None}

    cfg = load_auth_config()
    identity = effective_identity(request)
    remaining = get_usage_quota(cfg.usage_daily_limit).consume(identity, action)
    return {"ok": True, "unlimited": False, "remaining": remaining}


@app.get("/api/auth/google")
async def auth_begin_google():
    """Begin the popup login: redirect to the provider with PKCE."""
    from calonik.auth.oidc import build_authorize_url, pkce_challenge
    from calonik.auth.util import random_token

    cfg = load_auth_config()
    if not cfg.oidc_enabled:
        raise HTTPException(status_code=403, detail="Federated login is not enabled")

    base = _public_base_url(cfg)
    redirect_uri = f"{base}/api/auth/google/callback"

    state = random_token(32)
    nonce = random_token(32)
    verifier = random_token(32)  # 43+ chars (base64url) -> valid PKCE verifier

    # Hint the account chooser for single-domain setups (not a security boundary).
    hd = cfg.allowed_domains[0] if len(cfg.allowed_domains) == 1 else None
    url = build_authorize_url(
        cfg,
        redirect_uri=redirect_uri,
        state=state,
        nonce=nonce,
        code_challenge=pkce_challenge(verifier),
        hd=hd,
    )

    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**_oauth_cookie_kwargs(cfg, key="calonik_oauth_state", value=state, max_age=_OAUTH_TTL_SECONDS))
    resp.set_cookie(**_oauth_cookie_kwargs(cfg, key="calonik_oauth_nonce", value=nonce, max_age=_OAUTH_TTL_SECONDS))
    resp.set_cookie(
        **_oauth_cookie_kwargs(cfg, key="calonik_oauth_verifier", value=verifier, max_age=_OAUTH_TTL_SECONDS)
    )
    return resp


@app.get("/api/auth/google/callback")
def auth_callback_google(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> RedirectResponse:
    """
    Provider callback. Always ends on the completion page, which reports the
    result to the window that started the login.
    """
    from calonik.auth.oidc import exchange_code_for_tokens, validate_id_token

    cfg = load_auth_config()
    if error:
        code_value = _ERROR_CODE_RE.sub("", error)[:64] or "auth_failed"
        logger.info("Provider returned error: %s", code_value)
        return _completion_redirect(cfg, error=code_value)

    try:
        if not cfg.oidc_enabled:
            raise ValueError("Federated login is not enabled")
        cookie_state = (request.cookies.get("calonik_oauth_state") or "").strip()
        cookie_nonce = (request.cookies.get("calonik_oauth_nonce") or "").strip()
        cookie_verifier = (request.cookies.get("calonik_oauth_verifier") or "").strip()
        if not code or not cookie_state or cookie_state != (state or "").strip():
            raise ValueError("Invalid OAuth state")
        if not cookie_nonce or not cookie_verifier:
            raise ValueError("Missing OAuth verifier/nonce")

        redirect_uri = f"{_public_base_url(cfg)}/api/auth/google/callback"
        tokens = exchange_code_for_tokens(cfg, redirect_uri=redirect_uri, code=code, code_verifier=cookie_verifier)
        id_token = str(tokens.get("id_token") or "").strip()
        if not id_token:
            raise ValueError("Missing id_token in token response")

        claims = validate_id_token(cfg, id_token=id_token, expected_nonce=cookie_nonce)
        email = str(claims.get("email") or "").strip().lower()
        if "@" not in email:
            raise ValueError("Missing email claim")
        if cfg.allowed_domains and email.split("@", 1)[1] not in set(cfg.allowed_domains):
            raise ValueError("Account domain not allowed")
    except Exception as e:
        logger.warning("Federated login failed: %s", str(e))
        return _completion_redirect(cfg, error="auth_failed")

    logger.info("Federated login completed for %s", email)
    # The ID token becomes the bearer credential the opener sends from now on.
    return _completion_redirect(cfg, success="true", email=email, token=id_token)


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting API server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
