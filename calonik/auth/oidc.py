"""
Federated identity provider collaborator.

Two callers: the popup login (`build_authorize_url`, `exchange_code_for_tokens`,
`validate_id_token`) and bearer verification (`OidcTokenIntrospector`). Bearer
tokens are the provider's own RS256 ID tokens, checked offline against the
provider's published keys.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode, urlparse

import jwt  # PyJWT
import requests

from calonik.auth.config import AuthConfig
from calonik.auth.errors import IntrospectionUnavailable, TokenRejected
from calonik.auth.util import b64url

logger = logging.getLogger(__name__)

_discovery_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}
_jwks_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

_CACHE_TTL_SECONDS = 3600
_HTTP_TIMEOUT_SECONDS = 10

_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]

# (issuer/discovery URL marker, display name, logo)
_KNOWN_PROVIDERS = (
    ("google", "Google", "https://www.google.com/favicon.ico"),
    ("microsoft", "Microsoft", "https://www.microsoft.com/favicon.ico"),
    ("azure", "Microsoft", "https://www.microsoft.com/favicon.ico"),
    ("apple", "Apple", ""),
)


def _fetch_json(cache: Dict[str, Tuple[float, Dict[str, Any]]], url: str, what: str) -> Dict[str, Any]:
    ts, cached = cache.get(url, (0.0, {}))
    now = time.time()
    if cached and now - ts < _CACHE_TTL_SECONDS:
        return cached
    r = requests.get(url, timeout=_HTTP_TIMEOUT_SECONDS)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise IntrospectionUnavailable(f"Provider returned an invalid {what}")
    cache[url] = (now, data)
    logger.debug("Fetched %s from %s", what, url)
    return data


def _get_discovery(discovery_url: str) -> Dict[str, Any]:
    """Provider discovery document, cached for an hour per URL."""
    return _fetch_json(_discovery_cache, discovery_url, "discovery document")


def _get_jwks(jwks_uri: str) -> Dict[str, Any]:
    """Provider signing keys (JWKS), cached for an hour per URI."""
    return _fetch_json(_jwks_cache, jwks_uri, "JWKS")


@dataclass(frozen=True)
class _Endpoints:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str

    def require(self, *names: str) -> "_Endpoints":
        missing = [n for n in names if not getattr(self, n)]
        if missing:
            raise ValueError(f"OIDC discovery missing {'/'.join(missing)}")
        return self


def _endpoints(cfg: AuthConfig) -> _Endpoints:
    if not cfg.oidc_discovery_url:
        raise ValueError("OIDC discovery URL not configured")
    if not cfg.oidc_client_id:
        raise ValueError("OIDC client ID not configured")
    disc = _get_discovery(cfg.oidc_discovery_url)
    return _Endpoints(
        issuer=str(disc.get("issuer") or ""),
        authorization_endpoint=str(disc.get("authorization_endpoint") or ""),
        token_endpoint=str(disc.get("token_endpoint") or ""),
        jwks_uri=str(disc.get("jwks_uri") or ""),
    )


def get_provider_metadata(cfg: AuthConfig) -> Dict[str, str]:
    """
    Display name and logo for the login button. Configured overrides win;
    otherwise they are guessed from the issuer and discovery URL.
    """
    if not cfg.oidc_discovery_url:
        raise ValueError("OIDC discovery URL not configured")

    issuer = str(_get_discovery(cfg.oidc_discovery_url).get("issuer") or "").lower()
    discovery_url = cfg.oidc_discovery_url.lower()

    name = cfg.oidc_provider_name
    if not name:
        name = next((n for marker, n, _logo in _KNOWN_PROVIDERS if marker in issuer), None)
    if not name:
        host = urlparse(issuer).netloc
        name = host.split(".")[0].title() if host else "SSO Provider"

    logo = cfg.oidc_provider_logo
    if not logo:
        logo = next((lg for marker, _n, lg in _KNOWN_PROVIDERS if marker in discovery_url), "")

    return {"name": name, "logo": logo}


def build_authorize_url(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    state: str,
    nonce: str,
    code_challenge: str,
    hd: Optional[str] = None,
) -> str:
    """Authorization URL for the popup login (PKCE S256, account chooser always shown)."""
    ep = _endpoints(cfg).require("authorization_endpoint")
    params = {
        "client_id": cfg.oidc_client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
        "nonce": nonce,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "prompt": "select_account",
    }
    if hd:
        # Google hosted-domain hint
        params["hd"] = hd
    return f"{ep.authorization_endpoint}?{urlencode(params)}"


def exchange_code_for_tokens(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    code: str,
    code_verifier: str,
) -> Dict[str, Any]:
    """Trade the callback's authorization code for the provider's tokens."""
    if not cfg.oidc_client_secret:
        raise ValueError("OIDC client secret not configured")
    ep = _endpoints(cfg).require("token_endpoint")

    r = requests.post(
        ep.token_endpoint,
        data={
            "client_id": cfg.oidc_client_id,
            "client_secret": cfg.oidc_client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        timeout=_HTTP_TIMEOUT_SECONDS,
    )
    if r.status_code >= 400:
        # Response body may echo the code; keep it out of errors and logs.
        raise ValueError(f"Token exchange failed (status={r.status_code})")
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid token response")
    return data


def _signing_key(jwks: Dict[str, Any], kid: str) -> Any:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        raise IntrospectionUnavailable("Provider JWKS has no key list")
    for k in keys:
        if isinstance(k, dict) and str(k.get("kid") or "") == kid:
            return jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(k))
    raise ValueError("Unknown signing key (kid)")


def _decode_id_token(cfg: AuthConfig, id_token: str) -> Dict[str, Any]:
    """
    Signature, issuer, audience, expiry and email verification of a provider
    ID token. Token problems raise ValueError or jwt.PyJWTError.
    """
    ep = _endpoints(cfg).require("issuer", "jwks_uri")

    kid = str(jwt.get_unverified_header(id_token).get("kid") or "")
    if not kid:
        raise ValueError("ID token missing kid")
    key = _signing_key(_get_jwks(ep.jwks_uri), kid)

    claims = jwt.decode(
        id_token,
        key=key,
        algorithms=["RS256"],
        audience=cfg.oidc_client_id,
        issuer=ep.issuer,
        options={"require": _REQUIRED_CLAIMS},
    )
    # Absent email_verified is accepted; an explicit False is not.
    if claims.get("email_verified") is False:
        raise ValueError("Email not verified")
    return claims


def validate_id_token(cfg: AuthConfig, *, id_token: str, expected_nonce: str) -> Dict[str, Any]:
    """Callback-side validation: the bearer checks plus the login attempt's nonce."""
    claims = _decode_id_token(cfg, id_token)
    if not expected_nonce or str(claims.get("nonce") or "") != expected_nonce:
        raise ValueError("Nonce mismatch")
    return claims


class OidcTokenIntrospector:
    """
    TokenIntrospector for bearer tokens that are provider ID tokens.

    Problems with the token become TokenRejected; problems reaching the
    provider become IntrospectionUnavailable.
    """

    def __init__(self, cfg: AuthConfig) -> None:
        self._cfg = cfg

    def introspect(self, token: str) -> Dict[str, Any]:
        try:
            return _decode_id_token(self._cfg, token)
        except requests.RequestException as e:
            raise IntrospectionUnavailable(f"OIDC provider unreachable: {type(e).__name__}") from e
        except jwt.PyJWTError as e:
            raise TokenRejected(f"Invalid token: {type(e).__name__}") from e
        except ValueError as e:
            raise TokenRejected(str(e)) from e


def pkce_challenge(verifier: str) -> str:
    """S256 code challenge for a PKCE verifier."""
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())
