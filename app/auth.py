"""JWT bearer auth middleware."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


_JWKS_CACHE: Dict[str, Any] = {"keys": None, "fetched_at": 0.0, "ttl": 600.0}
_PUBLIC_PATHS = {"/health"}
logger = logging.getLogger("c6admin.auth")


def auth_disabled() -> bool:
    return os.getenv("C6_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _fetch_jwks(jwks_url: str, force: bool = False) -> dict:
    now = time.time()
    if not force and _JWKS_CACHE["keys"] and now - _JWKS_CACHE["fetched_at"] < _JWKS_CACHE["ttl"]:
        return _JWKS_CACHE["keys"]
    resp = httpx.get(jwks_url, timeout=10.0)
    resp.raise_for_status()
    data = resp.json()
    _JWKS_CACHE["keys"] = data
    _JWKS_CACHE["fetched_at"] = now
    return data


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _find_key(jwks: dict, kid: Optional[str]) -> Optional[dict]:
    for jwk in jwks.get("keys", []):
        if jwk.get("kid") == kid:
            return jwk
    return None


def verify_jwt(token: str, jwks_url: str, issuer: Optional[str], audience: Optional[str]) -> dict:
    headers = jwt.get_unverified_header(token)
    kid = headers.get("kid")
    key = _find_key(_fetch_jwks(jwks_url), kid)
    if key is None:
        key = _find_key(_fetch_jwks(jwks_url, force=True), kid)
    if key is None:
        raise JWTError("Unknown kid")
    options = {"verify_aud": audience is not None, "verify_iss": issuer is not None}
    return jwt.decode(token, key, algorithms=[headers.get("alg", "RS256")], issuer=issuer, audience=audience, options=options)


def _unauthorized(code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=401,
    )


def _principal_id(raw: Any) -> Any:
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return raw


class JwtAuthMiddleware(BaseHTTPMiddleware):
    """Puts ``{"id", "email", "claims"}`` on ``request.state.user``.

    With ``C6_DISABLE_AUTH=1`` no token is checked and the principal comes
    from the ``X-User-Id`` header, or ``default_user_id`` when absent.
    """

    def __init__(
        self,
        app,
        jwks_url: Optional[str] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        default_user_id: Any = None,
    ) -> None:
        super().__init__(app)
        self._jwks_url = jwks_url
        self._issuer = issuer
        self._audience = audience
        self._default_user_id = default_user_id

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in _PUBLIC_PATHS:
            return await call_next(request)

        if auth_disabled():
            header = request.headers.get("X-User-Id")
            user_id = _principal_id(header) if header else self._default_user_id
            request.state.user = {"id": user_id, "email": None, "claims": {}}
            return await call_next(request)

        token = _get_bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized("AUTH_MISSING_TOKEN", "Missing bearer token")
        if not self._jwks_url:
            logger.error("auth_misconfigured path=%s reason=no_jwks_url", request.url.path)
            return _unauthorized("AUTH_INVALID_TOKEN", "Invalid bearer token")

        try:
            claims = verify_jwt(token, self._jwks_url, self._issuer, self._audience)
        except Exception as exc:
            logger.warning(
                "auth_invalid_token path=%s issuer=%s audience=%s error=%s",
                request.url.path,
                self._issuer,
                self._audience,
                exc,
            )
            return _unauthorized("AUTH_INVALID_TOKEN", "Invalid bearer token", {"error": str(exc)})

        request.state.user = {
            "id": _principal_id(claims.get("sub")),
            "email": claims.get("email"),
            "claims": claims,
        }
        return await call_next(request)
