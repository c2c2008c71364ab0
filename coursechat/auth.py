"""Authentication module: bearer token verification and auth dependencies."""

import logging

import jwt
from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict
from starlette.requests import Request

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """The credential is missing, malformed, expired or wrongly signed."""


class Claims(BaseModel):
    """Identity extracted from a verified token. Extra claims are kept."""

    model_config = ConfigDict(extra="allow")

    id: str
    role: str | None = None


# --- Token Verification ---

def verify_token(token: str | None, *, secret: str | None, algorithm: str = "HS256") -> Claims:
    """Decode and validate a signed token, returning its identity claims.

    Raises ``AuthError`` for every failure mode. Touches no state, so it is
    safe to call before a connection has been registered anywhere.
    """
    if not token:
        raise AuthError("Missing token")
    if not secret:
        raise AuthError("Token verification is not configured")
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthError(f"Invalid token: {e}") from e

    user_id = payload.get("id", payload.get("sub"))
    if user_id is None or str(user_id) == "":
        raise AuthError("Token carries no user id")
    claims = dict(payload)
    claims["id"] = str(user_id)
    role = claims.get("role")
    claims["role"] = str(role) if role is not None else None
    return Claims(**claims)


# --- Request Helpers ---

def get_token_from_request(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def require_user(request: Request) -> Claims:
    """FastAPI dependency that enforces a valid bearer token on REST endpoints."""
    token = get_token_from_request(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Authorization header missing")
    settings = request.app.state.settings
    try:
        return verify_token(token, secret=settings.jwt_secret, algorithm=settings.jwt_algorithm)
    except AuthError as e:
        logger.warning("Rejected REST request from %s: %s",
                       request.client.host if request.client else "unknown", e)
        raise HTTPException(status_code=403, detail="Invalid or expired token")
