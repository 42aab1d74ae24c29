"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". Verification is
purely cryptographic: the token is decoded and its type checked, with no
database lookup and no token_version comparison. A signed-out user's access
token therefore keeps working until it expires; only refresh is revoked.

Failures raise AuthError, which api/main.py renders as the standard error
envelope with status 401.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import TokenClaims
from auth.sessions import SessionService
from core.errors import AuthError, ErrorKind


def get_session_service(request: Request) -> SessionService:
    """Return the SessionService wired into app.state by the lifespan."""
    return request.app.state.session_service


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid access token. Raises AuthError (401) otherwise.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: TokenClaims = Depends(get_current_claims)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthError(ErrorKind.ACCESS_TOKEN_REQUIRED)
    return get_session_service(request).verify_access_token(token)
