"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST /api/v1/auth/register          -- create account (no tokens issued)
  POST /api/v1/auth/login             -- email/phone + password; access + refresh tokens
  POST /api/v1/auth/logout            -- revoke refresh tokens (requires access token)
  POST /api/v1/auth/refresh-token     -- new access token from a current refresh token
  POST /api/v1/auth/forgot-password   -- mail a reset link; same response for unknown emails
  POST /api/v1/auth/reset-password    -- set a new password with a reset token
  GET  /api/v1/auth/me                -- public profile of the token's subject

Security:
  [H2] POST /login is rate-limited per client IP (5 requests / 60 s default).
  [C1] SessionService.authenticate_user() provides timing equalization.
  [M5] Cache-Control: no-store on every response that carries a token.
  Enumeration resistance: /forgot-password answers identically whether or
  not the email belongs to an account.

Handlers are plain `def` so FastAPI runs them in its thread pool -- bcrypt and
the SQLite store both block.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ForgotPasswordRequest,
    MessageResponse,
    RefreshTokenRequest,
    RefreshTokenResponse,
    ResetPasswordRequest,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    UserResponse,
)
from auth.dependencies import get_current_claims, get_session_service
from auth.models import TokenClaims
from auth.sessions import SessionService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register:         public
# - POST /api/v1/auth/login:            public, throttled [H2]
# - POST /api/v1/auth/logout:           requires access token (get_current_claims)
# - POST /api/v1/auth/refresh-token:    public -- the refresh token is the credential
# - POST /api/v1/auth/forgot-password:  public
# - POST /api/v1/auth/reset-password:   public -- the reset token is the credential
# - GET  /api/v1/auth/me:               requires access token (get_current_claims)
router = APIRouter()

_RESET_REQUESTED_MESSAGE = "If an account exists for that email, a password reset link has been sent."


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MessageResponse, status_code=201)
def register(body: SignUpRequest, service: SessionService = Depends(get_session_service)) -> MessageResponse:
    """Create a new account. The user signs in separately afterwards.

    Duplicate email or phone -> 422 already_exists.
    """
    service.register_user(
        name=body.name,
        email=body.email,
        phone=body.phone,
        password=body.password,
        image=body.image,
    )
    return MessageResponse(message="Account created successfully.")


@router.post("/auth/login", response_model=SignInResponse)
@limiter.limit(login_rate_limit)  # [H2] checked in the wrapper, before the body runs
def login(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate with email or phone and password; return both tokens.

    Unknown identifier and wrong password produce the same 401
    invalid_credentials response.
    """
    service = get_session_service(request)
    result = service.authenticate_user(body.password, email=body.email, phone=body.phone)
    payload = SignInResponse(
        user=UserResponse.from_public_user(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=get_settings().access_token_ttl_seconds,
    )
    return _no_store(payload.model_dump(mode="json"))


@router.post("/auth/refresh-token", response_model=RefreshTokenResponse)
def refresh_token(body: RefreshTokenRequest, service: SessionService = Depends(get_session_service)) -> JSONResponse:
    """Mint a new access token. The refresh token is not rotated."""
    access_token = service.refresh_access_token(body.refresh_token)
    payload = RefreshTokenResponse(
        access_token=access_token,
        expires_in=get_settings().access_token_ttl_seconds,
    )
    return _no_store(payload.model_dump(mode="json"))


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    body: ForgotPasswordRequest, service: SessionService = Depends(get_session_service)
) -> MessageResponse:
    """Send a one-hour reset link if the email belongs to an account.

    The response never reveals whether it did.
    """
    service.request_password_reset(body.email)
    return MessageResponse(message=_RESET_REQUESTED_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest, service: SessionService = Depends(get_session_service)
) -> MessageResponse:
    """Replace the password of the reset token's subject."""
    service.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset successfully.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    claims: TokenClaims = Depends(get_current_claims),
    service: SessionService = Depends(get_session_service),
) -> MessageResponse:
    """Sign out and revoke every refresh token issued to this user so far.

    The presented access token itself stays valid until it expires.
    """
    service.logout_user(claims.subject)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/me", response_model=UserResponse)
def me(
    claims: TokenClaims = Depends(get_current_claims),
    service: SessionService = Depends(get_session_service),
) -> UserResponse:
    """Return the public profile of the authenticated user."""
    return UserResponse.from_public_user(service.current_user(claims.subject))
