"""
auth/sessions.py -- Credential and session lifecycle.

SessionService owns every state transition of a user's credentials:

  register_user          -> new record, LOGGED_OUT, token_version 0, no tokens
  authenticate_user      -> LOGGED_IN, last_login_at, access + refresh tokens
  logout_user            -> LOGGED_OUT, token_version + 1 (revokes refresh tokens)
  refresh_access_token   -> new access token if the refresh token's version is current
  request_password_reset -> reset token mailed (or silently nothing for unknown email)
  reset_password         -> new password hash

The service is stateless apart from its injected collaborators, so one
instance is shared by every request thread. All shared mutable state lives in
the CredentialStore.

Known, preserved properties:
  - Access tokens are not checked against token_version. After logout an
    already-issued access token stays usable until its own expiry (15 minutes
    by default); only the next refresh is refused.
  - reset_password does not bump token_version, so refresh tokens issued
    before a reset keep working after it.
  - A reset token can be replayed until it expires; nothing records its use.

Security:
  [C1] authenticate_user runs bcrypt even for unknown identifiers (against the
       hasher's dummy hash) so response time does not reveal whether an email
       or phone is registered.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.exc import IntegrityError

from auth.models import AuthResult, PublicUser, TokenClaims, TokenType, User
from auth.passwords import BcryptHasher
from auth.store import CredentialStore
from auth.tokens import TokenCodec, TokenExpiredError, TokenInvalidError
from core.config import Settings, get_settings
from core.errors import AuthError, ErrorKind

logger = logging.getLogger("blogauth.auth")


class PasswordResetMailer(Protocol):
    def send_password_reset(self, to_email: str, token: str, user_name: str) -> None: ...


class SessionService:
    """Orchestrates sign-up, sign-in, sign-out, refresh and password reset.

    Usage:
        service = SessionService(store, BcryptHasher(), TokenCodec(secret), ResetMailer(settings))
        service.register_user("Ada", "ada@x.com", "15550000000", "s3cretpass")
        result = service.authenticate_user("s3cretpass", email="ada@x.com")
        access = service.refresh_access_token(result.refresh_token)
        service.logout_user(result.user.id)
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: BcryptHasher,
        codec: TokenCodec,
        mailer: PasswordResetMailer,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._codec = codec
        self._mailer = mailer
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_user(self, name: str, email: str, phone: str, password: str, image: str | None = None) -> None:
        """Create a LOGGED_OUT account. The caller must sign in separately.

        Raises AuthError(ALREADY_EXISTS) if the email or the phone is taken.
        """
        if self._store.exists_by_email_or_phone(email=email, phone=phone):
            raise AuthError(ErrorKind.ALREADY_EXISTS)

        user = User(
            name=name,
            email=email,
            phone=phone,
            hashed_password=self._hasher.hash(password),
            image=image or None,
        )
        try:
            user_id = self._store.create_user(user)
        except IntegrityError as exc:
            # A concurrent sign-up won the race between the check and the insert.
            raise AuthError(ErrorKind.ALREADY_EXISTS) from exc
        logger.info("Registered user id=%s", user_id)

    # ------------------------------------------------------------------
    # Sign-in / sign-out
    # ------------------------------------------------------------------

    def authenticate_user(self, password: str, email: str | None = None, phone: str | None = None) -> AuthResult:
        """Verify credentials and issue an access/refresh token pair.

        Email takes precedence over phone when both are supplied. Unknown
        identifier and wrong password raise the identical
        AuthError(INVALID_CREDENTIALS).
        """
        user = self._store.find_by_email_or_phone(email=email, phone=phone)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self._hasher.verify(password, self._hasher.dummy_hash)
            logger.info("Sign-in rejected: invalid credentials")
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)
        if not self._hasher.verify(password, user.hashed_password):
            logger.info("Sign-in rejected: invalid credentials")
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)

        self._store.record_login(user.id)
        user = self._store.get_by_id(user.id) or user

        access_token = self._mint_access_token(user)
        refresh_token = self._codec.mint(
            TokenClaims(subject=user.id, type=TokenType.REFRESH, token_version=user.token_version),
            self._settings.refresh_token_ttl_seconds,
        )
        logger.info("User id=%s signed in", user.id)
        return AuthResult(user=PublicUser.from_user(user), access_token=access_token, refresh_token=refresh_token)

    def logout_user(self, user_id: int) -> None:
        """Sign the user out and revoke every refresh token issued so far.

        Raises AuthError(NOT_FOUND) if the user does not exist.
        """
        if not self._store.revoke_sessions(user_id):
            raise AuthError(ErrorKind.NOT_FOUND, f"user id={user_id}")
        logger.info("User id=%s signed out; refresh tokens revoked", user_id)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def refresh_access_token(self, refresh_token: str) -> str:
        """Exchange a current refresh token for a new access token.

        The refresh token itself is not rotated and stays usable until it
        expires or the user's token_version moves on.
        """
        try:
            claims = self._codec.verify(refresh_token)
        except TokenExpiredError as exc:
            raise AuthError(ErrorKind.REFRESH_TOKEN_EXPIRED) from exc
        except TokenInvalidError as exc:
            raise AuthError(ErrorKind.INVALID_REFRESH_TOKEN, str(exc)) from exc

        if claims.type is not TokenType.REFRESH:
            raise AuthError(ErrorKind.INVALID_REFRESH_TOKEN, f"wrong token type {claims.type.value}")

        user = self._store.get_by_id(claims.subject)
        if user is None:
            raise AuthError(ErrorKind.NOT_FOUND, f"user id={claims.subject}")

        if claims.token_version != user.token_version:
            logger.info("Refresh rejected for user id=%s: token version revoked", user.id)
            raise AuthError(ErrorKind.INVALID_REFRESH_TOKEN, "token version revoked")

        return self._mint_access_token(user)

    def verify_access_token(self, access_token: str) -> TokenClaims:
        """Decode a bearer access token. No database lookup, no version check."""
        try:
            claims = self._codec.verify(access_token)
        except TokenExpiredError as exc:
            raise AuthError(ErrorKind.ACCESS_TOKEN_EXPIRED) from exc
        except TokenInvalidError as exc:
            raise AuthError(ErrorKind.INVALID_TOKEN, str(exc)) from exc
        if claims.type is not TokenType.ACCESS:
            raise AuthError(ErrorKind.INVALID_TOKEN, f"wrong token type {claims.type.value}")
        return claims

    def current_user(self, user_id: int) -> PublicUser:
        user = self._store.get_by_id(user_id)
        if user is None:
            raise AuthError(ErrorKind.NOT_FOUND, f"user id={user_id}")
        return PublicUser.from_user(user)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> bool:
        """Mail a one-hour reset token to `email` if an account uses it.

        Returns True if a mail was sent, False for an unknown email. Callers
        must not expose the return value: both outcomes look identical to the
        client (enumeration resistance).

        Raises AuthError(EMAIL_SEND_FAILED) if delivery fails.
        """
        user = self._store.find_by_email_or_phone(email=email)
        if user is None:
            logger.info("Password reset requested for unknown email; nothing sent")
            return False

        token = self._codec.mint(
            TokenClaims(subject=user.id, type=TokenType.PASSWORD_RESET),
            self._settings.reset_token_ttl_seconds,
        )
        try:
            self._mailer.send_password_reset(user.email, token, user.name or "User")
        except Exception as exc:
            logger.exception("Failed to send password reset email for user id=%s", user.id)
            raise AuthError(ErrorKind.EMAIL_SEND_FAILED) from exc
        logger.info("Password reset token issued for user id=%s", user.id)
        return True

    def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token.

        token_version is left alone; outstanding refresh tokens survive.
        """
        try:
            claims = self._codec.verify(token)
        except TokenExpiredError as exc:
            raise AuthError(ErrorKind.RESET_TOKEN_EXPIRED) from exc
        except TokenInvalidError as exc:
            raise AuthError(ErrorKind.INVALID_RESET_TOKEN, str(exc)) from exc

        if claims.type is not TokenType.PASSWORD_RESET:
            raise AuthError(ErrorKind.INVALID_RESET_TOKEN, f"wrong token type {claims.type.value}")

        if self._store.get_by_id(claims.subject) is None:
            raise AuthError(ErrorKind.NOT_FOUND, f"user id={claims.subject}")

        self._store.update_user(claims.subject, hashed_password=self._hasher.hash(new_password))
        logger.info("Password reset for user id=%s", claims.subject)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mint_access_token(self, user: User) -> str:
        return self._codec.mint(
            TokenClaims(
                subject=user.id,
                type=TokenType.ACCESS,
                token_version=user.token_version,
                email=user.email,
            ),
            self._settings.access_token_ttl_seconds,
        )
