"""
auth/tokens.py -- Signed, expiring claim sets (JWT via python-jose).

Security design decisions:
  JWT: python-jose with HS256 by default. Tokens are signed with SECRET_KEY
       and carry sub (user id as a string), type, optional token_version and
       email, iat and exp.

  Expiry: checked here against the injected clock, not by python-jose. This
       keeps the boundary exact (a token verified at or after exp is expired)
       and lets tests move time without sleeping. python-jose's own exp check
       is disabled for that reason; the signature is still always verified.

  Errors: verify() raises TokenExpiredError or TokenInvalidError. Callers map
       them to different error kinds (*_TOKEN_EXPIRED vs INVALID_*) because
       client retry logic depends on the distinction.

  The codec is the only component that mints or reads tokens. Everything
  else handles opaque strings.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.models import TokenClaims, TokenType

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpiredError(TokenError):
    """Signature is valid but the token is at or past its exp claim."""


class TokenInvalidError(TokenError):
    """Bad signature, wrong algorithm, garbled structure or missing claims."""


class TokenCodec:
    """Mint and verify signed claim sets with a shared secret.

    Usage:
        codec = TokenCodec(settings.secret_key)
        token = codec.mint(TokenClaims(subject=1, type=TokenType.REFRESH, token_version=0), 3600)
        claims = codec.verify(token)
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", clock: Clock | None = None) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._clock = clock or utcnow

    def mint(self, claims: TokenClaims, ttl_seconds: int) -> str:
        """Encode claims with iat = now and exp = now + ttl_seconds."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        issued_at = int(self._clock().timestamp())
        payload: dict = {
            "sub": str(claims.subject),
            "type": claims.type.value,
            "iat": issued_at,
            "exp": issued_at + ttl_seconds,
        }
        if claims.token_version is not None:
            payload["token_version"] = claims.token_version
        if claims.email is not None:
            payload["email"] = claims.email
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Verify the signature and expiry, then return the decoded claims.

        Raises:
            TokenExpiredError: signature valid, but now >= exp.
            TokenInvalidError: anything else wrong with the token.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalidError(str(exc)) from exc

        exp = payload.get("exp")
        if not isinstance(exp, int) or isinstance(exp, bool):
            raise TokenInvalidError("missing or non-integer exp claim")
        # Expiry is only meaningful once the signature is known to be good.
        if self._clock().timestamp() >= exp:
            raise TokenExpiredError("token expired")

        return _payload_to_claims(payload)


def _payload_to_claims(payload: dict) -> TokenClaims:
    try:
        subject = int(payload["sub"])
        token_type = TokenType(payload["type"])
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalidError(f"malformed claims: {exc}") from exc

    token_version = payload.get("token_version")
    if token_version is not None and (not isinstance(token_version, int) or isinstance(token_version, bool)):
        raise TokenInvalidError("token_version must be an integer")

    email = payload.get("email")
    if email is not None and not isinstance(email, str):
        raise TokenInvalidError("email must be a string")

    return TokenClaims(
        subject=subject,
        type=token_type,
        token_version=token_version,
        email=email,
        issued_at=issued_at,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
