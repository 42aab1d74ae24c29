"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, service and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UserStatus(str, Enum):
    """Informational sign-in state. Audit only -- never a security control."""

    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    PASSWORD_RESET = "password_reset"


@dataclass
class User:
    """A credential record as stored in the users table.

    email and phone are both unique and both usable as the login identifier.

    token_version is the per-user revocation counter. It starts at 0 and is
    only ever incremented (once per sign-out, by UserStore.revoke_sessions).
    A refresh token is valid only while the token_version it carries equals
    this value.

    hashed_password must never leave the process -- routes serialize
    PublicUser instead.
    """

    name: str
    email: str
    phone: str
    hashed_password: str
    id: int | None = None
    image: str | None = None
    status: UserStatus = UserStatus.LOGGED_OUT
    token_version: int = 0
    last_login_at: str | None = None  # ISO 8601, stamped on successful sign-in
    created_at: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """Outward-safe projection of a User (no password hash, no token_version)."""

    id: int
    name: str
    email: str
    phone: str
    image: str | None
    status: UserStatus

    @classmethod
    def from_user(cls, user: User) -> PublicUser:
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            phone=user.phone,
            image=user.image,
            status=user.status,
        )


@dataclass(frozen=True)
class TokenClaims:
    """Decoded contents of a signed token.

    issued_at / expires_at are filled in by TokenCodec.verify(); they are None
    on claims that have not been minted yet.
    """

    subject: int
    type: TokenType
    token_version: int | None = None
    email: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AuthResult:
    """Successful sign-in: the public user plus both freshly minted tokens."""

    user: PublicUser
    access_token: str
    refresh_token: str
