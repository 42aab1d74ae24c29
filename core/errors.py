"""
core/errors.py -- Domain error taxonomy shared by auth/ and api/.

AuthError carries only a machine-readable ErrorKind. The HTTP status and the
user-facing message for each kind live in api/main.py, so the service layer
never knows about transport details.

Taxonomy:
  conflicts       -- ALREADY_EXISTS
  authentication  -- INVALID_CREDENTIALS, ACCESS_TOKEN_REQUIRED, INVALID_*_TOKEN,
                     *_TOKEN_EXPIRED
  not found       -- NOT_FOUND (decoded-but-dangling token subject, unknown id)
  rate limiting   -- TOO_MANY_REQUESTS (raised by slowapi, mapped in api/)
  downstream      -- EMAIL_SEND_FAILED, OPERATION_FAILED, TEMPORARILY_UNAVAILABLE

Expired and malformed tokens are always separate kinds: clients decide between
"try refresh" and "force re-login" based on the code.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    ALREADY_EXISTS = "already_exists"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCESS_TOKEN_REQUIRED = "access_token_required"
    INVALID_TOKEN = "invalid_token"
    ACCESS_TOKEN_EXPIRED = "access_token_expired"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    INVALID_RESET_TOKEN = "invalid_reset_token"
    RESET_TOKEN_EXPIRED = "reset_token_expired"
    NOT_FOUND = "not_found"
    TOO_MANY_REQUESTS = "too_many_requests"
    EMAIL_SEND_FAILED = "email_send_failed"
    OPERATION_FAILED = "operation_failed"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"


class AuthError(Exception):
    """A typed domain failure raised by the session service.

    `detail` is for server-side logs only; the API layer never echoes it back
    for authentication failures.
    """

    def __init__(self, kind: ErrorKind, detail: str | None = None) -> None:
        super().__init__(kind.value if detail is None else f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail

    def __repr__(self) -> str:
        return f"AuthError({self.kind.name})"
