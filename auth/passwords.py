"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt is deliberately slow. Do not cache results or skip the check on any
login path -- the timing equalization in SessionService.authenticate_user()
depends on every attempt paying the same cost [C1].
"""

from __future__ import annotations

import bcrypt

_DUMMY_PASSWORD = "blogauth_timing_dummy"


class BcryptHasher:
    """One-way password hashing with a configurable work factor.

    Usage:
        hasher = BcryptHasher(rounds=12)
        hashed = hasher.hash("correct horse")
        hasher.verify("correct horse", hashed)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first unknown-identifier login is not measurably
        # slower than later ones. Same cost factor as real hashes.
        self.dummy_hash: str = self.hash(_DUMMY_PASSWORD)

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        bcrypt reads at most 72 bytes of UTF-8. Recent releases raise ValueError
        beyond that; older ones truncate silently. The API layer rejects longer
        passwords first (api/models.py _check_password_bytes).
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A corrupt stored hash is a failed match, not a crash: bcrypt raises
        ValueError for an unparseable salt.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False
