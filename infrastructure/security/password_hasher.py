from __future__ import annotations

import bcrypt

from domain.repositories import PasswordHasher

# bcrypt ignores (or, in recent releases, rejects) input beyond 72 bytes.
BCRYPT_MAX_BYTES = 72
DEFAULT_ROUNDS = 12


class BcryptPasswordHasher(PasswordHasher):
    """
    bcrypt implementation of `PasswordHasher`.

    `rounds` is the log2 cost factor. Production uses 12 or more; tests
    pass a lower value to stay fast.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self._rounds = rounds

    @staticmethod
    def _encode(password: str) -> bytes:
        """Encode to UTF-8 and cut at 72 bytes without splitting a character."""

        encoded = password.encode("utf-8")
        if len(encoded) <= BCRYPT_MAX_BYTES:
            return encoded
        return encoded[:BCRYPT_MAX_BYTES].decode("utf-8", errors="ignore").encode("utf-8")

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(self._encode(password), salt).decode("ascii")

    def verify_password(self, password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(self._encode(password), hashed.encode("ascii"))
        except ValueError:
            # Malformed stored hash.
            return False
