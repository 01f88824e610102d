# backend/app/security/hashing.py
"""
One-way hashing for backup codes.

Hashes are self-describing (scheme, rounds and salt are embedded), so
the scheme can change without invalidating codes already issued.
Verification is constant-time.
"""
from typing import Sequence

from passlib.context import CryptContext

DEFAULT_SCHEMES = ("pbkdf2_sha256",)


class CodeHasher:
    def __init__(self, schemes: Sequence[str] = DEFAULT_SCHEMES):
        self.context = CryptContext(schemes=list(schemes), deprecated="auto")

    def hash(self, code: str) -> str:
        return self.context.hash(code)

    def verify(self, code: str, hashed: str) -> bool:
        """
        Check a plaintext code against a stored hash.

        Returns False (never raises) for malformed or unknown hashes.
        """
        try:
            return self.context.verify(code, hashed)
        except (ValueError, TypeError):
            return False
