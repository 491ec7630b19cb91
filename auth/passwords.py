"""
auth/passwords.py -- Password hashing and verification.

Security design decisions:
  argon2id via argon2-cffi is the primary algorithm. It is memory-hard, so
       GPU/ASIC brute force is expensive, and the encoded output embeds the
       salt and cost parameters -- no separate salt column is needed.

  bcrypt hashes from the previous release are still accepted for login.
       needs_rehash() reports them, and SessionManager.login() rewrites the
       stored hash with argon2id after a successful verification. Over time
       every active account migrates without a forced password reset.

  Timing equalization: dummy_verify() runs one full verification against a
       fixed hash. login() calls it when the email does not exist so response
       time does not reveal which accounts are registered [C1].

Layer rule: no imports from api/. Cost parameters arrive via Settings.
"""

from __future__ import annotations

import bcrypt
from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from auth.errors import MalformedHashError
from core.config import Settings

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def _is_bcrypt(hashed: str) -> bool:
    return hashed.startswith(_BCRYPT_PREFIXES)


class PasswordHasher:
    """Hash and verify plaintext passwords.

    Usage:
        hasher = PasswordHasher(settings)
        stored = hasher.hash("s3cret")
        hasher.verify(stored, "s3cret")  # True
    """

    def __init__(self, settings: Settings) -> None:
        self._argon2 = Argon2Hasher(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
            type=Type.ID,
        )
        # Computed once per hasher so the first failed login is not
        # measurably slower than later ones.
        self._dummy_hash = self._argon2.hash("gatehouse_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return an argon2id encoded hash. Empty input is a usage error."""
        if not plaintext:
            raise ValueError("Cannot hash an empty password.")
        return self._argon2.hash(plaintext)

    def verify(self, hashed: str, plaintext: str) -> bool:
        """Return True if plaintext matches hashed, False otherwise.

        Raises MalformedHashError when hashed is not a valid argon2 or bcrypt
        encoding -- that is corrupt data, not a wrong password.
        """
        if not hashed:
            raise MalformedHashError("Stored password hash is empty.")
        if _is_bcrypt(hashed):
            try:
                return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
            except ValueError as exc:
                raise MalformedHashError("Stored bcrypt hash is malformed.") from exc
        try:
            return self._argon2.verify(hashed, plaintext)
        except VerifyMismatchError:
            return False
        except InvalidHashError as exc:
            raise MalformedHashError("Stored argon2 hash is malformed.") from exc
        except VerificationError:
            # Well-formed hash whose parameters do not verify (e.g. wrong type).
            return False

    def needs_rehash(self, hashed: str) -> bool:
        """True for legacy bcrypt hashes and argon2 hashes with stale cost parameters."""
        if _is_bcrypt(hashed):
            return True
        try:
            return self._argon2.check_needs_rehash(hashed)
        except InvalidHashError as exc:
            raise MalformedHashError("Stored argon2 hash is malformed.") from exc

    def dummy_verify(self, plaintext: str) -> None:
        """Burn one verification's worth of work. Result is discarded."""
        self.verify(self._dummy_hash, plaintext or "x")
