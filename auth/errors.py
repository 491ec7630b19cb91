"""
auth/errors.py -- Failure taxonomy and the typed outcome returned by the engine.

Two kinds of failure, kept apart:

  Expected outcomes (wrong password, expired token, spent OTP) are returned as
  Outcome values carrying an AuthFailure code. Callers branch on outcome.ok;
  nothing is raised for them.

  Contract violations (hashing an empty password, consuming an OTP without a
  user id, a corrupted hash in the database) raise. Those are bugs or data
  corruption, not user input, and should reach the 500 handler.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class AuthFailure(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_HAS_NO_PASSWORD = "account_has_no_password"
    ACCOUNT_NOT_FOUND = "account_not_found"  # internal only for login
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"  # bad signature or wrong key class
    TOKEN_MALFORMED = "token_malformed"
    OTP_NOT_FOUND = "otp_not_found"
    OTP_EXPIRED = "otp_expired"
    OTP_NOT_FOUND_OR_EXPIRED = "otp_not_found_or_expired"
    EMAIL_TAKEN = "email_taken"
    EMAIL_ALREADY_VERIFIED = "email_already_verified"
    TENANT_NOT_FOUND = "tenant_not_found"


# Internal codes and the code the outside world sees instead.
_PUBLIC_CODES: dict[AuthFailure, AuthFailure] = {
    AuthFailure.ACCOUNT_NOT_FOUND: AuthFailure.INVALID_CREDENTIALS,
    AuthFailure.OTP_NOT_FOUND: AuthFailure.OTP_NOT_FOUND_OR_EXPIRED,
    AuthFailure.OTP_EXPIRED: AuthFailure.OTP_NOT_FOUND_OR_EXPIRED,
    AuthFailure.TOKEN_MALFORMED: AuthFailure.TOKEN_INVALID,
}


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an engine operation: a value on success, a failure code otherwise."""

    value: T | None = None
    error: AuthFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: AuthFailure) -> Outcome[T]:
        return cls(error=error)

    def public(self) -> Outcome[T]:
        """Collapse internal failure codes into the ones safe to show a client."""
        if self.error in _PUBLIC_CODES:
            return Outcome(error=_PUBLIC_CODES[self.error])
        return self


class MalformedHashError(ValueError):
    """A stored password hash is not a recognised argon2 or bcrypt encoding."""
