"""
auth/otp.py -- Single-use out-of-band tokens (email verification, password reset).

Security design decisions:
  Tokens are 20 random bytes (160 bits) from secrets, encoded as lower-case
  base32 without padding -- short enough to paste from an email, no
  ambiguous characters.

  Only SHA-256 hex of the token is stored. A slow hash is unnecessary at 160
  bits of entropy, and a fast one keeps consume() cheap. Comparison uses
  hmac.compare_digest so match position does not leak through timing.

  A matched token is deleted whether it is still valid or already expired:
  either way it can never succeed again. Expiry is checked lazily here; there
  is no background sweeper (purge_expired() exists for operators).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from auth.errors import AuthFailure, Outcome
from auth.models import OtpIssue, OtpPurpose, OtpToken
from auth.store import to_iso
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")

_TOKEN_BYTES = 20


class OtpRepository(Protocol):
    def create_otp_token(self, user_id: str, purpose: OtpPurpose, token_hash: str, expires_at: str) -> int: ...

    def find_active_otp_tokens(self, user_id: str, purpose: OtpPurpose) -> list[OtpToken]: ...

    def delete_otp_token(self, token_id: int) -> bool: ...

    def delete_otp_tokens(self, user_id: str, purpose: OtpPurpose) -> int: ...

    def purge_expired_otp_tokens(self, now_iso: str) -> int: ...


def generate_token() -> str:
    raw = secrets.token_bytes(_TOKEN_BYTES)
    return base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class OtpTokenStore:
    """Issue and consume OTP tokens against an OtpRepository.

    Usage:
        otp = OtpTokenStore(store, settings)
        issued = otp.issue(user.id, OtpPurpose.VERIFY_EMAIL)
        mailer.send_otp(user.email, OtpPurpose.VERIFY_EMAIL, issued.token)
        ...
        outcome = otp.consume(user.id, OtpPurpose.VERIFY_EMAIL, presented)
    """

    def __init__(
        self,
        repository: OtpRepository,
        settings: Settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repo = repository
        self._default_ttl = settings.otp_ttl_seconds
        self._invalidate_previous = settings.otp_invalidate_previous
        self._clock = clock

    def issue(self, user_id: str, purpose: OtpPurpose, ttl: int | None = None) -> OtpIssue:
        """Create a token and return its plaintext. It cannot be retrieved again."""
        if not user_id:
            raise ValueError("user_id is required")
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        if self._invalidate_previous:
            dropped = self._repo.delete_otp_tokens(user_id, purpose)
            if dropped:
                logger.info("Invalidated %d outstanding %s token(s) for user %s", dropped, purpose.value, user_id)

        token = generate_token()
        expires_at = to_iso(self._clock() + timedelta(seconds=ttl))
        self._repo.create_otp_token(user_id, purpose, hash_token(token), expires_at)
        logger.info("Issued %s token for user %s (expires %s)", purpose.value, user_id, expires_at)
        return OtpIssue(token=token, expires_at=expires_at)

    def consume(self, user_id: str, purpose: OtpPurpose, presented: str) -> Outcome[None]:
        """Spend a token. Succeeds at most once per issued token.

        Returns OTP_NOT_FOUND when nothing matches and OTP_EXPIRED when the
        match is past its expiry. Outcome.public() collapses both for clients.
        """
        if not user_id:
            raise ValueError("user_id is required")
        if not presented:
            return Outcome.failure(AuthFailure.OTP_NOT_FOUND)

        presented_hash = hash_token(presented.strip().lower())
        match = None
        for candidate in self._repo.find_active_otp_tokens(user_id, purpose):
            if hmac.compare_digest(candidate.token_hash, presented_hash):
                match = candidate
                break
        if match is None:
            logger.warning("No matching %s token for user %s", purpose.value, user_id)
            return Outcome.failure(AuthFailure.OTP_NOT_FOUND)

        # Delete first: if a concurrent consume already removed the row, this
        # call lost the race and must not succeed as well.
        if not self._repo.delete_otp_token(match.id):
            return Outcome.failure(AuthFailure.OTP_NOT_FOUND)
        if self._clock() >= datetime.fromisoformat(match.expires_at):
            logger.warning("Expired %s token presented for user %s", purpose.value, user_id)
            return Outcome.failure(AuthFailure.OTP_EXPIRED)
        return Outcome.success()

    def purge_expired(self) -> int:
        """Delete every expired token. Returns the number removed."""
        return self._repo.purge_expired_otp_tokens(to_iso(self._clock()))
