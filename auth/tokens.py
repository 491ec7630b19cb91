"""
auth/tokens.py -- Signed bearer tokens (access / refresh).

Security design decisions:
  JWT: python-jose with HS256. Each key class (access, refresh) has its own
       secret from Settings, and the token carries a "typ" claim naming its
       class. A token signed for one class fails verification under the other
       on both counts -- different key, different typ.

  Claims: sub (user id), iat, exp, typ, jti, and optionally sid. jti is
       random so two tokens issued for the same user within one second are
       still distinct; the single-slot refresh comparison depends on that.
       sid names the login a token belongs to. A login stamps the same sid
       on its refresh token and on every access token minted from it.

  Expiry: checked here against an injectable clock, not inside jose, so tests
       can move time and so the optional leeway (token_leeway_seconds) is
       applied in one place. Default leeway is 0 -- no skew compensation.

  Verification is pure: no I/O, safe to run on every request.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import AuthFailure, Outcome
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")

_ALGORITHM = "HS256"


class KeyClass(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Issue and verify tokens for a given key class.

    Usage:
        codec = TokenCodec(settings)
        token = codec.issue(user.id, settings.access_token_ttl_seconds, KeyClass.ACCESS)
        outcome = codec.verify(token, KeyClass.ACCESS)
        if outcome.ok:
            user_id = outcome.value
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> None:
        self._secrets = {
            KeyClass.ACCESS: settings.access_token_secret,
            KeyClass.REFRESH: settings.refresh_token_secret,
        }
        self._leeway = timedelta(seconds=settings.token_leeway_seconds)
        self._clock = clock

    def issue(self, subject_id: str, ttl: int, key_class: KeyClass, session_id: str | None = None) -> str:
        """Return a signed token for subject_id that expires ttl seconds from now.

        session_id, when given, is carried as the sid claim.
        """
        if not subject_id:
            raise ValueError("subject_id is required")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        now = self._clock()
        payload = {
            "sub": str(subject_id),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
            "typ": key_class.value,
            "jti": secrets.token_hex(8),
        }
        if session_id:
            payload["sid"] = session_id
        return jwt.encode(payload, self._secrets[key_class], algorithm=_ALGORITHM)

    def verify(self, token: str, key_class: KeyClass) -> Outcome[str]:
        """Verify token under key_class. Returns the subject id on success.

        Failure codes:
          TOKEN_MALFORMED -- not a JWT, or sub/exp/typ claims missing or mistyped
          TOKEN_INVALID   -- signature does not verify, or wrong key class
          TOKEN_EXPIRED   -- valid signature, exp has passed
        """
        if not token or not isinstance(token, str):
            return Outcome.failure(AuthFailure.TOKEN_MALFORMED)
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return Outcome.failure(AuthFailure.TOKEN_MALFORMED)

        try:
            payload = jwt.decode(
                token,
                self._secrets[key_class],
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTClaimsError:
            return Outcome.failure(AuthFailure.TOKEN_MALFORMED)
        except JWTError:
            return Outcome.failure(AuthFailure.TOKEN_INVALID)

        subject = payload.get("sub")
        expires = payload.get("exp")
        if not subject or not isinstance(expires, int) or "typ" not in payload:
            return Outcome.failure(AuthFailure.TOKEN_MALFORMED)
        if payload["typ"] != key_class.value:
            logger.warning("Token presented under wrong key class (%s)", key_class.value)
            return Outcome.failure(AuthFailure.TOKEN_INVALID)

        expires_at = datetime.fromtimestamp(expires, tz=timezone.utc)
        if self._clock() >= expires_at + self._leeway:
            return Outcome.failure(AuthFailure.TOKEN_EXPIRED)
        return Outcome.success(subject)

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_hex(16)

    @staticmethod
    def session_id(token: str | None) -> str | None:
        """Read the sid claim WITHOUT checking the signature.

        Only for matching a token against the user's current login; callers
        must still verify() before trusting the token. Returns None for a
        missing sid or a token that does not parse.
        """
        if not token or not isinstance(token, str):
            return None
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return None
        sid = claims.get("sid")
        return sid if isinstance(sid, str) and sid else None
