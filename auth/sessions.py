"""
auth/sessions.py -- Login, session checks with transparent refresh, logout.

Session lifecycle (per client, implied by cookie contents + the user row):

    ANONYMOUS --login--> AUTHENTICATED --access expired--> REFRESHING
    REFRESHING --refresh ok--> AUTHENTICATED
    REFRESHING --refresh failed--> LOGGED_OUT (server slots cleared)

A session is valid only while its access token verifies AND belongs to the
login currently held in the user's refresh slot. Both tokens of a login
carry the same sid claim, so the check compares the presented access
token's sid with the refresh slot's. That catches cookies that outlived a
logout, a password reset or a newer login.

Access tokens minted by a refresh are not persisted. Any number of requests
holding the same expired cookie may each refresh it and all stay
authenticated.

Single-slot refresh token: login overwrites the user's refresh_token column.
Only the newest login can refresh; an older session's next check or refresh
fails. Concurrent logins for one user are last write wins; nothing is
locked.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

from auth.errors import AuthFailure, Outcome
from auth.models import ClientSession, LoginResult, Tenant, User
from auth.passwords import PasswordHasher
from auth.store import to_iso
from auth.tokens import KeyClass, TokenCodec
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")


class UserRepository(Protocol):
    def get_by_email(self, email: str) -> User | None: ...

    def get_by_id(self, user_id: str) -> User | None: ...

    def update_credential(self, user_id: str, **fields) -> bool: ...

    def create_user(self, user: User) -> str: ...

    def find_tenants_of_user(self, user_id: str) -> list[Tenant]: ...


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _same_token(held: str | None, presented: str | None) -> bool:
    if not held or not presented:
        return False
    return hmac.compare_digest(held.encode("utf-8"), presented.encode("utf-8"))


def session_for(user: User, access_token: str) -> ClientSession:
    return ClientSession(
        access_token=access_token,
        display_name=user.display_name,
        subject_handle=user.id,
        tenant_id=user.active_tenant_id,
    )


class SessionManager:
    """Owns the login / check / refresh / logout state machine.

    Usage:
        manager = SessionManager(store, hasher, codec, settings)
        outcome = manager.login("a@example.com", "secret")
        if outcome.ok:
            request.session.update(outcome.value.session.to_mapping())
    """

    def __init__(
        self,
        users: UserRepository,
        hasher: PasswordHasher,
        codec: TokenCodec,
        settings: Settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._users = users
        self._hasher = hasher
        self._codec = codec
        self._access_ttl = settings.access_token_ttl_seconds
        self._refresh_ttl = settings.refresh_token_ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> Outcome[LoginResult]:
        """Verify a password and open a session.

        Failure codes: ACCOUNT_NOT_FOUND (internal; the facade shows it as
        INVALID_CREDENTIALS), INVALID_CREDENTIALS, ACCOUNT_HAS_NO_PASSWORD.

        Every failure path runs one password verification so response time
        does not reveal which check failed [C1].
        """
        email = normalize_email(email)
        if not email or not password:
            self._hasher.dummy_verify(password)
            return Outcome.failure(AuthFailure.INVALID_CREDENTIALS)

        user = self._users.get_by_email(email)
        if user is None or not user.is_active:
            self._hasher.dummy_verify(password)
            logger.info("Login failed: unknown or inactive account")
            return Outcome.failure(AuthFailure.ACCOUNT_NOT_FOUND)

        if not user.hashed_password:
            self._hasher.dummy_verify(password)
            if not user.password_required:
                logger.info("Login refused for user %s: account has no password", user.id)
                return Outcome.failure(AuthFailure.ACCOUNT_HAS_NO_PASSWORD)
            logger.warning("User %s requires a password but has none stored", user.id)
            return Outcome.failure(AuthFailure.INVALID_CREDENTIALS)

        if not self._hasher.verify(user.hashed_password, password):
            logger.info("Login failed for user %s: bad password", user.id)
            return Outcome.failure(AuthFailure.INVALID_CREDENTIALS)

        sid = self._codec.new_session_id()
        refresh_token = self._codec.issue(user.id, self._refresh_ttl, KeyClass.REFRESH, session_id=sid)
        access_token = self._codec.issue(user.id, self._access_ttl, KeyClass.ACCESS, session_id=sid)
        updates = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "last_login": to_iso(self._clock()),
        }
        if self._hasher.needs_rehash(user.hashed_password):
            updates["hashed_password"] = self._hasher.hash(password)
            logger.info("Upgraded password hash for user %s", user.id)
        self._users.update_credential(user.id, **updates)

        user.access_token = access_token
        user.refresh_token = refresh_token
        user.last_login = updates["last_login"]
        logger.info("User %s logged in", user.id)
        return Outcome.success(
            LoginResult(
                access_token=access_token,
                refresh_token=refresh_token,
                user=user,
                session=session_for(user, access_token),
            )
        )

    # ------------------------------------------------------------------
    # Session check with transparent refresh
    # ------------------------------------------------------------------

    def check_authenticated(self, session: ClientSession) -> bool:
        """Return True if the client session is authenticated.

        May update session.access_token in place when the access token had
        expired and the user's stored refresh token was still good. Nothing
        is written on that path, so repeating the check with the same cookie
        gives the same answer. When the refresh fails the user is logged out
        and the session cleared. A forged or corrupted access token returns
        False and changes nothing, on the server or in the session.
        """
        if session.is_anonymous:
            return False

        user = self._users.get_by_id(session.subject_handle)
        if user is None or not user.is_active:
            session.clear()
            return False
        if user.display_name != session.display_name or self._superseded(user, session.access_token):
            logger.info("Stale session for user %s (superseded or logged out)", user.id)
            session.clear()
            return False

        verified = self._codec.verify(session.access_token, KeyClass.ACCESS)
        if verified.ok:
            if verified.value != user.id:
                logger.warning("Access token subject does not match session handle %s", user.id)
                return False
            return True

        if verified.error is not AuthFailure.TOKEN_EXPIRED:
            logger.warning("Rejected %s access token for user %s", verified.error.value, user.id)
            return False

        refreshed = self._refresh_user(user)
        if not refreshed.ok:
            logger.info("Refresh failed for user %s (%s); logging out", user.id, refreshed.error.value)
            self.logout(user.id)
            session.clear()
            return False

        session.access_token = refreshed.value
        session.display_name = user.display_name
        session.tenant_id = user.active_tenant_id
        return True

    def refresh(self, refresh_token: str) -> Outcome[ClientSession]:
        """Mint a new access token from a presented refresh token.

        The token must verify under the refresh key AND still be the user's
        current refresh slot. A token superseded by a newer login fails with
        TOKEN_INVALID; the newer session is left alone.
        """
        verified = self._codec.verify(refresh_token, KeyClass.REFRESH)
        if not verified.ok:
            return Outcome.failure(verified.error)
        user = self._users.get_by_id(verified.value)
        if user is None or not user.is_active:
            return Outcome.failure(AuthFailure.TOKEN_INVALID)
        if not _same_token(user.refresh_token, refresh_token):
            logger.info("Superseded refresh token presented for user %s", user.id)
            return Outcome.failure(AuthFailure.TOKEN_INVALID)
        access_token = self._issue_access(user)
        return Outcome.success(session_for(user, access_token))

    def _superseded(self, user: User, access_token: str) -> bool:
        # A token whose sid cannot be read is left to verify(), which rejects
        # it without touching the session.
        current = self._codec.session_id(user.refresh_token)
        if current is None:
            return True
        presented = self._codec.session_id(access_token)
        if presented is None:
            return False
        return not _same_token(current, presented)

    def _refresh_user(self, user: User) -> Outcome[str]:
        if not user.refresh_token:
            return Outcome.failure(AuthFailure.TOKEN_INVALID)
        verified = self._codec.verify(user.refresh_token, KeyClass.REFRESH)
        if not verified.ok:
            return Outcome.failure(verified.error)
        if verified.value != user.id:
            return Outcome.failure(AuthFailure.TOKEN_INVALID)
        return Outcome.success(self._issue_access(user))

    def _issue_access(self, user: User) -> str:
        # Bound to the current login; neither slot is written.
        sid = self._codec.session_id(user.refresh_token)
        access_token = self._codec.issue(user.id, self._access_ttl, KeyClass.ACCESS, session_id=sid)
        logger.info("Refreshed access token for user %s", user.id)
        return access_token

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, user_id: str) -> bool:
        """Clear the user's access and refresh slots.

        No further refresh is possible afterwards and any access token the
        client still holds no longer belongs to the current login. The token itself stays
        cryptographically valid until it expires. Returns False if the user
        does not exist.
        """
        if not user_id:
            raise ValueError("user_id is required")
        found = self._users.update_credential(user_id, access_token=None, refresh_token=None)
        if found:
            logger.info("User %s logged out", user_id)
        else:
            logger.warning("Logout requested for unknown user %s", user_id)
        return found
