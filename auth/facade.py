"""
auth/facade.py -- The single entry point the HTTP layer calls.

AuthFacade composes SessionManager and OtpTokenStore and holds no state of its
own. Every outcome it returns has been passed through Outcome.public(), so
internal distinctions (no such account vs. wrong password, unknown OTP vs.
expired OTP) never leave this module.

build_auth_facade() is the assembly point: each component receives its
collaborators and the Settings instance explicitly.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthFailure, Outcome
from auth.mailer import OtpMailer
from auth.models import ClientSession, LoginResult, OtpIssue, OtpPurpose, Tenant, User
from auth.otp import OtpTokenStore
from auth.passwords import PasswordHasher
from auth.sessions import SessionManager, UserRepository, normalize_email
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")


class AuthFacade:
    def __init__(
        self,
        users: UserRepository,
        sessions: SessionManager,
        otp: OtpTokenStore,
        hasher: PasswordHasher,
        mailer: OtpMailer | None = None,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._otp = otp
        self._hasher = hasher
        self._mailer = mailer

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, first_name: str = "", last_name: str = "") -> Outcome[User]:
        """Create a password account. Duplicate email -> EMAIL_TAKEN."""
        email = normalize_email(email)
        if not email:
            raise ValueError("email is required")
        user = User(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            hashed_password=self._hasher.hash(password),
            password_required=True,
        )
        try:
            user_id = self._users.create_user(user)
        except IntegrityError:
            return Outcome.failure(AuthFailure.EMAIL_TAKEN)
        logger.info("Registered user %s", user_id)
        return Outcome.success(self._users.get_by_id(user_id))

    def current_user(self, session: ClientSession) -> User | None:
        """Return the user behind an already-checked session."""
        if session.is_anonymous:
            return None
        return self._users.get_by_id(session.subject_handle)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> Outcome[LoginResult]:
        return self._sessions.login(email, password).public()

    def logout(self, user_id: str) -> Outcome[None]:
        if not self._sessions.logout(user_id):
            return Outcome.failure(AuthFailure.ACCOUNT_NOT_FOUND)
        return Outcome.success()

    def check_authenticated(self, session: ClientSession) -> bool:
        return self._sessions.check_authenticated(session)

    def refresh(self, refresh_token: str) -> Outcome[ClientSession]:
        return self._sessions.refresh(refresh_token).public()

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def request_email_verification(self, user_id: str) -> Outcome[OtpIssue]:
        user = self._users.get_by_id(user_id)
        if user is None:
            return Outcome.failure(AuthFailure.ACCOUNT_NOT_FOUND)
        if user.email_verified:
            return Outcome.failure(AuthFailure.EMAIL_ALREADY_VERIFIED)
        issued = self._otp.issue(user.id, OtpPurpose.VERIFY_EMAIL)
        self._deliver(user, OtpPurpose.VERIFY_EMAIL, issued)
        return Outcome.success(issued)

    def verify_email(self, user_id: str, token: str) -> Outcome[None]:
        consumed = self._otp.consume(user_id, OtpPurpose.VERIFY_EMAIL, token)
        if not consumed.ok:
            return consumed.public()
        self._users.update_credential(user_id, email_verified=True)
        logger.info("Email verified for user %s", user_id)
        return Outcome.success()

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> Outcome[OtpIssue | None]:
        """Issue a reset token if the account exists.

        An unknown email still returns an ok outcome (with no value) so the
        HTTP response is identical either way. A delivery failure is logged
        and does not change the outcome for the same reason.
        """
        user = self._users.get_by_email(normalize_email(email))
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown account")
            return Outcome.success(None)
        issued = self._otp.issue(user.id, OtpPurpose.RESET_PASSWORD)
        try:
            self._deliver(user, OtpPurpose.RESET_PASSWORD, issued)
        except OSError:
            # smtplib.SMTPException and socket failures are both OSError.
            logger.exception("Could not deliver password reset email for user %s", user.id)
        return Outcome.success(issued)

    def reset_password(self, user_id: str, token: str, new_password: str) -> Outcome[None]:
        """Spend a reset token and set a new password.

        Also clears both session slots, so every session opened with the old
        password ends at its next check.
        """
        consumed = self._otp.consume(user_id, OtpPurpose.RESET_PASSWORD, token)
        if not consumed.ok:
            return consumed.public()
        self._users.update_credential(
            user_id,
            hashed_password=self._hasher.hash(new_password),
            password_required=True,
            access_token=None,
            refresh_token=None,
        )
        logger.info("Password reset for user %s", user_id)
        return Outcome.success()

    def purge_expired_tokens(self) -> int:
        return self._otp.purge_expired()

    # ------------------------------------------------------------------
    # Tenant context
    # ------------------------------------------------------------------

    def tenants_of(self, user_id: str) -> list[Tenant]:
        return self._users.find_tenants_of_user(user_id)

    def switch_tenant(self, session: ClientSession, tenant_id: str) -> Outcome[None]:
        """Make tenant_id the active tenant for the session's user."""
        if session.is_anonymous:
            raise ValueError("switch_tenant requires an authenticated session")
        user_id = session.subject_handle
        if tenant_id not in {t.id for t in self._users.find_tenants_of_user(user_id)}:
            return Outcome.failure(AuthFailure.TENANT_NOT_FOUND)
        self._users.update_credential(user_id, active_tenant_id=tenant_id)
        session.tenant_id = tenant_id
        return Outcome.success()

    def _deliver(self, user: User, purpose: OtpPurpose, issued: OtpIssue) -> None:
        if self._mailer is not None:
            self._mailer.send_otp(user.email, user.id, purpose, issued.token, issued.expires_at)


def build_auth_facade(
    settings: Settings,
    store: UserStore,
    mailer: OtpMailer | None = None,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> AuthFacade:
    """Wire every engine component from one Settings instance and one store."""
    hasher = PasswordHasher(settings)
    codec = TokenCodec(settings, clock=clock)
    sessions = SessionManager(store, hasher, codec, settings, clock=clock)
    otp = OtpTokenStore(store, settings, clock=clock)
    return AuthFacade(store, sessions, otp, hasher, mailer=mailer)
