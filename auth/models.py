"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OtpPurpose(str, Enum):
    VERIFY_EMAIL = "verify_email"
    RESET_PASSWORD = "reset_password"


@dataclass
class User:
    """A login identity and its credential state.

    hashed_password is None for accounts created through an external identity
    provider. password_required=False marks such accounts; login by password
    is refused with ACCOUNT_HAS_NO_PASSWORD rather than a generic failure.

    access_token / refresh_token hold the pair issued by the latest login.
    They are single slots: a new login overwrites both, logout clears both.
    Access tokens minted by a refresh are not stored.
    """

    email: str
    id: str | None = None
    first_name: str = ""
    last_name: str = ""
    hashed_password: str | None = None
    password_required: bool = True
    email_verified: bool = False
    active_tenant_id: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    is_active: bool = True
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email.split("@", 1)[0]


@dataclass
class Tenant:
    name: str
    id: str | None = None
    created_at: str | None = None


@dataclass
class OtpToken:
    """A single-use out-of-band token.

    token_hash is SHA-256 hex of the plaintext. The plaintext is handed out
    once at issue time and never stored.
    """

    user_id: str
    purpose: OtpPurpose
    token_hash: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass
class OtpIssue:
    """The plaintext token returned exactly once by OtpTokenStore.issue()."""

    token: str
    expires_at: str


@dataclass
class ClientSession:
    """Client-held session state (cookie-backed on the HTTP layer).

    The engine fills these fields on login/refresh and reads them back on
    every check. It never persists them.
    """

    access_token: str = ""
    display_name: str = ""
    subject_handle: str = ""
    tenant_id: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return not (self.access_token and self.subject_handle)

    def clear(self) -> None:
        self.access_token = ""
        self.display_name = ""
        self.subject_handle = ""
        self.tenant_id = None

    @classmethod
    def from_mapping(cls, data) -> ClientSession:
        """Build from a session dict (e.g. Starlette request.session)."""
        return cls(
            access_token=data.get("access_token", "") or "",
            display_name=data.get("display_name", "") or "",
            subject_handle=data.get("subject_handle", "") or "",
            tenant_id=data.get("tenant_id"),
        )

    def to_mapping(self) -> dict:
        if self.is_anonymous:
            return {}
        return {
            "access_token": self.access_token,
            "display_name": self.display_name,
            "subject_handle": self.subject_handle,
            "tenant_id": self.tenant_id,
        }


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    user: User
    session: ClientSession
