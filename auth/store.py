"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_tenant / _row_to_otp are
the mappers. Engine and route code never touch SQL directly.

UserStore satisfies both persistence protocols the engine consumes:
  auth.sessions.UserRepository -- user lookup and credential updates
  auth.otp.OtpRepository       -- OTP token rows

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_credential() only accepts whitelisted column names.
  otp_tokens.token_hash holds SHA-256 hex; plaintext OTPs never reach the DB.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision so that
string comparison in SQL orders them correctly.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import OtpPurpose, OtpToken, Tenant, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("hashed_password", Text),  # NULL for external-identity accounts
    Column("password_required", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("active_tenant_id", String(36)),
    Column("access_token", Text),  # access token issued at the latest login
    Column("refresh_token", Text),  # current refresh token (single slot)
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(40)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

_tenants = Table(
    "tenants",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("created_at", String(40), nullable=False),
)

_memberships = Table(
    "memberships",
    _metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("tenant_id", String(36), ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True),
    Column("role", String(30), nullable=False, server_default="member"),
)

_otp_tokens = Table(
    "otp_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("purpose", String(30), nullable=False),
    Column("token_hash", String(64), nullable=False),  # SHA-256 hex
    Column("created_at", String(40), nullable=False),
    Column("expires_at", String(40), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on each new connection.

    SQLite PRAGMAs are per-connection, so they are set in the connect hook
    rather than once at startup.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# Columns update_credential() may touch. Email is deliberately absent.
_CREDENTIAL_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "hashed_password",
        "password_required",
        "email_verified",
        "active_tenant_id",
        "access_token",
        "refresh_token",
        "is_active",
        "last_login",
    }
)
_BOOL_FIELDS = frozenset({"password_required", "email_verified", "is_active"})


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Tenant and OtpToken entities.

    Usage:
        store = UserStore("sqlite:///gatehouse_auth.db")
        user_id = store.create_user(User(email="a@example.com", hashed_password=hasher.hash("secret")))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as EMAIL_TAKEN.
        """
        user_id = user.id or str(uuid.uuid4())
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    hashed_password=user.hashed_password,
                    password_required=1 if user.password_required else 0,
                    email_verified=1 if user.email_verified else 0,
                    active_tenant_id=user.active_tenant_id,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Callers normalise case before calling."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_credential(self, user_id: str, **fields) -> bool:
        """Update credential/session columns on an existing user.

        Only names in _CREDENTIAL_FIELDS are accepted; anything else raises
        ValueError rather than being silently dropped. Bools are stored as 0/1.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _CREDENTIAL_FIELDS
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        values = {k: ((1 if v else 0) if k in _BOOL_FIELDS else v) for k, v in fields.items()}
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Delete a user. Memberships and OTP rows go with it (ON DELETE CASCADE)."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def create_tenant(self, tenant: Tenant) -> str:
        tenant_id = tenant.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(_tenants.insert().values(id=tenant_id, name=tenant.name, created_at=_now_iso()))
            conn.commit()
        return tenant_id

    def add_membership(self, user_id: str, tenant_id: str, role: str = "member") -> None:
        with self.engine.connect() as conn:
            conn.execute(_memberships.insert().values(user_id=user_id, tenant_id=tenant_id, role=role))
            conn.commit()

    def find_tenants_of_user(self, user_id: str) -> list[Tenant]:
        """Return every tenant the user is a member of, ordered by name. Empty list if none."""
        query = (
            _tenants.select()
            .join(_memberships, _memberships.c.tenant_id == _tenants.c.id)
            .where(_memberships.c.user_id == user_id)
            .order_by(_tenants.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_tenant(r) for r in rows]

    # ------------------------------------------------------------------
    # OTP tokens
    # ------------------------------------------------------------------

    def create_otp_token(self, user_id: str, purpose: OtpPurpose, token_hash: str, expires_at: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _otp_tokens.insert().values(
                    user_id=user_id,
                    purpose=purpose.value,
                    token_hash=token_hash,
                    created_at=_now_iso(),
                    expires_at=expires_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_active_otp_tokens(self, user_id: str, purpose: OtpPurpose) -> list[OtpToken]:
        """Return every outstanding (not yet consumed) token for (user_id, purpose).

        Expired rows are included; the caller decides between EXPIRED and
        NOT_FOUND after matching the hash.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _otp_tokens.select()
                .where((_otp_tokens.c.user_id == user_id) & (_otp_tokens.c.purpose == purpose.value))
                .order_by(_otp_tokens.c.id)
            ).fetchall()
        return [_row_to_otp(r) for r in rows]

    def delete_otp_token(self, token_id: int) -> bool:
        """Delete one token. Returns False if it was already gone (concurrent consume)."""
        with self.engine.connect() as conn:
            result = conn.execute(_otp_tokens.delete().where(_otp_tokens.c.id == token_id))
            conn.commit()
        return result.rowcount > 0

    def delete_otp_tokens(self, user_id: str, purpose: OtpPurpose) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _otp_tokens.delete().where(
                    (_otp_tokens.c.user_id == user_id) & (_otp_tokens.c.purpose == purpose.value)
                )
            )
            conn.commit()
        return result.rowcount

    def purge_expired_otp_tokens(self, now_iso: str) -> int:
        """Delete all tokens whose expiry is at or before now_iso. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_otp_tokens.delete().where(_otp_tokens.c.expires_at <= now_iso))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        hashed_password=row.hashed_password,
        password_required=bool(row.password_required),
        email_verified=bool(row.email_verified),
        active_tenant_id=row.active_tenant_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_tenant(row) -> Tenant:
    return Tenant(id=row.id, name=row.name, created_at=row.created_at)


def _row_to_otp(row) -> OtpToken:
    return OtpToken(
        id=row.id,
        user_id=row.user_id,
        purpose=OtpPurpose(row.purpose),
        token_hash=row.token_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
