"""
accounts/store.py -- SQLAlchemy Core persistence layer for accounts and their artifacts.

Pattern: Repository + Data Mapper. AccountStore is the repository; the
_row_to_* functions are the mappers. Components never touch SQL directly.

Atomicity:
  Every invariant that concurrent requests could break is enforced by the
  database, never by a read-then-write in Python:
    - email uniqueness              -> UNIQUE(accounts.email)
    - token uniqueness              -> UNIQUE(sessions.token_hash), UNIQUE(verification_tokens.token_hash)
    - one outstanding OTP / account -> UNIQUE(otp_records.account_id)
    - single consumption            -> UPDATE ... WHERE status = 'pending' (rowcount is the CAS result)
    - single OTP redemption         -> DELETE ... WHERE id = :id (rowcount is the CAS result)
    - verified flag flips once      -> UPDATE ... WHERE is_verified = 0
  IntegrityError is left to the caller, which knows what the violation means.

Bounded waits:
  SQLite gets a busy timeout and every engine gets a pool timeout of
  db_timeout seconds. OperationalError and pool TimeoutError are re-raised
  as core.errors.Transient by the @_bounded decorator.

Security:
  All queries use bound parameters. No f-strings in SQL. Raw tokens and codes
  never reach this module -- callers pass HMAC digests.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import functools
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from core.errors import Transient
from core.models import Account, AccountType, OtpRecord, SessionRecord, VerificationStatus, VerificationToken

logger = logging.getLogger("workbridge.store")

_DEFAULT_DB_URL = "sqlite:///workbridge_accounts.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # normalised, lower-case
    Column("password_hash", Text, nullable=False),
    Column("account_type", String(20), nullable=False),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("profile", Text),  # JSON blob of extra profile fields
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),  # issuance order
    Column("account_id", Integer, nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Index("ix_sessions_account_id", "account_id"),
)

_verification_tokens = Table(
    "verification_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("created_at", String(32), nullable=False),
    Column("consumed_at", String(32)),
    Index("ix_verification_tokens_account_id", "account_id"),
)

_otp_records = Table(
    "otp_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, unique=True),  # at most one outstanding code
    Column("code_hash", String(64), nullable=False),
    Column("issued_at", String(32), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the single writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    # Fixed microsecond precision so ISO strings compare correctly as text.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _bounded(method):
    """Re-raise lock / pool timeouts and connection failures as Transient."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning("Storage call %s failed: %s", method.__name__, type(exc).__name__)
            raise Transient() from exc

    return wrapper


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for accounts, sessions, verification tokens and OTP records.

    Usage:
        store = AccountStore("sqlite:///accounts.db")
        account_id = store.create_account(Account(email="a@x.com", password_hash=h, account_type=AccountType.employee))
        store.insert_session(account_id, token_hash)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        if ":memory:" not in db_url and "mode=memory" not in db_url:
            # In-memory SQLite gets a SingletonThreadPool, which has no pool_timeout.
            engine_kwargs["pool_timeout"] = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    @_bounded
    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @_bounded
    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email is already registered.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=account.email,
                    password_hash=account.password_hash,
                    account_type=AccountType(account.account_type).value,
                    is_verified=1 if account.is_verified else 0,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    profile=json.dumps(account.profile or {}),
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    @_bounded
    def get_account(self, account_id: int) -> Optional[Account]:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    @_bounded
    def get_account_by_email(self, email: str) -> Optional[Account]:
        """Look up by normalised email. Callers normalise before calling."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    @_bounded
    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields (password_hash, email). Returns False if account_id is unknown.

        Raises sqlalchemy.exc.IntegrityError if a new email collides.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
        return result.rowcount > 0

    @_bounded
    def mark_verified(self, account_id: int) -> bool:
        """Flip is_verified false -> true. Returns True only for the call that flipped it."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.is_verified == 0))
                .values(is_verified=1)
            )
        return result.rowcount > 0

    @_bounded
    def delete_account(self, account_id: int) -> bool:
        """Delete the account and every artifact it owns in one transaction."""
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.account_id == account_id))
            conn.execute(_verification_tokens.delete().where(_verification_tokens.c.account_id == account_id))
            conn.execute(_otp_records.delete().where(_otp_records.c.account_id == account_id))
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @_bounded
    def insert_session(self, account_id: int, token_hash: str) -> int:
        """Append a session to the account's set and return its ID.

        Raises sqlalchemy.exc.IntegrityError on a token_hash collision.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.insert().values(account_id=account_id, token_hash=token_hash, created_at=now_iso())
            )
            return result.inserted_primary_key[0]

    @_bounded
    def get_account_by_session(self, token_hash: str) -> Optional[Account]:
        stmt = (
            select(_accounts)
            .select_from(_sessions.join(_accounts, _sessions.c.account_id == _accounts.c.id))
            .where(_sessions.c.token_hash == token_hash)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_account(row) if row is not None else None

    @_bounded
    def delete_session(self, token_hash: str) -> int:
        with self.engine.begin() as conn:
            return conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash)).rowcount

    @_bounded
    def delete_sessions(self, account_id: int, keep_hash: Optional[str] = None) -> int:
        """Delete every session of the account, optionally sparing one token."""
        condition = _sessions.c.account_id == account_id
        if keep_hash is not None:
            condition = condition & (_sessions.c.token_hash != keep_hash)
        with self.engine.begin() as conn:
            return conn.execute(_sessions.delete().where(condition)).rowcount

    @_bounded
    def list_sessions(self, account_id: int) -> list[SessionRecord]:
        """Return the account's active sessions in issuance order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.account_id == account_id).order_by(_sessions.c.id)
            ).fetchall()
        return [SessionRecord(id=r.id, account_id=r.account_id, created_at=r.created_at) for r in rows]

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    @_bounded
    def replace_verification_token(self, account_id: int, token_hash: str) -> int:
        """Supersede any pending token of the account and insert a new one, atomically.

        Raises sqlalchemy.exc.IntegrityError on a token_hash collision (the
        supersede is rolled back with it).
        """
        with self.engine.begin() as conn:
            conn.execute(
                _verification_tokens.update()
                .where(
                    (_verification_tokens.c.account_id == account_id)
                    & (_verification_tokens.c.status == VerificationStatus.pending.value)
                )
                .values(status=VerificationStatus.superseded.value)
            )
            result = conn.execute(
                _verification_tokens.insert().values(
                    account_id=account_id,
                    token_hash=token_hash,
                    status=VerificationStatus.pending.value,
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    @_bounded
    def consume_verification_token(self, token_hash: str, issued_after: Optional[str] = None) -> bool:
        """Mark a pending token consumed. Returns True only for the caller that won.

        issued_after: ISO cutoff; pending tokens created before it are expired
        and are left untouched.
        """
        condition = (_verification_tokens.c.token_hash == token_hash) & (
            _verification_tokens.c.status == VerificationStatus.pending.value
        )
        if issued_after is not None:
            condition = condition & (_verification_tokens.c.created_at >= issued_after)
        with self.engine.begin() as conn:
            result = conn.execute(
                _verification_tokens.update()
                .where(condition)
                .values(status=VerificationStatus.consumed.value, consumed_at=now_iso())
            )
        return result.rowcount > 0

    @_bounded
    def get_verification_token(self, token_hash: str) -> Optional[VerificationToken]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _verification_tokens.select().where(_verification_tokens.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_verification_token(row) if row is not None else None

    @_bounded
    def purge_verification_tokens(self, issued_before: Optional[str]) -> int:
        """Delete superseded tokens and pending tokens issued before the cutoff.

        Consumed tokens are kept so a replayed link still reports AlreadyConsumed.
        """
        condition = _verification_tokens.c.status == VerificationStatus.superseded.value
        if issued_before is not None:
            condition = condition | (
                (_verification_tokens.c.status == VerificationStatus.pending.value)
                & (_verification_tokens.c.created_at < issued_before)
            )
        with self.engine.begin() as conn:
            return conn.execute(_verification_tokens.delete().where(condition)).rowcount

    # ------------------------------------------------------------------
    # OTP records
    # ------------------------------------------------------------------

    @_bounded
    def insert_otp(self, account_id: int, code_hash: str, issued_at: str, stale_before: str) -> int:
        """Clear an expired record for the account and insert a new one, atomically.

        Raises sqlalchemy.exc.IntegrityError if a live record already exists
        (including one inserted concurrently by another request).
        """
        with self.engine.begin() as conn:
            conn.execute(
                _otp_records.delete().where(
                    (_otp_records.c.account_id == account_id) & (_otp_records.c.issued_at < stale_before)
                )
            )
            result = conn.execute(
                _otp_records.insert().values(
                    account_id=account_id, code_hash=code_hash, issued_at=issued_at, attempts=0
                )
            )
            return result.inserted_primary_key[0]

    @_bounded
    def get_otp(self, account_id: int) -> Optional[OtpRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(_otp_records.select().where(_otp_records.c.account_id == account_id)).fetchone()
        return _row_to_otp(row) if row is not None else None

    @_bounded
    def delete_otp(self, otp_id: int) -> bool:
        """Delete one specific record. Returns True only for the caller that removed it."""
        with self.engine.begin() as conn:
            return conn.execute(_otp_records.delete().where(_otp_records.c.id == otp_id)).rowcount > 0

    @_bounded
    def record_otp_failure(self, otp_id: int, max_attempts: int) -> bool:
        """Count a failed attempt; delete the record once max_attempts is reached.

        Returns True if this failure cancelled the record.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _otp_records.update()
                .where(_otp_records.c.id == otp_id)
                .values(attempts=_otp_records.c.attempts + 1)
            )
            result = conn.execute(
                _otp_records.delete().where((_otp_records.c.id == otp_id) & (_otp_records.c.attempts >= max_attempts))
            )
        return result.rowcount > 0

    @_bounded
    def delete_otps(self, account_id: int) -> int:
        with self.engine.begin() as conn:
            return conn.execute(_otp_records.delete().where(_otp_records.c.account_id == account_id)).rowcount

    @_bounded
    def purge_otps(self, stale_before: str) -> int:
        with self.engine.begin() as conn:
            return conn.execute(_otp_records.delete().where(_otp_records.c.issued_at < stale_before)).rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        account_type=AccountType(row.account_type),
        is_verified=bool(row.is_verified),
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        profile=json.loads(row.profile) if row.profile else {},
        created_at=row.created_at,
    )


def _row_to_verification_token(row) -> VerificationToken:
    return VerificationToken(
        id=row.id,
        account_id=row.account_id,
        status=VerificationStatus(row.status),
        created_at=row.created_at,
        consumed_at=row.consumed_at,
    )


def _row_to_otp(row) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        account_id=row.account_id,
        code_hash=row.code_hash,
        issued_at=row.issued_at,
        attempts=row.attempts,
    )
