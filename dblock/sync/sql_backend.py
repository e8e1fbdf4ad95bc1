"""
SQL implementation of LockBackend

One row per lock name. Obtaining inserts the row, or, when the row already
exists, claims it with an UPDATE guarded by ``lock_until <= now``. The
store's primary key constraint and row-level atomicity settle races; this
module takes no locks of its own. All values are bound parameters.
"""
import logging
import os
import socket
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import (
    Column, DateTime, MetaData, String, Table, Text, insert, select, update
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .backend import LockBackend, LockView, check_context
from dblock.common.context import Context
from dblock.errors import BackendError, ConfigError
from dblock.utils.connector import db_connection
from dblock.utils.token import DEFAULT_TOKEN_SIZE, token_length

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "shedlock"

HOSTNAME = socket.gethostname()
PID = str(os.getpid())


def lock_table(name: str = DEFAULT_TABLE, metadata: Optional[MetaData] = None) -> Table:
    """Table definition for lock rows"""
    metadata = metadata if metadata is not None else MetaData()
    return Table(
        name,
        metadata,
        Column("lock_name", String(255), primary_key=True),
        Column("lock_until", DateTime, nullable=False),
        Column("locked_at", DateTime, nullable=False),
        Column("locked_by", String(255), nullable=False),
        Column("token_value", String(255), nullable=False),
        Column("meta_value", Text, nullable=False, default=""),
        Column("locked_pid", String(64), nullable=False),
    )


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in lock_until / locked_at"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(value, column: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as e:
            raise BackendError(f"parse {column} {value!r}", e)
    if not isinstance(value, datetime):
        raise BackendError(f"parse {column}: unexpected value {value!r}")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _remaining_ms(lock_until: datetime, now: datetime) -> int:
    return max(0, int((lock_until - now).total_seconds() * 1000))


class SQLLockBackend(LockBackend):
    """SQLAlchemy-based lock backend"""

    def __init__(self, engine: Engine, table: str = DEFAULT_TABLE, debug: bool = False,
                 locked_by: Optional[str] = None, locked_pid: Optional[str] = None,
                 token_size: int = DEFAULT_TOKEN_SIZE):
        self.engine = engine
        self.metadata = MetaData()
        self.table = lock_table(table, self.metadata)
        self.debug = debug
        self.locked_by = locked_by or HOSTNAME
        self.locked_pid = locked_pid or PID
        self.token_size = token_size
        self.token_length = token_length(token_size)

    @classmethod
    def from_url(cls, url: str, pool_size: Optional[int] = None, **kwargs) -> "SQLLockBackend":
        engine = db_connection(url, pool_size=pool_size)
        if engine is None:
            raise ConfigError("empty database uri")
        return cls(engine, **kwargs)

    def create_schema(self):
        """Create the lock table if it does not exist"""
        try:
            self.metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise BackendError(f"create table {self.table.name}", e)

    def close(self):
        self.engine.dispose()

    def _log(self, stmt, key: str, rowcount: Optional[int] = None):
        if not self.debug:
            return
        extra = {"lock_key": key}
        logger.info(f"query: {str(stmt.compile(dialect=self.engine.dialect))!r}", extra=extra)
        if rowcount is not None:
            logger.info(f"affected: {rowcount}", extra=extra)

    def _execute(self, stmt, name: str, key: str, ctx: Optional[Context]) -> int:
        check_context(ctx)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
                rowcount = result.rowcount
        except SQLAlchemyError as e:
            self._log(stmt, key)
            raise BackendError(f"{name} lock {key!r}", e)
        self._log(stmt, key, rowcount)
        return rowcount

    def _fetch_one(self, stmt, name: str, key: str, ctx: Optional[Context]):
        check_context(ctx)
        self._log(stmt, key)
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).first()
        except SQLAlchemyError as e:
            raise BackendError(f"{name} lock {key!r}", e)
        except ValueError as e:
            # raised by the DateTime result processor on malformed values
            raise BackendError(f"{name} lock {key!r}: malformed row", e)

    def _insert(self, key: str, token: str, metadata: str, lock_until: datetime,
                now: datetime, ctx: Optional[Context]) -> bool:
        stmt = insert(self.table).values(
            lock_name=key,
            lock_until=lock_until,
            locked_at=now,
            locked_by=self.locked_by,
            token_value=token,
            meta_value=metadata,
            locked_pid=self.locked_pid,
        )
        check_context(ctx)
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except IntegrityError:
            self._log(stmt, key, 0)
            return False
        except SQLAlchemyError as e:
            raise BackendError(f"insert lock {key!r}", e)
        self._log(stmt, key, 1)
        return True

    def obtain(self, key: str, token: str, metadata: str, ttl_ms: int,
               ctx: Optional[Context] = None) -> bool:
        now = utcnow()
        lock_until = now + timedelta(milliseconds=ttl_ms)
        if self._insert(key, token, metadata, lock_until, now, ctx):
            return True

        # The row exists: claim it only if the previous lease has run out.
        t = self.table
        stmt = (
            update(t)
            .where(t.c.lock_name == key, t.c.lock_until <= now)
            .values(
                lock_until=lock_until,
                locked_at=now,
                locked_by=self.locked_by,
                token_value=token,
                meta_value=metadata,
                locked_pid=self.locked_pid,
            )
        )
        return self._execute(stmt, "update", key, ctx) == 1

    def refresh(self, key: str, token: str, metadata: str, ttl_ms: int,
                ctx: Optional[Context] = None) -> bool:
        t = self.table
        now = utcnow()
        # an expired or released row cannot be revived by its old token
        stmt = (
            update(t)
            .where(t.c.lock_name == key, t.c.token_value == token, t.c.lock_until > now)
            .values(lock_until=now + timedelta(milliseconds=ttl_ms))
        )
        return self._execute(stmt, "extend", key, ctx) == 1

    def release(self, key: str, token: str, metadata: str,
                ctx: Optional[Context] = None) -> bool:
        # Expire the row rather than delete it, keeping its history for the next claimant.
        t = self.table
        now = utcnow()
        stmt = (
            update(t)
            .where(t.c.lock_name == key, t.c.token_value == token, t.c.lock_until > now)
            .values(lock_until=now - timedelta(seconds=1))
        )
        return self._execute(stmt, "unlock", key, ctx) == 1

    def query(self, key: str, token: str, metadata: str,
              ctx: Optional[Context] = None) -> Tuple[int, bool]:
        t = self.table
        stmt = select(t.c.lock_until).where(t.c.lock_name == key, t.c.token_value == token)
        row = self._fetch_one(stmt, "query", key, ctx)
        if row is None:
            return 0, False
        lock_until = _as_naive_utc(row.lock_until, "lock_until")
        return _remaining_ms(lock_until, utcnow()), True

    def view(self, key: str, ctx: Optional[Context] = None) -> Optional[LockView]:
        t = self.table
        stmt = select(
            t.c.lock_until, t.c.locked_at, t.c.locked_by, t.c.meta_value, t.c.locked_pid
        ).where(t.c.lock_name == key)
        row = self._fetch_one(stmt, "view", key, ctx)
        if row is None:
            return None
        lock_until = _as_naive_utc(row.lock_until, "lock_until")
        return LockView(
            key=key,
            ttl_ms=_remaining_ms(lock_until, utcnow()),
            metadata=row.meta_value,
            locked_by=row.locked_by,
            locked_pid=row.locked_pid,
            locked_at=_as_naive_utc(row.locked_at, "locked_at"),
        )
