"""
PostgreSQL storage adapter - Implements UserStore and AuditStore.

This module provides the relational implementation of the storage ports
using psycopg3 with raw SQL.

Consistency Design:
------------------
1. **Transactional commit**: Every mutation runs in its own transaction and
   commits before returning, so ``save()`` has nothing left to do. A crash
   leaves either the committed row set or the previous one.

2. **Username uniqueness**: A partial unique index on ``lower(username)``
   over non-deleted rows makes the database the final arbiter. Inserts use
   ``ON CONFLICT DO NOTHING`` and report the conflict through rowcount.

3. **Writer lock**: Mutations from one store instance are serialized by a
   process-local lock, matching the file backend.

4. **Audit log**: Insert-only table keyed by a BIGSERIAL sequence; listing
   pages through it by sequence so no connection is held between batches.
"""

import logging
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg_pool import ConnectionPool

from verifygate.domain.exceptions import StorageIOFailure
from verifygate.domain.ports import (
    AccountStatus,
    AuditAction,
    AuditFilter,
    AuditRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

_USER_COLUMNS = (
    "account_id, username, email, status, created_at, last_status_change_at, deleted_at"
)


def _row_to_user(row: tuple) -> UserRecord:
    return UserRecord(
        account_id=row[0],
        username=row[1],
        email=row[2],
        status=AccountStatus(row[3]),
        created_at=row[4],
        last_status_change_at=row[5],
        deleted_at=row[6],
    )


class PostgresUserStore:
    """
    Implements UserStore protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize store with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool
        self._lock = threading.Lock()

    def get_all_users(self) -> list[UserRecord]:
        sql = f"""
            SELECT {_USER_COLUMNS} FROM accounts
            WHERE deleted_at IS NULL
            ORDER BY created_at, account_id
        """
        return [_row_to_user(row) for row in self._fetch(sql, ())]

    def get_user(self, account_id: str) -> Optional[UserRecord]:
        sql = f"""
            SELECT {_USER_COLUMNS} FROM accounts
            WHERE account_id = %s AND deleted_at IS NULL
        """
        rows = self._fetch(sql, (account_id,))
        return _row_to_user(rows[0]) if rows else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        sql = f"""
            SELECT {_USER_COLUMNS} FROM accounts
            WHERE lower(username) = lower(%s) AND deleted_at IS NULL
        """
        rows = self._fetch(sql, (username,))
        return _row_to_user(rows[0]) if rows else None

    def register_user(
        self, account_id: str, username: str, email: str, initial_status: AccountStatus
    ) -> bool:
        """
        Insert a new account row.

        The partial unique index and the primary key turn any duplicate into
        a no-op insert, reported as False.
        """
        sql = """
            INSERT INTO accounts (account_id, username, email, status, created_at, last_status_change_at)
            VALUES (%s, %s, %s, %s, NOW(), NOW())
            ON CONFLICT DO NOTHING
        """
        status = AccountStatus(initial_status).value
        return self._execute(sql, (account_id, username, email, status)) == 1

    def update_status(self, account_id: str, new_status: AccountStatus) -> bool:
        sql = """
            UPDATE accounts
            SET status = %s, last_status_change_at = NOW()
            WHERE account_id = %s AND deleted_at IS NULL
        """
        return self._execute(sql, (AccountStatus(new_status).value, account_id)) == 1

    def delete_user(self, account_id: str) -> bool:
        sql = """
            UPDATE accounts
            SET deleted_at = NOW()
            WHERE account_id = %s AND deleted_at IS NULL
        """
        return self._execute(sql, (account_id,)) == 1

    def discard_user(self, account_id: str) -> bool:
        sql = "DELETE FROM accounts WHERE account_id = %s"
        return self._execute(sql, (account_id,)) == 1

    def restore_user(self, account_id: str) -> bool:
        sql = """
            UPDATE accounts
            SET deleted_at = NULL
            WHERE account_id = %s AND deleted_at IS NOT NULL
        """
        try:
            return self._execute(sql, (account_id,)) == 1
        except StorageIOFailure as e:
            if isinstance(e.__cause__, pg_errors.UniqueViolation):
                return False
            raise

    def save(self) -> None:
        """Mutations are committed as they happen; nothing is pending."""

    def _fetch(self, sql: str, params: tuple) -> list[tuple]:
        try:
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, params)
                return cursor.fetchall()
        except psycopg.Error as e:
            logger.error(f"Account query failed - {e}")
            raise StorageIOFailure("account query failed") from e

    def _execute(self, sql: str, params: tuple) -> int:
        with self._lock:
            try:
                with self._pool.connection() as conn, conn.cursor() as cursor:
                    cursor.execute(sql, params)
                    conn.commit()
                    return cursor.rowcount
            except psycopg.Error as e:
                logger.error(f"Account write failed - {e}")
                raise StorageIOFailure("account write failed") from e


class PostgresAuditStore:
    """Implements AuditStore protocol via psycopg3 on an insert-only table."""

    def __init__(self, pool: ConnectionPool, *, batch_size: int = 500) -> None:
        self._pool = pool
        self._batch_size = batch_size
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> AuditRecord:
        sql = """
            INSERT INTO audit_log (timestamp, actor, subject, action, detail)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING sequence
        """
        params = (
            record.timestamp,
            record.actor,
            record.subject,
            record.action.value,
            record.detail,
        )
        with self._lock:
            try:
                with self._pool.connection() as conn, conn.cursor() as cursor:
                    cursor.execute(sql, params)
                    sequence = cursor.fetchone()[0]
                    conn.commit()
            except psycopg.Error as e:
                logger.error(f"Audit append failed - {e}")
                raise StorageIOFailure("audit append failed") from e
        return AuditRecord(
            timestamp=record.timestamp,
            actor=record.actor,
            subject=record.subject,
            action=record.action,
            detail=record.detail,
            sequence=sequence,
        )

    def save(self) -> None:
        """Appends are committed as they happen; nothing is pending."""

    def list(self, audit_filter: Optional[AuditFilter] = None) -> Iterator[AuditRecord]:
        audit_filter = audit_filter or AuditFilter()
        return self._iterate(audit_filter)

    def _iterate(self, audit_filter: AuditFilter) -> Iterator[AuditRecord]:
        clauses = ["sequence > %s"]
        params: list = []
        if audit_filter.subject is not None:
            clauses.append("subject = %s")
            params.append(audit_filter.subject)
        if audit_filter.action is not None:
            clauses.append("action = %s")
            params.append(audit_filter.action.value)
        if audit_filter.actor is not None:
            clauses.append("actor = %s")
            params.append(audit_filter.actor)
        sql = f"""
            SELECT sequence, timestamp, actor, subject, action, detail
            FROM audit_log
            WHERE {" AND ".join(clauses)}
            ORDER BY sequence
            LIMIT %s
        """

        last = audit_filter.since_sequence or 0
        while True:
            try:
                with self._pool.connection() as conn, conn.cursor() as cursor:
                    cursor.execute(sql, (last, *params, self._batch_size))
                    rows = cursor.fetchall()
            except psycopg.Error as e:
                logger.error(f"Audit listing failed - {e}")
                raise StorageIOFailure("audit listing failed") from e
            for row in rows:
                yield AuditRecord(
                    timestamp=row[1],
                    actor=row[2],
                    subject=row[3],
                    action=AuditAction(row[4]),
                    detail=row[5],
                    sequence=row[0],
                )
            if len(rows) < self._batch_size:
                return
            last = rows[-1][0]


def run_migrations(pool: ConnectionPool, migrations_dir: Optional[Path] = None) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
        migrations_dir: Override for the repository's migrations/ directory
    """
    # Structure: verifygate/adapters/storage/postgres.py -> migrations/
    if migrations_dir is None:
        migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
