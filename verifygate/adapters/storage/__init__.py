"""
Storage adapters - File snapshot and PostgreSQL implementations.

``build_stores`` picks the backend once at startup from settings; nothing
downstream branches on which one is in use.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from psycopg_pool import ConnectionPool

from verifygate.config.settings import Settings
from verifygate.domain.ports import AuditStore, UserStore

from .file import FileAuditStore, FileUserStore
from .postgres import PostgresAuditStore, PostgresUserStore, run_migrations

logger = logging.getLogger(__name__)

__all__ = [
    "FileAuditStore",
    "FileUserStore",
    "PostgresAuditStore",
    "PostgresUserStore",
    "Stores",
    "build_stores",
    "run_migrations",
]


@dataclass
class Stores:
    """The configured user and audit stores plus any pool they share."""

    users: UserStore
    audit: AuditStore
    pool: Optional[ConnectionPool] = None

    def close(self) -> None:
        """Flush pending user mutations and release the pool."""
        try:
            self.users.save()
        finally:
            if self.pool is not None:
                self.pool.close()
                logger.info("Database connection pool closed")


def build_stores(settings: Settings) -> Stores:
    """Create the stores selected by ``settings.storage_type``."""
    if settings.storage_type == "postgres":
        logger.info("Connecting to database...")
        pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )
        logger.info("Running database migrations...")
        run_migrations(pool)
        logger.info("PostgreSQL storage enabled")
        return Stores(users=PostgresUserStore(pool), audit=PostgresAuditStore(pool), pool=pool)

    data_dir = Path(settings.data_dir)
    logger.info(f"File storage enabled in {data_dir}")
    return Stores(
        users=FileUserStore(data_dir / "users.json"),
        audit=FileAuditStore(data_dir / "audits.json"),
    )
