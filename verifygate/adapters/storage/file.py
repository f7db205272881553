"""
File snapshot storage adapter - Implements UserStore and AuditStore.

Each store keeps its records in memory and persists them as one JSON
document. A snapshot is written to a temporary file in the target's
directory, flushed and fsynced, then moved over the target with
``os.replace``. A crash at any point leaves either the previous or the new
document on disk, never a partial one.

User mutations are held in memory until ``save()``. Audit appends are
written through immediately; an append whose snapshot cannot be written
is rolled back and raises StorageIOFailure.
"""

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable, Iterator
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from verifygate.domain.exceptions import StorageIOFailure
from verifygate.domain.ports import (
    AccountStatus,
    AuditAction,
    AuditFilter,
    AuditRecord,
    UserRecord,
    utcnow,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _user_to_dict(user: UserRecord) -> dict[str, Any]:
    data = asdict(user)
    data["status"] = user.status.value
    for key in ("created_at", "last_status_change_at", "deleted_at"):
        data[key] = data[key].isoformat() if data[key] else None
    return data


def _user_from_dict(data: dict[str, Any]) -> UserRecord:
    return UserRecord(
        account_id=data["account_id"],
        username=data["username"],
        email=data["email"],
        status=AccountStatus(data["status"]),
        created_at=_parse_time(data["created_at"]),
        last_status_change_at=_parse_time(data["last_status_change_at"]),
        deleted_at=_parse_time(data.get("deleted_at")),
    )


def _audit_to_dict(record: AuditRecord) -> dict[str, Any]:
    data = asdict(record)
    data["action"] = record.action.value
    data["timestamp"] = record.timestamp.isoformat()
    return data


def _audit_from_dict(data: dict[str, Any]) -> AuditRecord:
    return AuditRecord(
        timestamp=_parse_time(data["timestamp"]),
        actor=data["actor"],
        subject=data["subject"],
        action=AuditAction(data["action"]),
        detail=data.get("detail"),
        sequence=data["sequence"],
    )


def read_snapshot(path: Path) -> list[dict[str, Any]]:
    """
    Load the records of a snapshot file.

    A missing file is an empty store.

    Raises:
        StorageIOFailure: If the file cannot be read or is not a snapshot
    """
    if not path.exists():
        return []
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Snapshot unreadable: {path} - {e}")
        raise StorageIOFailure(f"cannot read {path}") from e
    if not isinstance(document, dict) or not isinstance(document.get("records"), list):
        raise StorageIOFailure(f"{path} is not a snapshot document")
    return document["records"]


def write_snapshot(path: Path, records: list[dict[str, Any]]) -> None:
    """
    Atomically replace ``path`` with a snapshot of ``records``.

    Raises:
        StorageIOFailure: If the snapshot could not be made durable
    """
    payload = json.dumps({"version": SNAPSHOT_VERSION, "records": records}, indent=2)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        logger.error(f"Snapshot write failed: {path} - {e}")
        raise StorageIOFailure(f"cannot write {path}") from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.warning(f"Could not remove temporary snapshot {tmp_name}")


class FileUserStore:
    """
    Implements UserStore protocol with a JSON snapshot file.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, path: Path, *, clock: Callable[[], datetime] = utcnow) -> None:
        """
        Initialize store, loading any existing snapshot.

        Args:
            path: Snapshot file (created on first save)
            clock: Source of record timestamps
        """
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, UserRecord] = {}
        for data in read_snapshot(self._path):
            user = _user_from_dict(data)
            self._records[user.account_id] = user
        self._dirty = False
        logger.info(f"Loaded {len(self._records)} user record(s) from {self._path}")

    @property
    def path(self) -> Path:
        return self._path

    def get_all_users(self) -> list[UserRecord]:
        with self._lock:
            return [u for u in self._records.values() if not u.is_deleted]

    def get_user(self, account_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._records.get(account_id)
        if user is None or user.is_deleted:
            return None
        return user

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            return self._find_active(username)

    def register_user(
        self, account_id: str, username: str, email: str, initial_status: AccountStatus
    ) -> bool:
        now = self._clock()
        with self._lock:
            if account_id in self._records or self._find_active(username) is not None:
                return False
            self._records[account_id] = UserRecord(
                account_id=account_id,
                username=username,
                email=email,
                status=AccountStatus(initial_status),
                created_at=now,
                last_status_change_at=now,
            )
            self._dirty = True
            return True

    def update_status(self, account_id: str, new_status: AccountStatus) -> bool:
        now = self._clock()
        with self._lock:
            user = self._records.get(account_id)
            if user is None or user.is_deleted:
                return False
            self._records[account_id] = replace(
                user, status=AccountStatus(new_status), last_status_change_at=now
            )
            self._dirty = True
            return True

    def delete_user(self, account_id: str) -> bool:
        now = self._clock()
        with self._lock:
            user = self._records.get(account_id)
            if user is None or user.is_deleted:
                return False
            self._records[account_id] = replace(user, deleted_at=now)
            self._dirty = True
            return True

    def discard_user(self, account_id: str) -> bool:
        with self._lock:
            if self._records.pop(account_id, None) is None:
                return False
            self._dirty = True
            return True

    def restore_user(self, account_id: str) -> bool:
        with self._lock:
            user = self._records.get(account_id)
            if user is None or not user.is_deleted:
                return False
            if self._find_active(user.username) is not None:
                return False
            self._records[account_id] = replace(user, deleted_at=None)
            self._dirty = True
            return True

    def save(self) -> None:
        """Write the snapshot if anything changed since the last save."""
        with self._lock:
            if not self._dirty:
                return
            write_snapshot(self._path, [_user_to_dict(u) for u in self._records.values()])
            self._dirty = False

    def _find_active(self, username: str) -> Optional[UserRecord]:
        wanted = username.casefold()
        for user in self._records.values():
            if not user.is_deleted and user.username.casefold() == wanted:
                return user
        return None


class FileAuditStore:
    """
    Implements AuditStore protocol with a JSON snapshot file.

    Every append rewrites the snapshot before returning.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._records: list[AuditRecord] = [_audit_from_dict(d) for d in read_snapshot(self._path)]
        self._next_sequence = max((r.sequence for r in self._records), default=0) + 1

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: AuditRecord) -> AuditRecord:
        with self._lock:
            stored = replace(record, sequence=self._next_sequence)
            self._records.append(stored)
            try:
                write_snapshot(self._path, [_audit_to_dict(r) for r in self._records])
            except StorageIOFailure:
                self._records.pop()
                raise
            self._next_sequence += 1
            return stored

    def save(self) -> None:
        """Appends are written through; nothing is ever pending."""

    def list(self, audit_filter: Optional[AuditFilter] = None) -> Iterator[AuditRecord]:
        with self._lock:
            snapshot = tuple(self._records)
        audit_filter = audit_filter or AuditFilter()
        return (r for r in snapshot if audit_filter.matches(r))
