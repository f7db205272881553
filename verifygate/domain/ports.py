"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the records the domain exchanges with infrastructure
and the interfaces (ports) that the domain requires from it. Adapters
implement these protocols.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol


def utcnow() -> datetime:
    """Timezone-aware wall clock used as the default domain clock."""
    return datetime.now(timezone.utc)


class AccountStatus(str, Enum):
    """
    Registration State Machine statuses.

    State Transitions:
    - PENDING -> APPROVED (admin approval, or confirmation with auto-approve)
    - PENDING -> REJECTED (admin rejection)
    - APPROVED -> REJECTED (admin revokes)
    - REJECTED -> APPROVED (admin reverses)

    Removal tombstones the record; a tombstone has no outgoing transitions.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    REGISTER = "register"
    APPROVE = "approve"
    REJECT = "reject"
    REMOVE = "remove"
    CODE_ISSUED = "code-issued"
    CODE_VERIFIED = "code-verified"
    CODE_FAILED = "code-failed"
    SYNC_FAILED = "sync-failed"


class CodeCheck(Enum):
    """
    Result of a verification attempt.

    Used by VerificationCodeManager.verify() to indicate success or the
    specific failure.
    """

    OK = "ok"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"


SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class UserRecord:
    """A claimed account. ``deleted_at`` is set once the record is tombstoned."""

    account_id: str
    username: str
    email: str
    status: AccountStatus
    created_at: datetime
    last_status_change_at: datetime
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit entry. ``sequence`` is assigned by the store on append."""

    timestamp: datetime
    actor: str
    subject: str
    action: AuditAction
    detail: Optional[str] = None
    sequence: Optional[int] = None


@dataclass(frozen=True)
class AuditFilter:
    """Restricts an audit listing; unset fields match everything."""

    subject: Optional[str] = None
    action: Optional[AuditAction] = None
    actor: Optional[str] = None
    since_sequence: Optional[int] = None

    def matches(self, record: AuditRecord) -> bool:
        if self.subject is not None and record.subject != self.subject:
            return False
        if self.action is not None and record.action != self.action:
            return False
        if self.actor is not None and record.actor != self.actor:
            return False
        if (
            self.since_sequence is not None
            and record.sequence is not None
            and record.sequence <= self.since_sequence
        ):
            return False
        return True


@dataclass(frozen=True)
class VerificationMail:
    """Delivery payload handed to the mail collaborator."""

    account_id: str
    username: str
    email: str
    code: str
    expires_at: datetime


class UserStore(Protocol):
    """Port interface for user record persistence."""

    def get_all_users(self) -> list[UserRecord]:
        """Non-deleted records in creation order."""
        ...

    def get_user(self, account_id: str) -> Optional[UserRecord]:
        """Non-deleted record by id, or None."""
        ...

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        """Non-deleted record by case-insensitive username, or None."""
        ...

    def register_user(
        self, account_id: str, username: str, email: str, initial_status: AccountStatus
    ) -> bool:
        """
        Create a record.

        Returns:
            True on success, False if the username is held by a non-deleted
            record or the account id already exists
        """
        ...

    def update_status(self, account_id: str, new_status: AccountStatus) -> bool:
        """Set the status; False if the account is unknown or tombstoned."""
        ...

    def delete_user(self, account_id: str) -> bool:
        """Tombstone the record; False if unknown or already tombstoned."""
        ...

    def discard_user(self, account_id: str) -> bool:
        """
        Drop a record whose creation was never committed.

        Unlike delete_user this leaves no tombstone, so a later save does
        not persist an account that has no register audit entry.

        Returns:
            False if the account is unknown
        """
        ...

    def restore_user(self, account_id: str) -> bool:
        """
        Clear a tombstone whose removal could not be made durable.

        Returns:
            False if the record is unknown, not tombstoned, or its username
            has since been claimed by another non-deleted record
        """
        ...

    def save(self) -> None:
        """
        Durably and atomically commit pending mutations.

        Raises:
            StorageIOFailure: If the commit could not be completed
        """
        ...


class AuditStore(Protocol):
    """Port interface for the append-only audit trail."""

    def append(self, record: AuditRecord) -> AuditRecord:
        """
        Durably append an entry and return it with its sequence assigned.

        Raises:
            StorageIOFailure: If the entry could not be written
        """
        ...

    def list(self, audit_filter: Optional[AuditFilter] = None) -> Iterator[AuditRecord]:
        """Lazily yield entries in append order."""
        ...


class EmailSender(Protocol):
    """Port interface for email delivery."""

    def send(self, to_email: str, payload: VerificationMail) -> None:
        """
        Send a verification payload to an email address.

        Args:
            to_email: Recipient email address
            payload: Code and claim details to deliver
        """
        ...


class LegacyAccountSync(Protocol):
    """Port interface for the legacy authentication store."""

    def ensure_account(self, username: str, initial_credential_state: str) -> None:
        """
        Make sure the legacy store knows about an approved account.

        Raises:
            SyncFailure: If the legacy store could not be reconciled
        """
        ...
