"""
Registration domain service - Registration State Machine implementation.

This module contains the core business logic for account claims: claim
validation, status transitions, audit writing and event emission.

Registration State Machine
==========================

Statuses:
- PENDING: Initial status after a claim (code issued, awaiting review)
- APPROVED: Admin granted access
- REJECTED: Admin refused or revoked access

Valid Transitions:
    PENDING  -> APPROVED   (admin approval; confirmation when auto-approve is on)
    PENDING  -> REJECTED   (admin rejection)
    APPROVED -> REJECTED   (admin revokes)
    REJECTED -> APPROVED   (admin reverses)

Removal tombstones a record in any status. A tombstoned record has no
transitions; every operation on it reports AccountNotFound.

Confirming the verification code proves email ownership only. It does not
change status unless ``auto_approve`` is configured.

Failure policy: storage failures propagate to the caller and are never
retried. A status change that fails to save is reverted in memory and no
audit entry is written; an audit append that fails after a save reverts
the status change before the error is raised.
"""

import logging
import re
import threading
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .broadcast import EventType, ReviewHub
from .codes import IssuedCode, VerificationCodeManager
from .exceptions import (
    AccountNotFound,
    CodeAttemptsExhausted,
    CodeExpired,
    CodeMismatch,
    InvalidClaim,
    InvalidTransition,
    StorageIOFailure,
    SyncFailure,
    UsernameTaken,
)
from .ports import (
    SYSTEM_ACTOR,
    AccountStatus,
    AuditAction,
    AuditFilter,
    AuditRecord,
    AuditStore,
    CodeCheck,
    EmailSender,
    LegacyAccountSync,
    UserRecord,
    UserStore,
    VerificationMail,
    utcnow,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AccountStatus, frozenset[AccountStatus]] = {
    AccountStatus.PENDING: frozenset({AccountStatus.APPROVED, AccountStatus.REJECTED}),
    AccountStatus.APPROVED: frozenset({AccountStatus.REJECTED}),
    AccountStatus.REJECTED: frozenset({AccountStatus.APPROVED}),
}

_STATUS_ACTIONS = {
    AccountStatus.APPROVED: (AuditAction.APPROVE, EventType.APPROVE),
    AccountStatus.REJECTED: (AuditAction.REJECT, EventType.REJECT),
}

_CODE_ERRORS = {
    CodeCheck.EXPIRED: CodeExpired,
    CodeCheck.MISMATCH: CodeMismatch,
    CodeCheck.ATTEMPTS_EXHAUSTED: CodeAttemptsExhausted,
}


@dataclass(frozen=True)
class ClaimRules:
    """Username and email expressions a claim must satisfy."""

    username_pattern: str = r"^[A-Za-z0-9_]{3,16}$"
    email_pattern: str = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

    def check(self, username: str, email: str) -> None:
        if not re.fullmatch(self.username_pattern, username):
            raise InvalidClaim(f"username {username!r} is not allowed")
        if not re.fullmatch(self.email_pattern, email):
            raise InvalidClaim("email address is not valid")


@dataclass(frozen=True)
class RegistrationReceipt:
    """Result of a successful registration."""

    user: UserRecord
    delivery: VerificationMail


class RegistrationService:
    """
    Domain service for account claims.

    Holds explicit references to its collaborators; nothing is looked up
    globally. All mutating operations run under one lock so that
    check-then-act sequences (username availability, current status) are
    atomic. Events are published before the lock is released, so the stream
    sees changes in the order storage applied them.
    """

    def __init__(
        self,
        *,
        users: UserStore,
        audit: AuditStore,
        codes: VerificationCodeManager,
        hub: ReviewHub,
        email_sender: EmailSender,
        legacy_sync: Optional[LegacyAccountSync] = None,
        rules: ClaimRules = ClaimRules(),
        auto_approve: bool = False,
        bypass_ips: frozenset[str] = frozenset(),
        legacy_initial_credential_state: str = "password_reset_required",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.users = users
        self.audit = audit
        self.codes = codes
        self.hub = hub
        self.email_sender = email_sender
        self.legacy_sync = legacy_sync
        self.rules = rules
        self.auto_approve = auto_approve
        self.bypass_ips = frozenset(bypass_ips)
        self.legacy_initial_credential_state = legacy_initial_credential_state
        self._clock = clock
        self._lock = threading.RLock()

    # -- claimant operations ------------------------------------------------

    def register(self, username: str, email: str) -> RegistrationReceipt:
        """
        Claim a username and send a verification code.

        Args:
            username: Requested username (case preserved, unique ignoring case)
            email: Contact address (will be normalized)

        Returns:
            RegistrationReceipt with the pending record and the mail payload

        Raises:
            InvalidClaim: If username or email break the claim rules
            UsernameTaken: If a non-deleted record holds the username
            StorageIOFailure: If the record could not be persisted
        """
        username = username.strip()
        normalized_email = self._normalize_email(email)
        self.rules.check(username, normalized_email)

        with self._lock:
            account_id = str(uuid.uuid4())
            if not self.users.register_user(
                account_id, username, normalized_email, AccountStatus.PENDING
            ):
                logger.info("Registration conflict for username %s", username)
                raise UsernameTaken(username)
            try:
                self.users.save()
            except StorageIOFailure:
                self.users.discard_user(account_id)
                raise

            issued = self.codes.issue(account_id)
            try:
                self._append_audit(
                    SYSTEM_ACTOR,
                    account_id,
                    AuditAction.REGISTER,
                    f"username={username} {issued.audit_intent.detail}",
                )
            except StorageIOFailure:
                self.codes.invalidate(account_id)
                self.users.discard_user(account_id)
                self._save_after_rollback()
                raise
            user = self._require(account_id)
            self.hub.emit(EventType.REGISTER, account_id, None, AccountStatus.PENDING)

        logger.info("Registered %s as %s (pending)", username, account_id)
        delivery = self._deliver(user, issued)
        return RegistrationReceipt(user=user, delivery=delivery)

    def resend_code(self, account_id: str) -> VerificationMail:
        """
        Issue a fresh code for a pending account, invalidating the old one.

        Raises:
            AccountNotFound: If the account is unknown or tombstoned
            InvalidTransition: If the account is no longer pending
        """
        with self._lock:
            user = self._require(account_id)
            if user.status != AccountStatus.PENDING:
                raise InvalidTransition(user.status.value, AccountStatus.PENDING.value)
            issued = self.codes.issue(account_id)
            self.audit.append(issued.audit_intent)
        return self._deliver(user, issued)

    def confirm_code(self, account_id: str, code: str) -> UserRecord:
        """
        Consume a verification code, proving email ownership.

        The code is consumed before the code-verified entry is appended, so a
        StorageIOFailure from that append leaves the claimant needing a resend.

        Returns:
            The account record (approved only when auto-approve is on)

        Raises:
            AccountNotFound: If the account is unknown or tombstoned
            CodeExpired, CodeMismatch, CodeAttemptsExhausted: On a failed check
            StorageIOFailure: If the outcome could not be audited
        """
        with self._lock:
            user = self._require(account_id)
            result = self.codes.verify(account_id, code)
            if result is not CodeCheck.OK:
                self._append_audit(
                    SYSTEM_ACTOR, account_id, AuditAction.CODE_FAILED, result.value
                )
                logger.warning("Verification failed for %s: %s", account_id, result.value)
                raise _CODE_ERRORS[result](account_id)

            self._append_audit(SYSTEM_ACTOR, account_id, AuditAction.CODE_VERIFIED)
            logger.info("Email confirmed for %s", account_id)
            self.hub.emit(EventType.CONFIRM, account_id, user.status, user.status)

            if self.auto_approve and user.status == AccountStatus.PENDING:
                return self.set_status(account_id, AccountStatus.APPROVED, SYSTEM_ACTOR)
        return user

    # -- admin operations ---------------------------------------------------

    def set_status(self, account_id: str, new_status: AccountStatus, actor: str) -> UserRecord:
        """
        Move an account to a new status.

        Raises:
            AccountNotFound: If the account is unknown or tombstoned
            InvalidTransition: If the transition table forbids the change
            StorageIOFailure: If the change or its audit entry could not be persisted
        """
        new_status = AccountStatus(new_status)
        audit_action, event_type = _STATUS_ACTIONS.get(new_status, (None, None))

        with self._lock:
            user = self._require(account_id)
            old_status = user.status
            if audit_action is None or new_status not in ALLOWED_TRANSITIONS[old_status]:
                raise InvalidTransition(old_status.value, new_status.value)

            self.users.update_status(account_id, new_status)
            try:
                self.users.save()
            except StorageIOFailure:
                self.users.update_status(account_id, old_status)
                raise
            try:
                self._append_audit(
                    actor, account_id, audit_action, f"{old_status.value}->{new_status.value}"
                )
            except StorageIOFailure:
                self.users.update_status(account_id, old_status)
                self._save_after_rollback()
                raise
            updated = self._require(account_id)
            self.hub.emit(event_type, account_id, old_status, new_status)

        logger.info(
            "%s moved %s from %s to %s", actor, account_id, old_status.value, new_status.value
        )
        if new_status == AccountStatus.APPROVED:
            self._sync_legacy(updated)
        return updated

    def remove(self, account_id: str, actor: str) -> UserRecord:
        """
        Tombstone an account, freeing its username.

        Raises:
            AccountNotFound: If the account is unknown or already tombstoned
            StorageIOFailure: If the removal could not be persisted
        """
        with self._lock:
            user = self._require(account_id)
            self.users.delete_user(account_id)
            try:
                self.users.save()
            except StorageIOFailure:
                self._restore(user)
                raise
            try:
                self._append_audit(actor, account_id, AuditAction.REMOVE, user.username)
            except StorageIOFailure:
                self._restore(user)
                self._save_after_rollback()
                raise
            self.codes.invalidate(account_id)
            self.hub.emit(EventType.REMOVE, account_id, user.status, None)

        logger.info("%s removed %s (%s)", actor, user.username, account_id)
        return user

    def admin_add(self, username: str, email: str, actor: str) -> UserRecord:
        """
        Whitelist a username directly.

        An existing claim is approved; otherwise an approved record is created
        without a verification round-trip.
        """
        username = username.strip()
        normalized_email = self._normalize_email(email)
        self.rules.check(username, normalized_email)

        with self._lock:
            existing = self.users.get_user_by_username(username)
            if existing is not None:
                if existing.status == AccountStatus.APPROVED:
                    return existing
                return self.set_status(existing.account_id, AccountStatus.APPROVED, actor)

            account_id = str(uuid.uuid4())
            if not self.users.register_user(
                account_id, username, normalized_email, AccountStatus.APPROVED
            ):
                raise UsernameTaken(username)
            try:
                self.users.save()
            except StorageIOFailure:
                self.users.discard_user(account_id)
                raise
            try:
                self._append_audit(actor, account_id, AuditAction.REGISTER, f"username={username}")
            except StorageIOFailure:
                self.users.discard_user(account_id)
                self._save_after_rollback()
                raise
            try:
                self._append_audit(actor, account_id, AuditAction.APPROVE, "added by admin")
            except StorageIOFailure:
                # The register entry is on record, so keep a tombstone for it.
                self.users.delete_user(account_id)
                self._save_after_rollback()
                raise
            user = self._require(account_id)
            self.hub.emit(EventType.REGISTER, account_id, None, AccountStatus.APPROVED)

        logger.info("%s added %s as %s (approved)", actor, username, account_id)
        self._sync_legacy(user)
        return user

    def remove_by_username(self, username: str, actor: str) -> UserRecord:
        user = self.users.get_user_by_username(username.strip())
        if user is None:
            raise AccountNotFound(username)
        return self.remove(user.account_id, actor)

    # -- queries ------------------------------------------------------------

    def list_users(self, status: Optional[AccountStatus] = None) -> list[UserRecord]:
        users = self.users.get_all_users()
        if status is None:
            return users
        return [u for u in users if u.status == status]

    def get_user(self, account_id: str) -> UserRecord:
        return self._require(account_id)

    def find_by_username(self, username: str) -> Optional[UserRecord]:
        return self.users.get_user_by_username(username.strip())

    def check_access(self, username: str, remote_ip: Optional[str] = None) -> bool:
        """Whether a user may enter the restricted resource."""
        if remote_ip is not None and remote_ip in self.bypass_ips:
            logger.debug("Bypassed access check for %s", remote_ip)
            return True
        user = self.users.get_user_by_username(username.strip())
        allowed = user is not None and user.status == AccountStatus.APPROVED
        if not allowed:
            logger.debug("Denied access for %s", username)
        return allowed

    def audit_trail(self, audit_filter: Optional[AuditFilter] = None) -> Iterator[AuditRecord]:
        return self.audit.list(audit_filter)

    # -- internals ----------------------------------------------------------

    def _require(self, account_id: str) -> UserRecord:
        user = self.users.get_user(account_id)
        if user is None:
            raise AccountNotFound(account_id)
        return user

    def _append_audit(
        self, actor: str, subject: str, action: AuditAction, detail: Optional[str] = None
    ) -> AuditRecord:
        return self.audit.append(
            AuditRecord(
                timestamp=self._clock(),
                actor=actor,
                subject=subject,
                action=action,
                detail=detail,
            )
        )

    def _restore(self, user: UserRecord) -> None:
        """Undo a tombstone that could not be made durable."""
        self.users.restore_user(user.account_id)

    def _save_after_rollback(self) -> None:
        try:
            self.users.save()
        except StorageIOFailure:
            logger.error("Rollback could not be saved; durable state may lag memory")

    def _deliver(self, user: UserRecord, issued: IssuedCode) -> VerificationMail:
        payload = VerificationMail(
            account_id=user.account_id,
            username=user.username,
            email=user.email,
            code=issued.code,
            expires_at=issued.expires_at,
        )
        try:
            self.email_sender.send(user.email, payload)
        except Exception:
            # Delivery is fire-and-forget; the claimant can ask for a resend.
            logger.exception("Verification mail to %s could not be handed off", user.email)
        return payload

    def _sync_legacy(self, user: UserRecord) -> None:
        if self.legacy_sync is None:
            return
        try:
            self.legacy_sync.ensure_account(user.username, self.legacy_initial_credential_state)
        except SyncFailure as e:
            logger.warning("Legacy sync failed for %s: %s", user.username, e)
            try:
                self._append_audit(
                    SYSTEM_ACTOR, user.account_id, AuditAction.SYNC_FAILED, str(e)
                )
            except StorageIOFailure:
                logger.error("Could not audit legacy sync failure for %s", user.account_id)

    @staticmethod
    def _normalize_email(email: str) -> str:
        """
        Normalize email address for consistent storage and lookup.

        Applies: strip whitespace + lowercase
        """
        return email.strip().lower()
