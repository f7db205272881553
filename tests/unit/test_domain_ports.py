"""
Unit tests for domain ports and exceptions.

Tests verify:
- Status and audit enums are stable strings
- Exceptions carry the right error kind
- Audit filters match as documented
- Domain purity (zero framework imports)
"""

import json
import subprocess
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import pytest

from verifygate.domain.exceptions import (
    AccountNotFound,
    CodeAttemptsExhausted,
    CodeExpired,
    CodeMismatch,
    ErrorKind,
    InvalidClaim,
    InvalidTransition,
    RegistrationError,
    StorageIOFailure,
    SyncFailure,
    UsernameTaken,
    VerificationFailed,
)
from verifygate.domain.ports import (
    AccountStatus,
    AuditAction,
    AuditFilter,
    AuditRecord,
    EmailSender,
    LegacyAccountSync,
    UserRecord,
    UserStore,
)

DOMAIN_DIR = Path(__file__).resolve().parents[2] / "verifygate" / "domain"
NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestAccountStatusEnum:
    def test_is_str_enum(self) -> None:
        assert issubclass(AccountStatus, Enum)
        assert issubclass(AccountStatus, str)

    def test_values(self) -> None:
        assert [s.value for s in AccountStatus] == ["pending", "approved", "rejected"]

    def test_json_serializable(self) -> None:
        assert json.dumps(AccountStatus.APPROVED) == '"approved"'

    def test_string_comparison(self) -> None:
        assert AccountStatus.PENDING == "pending"
        assert AccountStatus("rejected") is AccountStatus.REJECTED


class TestAuditActionEnum:
    def test_values(self) -> None:
        assert {a.value for a in AuditAction} == {
            "register",
            "approve",
            "reject",
            "remove",
            "code-issued",
            "code-verified",
            "code-failed",
            "sync-failed",
        }


class TestUserRecord:
    def test_is_deleted(self) -> None:
        user = UserRecord("id", "alice", "a@x.com", AccountStatus.PENDING, NOW, NOW)
        assert not user.is_deleted
        assert UserRecord("id", "alice", "a@x.com", AccountStatus.PENDING, NOW, NOW, NOW).is_deleted

    def test_is_immutable(self) -> None:
        user = UserRecord("id", "alice", "a@x.com", AccountStatus.PENDING, NOW, NOW)
        with pytest.raises(AttributeError):
            user.status = AccountStatus.APPROVED  # type: ignore[misc]


class TestAuditFilter:
    def _record(self, **overrides) -> AuditRecord:
        fields = dict(
            timestamp=NOW, actor="admin", subject="acct-1", action=AuditAction.APPROVE, sequence=5
        )
        fields.update(overrides)
        return AuditRecord(**fields)

    def test_empty_filter_matches_everything(self) -> None:
        assert AuditFilter().matches(self._record())

    def test_subject(self) -> None:
        assert AuditFilter(subject="acct-1").matches(self._record())
        assert not AuditFilter(subject="acct-2").matches(self._record())

    def test_action_and_actor(self) -> None:
        f = AuditFilter(action=AuditAction.APPROVE, actor="admin")
        assert f.matches(self._record())
        assert not f.matches(self._record(actor="system"))
        assert not f.matches(self._record(action=AuditAction.REJECT))

    def test_since_sequence_is_exclusive(self) -> None:
        assert AuditFilter(since_sequence=4).matches(self._record())
        assert not AuditFilter(since_sequence=5).matches(self._record())


class TestProtocols:
    def test_user_store_methods(self) -> None:
        for name in (
            "get_all_users",
            "get_user",
            "get_user_by_username",
            "register_user",
            "update_status",
            "delete_user",
            "restore_user",
            "discard_user",
            "save",
        ):
            assert hasattr(UserStore, name)

    def test_collaborator_methods(self) -> None:
        assert hasattr(EmailSender, "send")
        assert hasattr(LegacyAccountSync, "ensure_account")


class TestDomainExceptions:
    @pytest.mark.parametrize(
        ("exc_type", "kind"),
        [
            (UsernameTaken, ErrorKind.CONFLICT),
            (AccountNotFound, ErrorKind.NOT_FOUND),
            (InvalidClaim, ErrorKind.INVALID_CLAIM),
            (CodeExpired, ErrorKind.CODE_EXPIRED),
            (CodeMismatch, ErrorKind.CODE_MISMATCH),
            (CodeAttemptsExhausted, ErrorKind.CODE_ATTEMPTS_EXHAUSTED),
            (StorageIOFailure, ErrorKind.STORAGE_IO_FAILURE),
            (SyncFailure, ErrorKind.SYNC_FAILURE),
        ],
    )
    def test_kind(self, exc_type: type[RegistrationError], kind: ErrorKind) -> None:
        assert issubclass(exc_type, RegistrationError)
        assert exc_type.kind is kind

    def test_code_errors_are_verification_failures(self) -> None:
        for exc_type in (CodeExpired, CodeMismatch, CodeAttemptsExhausted):
            assert issubclass(exc_type, VerificationFailed)

    def test_invalid_transition_keeps_statuses(self) -> None:
        with pytest.raises(InvalidTransition) as exc_info:
            raise InvalidTransition("pending", "pending")
        assert exc_info.value.kind is ErrorKind.INVALID_TRANSITION
        assert exc_info.value.current == "pending"
        assert exc_info.value.requested == "pending"


class TestDomainPurity:
    """The domain layer imports no framework or driver."""

    @pytest.mark.parametrize(
        "pattern",
        ["from fastapi", "import fastapi", "from pydantic", "import pydantic", "psycopg"],
    )
    def test_no_framework_imports(self, pattern: str) -> None:
        result = subprocess.run(
            ["grep", "-r", pattern, str(DOMAIN_DIR)],
            capture_output=True,
            text=True,
        )
        assert result.returncode != 0, f"{pattern} found: {result.stdout}"
