"""
Domain exceptions - Semantic error types for registration.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Every exception carries a stable ``kind`` so adapters can map it
to a user-facing response without inspecting messages.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error identifiers returned to collaborators."""

    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_CLAIM = "invalid_claim"
    CODE_EXPIRED = "code_expired"
    CODE_MISMATCH = "code_mismatch"
    CODE_ATTEMPTS_EXHAUSTED = "code_attempts_exhausted"
    STORAGE_IO_FAILURE = "storage_io_failure"
    SYNC_FAILURE = "sync_failure"


class RegistrationError(Exception):
    """Base class for registration domain errors."""

    kind: ErrorKind


class UsernameTaken(RegistrationError):
    """Username is already claimed by a non-deleted record."""

    kind = ErrorKind.CONFLICT


class AccountNotFound(RegistrationError):
    """Account id is unknown or tombstoned."""

    kind = ErrorKind.NOT_FOUND


class InvalidTransition(RegistrationError):
    """Status change is not permitted from the current status."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"{current} -> {requested}")
        self.current = current
        self.requested = requested


class InvalidClaim(RegistrationError):
    """Username or email does not satisfy the claim rules."""

    kind = ErrorKind.INVALID_CLAIM


class VerificationFailed(RegistrationError):
    """Code mismatch, expired, or exhausted."""

    pass


class CodeExpired(VerificationFailed):
    kind = ErrorKind.CODE_EXPIRED


class CodeMismatch(VerificationFailed):
    kind = ErrorKind.CODE_MISMATCH


class CodeAttemptsExhausted(VerificationFailed):
    kind = ErrorKind.CODE_ATTEMPTS_EXHAUSTED


class StorageIOFailure(RegistrationError):
    """Durable storage could not be read or written."""

    kind = ErrorKind.STORAGE_IO_FAILURE


class SyncFailure(RegistrationError):
    """Legacy authentication store could not be reconciled."""

    kind = ErrorKind.SYNC_FAILURE
