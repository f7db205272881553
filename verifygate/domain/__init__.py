"""
Domain layer - Pure business logic with zero framework imports.

This package contains the verification code manager, the Registration
State Machine and the review broadcast hub. It defines its own port
interfaces for infrastructure abstraction, so storage, mail and the
legacy authentication store stay swappable.
"""

from .broadcast import EventType, ReviewEvent, ReviewHub, Session
from .codes import IssuedCode, VerificationCodeManager
from .exceptions import (
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
from .ports import (
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
)
from .registration import ClaimRules, RegistrationReceipt, RegistrationService

__all__ = [
    "AccountNotFound",
    "AccountStatus",
    "AuditAction",
    "AuditFilter",
    "AuditRecord",
    "AuditStore",
    "ClaimRules",
    "CodeAttemptsExhausted",
    "CodeCheck",
    "CodeExpired",
    "CodeMismatch",
    "EmailSender",
    "ErrorKind",
    "EventType",
    "InvalidClaim",
    "InvalidTransition",
    "IssuedCode",
    "LegacyAccountSync",
    "RegistrationError",
    "RegistrationReceipt",
    "RegistrationService",
    "ReviewEvent",
    "ReviewHub",
    "Session",
    "StorageIOFailure",
    "SyncFailure",
    "UserRecord",
    "UserStore",
    "UsernameTaken",
    "VerificationCodeManager",
    "VerificationFailed",
    "VerificationMail",
]
