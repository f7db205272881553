"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from verifygate.domain.ports import AccountStatus, AuditRecord, UserRecord


class RegisterRequest(BaseModel):
    """Request model for an account claim."""

    username: str = Field(..., min_length=1, max_length=64, description="Requested username")
    email: EmailStr


class RegisterResponse(BaseModel):
    """Response model for a successful claim."""

    message: str
    account_id: str
    username: str
    status: AccountStatus
    expires_in_seconds: int


class ConfirmRequest(BaseModel):
    """Request model for code confirmation."""

    account_id: str
    code: str = Field(
        ...,
        min_length=1,
        max_length=12,
        pattern=r"^\d+$",
        description="Verification code from the email",
    )


class ResendRequest(BaseModel):
    """Request model for re-sending a verification code."""

    account_id: str


class ResendResponse(BaseModel):
    message: str
    expires_in_seconds: int


class UserResponse(BaseModel):
    """Public view of an account record."""

    account_id: str
    username: str
    email: str
    status: AccountStatus
    created_at: datetime
    last_status_change_at: datetime

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserResponse":
        return cls(
            account_id=user.account_id,
            username=user.username,
            email=user.email,
            status=user.status,
            created_at=user.created_at,
            last_status_change_at=user.last_status_change_at,
        )


class StatusRequest(BaseModel):
    """Request model for an admin status change."""

    status: AccountStatus


class AdminAddRequest(BaseModel):
    """Request model for whitelisting a username directly."""

    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr


class AuditEntryResponse(BaseModel):
    sequence: Optional[int]
    timestamp: datetime
    actor: str
    subject: str
    action: str
    detail: Optional[str] = None

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditEntryResponse":
        return cls(
            sequence=record.sequence,
            timestamp=record.timestamp,
            actor=record.actor,
            subject=record.subject,
            action=record.action.value,
            detail=record.detail,
        )


class AccessResponse(BaseModel):
    username: str
    allowed: bool


class ErrorResponse(BaseModel):
    """Standard error response model. ``detail`` holds the stable error kind."""

    detail: str
