"""
API v1 routes.

Defines REST endpoints over the Registration State Machine. Every domain
error is answered with its stable error kind as ``detail``; the mapping
below is the only place kinds become HTTP status codes.
"""

from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from verifygate.api.dependencies import get_admin_actor, get_registration_service
from verifygate.api.models import (
    AccessResponse,
    AdminAddRequest,
    AuditEntryResponse,
    ConfirmRequest,
    ErrorResponse,
    RegisterRequest,
    RegisterResponse,
    ResendRequest,
    ResendResponse,
    StatusRequest,
    UserResponse,
)
from verifygate.domain.exceptions import ErrorKind, RegistrationError
from verifygate.domain.ports import AccountStatus, AuditAction, AuditFilter
from verifygate.domain.registration import RegistrationService

router = APIRouter(tags=["v1"])

STATUS_BY_KIND = {
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_CLAIM: 422,
    ErrorKind.CODE_EXPIRED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CODE_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CODE_ATTEMPTS_EXHAUSTED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.STORAGE_IO_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.SYNC_FAILURE: status.HTTP_502_BAD_GATEWAY,
}


def raise_for_error(error: RegistrationError) -> NoReturn:
    """Translate a domain error into an HTTPException carrying its kind."""
    raise HTTPException(
        status_code=STATUS_BY_KIND[error.kind],
        detail=error.kind.value,
    ) from None


def _ttl_seconds(service: RegistrationService) -> int:
    return int(service.codes.ttl.total_seconds())


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse, "description": "Username already claimed"},
        422: {"description": "Validation error"},
    },
    summary="Claim a username",
    description="Submit a username and email to start a claim. "
    "A verification code will be sent to the provided email.",
)
def register(
    request_data: RegisterRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> RegisterResponse:
    try:
        receipt = service.register(request_data.username, request_data.email)
    except RegistrationError as e:
        raise_for_error(e)
    return RegisterResponse(
        message="Verification code sent",
        account_id=receipt.user.account_id,
        username=receipt.user.username,
        status=receipt.user.status,
        expires_in_seconds=_ttl_seconds(service),
    )


@router.post(
    "/confirm",
    response_model=UserResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Code expired or wrong"},
        404: {"model": ErrorResponse, "description": "Unknown account"},
        429: {"model": ErrorResponse, "description": "Attempts exhausted"},
    },
    summary="Confirm email ownership",
)
def confirm(
    request_data: ConfirmRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> UserResponse:
    try:
        user = service.confirm_code(request_data.account_id, request_data.code)
    except RegistrationError as e:
        raise_for_error(e)
    return UserResponse.from_record(user)


@router.post(
    "/resend",
    response_model=ResendResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Send a fresh verification code",
)
def resend(
    request_data: ResendRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> ResendResponse:
    try:
        service.resend_code(request_data.account_id)
    except RegistrationError as e:
        raise_for_error(e)
    return ResendResponse(message="Verification code sent", expires_in_seconds=_ttl_seconds(service))


@router.get(
    "/access/{username}",
    response_model=AccessResponse,
    summary="Check whether a username may enter",
)
def access(
    username: str,
    request: Request,
    service: RegistrationService = Depends(get_registration_service),
) -> AccessResponse:
    remote_ip = request.client.host if request.client else None
    try:
        allowed = service.check_access(username, remote_ip)
    except RegistrationError as e:
        raise_for_error(e)
    return AccessResponse(username=username, allowed=allowed)


@router.get("/users", response_model=list[UserResponse], summary="List accounts")
def list_users(
    status_filter: Optional[AccountStatus] = Query(None, alias="status"),
    actor: str = Depends(get_admin_actor),
    service: RegistrationService = Depends(get_registration_service),
) -> list[UserResponse]:
    try:
        users = service.list_users(status_filter)
    except RegistrationError as e:
        raise_for_error(e)
    return [UserResponse.from_record(u) for u in users]


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Whitelist a username directly",
)
def add_user(
    request_data: AdminAddRequest,
    actor: str = Depends(get_admin_actor),
    service: RegistrationService = Depends(get_registration_service),
) -> UserResponse:
    try:
        user = service.admin_add(request_data.username, request_data.email, actor)
    except RegistrationError as e:
        raise_for_error(e)
    return UserResponse.from_record(user)


@router.post(
    "/users/{account_id}/status",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Approve or reject an account",
)
def set_status(
    account_id: str,
    request_data: StatusRequest,
    actor: str = Depends(get_admin_actor),
    service: RegistrationService = Depends(get_registration_service),
) -> UserResponse:
    try:
        user = service.set_status(account_id, request_data.status, actor)
    except RegistrationError as e:
        raise_for_error(e)
    return UserResponse.from_record(user)


@router.delete(
    "/users/{account_id}",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Remove an account",
)
def remove_user(
    account_id: str,
    actor: str = Depends(get_admin_actor),
    service: RegistrationService = Depends(get_registration_service),
) -> UserResponse:
    try:
        user = service.remove(account_id, actor)
    except RegistrationError as e:
        raise_for_error(e)
    return UserResponse.from_record(user)


@router.get("/audit", response_model=list[AuditEntryResponse], summary="Read the audit trail")
def audit_trail(
    subject: Optional[str] = None,
    action: Optional[AuditAction] = None,
    since_sequence: Optional[int] = None,
    limit: int = 200,
    actor: str = Depends(get_admin_actor),
    service: RegistrationService = Depends(get_registration_service),
) -> list[AuditEntryResponse]:
    audit_filter = AuditFilter(subject=subject, action=action, since_sequence=since_sequence)
    entries: list[AuditEntryResponse] = []
    try:
        for record in service.audit_trail(audit_filter):
            if len(entries) >= limit:
                break
            entries.append(AuditEntryResponse.from_record(record))
    except RegistrationError as e:
        raise_for_error(e)
    return entries
