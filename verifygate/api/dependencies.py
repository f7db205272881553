"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting the domain
service, the review hub and admin identity into routes. The service and
hub are built once in the application lifespan and live on app.state.
"""

import secrets
from base64 import b64decode
from binascii import Error as BinasciiError
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from starlette.requests import HTTPConnection
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from verifygate.config.settings import Settings
from verifygate.domain.broadcast import ReviewHub
from verifygate.domain.registration import RegistrationService

# Pre-computed bcrypt hash so a wrong username costs the same as a wrong password.
_DUMMY_BCRYPT_HASH = bcrypt.hashpw(b"dummy_password_for_timing_safety", bcrypt.gensalt(10))


def get_settings(connection: HTTPConnection) -> Settings:
    """Settings the application was started with (HTTP or websocket)."""
    return connection.app.state.settings


def get_registration_service(request: Request) -> RegistrationService:
    """Registration service wired during app lifespan startup."""
    return request.app.state.service


def get_review_hub(connection: HTTPConnection) -> ReviewHub:
    return connection.app.state.hub


def verify_admin(settings: Settings, username: str, password: str) -> bool:
    """
    Check admin credentials against the configured bcrypt hash.

    Both the username comparison and bcrypt always run, so the response
    time does not reveal which part was wrong. An unset hash rejects
    everyone.
    """
    configured = settings.admin_password_hash.encode()
    stored_hash = configured if configured else _DUMMY_BCRYPT_HASH
    username_valid = secrets.compare_digest(username.encode(), settings.admin_username.encode())
    try:
        password_valid = bcrypt.checkpw(password.encode(), stored_hash)
    except ValueError:
        password_valid = False
    return bool(configured) and username_valid and password_valid


# HTTP BASIC AUTH security scheme for OpenAPI documentation
http_basic = HTTPBasic()


def get_admin_actor(
    request: Request,
    credentials: HTTPBasicCredentials = Depends(http_basic),
) -> str:
    """
    Authenticate an admin via HTTP BASIC AUTH.

    Returns:
        The admin username, recorded as the actor in audit entries
    """
    if not verify_admin(get_settings(request), credentials.username, credentials.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


def parse_basic_authorization(header: Optional[str]) -> Optional[tuple[str, str]]:
    """Decode an ``Authorization: Basic`` header value into (username, password)."""
    if not header:
        return None
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = b64decode(encoded.strip()).decode("utf-8")
    except (BinasciiError, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password
