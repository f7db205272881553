"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance, wires the domain
collaborators once at startup, and manages lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request

from verifygate.adapters.legacy import LoggingLegacySync
from verifygate.adapters.smtp import ConsoleEmailSender
from verifygate.adapters.storage import Stores, build_stores
from verifygate.api.v1 import router as v1_router
from verifygate.config.settings import Settings, get_settings
from verifygate.domain.broadcast import ReviewHub
from verifygate.domain.codes import VerificationCodeManager
from verifygate.domain.ports import EmailSender, LegacyAccountSync
from verifygate.domain.registration import ClaimRules, RegistrationService

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Account claim API v1 - Register, confirm, and review accounts",
    },
]


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_service(
    settings: Settings,
    stores: Stores,
    *,
    email_sender: Optional[EmailSender] = None,
    legacy_sync: Optional[LegacyAccountSync] = None,
) -> RegistrationService:
    """Construct the registration service and its collaborators from settings."""
    codes = VerificationCodeManager(
        ttl=timedelta(seconds=settings.code_ttl_seconds),
        code_length=settings.code_length,
        max_attempts=settings.max_attempts,
    )
    hub = ReviewHub(queue_size=settings.hub_queue_size, replay_window=settings.hub_replay_window)
    return RegistrationService(
        users=stores.users,
        audit=stores.audit,
        codes=codes,
        hub=hub,
        email_sender=email_sender or ConsoleEmailSender(),
        legacy_sync=legacy_sync or LoggingLegacySync(),
        rules=ClaimRules(
            username_pattern=settings.username_pattern,
            email_pattern=settings.email_pattern,
        ),
        auto_approve=settings.auto_approve,
        bypass_ips=frozenset(settings.bypass_ips),
        legacy_initial_credential_state=settings.legacy_initial_credential_state,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the application; settings default to the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Manages application startup and shutdown:
        - Builds the configured stores (running migrations for postgres)
        - Wires code manager, review hub and registration service
        - Saves pending state and closes the pool on shutdown
        """
        resolved = settings or get_settings()
        configure_logging(resolved)

        logger.info("Starting application...")
        stores = build_stores(resolved)
        service = build_service(resolved, stores)

        app.state.settings = resolved
        app.state.stores = stores
        app.state.service = service
        app.state.hub = service.hub

        logger.info("Application startup complete")

        yield

        logger.info("Shutting down application...")
        stores.close()

    application = FastAPI(
        title="verifygate",
        description="Account claims with email verification and admin review",
        version="0.1.0",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    application.include_router(v1_router, prefix="/v1")

    @application.get("/health")
    def health_check(request: Request) -> dict[str, str]:
        """
        Health check endpoint with storage validation.

        Returns 200 OK if the application can read its user store.
        """
        request.app.state.stores.users.get_all_users()
        return {"status": "healthy"}

    return application


app = create_app()
