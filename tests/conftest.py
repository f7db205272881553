"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock for expiry tests
- File-backed stores in a temporary directory
- A fully wired RegistrationService with mocked collaborators
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from verifygate.adapters.storage.file import FileAuditStore, FileUserStore
from verifygate.domain.broadcast import ReviewHub
from verifygate.domain.codes import VerificationCodeManager
from verifygate.domain.registration import RegistrationService


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def user_store(data_dir: Path, clock: FakeClock) -> FileUserStore:
    return FileUserStore(data_dir / "users.json", clock=clock)


@pytest.fixture
def audit_store(data_dir: Path) -> FileAuditStore:
    return FileAuditStore(data_dir / "audits.json")


@pytest.fixture
def codes(clock: FakeClock) -> VerificationCodeManager:
    return VerificationCodeManager(
        ttl=timedelta(minutes=10), code_length=6, max_attempts=3, clock=clock
    )


@pytest.fixture
def hub(clock: FakeClock) -> ReviewHub:
    return ReviewHub(queue_size=16, replay_window=32, clock=clock)


@pytest.fixture
def email_sender() -> Mock:
    return Mock()


@pytest.fixture
def legacy_sync() -> Mock:
    return Mock()


@pytest.fixture
def make_service(
    user_store: FileUserStore,
    audit_store: FileAuditStore,
    codes: VerificationCodeManager,
    hub: ReviewHub,
    email_sender: Mock,
    legacy_sync: Mock,
    clock: FakeClock,
) -> Callable[..., RegistrationService]:
    """Factory so tests can flip options such as auto_approve."""

    def factory(**overrides) -> RegistrationService:
        options = dict(
            users=user_store,
            audit=audit_store,
            codes=codes,
            hub=hub,
            email_sender=email_sender,
            legacy_sync=legacy_sync,
            clock=clock,
        )
        options.update(overrides)
        return RegistrationService(**options)

    return factory


@pytest.fixture
def service(make_service: Callable[..., RegistrationService]) -> RegistrationService:
    return make_service()


@pytest.fixture
def sent_code(email_sender: Mock) -> Callable[[], str]:
    """Code from the most recent mail handed to the sender mock."""

    def latest() -> str:
        return email_sender.send.call_args[0][1].code

    return latest
