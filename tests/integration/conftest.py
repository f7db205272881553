"""
Fixtures for end-to-end tests against the assembled application.

The app runs with file storage in a temporary directory. The console
mail sender is swapped for a mock after startup so tests can read the
code that would have been mailed.
"""

from base64 import b64encode
from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import Mock

import bcrypt
import pytest
from fastapi.testclient import TestClient

from verifygate.api.main import create_app
from verifygate.config.settings import Settings

ADMIN_PASSWORD = "correct horse"
ADMIN_HASH = bcrypt.hashpw(ADMIN_PASSWORD.encode(), bcrypt.gensalt(4)).decode()


def basic_auth_header(username: str, password: str) -> dict:
    encoded = b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


@pytest.fixture
def admin_headers() -> dict:
    return basic_auth_header("admin", ADMIN_PASSWORD)


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def factory(**overrides) -> Settings:
        options = dict(
            storage_type="file",
            data_dir=str(tmp_path / "data"),
            admin_username="admin",
            admin_password_hash=ADMIN_HASH,
            hub_queue_size=16,
        )
        options.update(overrides)
        return Settings(**options)

    return factory


@pytest.fixture
def mailbox() -> Mock:
    return Mock()


@pytest.fixture
def client(make_settings: Callable[..., Settings], mailbox: Mock) -> Generator[TestClient, None, None]:
    app = create_app(make_settings())
    with TestClient(app) as test_client:
        app.state.service.email_sender = mailbox
        yield test_client


@pytest.fixture
def mailed_code(mailbox: Mock) -> Callable[[], str]:
    def latest() -> str:
        return mailbox.send.call_args[0][1].code

    return latest
