"""
Adversarial tests for timing oracle attack prevention.

Verifies that admin authentication failures have statistically similar
durations, so an attacker cannot tell a wrong username from a wrong
password by measuring responses.

Our defense: bcrypt runs for every attempt (against a dummy hash when
none is configured) and the username is compared with
secrets.compare_digest.
"""

import statistics
import time

import bcrypt
import pytest

from verifygate.api.dependencies import verify_admin
from verifygate.config.settings import Settings

pytestmark = pytest.mark.adversarial

SAMPLES = 7
PASSWORD = "correct horse"


@pytest.fixture(scope="module")
def settings() -> Settings:
    password_hash = bcrypt.hashpw(PASSWORD.encode(), bcrypt.gensalt(10)).decode()
    return Settings(admin_username="admin", admin_password_hash=password_hash)


def median_duration(settings: Settings, username: str, password: str) -> float:
    durations = []
    for _ in range(SAMPLES):
        started = time.perf_counter()
        verify_admin(settings, username, password)
        durations.append(time.perf_counter() - started)
    return statistics.median(durations)


class TestTimingAttacks:
    def test_results(self, settings: Settings) -> None:
        assert verify_admin(settings, "admin", PASSWORD)
        assert not verify_admin(settings, "admin", "wrong")
        assert not verify_admin(settings, "root", PASSWORD)

    def test_wrong_username_and_wrong_password_take_similar_time(
        self, settings: Settings
    ) -> None:
        wrong_user = median_duration(settings, "root", PASSWORD)
        wrong_password = median_duration(settings, "admin", "wrong")

        ratio = wrong_user / wrong_password
        assert 0.5 < ratio < 2.0, f"timing ratio {ratio:.2f} leaks which credential was wrong"

    def test_unconfigured_hash_still_runs_bcrypt(self) -> None:
        """With no hash set, rejection costs a bcrypt check rather than returning early."""
        unset = Settings(admin_username="admin", admin_password_hash="")
        started = time.perf_counter()
        assert not verify_admin(unset, "admin", PASSWORD)
        elapsed = time.perf_counter() - started
        assert elapsed > 0.005
