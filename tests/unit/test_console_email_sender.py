"""
Unit tests for the console adapters.

Tests verify the console email sender and the logging legacy sync
implement their protocols and log in the expected format.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from verifygate.adapters.legacy.logging_sync import LoggingLegacySync
from verifygate.adapters.smtp.console import ConsoleEmailSender
from verifygate.domain.ports import EmailSender, LegacyAccountSync, VerificationMail

EXPIRES = datetime(2026, 1, 1, 12, 10, tzinfo=timezone.utc)


def mail(username: str = "alice", code: str = "123456", email: str = "a@x.com") -> VerificationMail:
    return VerificationMail(
        account_id="acct-1", username=username, email=email, code=code, expires_at=EXPIRES
    )


class TestConsoleEmailSenderProtocol:
    def test_implements_email_sender_protocol(self) -> None:
        sender = ConsoleEmailSender()
        assert callable(sender.send)

        def accepts_email_sender(s: EmailSender) -> None:
            pass

        accepts_email_sender(sender)

    def test_no_explicit_inheritance(self) -> None:
        """ConsoleEmailSender uses structural subtyping, not inheritance."""
        bases = ConsoleEmailSender.__bases__
        assert bases == (object,), f"Expected only object as base, got {bases}"


class TestSend:
    def test_logs_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO):
            ConsoleEmailSender().send("a@x.com", mail())

        assert len(caplog.records) == 1
        assert caplog.records[0].levelno == logging.INFO

    def test_format(self, caplog: pytest.LogCaptureFixture) -> None:
        """[VERIFICATION] Email: ... User: ... Code: ... Expires: ..."""
        with caplog.at_level(logging.INFO):
            ConsoleEmailSender().send("user@example.com", mail(code="567890"))

        assert "[VERIFICATION]" in caplog.text
        assert "Email: user@example.com" in caplog.text
        assert "User: alice" in caplog.text
        assert "Code: 567890" in caplog.text
        assert f"Expires: {EXPIRES.isoformat()}" in caplog.text

    def test_returns_none(self) -> None:
        assert ConsoleEmailSender().send("a@x.com", mail()) is None

    def test_concurrent_sends_all_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        sender = ConsoleEmailSender()

        with caplog.at_level(logging.INFO), ThreadPoolExecutor(max_workers=5) as executor:
            futures = [
                executor.submit(sender.send, f"user{i}@example.com", mail(code=f"{i:06d}"))
                for i in range(10)
            ]
            for f in futures:
                f.result()

        assert len(caplog.records) == 10
        for record in caplog.records:
            assert "[VERIFICATION]" in record.message
            assert "Code:" in record.message


class TestLoggingLegacySync:
    def test_implements_protocol(self) -> None:
        def accepts_sync(s: LegacyAccountSync) -> None:
            pass

        accepts_sync(LoggingLegacySync())
        assert LoggingLegacySync.__bases__ == (object,)

    def test_logs_account(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO):
            LoggingLegacySync().ensure_account("alice", "password_reset_required")

        assert "[LEGACY SYNC] User: alice Credentials: password_reset_required" in caplog.text
