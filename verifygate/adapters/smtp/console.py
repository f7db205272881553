"""
Console email sender adapter - Implements EmailSender protocol.

This module provides a console-based implementation of the domain's
email sender port, logging verification codes instead of sending mail.
"""

import logging

from verifygate.domain.ports import VerificationMail

logger = logging.getLogger(__name__)


class ConsoleEmailSender:
    """
    Implements EmailSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints verification codes to stdout.
    """

    def send(self, to_email: str, payload: VerificationMail) -> None:
        """
        Log the verification payload (simulates email delivery).

        In production, this would be replaced with an SMTP adapter.

        Args:
            to_email: Recipient email address (normalized by domain layer)
            payload: Verification code and claim details
        """
        logger.info(
            "[VERIFICATION] Email: %s User: %s Code: %s Expires: %s",
            to_email,
            payload.username,
            payload.code,
            payload.expires_at.isoformat(),
        )
