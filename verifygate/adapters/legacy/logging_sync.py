"""
Logging legacy sync adapter - Implements LegacyAccountSync protocol.

Stands in for the legacy authentication store when none is configured:
every approval is recorded in the log and reported as reconciled.
"""

import logging

logger = logging.getLogger(__name__)


class LoggingLegacySync:
    """
    Implements LegacyAccountSync protocol via logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def ensure_account(self, username: str, initial_credential_state: str) -> None:
        logger.info("[LEGACY SYNC] User: %s Credentials: %s", username, initial_credential_state)
