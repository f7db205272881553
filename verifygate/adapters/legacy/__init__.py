"""Legacy authentication store adapters."""

from .logging_sync import LoggingLegacySync

__all__ = ["LoggingLegacySync"]
