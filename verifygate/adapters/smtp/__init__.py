"""Email sender adapters."""

from .console import ConsoleEmailSender

__all__ = ["ConsoleEmailSender"]
