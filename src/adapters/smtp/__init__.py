"""Email adapters - console and SMTP implementations of the email port."""

from .console import ConsoleEmailProvider
from .smtp import SmtpEmailProvider

__all__ = ["ConsoleEmailProvider", "SmtpEmailProvider"]
