"""SMS adapters - console and Twilio implementations of the SMS port."""

from .console import ConsoleSMSProvider
from .twilio import TwilioSMSProvider

__all__ = ["ConsoleSMSProvider", "TwilioSMSProvider"]
