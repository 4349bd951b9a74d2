"""
Console email adapter - Implements EmailProvider protocol.

This module provides a console-based implementation of the domain's
email port, logging messages instead of sending them, for local
development.
"""

import logging
import uuid

from src.domain.models import EmailMessage, ProviderReceipt

logger = logging.getLogger(__name__)


class ConsoleEmailProvider:
    """
    Implements EmailProvider protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    Message bodies contain verification codes, so they are logged at DEBUG
    level only.
    """

    async def send_email(self, message: EmailMessage) -> ProviderReceipt:
        """
        Log the email (simulates delivery).

        Args:
            message: Rendered email (recipient, subject, HTML body)

        Returns:
            ProviderReceipt with a generated message id
        """
        message_id = f"console-{uuid.uuid4()}"
        logger.info("[EMAIL] To: %s Subject: %s Id: %s", message.to, message.subject, message_id)
        logger.debug("[EMAIL] Body: %s", message.text or message.html)
        return ProviderReceipt(message_id=message_id, status="logged")
