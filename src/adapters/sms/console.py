"""Console SMS adapter - Implements SMSProvider protocol via logging."""

import logging
import uuid

from src.domain.models import ProviderReceipt, SmsMessage
from src.domain.notifications import mask_mobile

logger = logging.getLogger(__name__)


class ConsoleSMSProvider:
    """
    Implements SMSProvider protocol via console logging.

    For demo/development purposes - the message body carries the code and
    is logged at DEBUG level only.
    """

    async def send_sms(self, message: SmsMessage) -> ProviderReceipt:
        message_id = f"console-{uuid.uuid4()}"
        logger.info("[SMS] To: %s Id: %s", mask_mobile(message.to), message_id)
        logger.debug("[SMS] Body: %s", message.body)
        return ProviderReceipt(message_id=message_id, status="logged")
