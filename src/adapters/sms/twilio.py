"""
Twilio SMS adapter - Implements SMSProvider protocol over the REST API.

Talks to Twilio's Messages endpoint directly with httpx.AsyncClient and
HTTP basic auth (account SID + auth token).
"""

import logging

import httpx

from src.domain.exceptions import DeliveryFailed
from src.domain.models import ProviderReceipt, SmsMessage

logger = logging.getLogger(__name__)

TWILIO_BASE_URL = "https://api.twilio.com/2010-04-01"


def format_phone_number(number: str, country_code: str = "+91") -> str:
    """Normalize a bare 10-digit number to E.164 with the default country code."""
    digits = "".join(ch for ch in number if ch.isdigit())
    if number.strip().startswith("+"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"{country_code}{digits}"
    return f"+{digits}"


class TwilioSMSProvider:
    """Implements SMSProvider protocol via Twilio's Messages API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        country_code: str = "+91",
        base_url: str = TWILIO_BASE_URL,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not account_sid or not auth_token or not from_number:
            raise ValueError("Twilio configuration missing")
        self._account_sid = account_sid
        self._auth = (account_sid, auth_token)
        self._from_number = from_number
        self._country_code = country_code
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = client

    @property
    def messages_url(self) -> str:
        return f"{self._base_url}/Accounts/{self._account_sid}/Messages.json"

    async def send_sms(self, message: SmsMessage) -> ProviderReceipt:
        data = {
            "To": format_phone_number(message.to, self._country_code),
            "From": self._from_number,
            "Body": message.body,
        }
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.messages_url, data=data, auth=self._auth, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.messages_url, data=data, auth=self._auth)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "SMS sending failed",
                extra={"status_code": e.response.status_code, "error": e.response.text},
            )
            raise DeliveryFailed("sms", f"Twilio responded {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("SMS sending failed", extra={"error": str(e)})
            raise DeliveryFailed("sms", str(e)) from e

        body = response.json()
        logger.info("SMS sent successfully", extra={"sid": body.get("sid"), "status": body.get("status")})
        return ProviderReceipt(message_id=body["sid"], status=body.get("status", "queued"))
