"""Twilio SMS delivery channel (REST API over httpx)."""

import logging
import os
from datetime import date

import httpx

from ...config import is_production
from ...identifiers import format_phone_number, is_valid_phone_number
from ..errors import PermanentSendError, TransientSendError, classify_http_status
from ..templates import build_reminder_context, get_message

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class SmsSender:
    """
    Sends reminder texts through Twilio's Messages API.

    The httpx client is injected so tests can pass one with a mock transport.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: httpx.Client | None = None,
        test_phone: str | None = None,
        redirect: bool | None = None,
        timeout: float = 30.0,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.client = client or httpx.Client(
            auth=(account_sid, auth_token), timeout=timeout
        )
        self.test_phone = test_phone
        self.redirect = (not is_production()) if redirect is None else redirect

    @classmethod
    def from_env(cls) -> "SmsSender | None":
        """Build a sender from TWILIO_* settings, or None if any is missing."""
        account_sid = os.environ.get("TWILIO_ACCOUNT_SID")
        auth_token = os.environ.get("TWILIO_AUTH_TOKEN")
        from_number = os.environ.get("TWILIO_PHONE_NUMBER")
        if not (account_sid and auth_token and from_number):
            return None
        return cls(
            account_sid,
            auth_token,
            from_number,
            test_phone=os.environ.get("TEST_PHONE"),
        )

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

    def _resolve_recipient(self, to: str) -> str:
        if self.redirect and self.test_phone:
            logger.info(f"Redirecting reminder SMS for {to} to {self.test_phone}")
            to = self.test_phone
        if not is_valid_phone_number(to):
            raise PermanentSendError(f"Invalid phone number: {to}")
        return format_phone_number(to)

    def send_sms(
        self,
        to: str,
        recipient_name: str,
        occasion_name: str,
        date: date,
        days_until: int,
    ) -> str:
        """
        Send one reminder SMS.

        Returns:
            The Twilio message SID

        Raises:
            TransientSendError: network errors, timeouts, 429 and 5xx responses
            PermanentSendError: invalid numbers and other rejections
        """
        context = build_reminder_context(
            recipient_name, occasion_name, date, days_until
        )
        body = get_message("reminder", "sms", context)

        try:
            response = self.client.post(
                self.messages_url,
                data={
                    "To": self._resolve_recipient(to),
                    "From": self.from_number,
                    "Body": body,
                },
            )
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientSendError(f"Twilio request failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise classify_http_status(
                response.status_code,
                f"Twilio returned {response.status_code}: {detail}",
            )

        sid = response.json().get("sid")
        logger.info(f"Sent reminder SMS for {occasion_name} (sid {sid})")
        return sid

    def close(self) -> None:
        self.client.close()
