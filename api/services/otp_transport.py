"""
OTP Transport — Delivers issued codes to the user's phone.

The core never retries a failed send; `OtpTransportError` is surfaced so
the user can trigger a manual retry.
"""

import logging
from typing import Protocol

import httpx

from config import settings
from services.errors import OtpTransportError
from services.validators import mask_phone

logger = logging.getLogger(__name__)

COUNTRY_CODE = "91"


class OtpTransport(Protocol):
    async def send_code(self, phone_number: str, code: str) -> None:
        ...


class SmsGatewayTransport:
    """MSG91-style OTP API over HTTPS."""

    def __init__(
        self,
        url: str = settings.SMS_GATEWAY_URL,
        api_key: str = settings.SMS_API_KEY,
        sender_id: str = settings.SMS_SENDER_ID,
        template_id: str = settings.SMS_TEMPLATE_ID,
        timeout: float = settings.SMS_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.sender_id = sender_id
        self.template_id = template_id
        self.timeout = timeout
        self._client = client

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if not self.api_key:
            missing.append("SMS_API_KEY")
        if not self.sender_id:
            missing.append("SMS_SENDER_ID")
        if not self.template_id:
            missing.append("SMS_TEMPLATE_ID")
        return missing

    async def _post(self, payload: dict, headers: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=payload, headers=headers)

    async def send_code(self, phone_number: str, code: str) -> None:
        missing = self.missing_fields()
        if missing:
            logger.error("SMS gateway not configured; missing=%s", ",".join(missing))
            raise OtpTransportError()

        payload = {
            "mobile": f"{COUNTRY_CODE}{phone_number}",
            "otp": code,
            "sender": self.sender_id,
            "template_id": self.template_id,
        }
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "authkey": self.api_key,
        }
        try:
            resp = await self._post(payload, headers)
        except httpx.HTTPError as e:
            logger.warning("SMS send exception: phone=%s error=%s", mask_phone(phone_number), e)
            raise OtpTransportError() from e

        if resp.status_code // 100 != 2:
            logger.warning(
                "SMS send failed: phone=%s status=%s body=%s",
                mask_phone(phone_number),
                resp.status_code,
                resp.text[:200],
            )
            raise OtpTransportError()

        logger.info("SMS sent: phone=%s", mask_phone(phone_number))


class LoggingTransport:
    """Dev mode: write the code to the log instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_code(self, phone_number: str, code: str) -> None:
        self.sent.append((phone_number, code))
        logger.info("DEV OTP for +%s %s: %s", COUNTRY_CODE, phone_number, code)


def build_transport() -> OtpTransport:
    if settings.OTP_DEV_MODE:
        return LoggingTransport()
    return SmsGatewayTransport()
