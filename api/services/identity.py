"""
Aadhaar KYC — Identity verification for service providers.

Order of checks is fixed: consent first (no backend call without it), then
format, then exactly one backend call. Failures are surfaced to the caller
and never retried here.
"""

import asyncio
import logging
from enum import Enum
from typing import Protocol

import httpx

from config import settings
from services.errors import (
    ConsentRequired,
    InvalidNationalId,
    ServiceUnavailable,
    VerificationDenied,
)
from services.validators import digits_only, is_valid_national_id, mask_national_id

logger = logging.getLogger(__name__)


class IdCheckResult(str, Enum):
    VERIFIED = "VERIFIED"
    DENIED = "DENIED"
    UNAVAILABLE = "UNAVAILABLE"


class IdBackend(Protocol):
    async def check_id(self, national_id: str) -> IdCheckResult:
        ...


class HttpIdBackend:
    """KYC provider reached over HTTPS; one request per call."""

    def __init__(
        self,
        url: str = settings.KYC_API_URL,
        api_key: str = settings.KYC_API_KEY,
        timeout: float = settings.KYC_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"accept": "application/json", "x-api-key": self.api_key}
        if self._client is not None:
            return await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=payload, headers=headers)

    async def check_id(self, national_id: str) -> IdCheckResult:
        if not self.url:
            logger.error("KYC_API_URL not configured; cannot verify Aadhaar")
            return IdCheckResult.UNAVAILABLE

        try:
            resp = await self._post({"aadhaar_number": national_id})
        except httpx.HTTPError as e:
            logger.warning("KYC request error: aadhaar=%s error=%s", mask_national_id(national_id), e)
            return IdCheckResult.UNAVAILABLE

        if resp.status_code >= 500:
            logger.warning("KYC backend error: status=%s body=%s", resp.status_code, resp.text[:200])
            return IdCheckResult.UNAVAILABLE
        if resp.status_code >= 400:
            return IdCheckResult.DENIED

        try:
            status = str(resp.json().get("status", "")).lower()
        except ValueError:
            logger.warning("KYC backend returned non-JSON body: %s", resp.text[:200])
            return IdCheckResult.UNAVAILABLE
        return IdCheckResult.VERIFIED if status == "verified" else IdCheckResult.DENIED


class SimulatedIdBackend:
    """Dev mode: approves every well-formed number after a short delay."""

    def __init__(self, delay: float = settings.KYC_DEV_DELAY_SECONDS) -> None:
        self.delay = delay
        self.calls: list[str] = []

    async def check_id(self, national_id: str) -> IdCheckResult:
        self.calls.append(national_id)
        await asyncio.sleep(self.delay)
        return IdCheckResult.VERIFIED


class IdentityVerificationService:
    def __init__(self, backend: IdBackend, checksum: bool = settings.AADHAAR_CHECKSUM_ENABLED) -> None:
        self.backend = backend
        self.checksum = checksum

    async def verify(self, national_id: str, consent_given: bool) -> None:
        """
        Verify an Aadhaar number. Returns on success.

        Raises:
            ConsentRequired: consent not given; backend not called
            InvalidNationalId: not 12 digits (or bad check digit when enabled)
            VerificationDenied: backend rejected the number
            ServiceUnavailable: backend unreachable or timed out
        """
        if not consent_given:
            raise ConsentRequired()

        aadhaar = digits_only(national_id)
        if not is_valid_national_id(aadhaar, checksum=self.checksum):
            raise InvalidNationalId()

        result = await self.backend.check_id(aadhaar)
        logger.info("Aadhaar check: aadhaar=%s result=%s", mask_national_id(aadhaar), result.value)

        if result is IdCheckResult.DENIED:
            raise VerificationDenied()
        if result is IdCheckResult.UNAVAILABLE:
            raise ServiceUnavailable()


def build_id_backend() -> IdBackend:
    if settings.KYC_DEV_MODE:
        return SimulatedIdBackend()
    return HttpIdBackend()
