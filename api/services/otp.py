"""
OTP Service — Generation, hashing, expiry, and verification.

Security:
  - 6-digit numeric codes from `secrets`
  - Hashed with bcrypt before storage, plaintext never stored
  - Max 3 verification attempts per code
  - 5-minute TTL, 30-second resend cooldown
  - Single use: a successful verify discards the challenge
"""

import asyncio
import logging
import math
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import bcrypt
import redis.asyncio as aioredis

from config import settings
from services.errors import (
    InvalidOtpFormat,
    OtpAttemptsExceeded,
    OtpExpired,
    OtpMismatch,
    OtpNotFound,
    RateLimited,
)
from services.validators import mask_phone

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OtpChallenge:
    """Returned to the caller on request; `code` is plaintext for transmission only."""
    phone_number: str
    code: str
    created_at: datetime
    expires_at: datetime
    resend_available_at: datetime
    attempts_remaining: int


@dataclass(frozen=True)
class StoredChallenge:
    code_hash: str
    created_at: datetime
    expires_at: datetime
    resend_available_at: datetime
    attempts_remaining: int


class ChallengeStore(Protocol):
    async def get(self, phone_number: str) -> StoredChallenge | None:
        ...

    async def put(self, phone_number: str, challenge: StoredChallenge) -> None:
        ...

    async def delete(self, phone_number: str) -> None:
        ...


class InMemoryChallengeStore:
    def __init__(self) -> None:
        self._challenges: dict[str, StoredChallenge] = {}

    async def get(self, phone_number: str) -> StoredChallenge | None:
        return self._challenges.get(phone_number)

    async def put(self, phone_number: str, challenge: StoredChallenge) -> None:
        self._challenges[phone_number] = challenge

    async def delete(self, phone_number: str) -> None:
        self._challenges.pop(phone_number, None)


class RedisChallengeStore:
    """One hash per phone at `otp:{phone}`; key TTL outlives both expiry and cooldown."""

    def __init__(self, client: aioredis.Redis, prefix: str = "otp:") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisChallengeStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    def _key(self, phone_number: str) -> str:
        return f"{self.prefix}{phone_number}"

    async def get(self, phone_number: str) -> StoredChallenge | None:
        data = await self.client.hgetall(self._key(phone_number))
        if not data:
            return None
        return StoredChallenge(
            code_hash=data["hash"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            resend_available_at=datetime.fromisoformat(data["resend_available_at"]),
            attempts_remaining=int(data["attempts_remaining"]),
        )

    async def put(self, phone_number: str, challenge: StoredChallenge) -> None:
        key = self._key(phone_number)
        await self.client.hset(key, mapping={
            "hash": challenge.code_hash,
            "created_at": challenge.created_at.isoformat(),
            "expires_at": challenge.expires_at.isoformat(),
            "resend_available_at": challenge.resend_available_at.isoformat(),
            "attempts_remaining": str(challenge.attempts_remaining),
        })
        lifetime = max(challenge.expires_at, challenge.resend_available_at) - challenge.created_at
        await self.client.expire(key, max(math.ceil(lifetime.total_seconds()), 1))

    async def delete(self, phone_number: str) -> None:
        await self.client.delete(self._key(phone_number))


class OTPService:
    def __init__(
        self,
        store: ChallengeStore | None = None,
        clock: Clock = utcnow,
        ttl_seconds: int = settings.OTP_TTL_SECONDS,
        resend_cooldown_seconds: int = settings.OTP_RESEND_COOLDOWN_SECONDS,
        max_attempts: int = settings.OTP_MAX_ATTEMPTS,
        code_length: int = settings.OTP_LENGTH,
        hash_rounds: int = 12,
    ) -> None:
        self.store = store or InMemoryChallengeStore()
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)
        self.resend_cooldown = timedelta(seconds=resend_cooldown_seconds)
        self.max_attempts = max_attempts
        self.code_length = code_length
        self.hash_rounds = hash_rounds

    def generate_code(self) -> str:
        return f"{secrets.randbelow(10 ** self.code_length):0{self.code_length}d}"

    async def request_code(self, phone_number: str) -> OtpChallenge:
        """
        Issue a fresh code for `phone_number`, replacing any prior challenge.

        Raises:
            RateLimited: the previous challenge's resend cooldown has not elapsed
        """
        now = self.clock()
        existing = await self.store.get(phone_number)
        if existing is not None and existing.resend_available_at > now:
            wait = math.ceil((existing.resend_available_at - now).total_seconds())
            logger.info("OTP resend refused: phone=%s retry_after=%ss", mask_phone(phone_number), wait)
            raise RateLimited(wait)

        code = self.generate_code()
        # bcrypt is CPU bound; keep it off the event loop
        hashed = await asyncio.to_thread(bcrypt.hashpw, code.encode(), bcrypt.gensalt(rounds=self.hash_rounds))
        code_hash = hashed.decode()
        stored = StoredChallenge(
            code_hash=code_hash,
            created_at=now,
            expires_at=now + self.ttl,
            resend_available_at=now + self.resend_cooldown,
            attempts_remaining=self.max_attempts,
        )
        await self.store.put(phone_number, stored)
        logger.info("OTP issued: phone=%s expires_at=%s", mask_phone(phone_number), stored.expires_at.isoformat())

        return OtpChallenge(
            phone_number=phone_number,
            code=code,
            created_at=stored.created_at,
            expires_at=stored.expires_at,
            resend_available_at=stored.resend_available_at,
            attempts_remaining=stored.attempts_remaining,
        )

    async def verify_code(self, phone_number: str, submitted_code: str) -> None:
        """
        Verify a submitted code. Returns on success; the challenge is consumed.

        Raises:
            InvalidOtpFormat: not a code of the issued length (no attempt consumed)
            OtpNotFound: no active challenge
            OtpExpired: past expiry (challenge discarded)
            OtpAttemptsExceeded: attempt budget used up (challenge discarded)
            OtpMismatch: wrong code (one attempt consumed)
        """
        code = (submitted_code or "").strip()
        if len(code) != self.code_length or not code.isdigit():
            raise InvalidOtpFormat()

        challenge = await self.store.get(phone_number)
        if challenge is None:
            raise OtpNotFound()

        if self.clock() > challenge.expires_at:
            await self.store.delete(phone_number)
            logger.info("OTP expired: phone=%s", mask_phone(phone_number))
            raise OtpExpired()

        if challenge.attempts_remaining <= 0:
            await self.store.delete(phone_number)
            logger.warning("OTP attempts exhausted: phone=%s", mask_phone(phone_number))
            raise OtpAttemptsExceeded()

        matched = await asyncio.to_thread(bcrypt.checkpw, code.encode(), challenge.code_hash.encode())
        if not matched:
            remaining = challenge.attempts_remaining - 1
            await self.store.put(phone_number, replace(challenge, attempts_remaining=remaining))
            raise OtpMismatch(remaining)

        await self.store.delete(phone_number)  # Single use
        logger.info("OTP verified: phone=%s", mask_phone(phone_number))

    async def discard(self, phone_number: str) -> None:
        await self.store.delete(phone_number)

    async def resend_available_in(self, phone_number: str) -> int:
        """Whole seconds until a new code may be requested (0 if available now)."""
        challenge = await self.store.get(phone_number)
        if challenge is None:
            return 0
        remaining = (challenge.resend_available_at - self.clock()).total_seconds()
        return max(math.ceil(remaining), 0)
