"""
User Directory — Account lookup, creation, and the current-session pointer.

Phone number is the natural key: lookup must precede creation, and the
repository re-checks uniqueness on insert so a racing create still fails
with `DuplicatePhone` instead of producing a second record.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.account import Account, ClientSession
from schemas.onboarding import AccountRecord, Role
from services.errors import DuplicatePhone, InvalidEmail, MissingName, MissingServices
from services.validators import digits_only, is_valid_email, mask_phone, parse_services

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "default"


class AccountRepository(Protocol):
    async def get_by_phone(self, phone_number: str) -> AccountRecord | None:
        ...

    async def get_by_id(self, account_id: str) -> AccountRecord | None:
        ...

    async def add(self, record: AccountRecord) -> AccountRecord:
        """Persist a new record; raises DuplicatePhone if the phone is taken."""
        ...

    async def get_session(self, client_id: str) -> str | None:
        ...

    async def set_session(self, client_id: str, account_id: str | None) -> None:
        ...


class InMemoryAccountRepository:
    def __init__(self) -> None:
        self._accounts: dict[str, AccountRecord] = {}
        self._sessions: dict[str, str] = {}

    async def get_by_phone(self, phone_number: str) -> AccountRecord | None:
        for account in self._accounts.values():
            if account.phone_number == phone_number:
                return account
        return None

    async def get_by_id(self, account_id: str) -> AccountRecord | None:
        return self._accounts.get(account_id)

    async def add(self, record: AccountRecord) -> AccountRecord:
        if await self.get_by_phone(record.phone_number) is not None:
            raise DuplicatePhone()
        self._accounts[record.id] = record
        return record

    async def get_session(self, client_id: str) -> str | None:
        return self._sessions.get(client_id)

    async def set_session(self, client_id: str, account_id: str | None) -> None:
        if account_id is None:
            self._sessions.pop(client_id, None)
        else:
            self._sessions[client_id] = account_id


class SqlAccountRepository:
    """Durable repository over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_by_phone(self, phone_number: str) -> AccountRecord | None:
        async with self.session_factory() as db:
            result = await db.execute(select(Account).where(Account.phone_number == phone_number))
            account = result.scalar_one_or_none()
            return AccountRecord.model_validate(account) if account else None

    async def get_by_id(self, account_id: str) -> AccountRecord | None:
        async with self.session_factory() as db:
            account = await db.get(Account, account_id)
            return AccountRecord.model_validate(account) if account else None

    async def add(self, record: AccountRecord) -> AccountRecord:
        async with self.session_factory() as db:
            account = Account(
                id=record.id,
                phone_number=record.phone_number,
                full_name=record.full_name,
                email=record.email,
                role=record.role.value,
                services=list(record.services),
                verified=record.verified,
                created_at=record.created_at,
            )
            db.add(account)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicatePhone() from e
            await db.refresh(account)
            return AccountRecord.model_validate(account)

    async def get_session(self, client_id: str) -> str | None:
        async with self.session_factory() as db:
            row = await db.get(ClientSession, client_id)
            return row.account_id if row else None

    async def set_session(self, client_id: str, account_id: str | None) -> None:
        async with self.session_factory() as db:
            row = await db.get(ClientSession, client_id)
            if account_id is None:
                if row is not None:
                    await db.delete(row)
            elif row is None:
                db.add(ClientSession(client_id=client_id, account_id=account_id))
            else:
                row.account_id = account_id
            await db.commit()


class UserDirectory:
    """Account operations plus the session pointer for one client instance."""

    def __init__(self, repository: AccountRepository, client_id: str = DEFAULT_CLIENT_ID) -> None:
        self.repository = repository
        self.client_id = client_id

    async def find_by_phone(self, phone_number: str) -> AccountRecord | None:
        return await self.repository.get_by_phone(digits_only(phone_number))

    async def create(
        self,
        phone_number: str,
        full_name: str,
        role: Role,
        services: Iterable[str] = (),
        email: str | None = None,
        verified: bool = False,
    ) -> AccountRecord:
        """
        Validate and persist a new account.

        Raises:
            MissingName: blank full name
            MissingServices: provider without any service category
            UnknownService: unrecognised service category
            InvalidEmail: email given but malformed
            DuplicatePhone: phone number already registered
        """
        name = (full_name or "").strip()
        if not name:
            raise MissingName()

        categories = [c.value for c in parse_services(services)] if role is Role.PROVIDER else []
        if role is Role.PROVIDER and not categories:
            raise MissingServices()

        email = (email or "").strip() or None
        if email is not None and not is_valid_email(email):
            raise InvalidEmail()

        phone = digits_only(phone_number)
        if await self.repository.get_by_phone(phone) is not None:
            raise DuplicatePhone()

        record = AccountRecord(
            id=str(uuid.uuid4()),
            phone_number=phone,
            full_name=name,
            email=email,
            role=role,
            services=categories,
            verified=verified,
            created_at=datetime.now(timezone.utc),
        )
        record = await self.repository.add(record)
        logger.info("Account created: id=%s phone=%s role=%s", record.id, mask_phone(phone), role.value)
        return record

    async def set_current_session(self, account_id: str) -> None:
        await self.repository.set_session(self.client_id, account_id)
        logger.info("Session set: client=%s account=%s", self.client_id, account_id)

    async def get_current_session(self) -> AccountRecord | None:
        account_id = await self.repository.get_session(self.client_id)
        if account_id is None:
            return None
        return await self.repository.get_by_id(account_id)

    async def clear_current_session(self) -> None:
        await self.repository.set_session(self.client_id, None)
        logger.info("Session cleared: client=%s", self.client_id)
