"""Authoritative relational store for links and users.

The store is the only writer of durable link state: existence, deletion and
the ground truth of ``click_count``. Each call opens a short-lived session
from the shared, process-wide pool and is bounded by ``STORE_TIMEOUT_SECONDS``.

Flow Diagram — LinkStore.create()
=================================
::
    ┌─────────────┐
    │ NewLink     │
    │ (validated) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ bcrypt hash │
    │ (thread)    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT urls │
    │ (one tx)    │
    └──────┬──────┘
    UNIQUE? │
    ┌─────┴─────┐
    │ OK         │ VIOLATION
    ▼            ▼
┌─────────┐  ┌──────────────────┐
│ Return  │  │ DuplicateAlias   │
│ Link    │  │ or DuplicateCode │
└─────────┘  └──────────────────┘

Key Behaviours
===============
- A caller-chosen alias that collides raises ``DuplicateAliasError``; a
  generated code that collides raises ``DuplicateCodeError`` so the caller
  can retry with a fresh code.
- ``increment_clicks`` is a single ``click_count = click_count + 1`` UPDATE,
  safe under any number of concurrent redirects.
- Timeouts and connection failures surface as ``DependencyUnavailableError``.
- Plaintext passwords are hashed before the transaction opens and never logged.

Classes:
    NewLink:  Validated input for a link insert.
    LinkStore:  CRUD and click accounting for links.
    UserStore:  Account persistence for the authentication collaborator.
"""

import asyncio
import datetime
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from prometheus_client import Counter, Histogram
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.exceptions import (
    DependencyUnavailableError,
    DuplicateAliasError,
    DuplicateCodeError,
    DuplicateError,
)
from shortlink.models import Link, User
from shortlink.passwords import hash_password, verify_password

__all__ = ["NewLink", "LinkStore", "UserStore"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

STORE_OPERATIONS_TOTAL = Counter(
    "shortlink_store_operations_total",
    "Total relational store operations",
    ["operation", "status"],
)
STORE_OPERATION_DURATION = Histogram(
    "shortlink_store_operation_duration_seconds",
    "Time taken by relational store operations",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


@dataclass
class NewLink:
    original_url: str
    short_code: str
    custom_alias: str | None = None
    expires_at: datetime.datetime | None = None
    password: str | None = None
    platform_reference: str | None = None
    owner_id: int | None = None

    def __repr__(self) -> str:
        # Keep plaintext passwords out of logs and tracebacks.
        return (
            f"NewLink(short_code={self.short_code!r}, custom_alias={self.custom_alias!r}, "
            f"has_password={self.password is not None}, owner_id={self.owner_id!r})"
        )


class _TimedStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float) -> None:
        self._session_factory = session_factory
        self._timeout = timeout

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            result = await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            STORE_OPERATIONS_TOTAL.labels(operation=operation, status="timeout").inc()
            logger.error(f"Store {operation} timed out after {self._timeout}s")
            raise DependencyUnavailableError() from exc
        except (OperationalError, InterfaceError) as exc:
            STORE_OPERATIONS_TOTAL.labels(operation=operation, status="unavailable").inc()
            logger.error(f"Store {operation} failed: {exc}")
            raise DependencyUnavailableError() from exc
        except IntegrityError:
            STORE_OPERATIONS_TOTAL.labels(operation=operation, status="conflict").inc()
            raise
        STORE_OPERATIONS_TOTAL.labels(operation=operation, status="success").inc()
        STORE_OPERATION_DURATION.labels(operation=operation).observe(loop.time() - started)
        return result


class LinkStore(_TimedStore):
    """CRUD and click accounting for links.

    Example:
        >>> store = LinkStore(session_factory, timeout=2.0)
        >>> link = await store.create(NewLink(original_url="https://example.com", short_code="aB3dE5fG"))
        >>> await store.increment_clicks(link.id)
        1
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 2.0,
        bcrypt_rounds: int = 12,
    ) -> None:
        super().__init__(session_factory, timeout)
        self._bcrypt_rounds = bcrypt_rounds

    async def create(self, new_link: NewLink) -> Link:
        """Insert a link in a single transaction.

        Args:
            new_link: Validated link fields. ``new_link.password`` is plaintext and is
                hashed here before the insert.

        Returns:
            Link: The persisted row with store-assigned fields loaded.

        Raises:
            DuplicateAliasError: If ``new_link.custom_alias`` is already taken.
            DuplicateCodeError: If the generated ``new_link.short_code`` collides.
            DependencyUnavailableError: If the store is unreachable or slow.
        """
        password_hash = None
        if new_link.password is not None:
            password_hash = await hash_password(new_link.password, self._bcrypt_rounds)

        link = Link(
            short_code=new_link.short_code,
            custom_alias=new_link.custom_alias,
            original_url=new_link.original_url,
            expires_at=new_link.expires_at,
            password_hash=password_hash,
            platform_reference=new_link.platform_reference,
            owner_id=new_link.owner_id,
        )

        async def _insert() -> Link:
            async with self._session_factory() as session:
                session.add(link)
                await session.commit()
                await session.refresh(link)
                return link

        try:
            return await self._run("create", _insert())
        except IntegrityError as exc:
            if new_link.custom_alias is not None:
                logger.info(f"Custom alias collision: {new_link.custom_alias}")
                raise DuplicateAliasError() from exc
            logger.info(f"Generated code collision: {new_link.short_code}")
            raise DuplicateCodeError() from exc

    async def find_by_code(self, code: str) -> Link | None:
        async def _find() -> Link | None:
            async with self._session_factory() as session:
                result = await session.execute(select(Link).where(Link.short_code == code))
                return result.scalar_one_or_none()

        return await self._run("find_by_code", _find())

    async def find_by_owner(self, owner_id: int, page: int = 1, limit: int = 20) -> list[Link]:
        """Return one page of an owner's links, newest first."""
        offset = (max(page, 1) - 1) * limit

        async def _find() -> list[Link]:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Link)
                    .where(Link.owner_id == owner_id)
                    .order_by(Link.created_at.desc(), Link.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
                return list(result.scalars().all())

        return await self._run("find_by_owner", _find())

    async def count_by_owner(self, owner_id: int) -> int:
        async def _count() -> int:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(Link).where(Link.owner_id == owner_id)
                )
                return int(result.scalar_one())

        return await self._run("count_by_owner", _count())

    async def increment_clicks(self, link_id: int) -> int | None:
        """Atomically add one to ``click_count``.

        Returns:
            int | None: The new count, or None when the link no longer exists.
        """

        async def _increment() -> int | None:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Link)
                    .where(Link.id == link_id)
                    .values(click_count=Link.click_count + 1)
                    .returning(Link.click_count)
                )
                new_count = result.scalar_one_or_none()
                await session.commit()
                return new_count

        return await self._run("increment_clicks", _increment())

    async def delete(self, link_id: int) -> bool:
        async def _delete() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(delete(Link).where(Link.id == link_id))
                await session.commit()
                return result.rowcount > 0

        return await self._run("delete", _delete())

    async def verify_password(self, link: Link, password: str) -> bool:
        if link.password_hash is None:
            return True
        return await verify_password(password, link.password_hash)


class UserStore(_TimedStore):
    """Account persistence used by the authentication collaborator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 2.0,
        bcrypt_rounds: int = 12,
    ) -> None:
        super().__init__(session_factory, timeout)
        self._bcrypt_rounds = bcrypt_rounds

    async def create(self, username: str, email: str, password: str) -> User:
        user = User(
            username=username,
            email=email,
            password_hash=await hash_password(password, self._bcrypt_rounds),
        )

        async def _insert() -> User:
            async with self._session_factory() as session:
                session.add(user)
                await session.commit()
                await session.refresh(user)
                return user

        try:
            return await self._run("create_user", _insert())
        except IntegrityError as exc:
            if "email" in str(exc.orig).lower():
                raise DuplicateError("Email already registered") from exc
            raise DuplicateError("Username already taken") from exc

    async def find_by_email(self, email: str) -> User | None:
        return await self._find_one("find_user_by_email", User.email == email)

    async def find_by_username(self, username: str) -> User | None:
        return await self._find_one("find_user_by_username", User.username == username)

    async def find_by_id(self, user_id: int) -> User | None:
        return await self._find_one("find_user_by_id", User.id == user_id)

    async def _find_one(self, operation: str, clause) -> User | None:
        async def _find() -> User | None:
            async with self._session_factory() as session:
                result = await session.execute(select(User).where(clause))
                return result.scalar_one_or_none()

        return await self._run(operation, _find())
