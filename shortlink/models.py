"""SQLAlchemy ORM models for the shortlink service.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for links and their owners.

Data Model Layout
=================
::
    users table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ username (VARCHAR(50) UNIQUE)
    ├─ email (VARCHAR(255) UNIQUE)
    ├─ password_hash (VARCHAR(128) NOT NULL)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

    urls table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(50) UNIQUE, INDEXED)
    ├─ custom_alias (VARCHAR(50) UNIQUE, NULL)
    ├─ original_url (TEXT NOT NULL)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ password_hash (VARCHAR(128) NULL)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ platform_reference (VARCHAR(100) NULL)
    ├─ owner_id (FK users.id, NULL, ON DELETE SET NULL)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

Key Behaviours
===============
- short_code is indexed for fast lookups during redirects.
- custom_alias is unique when present; NULLs never collide.
- click_count starts at 0 and is only advanced by an atomic UPDATE.
- password_hash never leaves the store: the cache holds a boolean flag only.

Classes:
    User:  Account that owns links.
    Link:  A short code mapped to a destination plus its access policy.
"""

import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.clock import ensure_utc, utcnow
from shortlink.database import Base

__all__ = ["User", "Link"]


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"


class Link(Base):
    __tablename__ = "urls"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    custom_alias: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    platform_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= ensure_utc(self.expires_at)

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, short_code='{self.short_code}', click_count={self.click_count})>"
