"""Pydantic schemas for request/response validation in the shortlink service.

This module defines Pydantic models for API input validation and output serialization,
ensuring type safety and automatic OpenAPI documentation generation. Every field rule
runs before a store or cache call is made.

Schema Hierarchy
=================
::
    LinkShorten (Input, public)
    ├─ original_url: str (validated http/https URL, <= 2048)
    └─ custom_alias: str | None (3-50, [A-Za-z0-9_-], not reserved)

    LinkCreate (Input, authenticated)
    ├─ original_url / custom_alias (as above)
    ├─ expires_at: datetime | None (strictly future)
    ├─ password: str | None (4-50)
    └─ platform_reference: str | None (<= 100)

    LinkResponse (Output)
    ├─ id, short_code, short_url, original_url
    ├─ custom_alias, expires_at, platform_reference
    ├─ has_password: bool (never the hash)
    └─ click_count, created_at

    CachedLinkPayload (Cache projection)
    └─ id, original_url, expires_at, has_password

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/links")
    async def create_link(payload: LinkCreate):
        # payload is already validated
        ...

**Step 2 — Response serialization**::
    link = await service.create(payload, owner)
    return LinkResponse.from_link(link, settings.BASE_URL)

**Step 3 — Cache projection**::
    projection = CachedLinkPayload.model_validate(link)
    await cache.put(link.short_code, projection)

Key Behaviours
===============
- URL validation uses the validators library; only http and https are accepted.
- Naive ``expires_at`` values are read as UTC.
- Registration passwords need a lowercase letter, an uppercase letter and a digit.
- Models are configured for ORM attribute mapping.
"""

import datetime
import re
from urllib.parse import urlsplit

import validators
from pydantic import BaseModel, Field, field_validator

from shortlink.clock import ensure_utc, utcnow
from shortlink.codegen import validate_alias
from shortlink.enums import HealthStatus
from shortlink.exceptions import ValidationError as ShortLinkValidationError
from shortlink.models import Link

__all__ = [
    "LinkShorten",
    "LinkCreate",
    "RedirectPassword",
    "ShortenResponse",
    "LinkResponse",
    "LinkPage",
    "LinkAnalytics",
    "CachedLinkPayload",
    "UserRegister",
    "UserLogin",
    "UserResponse",
    "TokenResponse",
    "HealthResponse",
    "ErrorResponse",
]

MAX_URL_LENGTH = 2048


def _check_url(value: str) -> str:
    value = value.strip()
    if len(value) > MAX_URL_LENGTH:
        raise ValueError(f"URL must be at most {MAX_URL_LENGTH} characters")
    if urlsplit(value).scheme.lower() not in ("http", "https"):
        raise ValueError("URL must use http or https")
    if not validators.url(value):
        raise ValueError("Invalid URL provided")
    return value


def _check_alias(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return validate_alias(value)
    except ShortLinkValidationError as exc:
        raise ValueError(exc.message) from exc


def short_url_for(base_url: str, short_code: str) -> str:
    return f"{base_url.rstrip('/')}/{short_code}"


class LinkShorten(BaseModel):
    original_url: str
    custom_alias: str | None = None

    @field_validator("original_url")
    @classmethod
    def validate_original_url(cls, v: str) -> str:
        return _check_url(v)

    @field_validator("custom_alias")
    @classmethod
    def validate_custom_alias(cls, v: str | None) -> str | None:
        return _check_alias(v)


class LinkCreate(LinkShorten):
    expires_at: datetime.datetime | None = None
    password: str | None = Field(None, min_length=4, max_length=50)
    platform_reference: str | None = Field(None, max_length=100)

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        if v is None:
            return None
        v = ensure_utc(v)
        if v <= utcnow():
            raise ValueError("Expiration date must be in the future")
        return v


class RedirectPassword(BaseModel):
    password: str | None = Field(None, max_length=50)


class ShortenResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str


class LinkResponse(BaseModel):
    id: int
    short_code: str
    short_url: str
    original_url: str
    custom_alias: str | None = None
    expires_at: datetime.datetime | None = None
    platform_reference: str | None = None
    has_password: bool
    click_count: int
    created_at: datetime.datetime

    @classmethod
    def from_link(cls, link: Link, base_url: str) -> "LinkResponse":
        return cls(
            id=link.id,
            short_code=link.short_code,
            short_url=short_url_for(base_url, link.short_code),
            original_url=link.original_url,
            custom_alias=link.custom_alias,
            expires_at=ensure_utc(link.expires_at) if link.expires_at else None,
            platform_reference=link.platform_reference,
            has_password=link.has_password,
            click_count=link.click_count,
            created_at=ensure_utc(link.created_at),
        )


class LinkPage(BaseModel):
    items: list[LinkResponse]
    page: int
    limit: int
    total: int


class LinkAnalytics(BaseModel):
    short_code: str
    original_url: str
    click_count: int
    recent_clicks: int
    is_expired: bool
    has_password: bool
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime


class CachedLinkPayload(BaseModel):
    """Redis cache projection of a link. Holds a password flag, never the hash."""

    id: int
    original_url: str
    expires_at: datetime.datetime | None = None
    has_password: bool

    model_config = {"from_attributes": True}

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= ensure_utc(self.expires_at)


_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


class UserRegister(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not _USERNAME_PATTERN.match(v):
            raise ValueError("Username may only contain letters, digits and '_'")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not validators.email(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        if not (re.search(r"[a-z]", v) and re.search(r"[A-Z]", v) and re.search(r"\d", v)):
            raise ValueError(
                "Password must contain at least one lowercase letter, one uppercase letter and one digit"
            )
        return v


class UserLogin(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    created_at: datetime.datetime
    link_count: int = 0

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorResponse(BaseModel):
    detail: str
    requires_password: bool | None = None
