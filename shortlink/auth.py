"""Authentication collaborator: accounts and bearer tokens.

Issues HS256 JWTs for registered users and resolves a bearer credential back
to a user. An invalid, expired or orphaned token resolves to None; callers
decide whether that means 401 or anonymous access.
"""

import datetime
import logging

import jwt

from shortlink.clock import utcnow
from shortlink.config import Settings
from shortlink.exceptions import AuthRequiredError
from shortlink.models import User
from shortlink.passwords import hash_password, verify_password
from shortlink.schemas import UserLogin, UserRegister
from shortlink.store import UserStore

__all__ = ["Authenticator", "hash_password", "verify_password", "TOKEN_ISSUER"]

logger = logging.getLogger(__name__)

TOKEN_ISSUER = "shortlink-api"

INVALID_CREDENTIALS = "Invalid email or password"


class Authenticator:
    def __init__(self, settings: Settings, users: UserStore) -> None:
        self._settings = settings
        self._users = users

    @property
    def users(self) -> UserStore:
        return self._users

    def issue_token(self, user: User) -> str:
        now = utcnow()
        claims = {
            "sub": str(user.id),
            "iss": TOKEN_ISSUER,
            "iat": now,
            "exp": now + datetime.timedelta(minutes=self._settings.JWT_EXPIRES_MINUTES),
        }
        return jwt.encode(claims, self._settings.JWT_SECRET, algorithm=self._settings.JWT_ALGORITHM)

    async def resolve(self, token: str) -> User | None:
        try:
            claims = jwt.decode(
                token,
                self._settings.JWT_SECRET,
                algorithms=[self._settings.JWT_ALGORITHM],
                issuer=TOKEN_ISSUER,
                options={"require": ["exp", "sub"]},
            )
            user_id = int(claims["sub"])
        except (jwt.PyJWTError, ValueError) as exc:
            logger.debug(f"Rejected bearer token: {exc}")
            return None
        return await self._users.find_by_id(user_id)

    async def register(self, payload: UserRegister) -> tuple[User, str]:
        user = await self._users.create(payload.username, payload.email, payload.password)
        logger.info(f"Registered user {user.id}")
        return user, self.issue_token(user)

    async def login(self, payload: UserLogin) -> tuple[User, str]:
        user = await self._users.find_by_email(payload.email)
        if user is None or not await verify_password(payload.password, user.password_hash):
            raise AuthRequiredError(INVALID_CREDENTIALS)
        return user, self.issue_token(user)
