"""bcrypt helpers for link and account passwords.

bcrypt is CPU bound, so both helpers run in a worker thread to keep the event
loop free for redirects. Plaintext never reaches a log line.
"""

import asyncio

import bcrypt

__all__ = ["hash_password", "verify_password"]


# bcrypt only reads the first 72 bytes; newer releases reject longer input.
_MAX_BCRYPT_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_BCRYPT_BYTES]


def _hash(password: str, rounds: int) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _check(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


async def hash_password(password: str, rounds: int = 12) -> str:
    return await asyncio.to_thread(_hash, password, rounds)


async def verify_password(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(_check, password, password_hash)
