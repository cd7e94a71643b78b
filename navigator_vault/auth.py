"""
Password hashing and bearer tokens.

Passwords are hashed with bcrypt off the event loop. Tokens are HS256
JWTs carrying ``sub``, ``email`` and ``role``; the role claim is only a
hint, the access policy always re-reads the stored role.
"""
import asyncio
import time
import logging
from typing import Optional

import bcrypt
import jwt

from .exceptions import InvalidCredentialsError
from .models import UserAccount
from .policy import Caller

logger = logging.getLogger("navigator.vault")

_BCRYPT_MAX_BYTES = 72
_TOKEN_ALGORITHM = "HS256"


def _password_bytes(password: str) -> bytes:
    # bcrypt only considers the first 72 bytes
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password_sync(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(
        _password_bytes(password), bcrypt.gensalt(rounds),
    ).decode("ascii")


def verify_password_sync(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            _password_bytes(password), password_hash.encode("ascii"),
        )
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


async def hash_password(password: str, rounds: int = 12) -> str:
    return await asyncio.to_thread(hash_password_sync, password, rounds)


async def verify_password(password: str, password_hash: Optional[str]) -> bool:
    return await asyncio.to_thread(verify_password_sync, password, password_hash)


class TokenIssuer:
    """Issues and verifies bearer tokens."""

    def __init__(self, secret: str, ttl: int):
        self._secret = secret
        self._ttl = ttl

    def __repr__(self) -> str:
        return f"<TokenIssuer ttl={self._ttl}>"

    def issue(self, account: UserAccount) -> str:
        now = int(time.time())
        claims = {
            "sub": account.id,
            "email": account.email,
            "role": account.role.value,
            "iat": now,
            "exp": now + self._ttl,
        }
        return jwt.encode(claims, self._secret, algorithm=_TOKEN_ALGORITHM)

    def verify(self, token: str) -> Caller:
        """Decode a bearer token into a Caller.

        Raises:
            InvalidCredentialsError: If the token is malformed, forged or
                expired.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[_TOKEN_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.PyJWTError as err:
            raise InvalidCredentialsError("Invalid or expired token") from err
        return Caller.from_claims(claims)
