"""Password hashing and bearer token helpers."""

from __future__ import annotations

from datetime import timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from .config import settings
from .errors import Unauthenticated
from .utils import utcnow

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: str, *, expires_delta: timedelta | None = None) -> str:
    """Issue a signed token identifying ``user_id``."""
    issued_at = utcnow()
    expire = issued_at + (expires_delta or settings.token_lifetime)
    claims = {
        "id": user_id,
        "sub": user_id,
        "iat": issued_at,
        "exp": expire,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str | None) -> str:
    """Return the user id encoded in ``token`` or raise :class:`Unauthenticated`."""
    if not token:
        raise Unauthenticated("Not authorized — no token provided")
    try:
        claims = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except ExpiredSignatureError as exc:
        raise Unauthenticated("Not authorized — token expired") from exc
    except JWTError as exc:
        raise Unauthenticated() from exc
    user_id = claims.get("id") or claims.get("sub")
    if not user_id:
        raise Unauthenticated()
    return str(user_id)
