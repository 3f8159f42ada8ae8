from datetime import datetime, timedelta
from typing import Any
import hashlib
import secrets

from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel

from app.core.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


class TokenPayload(BaseModel):
    sub: str
    exp: datetime
    type: str
    # Informational only; the role is always re-read from the database
    role: str | None = None


def _encode(user_id: int, token_type: str, lifetime: timedelta, role: str | None) -> str:
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "exp": datetime.utcnow() + lifetime,
        "type": token_type,
    }
    if role is not None:
        claims["role"] = role
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(user_id: int, role: str | None = None) -> str:
    return _encode(user_id, ACCESS, timedelta(minutes=settings.access_token_expire_minutes), role)


def create_refresh_token(user_id: int) -> str:
    return _encode(user_id, REFRESH, timedelta(days=settings.refresh_token_expire_days), None)


def verify_token(token: str, token_type: str = ACCESS) -> TokenPayload | None:
    """Decode a JWT; None when it is invalid, expired or of the wrong type."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return TokenPayload(**payload)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_tokens(user_id: int, role: str | None = None) -> dict[str, Any]:
    """Access and refresh pair as returned by /auth/login and /auth/refresh."""
    return {
        "access_token": create_access_token(user_id, role),
        "refresh_token": create_refresh_token(user_id),
        "token_type": "bearer",
    }


def generate_reset_token() -> tuple[str, str]:
    """
    Password reset tokens are single use. Only the sha256 digest is stored,
    the raw value goes into the emailed link.
    """
    raw = secrets.token_urlsafe(32)
    return raw, hash_reset_token(raw)


def hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def reset_token_expiry() -> datetime:
    return datetime.utcnow() + timedelta(minutes=settings.password_reset_expire_minutes)
