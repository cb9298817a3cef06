"""
Security primitives: operator passwords, JWT access tokens, guest access
tokens and one-time passcodes.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT for an operator session."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        return None


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> int:
    """FastAPI dependency resolving the authenticated operator id."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    payload = decode_access_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise credentials_exception

    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise credentials_exception


def generate_guest_token() -> str:
    """32 uppercase hex characters; also valid as a URL fragment token."""
    return secrets.token_hex(16).upper()


def generate_otp_code(length: int = 4) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def generate_salt() -> str:
    return secrets.token_hex(8)


def hash_otp_code(code: str, salt: str) -> str:
    return hashlib.sha256(f"{code}{salt}{settings.OTP_HASH_SALT}".encode("utf-8")).hexdigest()


def verify_otp_code(code: str, code_hash: str, salt: str) -> bool:
    return hmac.compare_digest(hash_otp_code(code, salt), code_hash)
