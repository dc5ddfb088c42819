"""Admin auth — bcrypt-checked credentials, HS256 JWT bearer tokens."""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from abengine.config import get_settings

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    pwd = password.encode("utf-8")[:72]  # bcrypt max 72 bytes
    return bcrypt.hashpw(pwd, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash
        return False


@lru_cache
def admin_password_hash() -> str:
    settings = get_settings()
    return settings.admin_password_hash or hash_password(settings.admin_password)


def authenticate_admin(email: str, password: str) -> bool:
    settings = get_settings()
    if email.lower() != settings.admin_email.lower():
        return False
    return verify_password(password, admin_password_hash())


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    )
    claims = {"sub": subject, "role": "admin", "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
