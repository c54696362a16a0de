from datetime import datetime, timedelta, timezone

import jwt

from teletherapy.core import config

ROLES = ("teen", "therapist")


def create_access_token(subject: str, role: str, expires_minutes: int | None = None) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {"sub": subject, "role": role, "exp": expire, "iat": datetime.now(timezone.utc)}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
