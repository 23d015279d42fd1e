"""
Password hashing and bearer tokens.
"""
import os
import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class InvalidToken(Exception):
    pass


def _secret() -> str:
    return os.environ["JWT_SECRET"]


def _ttl() -> timedelta:
    return timedelta(minutes=int(os.environ.get("JWT_TTL_MINUTES", "60")))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Malformed stored hash
        logger.warning("Password check against malformed hash")
        return False


def issue_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["id"]),
        "email": user["email"],
        "name": user["name"],
        "iat": now,
        "exp": now + _ttl(),
    }
    return jwt.encode(payload, _secret(), algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Returns {id, email, name}. Raises InvalidToken for bad or expired tokens."""
    try:
        payload = jwt.decode(token, _secret(), algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise InvalidToken(str(e)) from e
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError) as e:
        raise InvalidToken("token has no usable subject") from e
    return {"id": user_id, "email": payload.get("email"), "name": payload.get("name")}
