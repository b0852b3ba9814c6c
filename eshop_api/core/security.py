"""Credential, token and one-time code helpers."""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt

DIGITS = "0123456789"


def generate_code(length: int = 6) -> str:
    """
    Generate a numeric one-time code.

    Each digit is drawn independently from ``secrets`` so codes gating password
    resets and account deletion cannot be predicted from earlier ones.

    Args:
        length: Number of digits (default 6)

    Returns:
        String of exactly ``length`` ASCII digits
    """
    if length < 0:
        raise ValueError("Code length must be non-negative")
    return "".join(DIGITS[secrets.randbelow(len(DIGITS))] for _ in range(length))


def hash_code(code: str) -> str:
    """SHA-256 hex digest used to store one-time codes."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def codes_match(stored_hash: Optional[str], code: str) -> bool:
    if not stored_hash:
        return False
    return hmac.compare_digest(stored_hash, hash_code(code))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class TokenService:
    """Issues and decodes the bearer tokens handed out on login and password reset."""

    def __init__(self, secret: str, algorithm: str = "HS256", expiration_hours: int = 24) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._expiration = timedelta(hours=expiration_hours)

    def create_token(self, user_id: str) -> str:
        now = datetime.now(tz=timezone.utc)
        payload = {"id": user_id, "iat": now, "exp": now + self._expiration}
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode_token(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.InvalidTokenError:
            return None
