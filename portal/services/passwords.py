from __future__ import annotations

import hashlib
import hmac
import logging
import os
from typing import Optional

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

PBKDF2_PREFIX = "pbkdf2$"
PBKDF2_ITERATIONS = 120_000
PBKDF2_SALT_BYTES = 16
DEFAULT_MIN_PASSWORD_LENGTH = 8
HASH_PREFIXES = (PBKDF2_PREFIX, "$2a$", "$2b$", "$2y$")

_pwd_context: Optional[CryptContext]

try:
    _pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
except Exception:
    logger.warning("bcrypt unavailable; falling back to pbkdf2 password hashes")
    _pwd_context = None


def _pbkdf2_hash(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def _pbkdf2_encode(password: str) -> str:
    salt = os.urandom(PBKDF2_SALT_BYTES)
    digest = _pbkdf2_hash(password, salt)
    return f"{PBKDF2_PREFIX}{PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def looks_hashed(value: str) -> bool:
    return value.startswith(HASH_PREFIXES)


def hash_password(password: str) -> str:
    if _pwd_context is None:
        return _pbkdf2_encode(password)
    try:
        return _pwd_context.hash(password)
    except ValueError:
        # bcrypt rejects passwords longer than 72 bytes
        return _pbkdf2_encode(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False

    if password_hash.startswith(PBKDF2_PREFIX):
        try:
            _, iter_str, salt_hex, digest_hex = password_hash.split("$", 3)
            iterations = int(iter_str)
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(digest_hex)
        except ValueError:
            return False
        computed = _pbkdf2_hash(password, salt, iterations=iterations)
        return hmac.compare_digest(computed, expected)

    if _pwd_context is None:
        return False

    try:
        return _pwd_context.verify(password, password_hash)
    except ValueError:
        return False


def validate_password_strength(password: str, min_length: int = DEFAULT_MIN_PASSWORD_LENGTH) -> Optional[str]:
    """Return an error message when ``password`` breaks the configured policy."""
    if len(password or "") < min_length:
        return f"Password must be at least {min_length} characters long"
    return None
