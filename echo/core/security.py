"""Security utilities for session tokens, secrets and credential encryption"""

import hashlib
import hmac
import secrets
from base64 import urlsafe_b64encode
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from echo.config import get_settings

settings = get_settings()

# Encryption for stored integration credentials (GitHub tokens)
_cipher_suite = None


def _cipher() -> Fernet:
    global _cipher_suite
    if _cipher_suite is None:
        # Fernet wants 32 raw bytes; derive them from SECRET_KEY of any length
        key = hashlib.sha256(settings.secret_key.encode()).digest()
        _cipher_suite = Fernet(urlsafe_b64encode(key))
    return _cipher_suite


def encrypt_token(token: str) -> str:
    """Encrypt a tracker credential for storage"""
    return _cipher().encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Raises ValueError when the value was encrypted under another SECRET_KEY"""
    try:
        return _cipher().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Stored credential cannot be decrypted") from exc


def generate_secret() -> str:
    """64 hex chars, used for webhook signing secrets"""
    return secrets.token_hex(32)


def create_access_token(claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Signed JWT with an expiry; used for OAuth state and by tests to mint sessions"""
    payload = {**claims, "exp": datetime.now(timezone.utc) + (expires_delta or timedelta(days=7))}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[dict]:
    """Claims of a valid, unexpired token; None otherwise"""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def tokens_match(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison that never matches an unset expected value"""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided, expected)
