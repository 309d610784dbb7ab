"""
Security utilities for Plenaria Legal.

Password hashing (bcrypt) and JWT access/refresh token handling.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from plenaria_legal.core.config import get_config
from plenaria_legal.core.exceptions import AuthenticationError

config = get_config()
logger = logging.getLogger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

# Bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=config.security.bcrypt_rounds,
)


def _truncate(password: str) -> str:
    encoded = password.encode('utf-8')
    if len(encoded) > BCRYPT_MAX_BYTES:
        return encoded[:BCRYPT_MAX_BYTES].decode('utf-8', errors='ignore')
    return password


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(_truncate(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return pwd_context.verify(_truncate(plain_password), hashed_password)
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def _create_token(claims: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    to_encode = claims.copy()
    to_encode.update({
        "type": token_type,
        "exp": datetime.now(timezone.utc) + expires_delta,
    })
    return jwt.encode(to_encode, config.security.secret_key, algorithm=config.security.jwt_algorithm)


def _user_claims(user) -> Dict[str, Any]:
    return {"sub": str(user.id), "email": user.email, "role": user.role}


def create_access_token(user, expires_delta: Optional[timedelta] = None) -> str:
    """Create a short-lived JWT access token."""
    return _create_token(
        _user_claims(user),
        ACCESS_TOKEN,
        expires_delta or timedelta(minutes=config.security.access_token_expire_minutes),
    )


def create_refresh_token(user, expires_delta: Optional[timedelta] = None) -> str:
    """Create a long-lived JWT refresh token."""
    return _create_token(
        _user_claims(user),
        REFRESH_TOKEN,
        expires_delta or timedelta(days=config.security.refresh_token_expire_days),
    )


def create_token_pair(user) -> Dict[str, str]:
    return {
        "access_token": create_access_token(user),
        "refresh_token": create_refresh_token(user),
        "token_type": "bearer",
    }


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> Dict[str, Any]:
    """
    Decode and validate a token.

    Raises:
        AuthenticationError: If the token is invalid, expired or of the wrong type
    """
    try:
        payload = jwt.decode(token, config.security.secret_key, algorithms=[config.security.jwt_algorithm])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")

    if payload.get("type") != expected_type or payload.get("sub") is None:
        raise AuthenticationError("Invalid or expired token")
    return payload


def user_id_from_token(token: str, expected_type: str = ACCESS_TOKEN) -> int:
    payload = decode_token(token, expected_type)
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid or expired token")
