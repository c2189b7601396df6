"""
Bearer token handling.

Tokens are HS256 JWTs whose ``sub`` claim carries the organizer id; every
request is scoped to that organizer.
"""

import logging
import os
from datetime import timedelta
from typing import Dict, Optional
from dotenv import load_dotenv
from jose import JWTError, jwt

from shuttle_ledger.utils.datetime_utils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to encode; must include "sub" (the organizer id)
        expires_delta: Lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        Encoded JWT
    """
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def create_organizer_token(organizer_id: str, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": organizer_id}, expires_delta)


def verify_token(token: str) -> Optional[Dict]:
    """Decode a token; returns None when it is invalid or expired."""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        return None
