"""
JWT access tokens for the league API.

Tokens are normally issued by the club's identity provider; `create_access_token`
exists for tooling and tests and produces the same HS256 shape.
"""

import logging
import os
from datetime import timedelta
from typing import Dict, Optional

import jwt
from dotenv import load_dotenv

from padel_league.utils.datetime_utils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

AUTH_SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))


def create_access_token(
    data: Dict,
    expires_delta: Optional[timedelta] = None,
    secret: Optional[str] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode (must include user_id)
        expires_delta: Lifetime of the token, ACCESS_TOKEN_EXPIRE_MINUTES by default
        secret: Override of AUTH_SECRET_KEY

    Returns:
        Encoded JWT string
    """
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, secret or AUTH_SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str, secret: Optional[str] = None) -> Optional[Dict]:
    """
    Verify a JWT access token.

    Args:
        token: Token string from the Authorization header or ?token= param
        secret: Override of AUTH_SECRET_KEY

    Returns:
        The decoded payload, or None if the token is malformed, forged or expired
    """
    if not token:
        return None
    try:
        payload = jwt.decode(token, secret or AUTH_SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        logger.debug(f"Rejected token: {e}")
        return None
    if not isinstance(payload, dict):
        return None
    return payload
