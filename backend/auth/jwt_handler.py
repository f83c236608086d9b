"""
JWT access tokens issued at signin
"""
import jwt
from datetime import datetime, timedelta
from typing import Optional

from config import settings


class TokenData:
    """Decoded token data structure"""
    def __init__(
        self,
        user_id: str,
        email: str,
        role: str,
        exp: datetime,
        iat: datetime,
    ):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.exp = exp
        self.iat = iat


def create_access_token(
    user_id: str,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User's unique identifier
        email: User's email address
        role: Account role (panel_company, insight_company, panelist)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    now = datetime.utcnow()

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(hours=settings.JWT_EXPIRE_HOURS)

    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[TokenData]:
    """
    Decode and validate a JWT access token.

    Returns:
        TokenData object if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None

    if payload.get("type") != "access":
        return None

    return TokenData(
        user_id=payload.get("sub"),
        email=payload.get("email"),
        role=payload.get("role"),
        exp=datetime.utcfromtimestamp(payload.get("exp", 0)),
        iat=datetime.utcfromtimestamp(payload.get("iat", 0)),
    )
