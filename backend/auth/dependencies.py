"""
FastAPI dependencies for authentication
"""
from typing import Optional
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models import User
from .jwt_handler import decode_token

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the account behind the signin access token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired,
            or the account no longer exists
    """
    if not credentials or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    token_data = decode_token(credentials.credentials)
    if not token_data:
        raise _unauthorized("Invalid or expired token")

    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")

    user = db.query(User).filter(User.id == token_data.user_id).first()
    if not user:
        raise _unauthorized("User not found")

    request.state.user = user
    request.state.token_data = token_data
    return user
