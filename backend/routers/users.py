"""
User profile endpoints
"""
import logging
from typing import Optional, List, Any
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models import User
from auth.dependencies import get_current_user
from services.validation import VALID_CATEGORIES, is_valid_category
from routers.auth import serialize_user
from routers.responses import success_response, message_response, require_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


class CategoriesUpdate(BaseModel):
    professionalCategories: Optional[List[Any]] = None


def _get_user_or_404(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    """Account behind the bearer access token"""
    return success_response(serialize_user(user))


@router.get("/{user_id}")
async def get_user(user_id: str, db: Session = Depends(get_db)):
    db = require_db(db)
    return success_response(serialize_user(_get_user_or_404(db, user_id)))


@router.patch("/{user_id}/categories")
async def update_categories(user_id: str, body: CategoriesUpdate, db: Session = Depends(get_db)):
    """Replace the panelist's professional categories"""
    categories = body.professionalCategories
    if categories is None:
        raise HTTPException(status_code=400, detail="professionalCategories array is required")

    invalid = [str(c) for c in categories if not is_valid_category(c)]
    if invalid:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid categories: {', '.join(invalid)}. Valid categories are: {', '.join(VALID_CATEGORIES)}",
        )

    db = require_db(db)
    user = _get_user_or_404(db, user_id)

    try:
        user.professional_categories = list(dict.fromkeys(categories))
        db.commit()
        db.refresh(user)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating categories for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update professional categories")

    return message_response("Professional categories updated successfully", serialize_user(user))
