"""
Account API endpoints: signup and signin
"""
import uuid
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models import User
from auth.jwt_handler import create_access_token
from auth.password import hash_password, verify_password
from services.audit_service import audit_user_signup
from services.validation import (
    VALID_ROLES,
    MIN_PASSWORD_LENGTH,
    is_valid_email,
    is_valid_role,
)
from routers.responses import message_response, require_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SignupRequest(BaseModel):
    """Create an account; the same email may hold one account per role"""
    email: Optional[str] = None
    password: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    role: Optional[str] = None


class SigninRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_user_by_email_and_role(db: Session, email: str, role: str) -> Optional[User]:
    email = email.lower().strip()
    return db.query(User).filter(User.email == email, User.role == role).first()


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role,
        "professionalCategories": user.professional_categories or [],
        "createdAt": user.created_at,
    }


def _invalid_role() -> HTTPException:
    return HTTPException(status_code=400, detail=f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/signup")
async def signup(body: SignupRequest, request: Request, db: Session = Depends(get_db)):
    """Create an account"""
    if not all([body.email, body.password, body.firstName, body.lastName, body.role]):
        raise HTTPException(
            status_code=400,
            detail="All fields are required: email, password, firstName, lastName, role",
        )
    if not is_valid_role(body.role):
        raise _invalid_role()
    if not is_valid_email(body.email):
        raise HTTPException(status_code=400, detail="Invalid email format")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
        )

    db = require_db(db)

    if get_user_by_email_and_role(db, body.email, body.role):
        raise HTTPException(status_code=409, detail="An account with this email and role already exists")

    user = User(
        id=str(uuid.uuid4()),
        email=body.email.lower().strip(),
        password_hash=hash_password(body.password),
        first_name=body.firstName,
        last_name=body.lastName,
        role=body.role,
        professional_categories=[],
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating user: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create user account")

    audit_user_signup(db, request, user.id, user.role)
    logger.info(f"Account created: {user.email} ({user.role})")

    return message_response("Account created successfully", serialize_user(user), status_code=201)


@router.post("/signin")
async def signin(body: SigninRequest, db: Session = Depends(get_db)):
    """Authenticate with email, password and role; returns an access token"""
    if not body.email or not body.password or not body.role:
        raise HTTPException(status_code=400, detail="Email, password, and role are required")
    if not is_valid_role(body.role):
        raise _invalid_role()

    db = require_db(db)

    user = get_user_by_email_and_role(db, body.email, body.role)
    if not user:
        raise HTTPException(
            status_code=401,
            detail="No account found with this email and role. Please sign up first.",
        )
    if not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid password")

    data = serialize_user(user)
    data["accessToken"] = create_access_token(user.id, user.email, user.role)
    return message_response("Signed in successfully", data)
