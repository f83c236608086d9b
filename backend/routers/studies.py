"""
Study endpoints for insight companies and the panelist survey feed
"""
import uuid
import random
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models import Study, StudyTag, User
from services.audit_service import audit_study_create
from services.validation import (
    VALID_TARGET_CATEGORIES,
    is_valid_target_category,
    is_valid_uuid,
    determine_target_category,
)
from routers.responses import success_response, message_response, require_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Studies"])

DEFAULT_CPI = 7.5
PAYOUT_SHARE = 0.6
DEFAULT_SURVEY_LENGTH = 15
DEFAULT_COMPANY_NAME = "Research Company"


class StudyCreate(BaseModel):
    name: Optional[str] = None
    companyName: Optional[str] = None
    audience: Optional[str] = None
    targetingCriteria: Optional[Dict[str, Any]] = None
    targetCompletes: Optional[int] = None
    surveyLength: Optional[int] = None
    surveyMethod: Optional[str] = None
    externalUrl: Optional[str] = None
    cpi: Optional[float] = None
    payout: Optional[float] = None
    isUrgent: Optional[bool] = None
    tags: Optional[List[str]] = None
    createdBy: Optional[str] = None
    status: Optional[str] = None
    targetCategory: Optional[str] = None


class StudyUpdate(BaseModel):
    status: Optional[str] = None
    currentCompletes: Optional[int] = None


def serialize_study(study: Study) -> dict:
    return {
        "id": study.id,
        "name": study.name,
        "company_name": study.company_name,
        "audience": study.audience,
        "targeting_criteria": study.targeting_criteria or {},
        "target_category": study.target_category or "all",
        "target_completes": study.target_completes,
        "current_completes": study.current_completes or 0,
        "survey_length": study.survey_length,
        "survey_method": study.survey_method,
        "external_url": study.external_url,
        "cpi": study.cpi,
        "total_cost": study.total_cost,
        "payout": study.payout,
        "status": study.status,
        "is_urgent": bool(study.is_urgent),
        "created_by": study.created_by,
        "launched_at": study.launched_at,
        "completed_at": study.completed_at,
        "created_at": study.created_at,
        "tags": [t.tag for t in study.tags],
    }


def compute_match_score(
    target_category: str,
    user_categories: List[str],
    rng: random.Random = random,
) -> int:
    """Affinity between a survey and a panelist's categories"""
    if not user_categories:
        return rng.randint(85, 99)
    if target_category == "all":
        return rng.randint(85, 94)
    if target_category in user_categories:
        return rng.randint(92, 99)
    if "vehicle" in user_categories:
        return rng.randint(80, 94)
    return rng.randint(75, 84)


# =============================================================================
# STUDIES
# =============================================================================

@router.get("/api/studies")
async def list_studies(
    createdBy: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Studies, newest first"""
    db = require_db(db)
    query = db.query(Study)
    if createdBy:
        query = query.filter(Study.created_by == createdBy)
    if status:
        query = query.filter(Study.status == status)
    studies = query.order_by(Study.created_at.desc()).all()
    return success_response([serialize_study(s) for s in studies])


@router.post("/api/studies")
async def create_study(body: StudyCreate, request: Request, db: Session = Depends(get_db)):
    """Create a study; cost and payout derive from the CPI"""
    if not body.name or not body.audience or not body.targetCompletes or not body.surveyMethod:
        raise HTTPException(
            status_code=400,
            detail="Required fields: name, audience, targetCompletes, surveyMethod",
        )
    if body.targetCategory and not is_valid_target_category(body.targetCategory):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid targetCategory. Must be one of: {', '.join(VALID_TARGET_CATEGORIES)}",
        )

    db = require_db(db)

    cpi = body.cpi or DEFAULT_CPI
    status = body.status or "active"
    now = datetime.utcnow()

    created_by = body.createdBy if is_valid_uuid(body.createdBy) else None
    if created_by and not db.query(User.id).filter(User.id == created_by).first():
        created_by = None

    study = Study(
        id=str(uuid.uuid4()),
        name=body.name,
        company_name=body.companyName or DEFAULT_COMPANY_NAME,
        audience=body.audience,
        targeting_criteria=body.targetingCriteria or {},
        target_category=determine_target_category(body.audience, body.targetCategory),
        target_completes=body.targetCompletes,
        current_completes=0,
        survey_length=body.surveyLength or DEFAULT_SURVEY_LENGTH,
        survey_method=body.surveyMethod,
        external_url=body.externalUrl,
        cpi=cpi,
        total_cost=cpi * body.targetCompletes,
        payout=body.payout or round(cpi * PAYOUT_SHARE, 2),
        status=status,
        is_urgent=bool(body.isUrgent),
        created_by=created_by,
        launched_at=now if status == "active" else None,
        created_at=now,
    )
    study.tags = [StudyTag(tag=tag) for tag in (body.tags or []) if tag]

    try:
        db.add(study)
        db.commit()
        db.refresh(study)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating study: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create study")

    audit_study_create(db, request, study.id, created_by, study.name)
    return message_response("Study created successfully", serialize_study(study), status_code=201)


@router.get("/api/studies/{study_id}")
async def get_study(study_id: str, db: Session = Depends(get_db)):
    db = require_db(db)
    study = db.query(Study).filter(Study.id == study_id).first()
    if not study:
        raise HTTPException(status_code=404, detail="Study not found")
    return success_response(serialize_study(study))


@router.patch("/api/studies/{study_id}")
async def update_study(study_id: str, body: StudyUpdate, db: Session = Depends(get_db)):
    """Update lifecycle status or completion count"""
    db = require_db(db)
    study = db.query(Study).filter(Study.id == study_id).first()
    if not study:
        raise HTTPException(status_code=404, detail="Study not found")

    if body.status:
        study.status = body.status
        if body.status == "completed":
            study.completed_at = datetime.utcnow()
        if body.status == "active":
            study.launched_at = datetime.utcnow()
    if body.currentCompletes is not None:
        study.current_completes = body.currentCompletes

    try:
        db.commit()
        db.refresh(study)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating study {study_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update study")

    return message_response("Study updated successfully", serialize_study(study))


# =============================================================================
# PANELIST SURVEY FEED
# =============================================================================

@router.get("/api/surveys/available")
async def available_surveys(userId: Optional[str] = Query(None), db: Session = Depends(get_db)):
    """
    Active studies for the member dashboard, urgent first then newest.
    Panelists only see studies in their categories (or "all") unless they
    own a vehicle.
    """
    db = require_db(db)

    user_categories: List[str] = []
    if userId:
        user = db.query(User).filter(User.id == userId).first()
        if user and user.professional_categories:
            user_categories = list(user.professional_categories)
    is_vehicle_owner = "vehicle" in user_categories

    studies = (
        db.query(Study)
        .filter(Study.status == "active")
        .order_by(Study.is_urgent.desc(), Study.created_at.desc())
        .all()
    )

    if user_categories and not is_vehicle_owner:
        studies = [
            s for s in studies
            if (s.target_category or "all") == "all" or s.target_category in user_categories
        ]

    surveys = []
    for study in studies:
        target_category = study.target_category or "all"
        surveys.append({
            "id": study.id,
            "title": study.name,
            "company": study.company_name or DEFAULT_COMPANY_NAME,
            "tags": [t.tag for t in study.tags],
            "match": compute_match_score(target_category, user_categories),
            "duration": f"{study.survey_length} min",
            "payout": study.payout,
            "urgent": bool(study.is_urgent),
            "audience": study.audience,
            "targetCategory": target_category,
            "surveyMethod": study.survey_method,
            "externalUrl": study.external_url,
            "targetCompletes": study.target_completes,
            "currentCompletes": study.current_completes or 0,
        })

    return success_response(surveys)
