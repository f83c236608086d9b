"""
Verification status, email dispatch and aggregation endpoints
"""
import logging
from typing import Optional, List, Any
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from database import get_db
from auth.email_service import SmtpMailer
from services.errors import SmtpConfigurationError
from services.audit_service import audit_emails_sent, audit_statuses_cleared
from services.aggregation_service import get_aggregated_verified_attributes
from services.verification_email_service import dispatch_verification_emails, summarize_dispatch
from services.verification_store import (
    AttributeStore,
    BatchRelationshipStore,
    VerificationStatusStore,
    VerifiedPanelistStore,
)
from routers.responses import success_response, message_response, require_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Verification"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class HashIdsRequest(BaseModel):
    hashIds: Optional[Any] = None


class Recipient(BaseModel):
    """Email recipient with the attribute snapshot stored at send time"""
    model_config = ConfigDict(populate_by_name=True)

    hash_id: str = Field(alias="hashId")
    email: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    company: Optional[str] = None
    location: Optional[str] = None
    employment_status: Optional[str] = Field(None, alias="employmentStatus")
    job_title: Optional[str] = Field(None, alias="jobTitle")
    job_function: Optional[str] = Field(None, alias="jobFunction")
    company_size: Optional[str] = Field(None, alias="companySize")
    industry: Optional[str] = None


class SendEmailsRequest(BaseModel):
    smtpEmail: Optional[str] = None
    smtpPassword: Optional[str] = None
    recipients: Optional[List[Recipient]] = None


def get_mailer_factory():
    """Dependency providing the SMTP mailer class (called with email, password)"""
    return SmtpMailer


# =============================================================================
# STATUSES
# =============================================================================

@router.post("/verification-statuses")
async def get_verification_statuses(body: HashIdsRequest, db: Session = Depends(get_db)):
    """Statuses for many respondents; unknown ones are Pending"""
    if not isinstance(body.hashIds, list):
        raise HTTPException(status_code=400, detail="hashIds array is required")

    db = require_db(db)
    hash_ids = [str(h) for h in body.hashIds]
    try:
        statuses = VerificationStatusStore(db).get_many(hash_ids)
    except Exception as e:
        logger.error(f"Error fetching verification statuses: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch verification statuses")
    return success_response(statuses)


@router.get("/verification-status/{hash_id}")
async def get_verification_status(hash_id: str, db: Session = Depends(get_db)):
    db = require_db(db)
    try:
        status = VerificationStatusStore(db).get_or_pending(hash_id)
    except Exception as e:
        logger.error(f"Error fetching verification status for {hash_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch verification status")
    return success_response(status)


@router.post("/clear-verification-statuses")
async def clear_verification_statuses(
    request: Request,
    body: Optional[HashIdsRequest] = None,
    db: Session = Depends(get_db),
):
    """Reset statuses and attribute snapshots for the given hashIds, or for everyone"""
    db = require_db(db)
    hash_ids = None
    if body is not None and isinstance(body.hashIds, list):
        hash_ids = [str(h) for h in body.hashIds]

    try:
        statuses_deleted = VerificationStatusStore(db).delete_keys(hash_ids)
        attributes_deleted = AttributeStore(db).delete_keys(hash_ids)
        decisions_reset = BatchRelationshipStore(db).reset_outcomes(hash_ids)
    except Exception as e:
        logger.error(f"Error clearing verification statuses: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to clear verification statuses")

    logger.info(f"[CLEAR] {statuses_deleted} statuses, {attributes_deleted} snapshots, {decisions_reset} batch decisions")
    audit_statuses_cleared(db, request, hash_ids, statuses_deleted, attributes_deleted)
    return message_response("Verification statuses cleared")


# =============================================================================
# EMAIL DISPATCH
# =============================================================================

@router.post("/send-verification-emails")
async def send_verification_emails(
    body: SendEmailsRequest,
    request: Request,
    db: Session = Depends(get_db),
    mailer_factory=Depends(get_mailer_factory),
):
    """
    Store attribute snapshots and batch links, then email each recipient.
    Per-recipient failures are reported in the manifest, not as an error.
    """
    if not body.recipients:
        raise HTTPException(status_code=400, detail="Recipients list is required")

    db = require_db(db)

    try:
        mailer = mailer_factory(body.smtpEmail, body.smtpPassword)
    except SmtpConfigurationError:
        raise HTTPException(status_code=400, detail="SMTP email and password are required")

    recipients = [r.model_dump() for r in body.recipients]
    with mailer:
        try:
            results = dispatch_verification_emails(db, recipients, mailer)
        except Exception as e:
            logger.error(f"Error dispatching verification emails: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to send verification emails")

    real = sum(1 for entry in results["sent"] if entry["isTestAccount"])
    audit_emails_sent(db, request, sent=len(results["sent"]), failed=len(results["failed"]), real=real)

    message = summarize_dispatch(results)
    logger.info(f"[EMAIL] {message}")
    return message_response(message, results)


# =============================================================================
# AGGREGATION
# =============================================================================

@router.get("/verified-panelists/aggregated")
async def get_aggregated_report(db: Session = Depends(get_db)):
    """Category rollups over verified panelists"""
    db = require_db(db)
    try:
        report = get_aggregated_verified_attributes(VerifiedPanelistStore(db))
    except Exception as e:
        logger.error(f"Error fetching aggregated data: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch aggregated data")
    return success_response(report)
