"""
Audit logging service for tracking verification and data-handling actions
"""
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session
from fastapi import Request
import logging

logger = logging.getLogger(__name__)


def create_audit_log(
    db: Session,
    action: str,
    request: Optional[Request] = None,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Create an audit log entry. Failures are logged and never raised.

    Args:
        db: Database session
        action: Action identifier (e.g., "verification.completed", "dataset.upload")
        request: FastAPI request object (for IP and user agent)
        user_id: ID of the user performing the action
        entity_type: Type of entity being acted upon (e.g., "respondent", "study")
        entity_id: ID of the entity
        meta: Additional metadata as JSON

    Returns:
        True if audit log was created successfully, False otherwise
    """
    from database import DATABASE_AVAILABLE
    from models import AuditLog

    if not DATABASE_AVAILABLE or db is None:
        logger.debug(f"[AUDIT] Skipped (no DB): {action}")
        return False

    try:
        log = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip_address=request.client.host if request and request.client else None,
            user_agent=request.headers.get("user-agent") if request else None,
            meta_json=meta,
        )

        db.add(log)
        db.commit()

        logger.info(f"[AUDIT] {action} | user={user_id} | entity={entity_type}:{entity_id}")
        return True

    except Exception as e:
        logger.error(f"[AUDIT] Failed to create audit log: {e}")
        db.rollback()
        return False


def audit_verification_completed(
    db: Session,
    request: Request,
    hash_id: Optional[str],
    linkedin_email: Optional[str],
    batch: Optional[Dict[str, Any]] = None,
) -> bool:
    """Audit log for a completed OAuth verification"""
    meta = {"linkedin_email": linkedin_email}
    if batch:
        meta["batch"] = batch
    return create_audit_log(
        db=db,
        action="verification.completed",
        request=request,
        entity_type="respondent",
        entity_id=hash_id,
        meta=meta,
    )


def audit_emails_sent(
    db: Session,
    request: Request,
    sent: int,
    failed: int,
    real: int,
) -> bool:
    """Audit log for a bulk verification email send"""
    return create_audit_log(
        db=db,
        action="verification.emails_sent",
        request=request,
        entity_type="respondent",
        meta={"sent": sent, "failed": failed, "real": real},
    )


def audit_statuses_cleared(
    db: Session,
    request: Request,
    hash_ids: Optional[List[str]],
    statuses_deleted: int,
    attributes_deleted: int,
) -> bool:
    """Audit log for clearing verification statuses (all when hash_ids is None)"""
    return create_audit_log(
        db=db,
        action="verification.cleared",
        request=request,
        entity_type="respondent",
        meta={
            "scope": "all" if hash_ids is None else len(hash_ids),
            "statuses_deleted": statuses_deleted,
            "attributes_deleted": attributes_deleted,
        },
    )


def audit_dataset_upload(
    db: Session,
    request: Request,
    filename: str,
    n_rows: int,
    n_imported: int,
) -> bool:
    """Audit log for a spreadsheet upload"""
    return create_audit_log(
        db=db,
        action="dataset.upload",
        request=request,
        entity_type="dataset",
        entity_id=filename[:64],
        meta={"filename": filename, "n_rows": n_rows, "n_imported": n_imported},
    )


def audit_panel_load(
    db: Session,
    request: Request,
    filters: Dict[str, List[str]],
    n_imported: int,
) -> bool:
    """Audit log for a panel API import"""
    return create_audit_log(
        db=db,
        action="dataset.panel_load",
        request=request,
        entity_type="dataset",
        entity_id="panel_api",
        meta={"filters": filters, "n_imported": n_imported},
    )


def audit_study_create(
    db: Session,
    request: Request,
    study_id: str,
    user_id: Optional[str],
    name: str,
) -> bool:
    """Audit log for study creation"""
    return create_audit_log(
        db=db,
        action="study.create",
        request=request,
        user_id=user_id,
        entity_type="study",
        entity_id=study_id,
        meta={"name": name},
    )


def audit_user_signup(
    db: Session,
    request: Request,
    user_id: str,
    role: str,
) -> bool:
    """Audit log for account creation"""
    return create_audit_log(
        db=db,
        action="user.signup",
        request=request,
        user_id=user_id,
        entity_type="user",
        entity_id=user_id,
        meta={"role": role},
    )
