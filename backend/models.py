"""
SQLAlchemy database models
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, JSON, Boolean, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from database import Base


class UserRole(enum.Enum):
    """Account roles"""
    PANEL_COMPANY = "panel_company"
    INSIGHT_COMPANY = "insight_company"
    PANELIST = "panelist"


class ProofStatus(enum.Enum):
    """Stored verification outcome (Pending is never stored)"""
    PENDING = "Pending"
    VERIFIED = "Verified"
    FAILED = "Failed"


class PanelistStatus(enum.Enum):
    """Aggregation ledger status"""
    VERIFIED = "verified"
    FAILED = "failed"


# =============================================================================
# ACCOUNT / STUDY MODELS
# =============================================================================

class User(Base):
    """Platform account (insight company, panel company or panelist)"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    role = Column(String(50), nullable=False)  # panel_company, insight_company, panelist

    # Panelist interests, e.g. ["technology", "b2b"]
    professional_categories = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    studies = relationship("Study", back_populates="creator")

    # Same email may hold one account per role
    __table_args__ = (
        UniqueConstraint('email', 'role', name='uq_users_email_role'),
    )


class Study(Base):
    """Survey study created by an insight company"""
    __tablename__ = "studies"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    company_name = Column(String(255), default="Research Company")
    audience = Column(Text, nullable=False)
    targeting_criteria = Column(JSON, default=dict)
    target_category = Column(String(50), default="all")

    # Fielding
    target_completes = Column(Integer, nullable=False)
    current_completes = Column(Integer, default=0)
    survey_length = Column(Integer, default=15)  # minutes
    survey_method = Column(String(50), nullable=False)
    external_url = Column(String(500))

    # Economics
    cpi = Column(Float, default=7.5)
    total_cost = Column(Float)
    payout = Column(Float)

    # Lifecycle
    status = Column(String(20), default="active")  # draft, active, paused, completed
    is_urgent = Column(Boolean, default=False)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    launched_at = Column(DateTime)
    completed_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    creator = relationship("User", back_populates="studies")
    tags = relationship("StudyTag", back_populates="study", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_studies_status', 'status'),
        Index('ix_studies_created_by', 'created_by'),
    )


class StudyTag(Base):
    """Free-form study tag"""
    __tablename__ = "study_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    study_id = Column(String(36), ForeignKey("studies.id", ondelete="CASCADE"), nullable=False)
    tag = Column(String(100), nullable=False)

    study = relationship("Study", back_populates="tags")


class AuditLog(Base):
    """Audit log for verification and data-handling actions"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=True)

    # Action details
    action = Column(String(100), nullable=False)  # e.g. "verification.completed", "dataset.upload"
    entity_type = Column(String(50))  # e.g. "respondent", "study", "user"
    entity_id = Column(String(64))

    # Request context
    ip_address = Column(String(45))
    user_agent = Column(Text)

    meta_json = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('ix_audit_logs_action', 'action'),
        Index('ix_audit_logs_entity', 'entity_type', 'entity_id'),
    )


# =============================================================================
# PANEL / VERIFICATION MODELS
# =============================================================================

class Respondent(Base):
    """Panel member loaded from the panel API or a spreadsheet"""
    __tablename__ = "respondents"

    hash_id = Column(String(64), primary_key=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255))
    company = Column(String(255))
    location = Column(String(255))
    employment_status = Column(String(100))
    job_title = Column(String(100))
    job_function = Column(String(100))
    company_size = Column(String(100))
    industry = Column(String(100))

    # Denormalized convenience flag, written only by the verification flow
    verified = Column(Boolean, default=False)

    source = Column(String(20))  # "panel_api" or "spreadsheet"
    created_at = Column(DateTime, default=datetime.utcnow)
    last_active_at = Column(DateTime)
    imported_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RespondentAttribute(Base):
    """Attribute snapshot captured when a verification email is sent"""
    __tablename__ = "respondent_attributes"

    hash_id = Column(String(64), primary_key=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255))
    company = Column(String(255))
    location = Column(String(255))
    employment_status = Column(String(100))
    job_title = Column(String(100))
    job_function = Column(String(100))
    company_size = Column(String(100))
    industry = Column(String(100))

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class VerificationStatus(Base):
    """Authoritative verification state; a missing row means Pending"""
    __tablename__ = "verification_statuses"

    hash_id = Column(String(64), primary_key=True)
    verified = Column(Boolean, nullable=False, default=False)
    proof_status = Column(String(20), nullable=False)  # Verified, Failed
    verified_at = Column(DateTime)
    linkedin_name = Column(String(255))
    linkedin_email = Column(String(255))
    auto_verified = Column(Boolean, default=False)
    fail_reason = Column(String(255))

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BatchRelationship(Base):
    """Mate -> TEST- anchor link established at send time"""
    __tablename__ = "batch_relationships"

    test_hash_id = Column(String(64), primary_key=True)
    mate_hash_id = Column(String(64), primary_key=True)

    # Send order within the anchor's batch
    position = Column(Integer, default=0)

    # Which of the anchor's sends last linked this mate (1, 2, ...)
    send_seq = Column(Integer, default=1, nullable=False)

    # Persisted partition decision: verified, failed, untouched (NULL until resolved)
    outcome = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_batch_relationships_test_hash_id', 'test_hash_id'),
    )


class VerifiedPanelist(Base):
    """Permanent ledger of verification outcomes, feeds aggregation"""
    __tablename__ = "verified_panelists"

    hash_id = Column(String(64), primary_key=True)
    status = Column(String(20), nullable=False)  # verified, failed
    job_title = Column(String(100))
    industry = Column(String(100))
    company_size = Column(String(100))
    job_function = Column(String(100))
    employment_status = Column(String(100))
    verified_at = Column(DateTime)

    __table_args__ = (
        Index('ix_verified_panelists_status', 'status'),
    )
