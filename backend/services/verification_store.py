"""
Datastore access for respondents and the verification workflow.

Each store wraps an explicit SQLAlchemy session. Writes are full-record
upserts keyed by hashId, so concurrent writers resolve as last write wins.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from models import (
    Respondent,
    RespondentAttribute,
    VerificationStatus,
    BatchRelationship,
    VerifiedPanelist,
    ProofStatus,
)

logger = logging.getLogger(__name__)

# Categorical attributes carried through verification and aggregation
ATTRIBUTE_FIELDS = ("job_title", "industry", "company_size", "job_function", "employment_status")

# Full respondent snapshot (contact details plus attributes)
SNAPSHOT_FIELDS = ("first_name", "last_name", "email", "company", "location") + ATTRIBUTE_FIELDS

# Outcomes persisted on batch_relationships.outcome
OUTCOME_VERIFIED = "verified"
OUTCOME_FAILED = "failed"
OUTCOME_UNTOUCHED = "untouched"


def to_camel(field: str) -> str:
    """job_title -> jobTitle"""
    head, *rest = field.split("_")
    return head + "".join(part.title() for part in rest)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class _SessionStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


# =============================================================================
# RESPONDENTS
# =============================================================================

class RespondentStore(_SessionStore):
    """Panel members loaded from the panel API or spreadsheets"""

    def get(self, hash_id: str) -> Optional[Respondent]:
        return self.db.query(Respondent).filter(Respondent.hash_id == hash_id).first()

    def upsert_many(self, records: Iterable[Dict[str, Any]], source: str) -> int:
        """
        Upsert respondents from normalized records (snake_case keys).
        The verified flag is never touched here.
        """
        count = 0
        for record in records:
            hash_id = record.get("hash_id")
            if not hash_id:
                continue

            row = self.get(hash_id)
            if row is None:
                row = Respondent(hash_id=hash_id, verified=False)
                self.db.add(row)

            for field in SNAPSHOT_FIELDS:
                setattr(row, field, record.get(field) or None)
            row.source = source
            if record.get("created_at"):
                row.created_at = record["created_at"]
            if record.get("last_active_at"):
                row.last_active_at = record["last_active_at"]
            count += 1

        self._commit()
        return count

    def list_all(self) -> List[Respondent]:
        return self.db.query(Respondent).order_by(Respondent.imported_at.desc(), Respondent.hash_id).all()

    def mark_verified(self, hash_id: str) -> bool:
        """Set the denormalized verified flag when the respondent is known"""
        row = self.get(hash_id)
        if row is None:
            return False
        row.verified = True
        self._commit()
        return True

    @staticmethod
    def to_dict(row: Respondent) -> Dict[str, Any]:
        data = {"hashId": row.hash_id}
        for field in SNAPSHOT_FIELDS:
            data[to_camel(field)] = getattr(row, field)
        data["verified"] = bool(row.verified)
        data["source"] = row.source
        data["createdAt"] = _isoformat(row.created_at)
        data["lastActiveAt"] = _isoformat(row.last_active_at)
        return data


# =============================================================================
# ATTRIBUTE SNAPSHOTS
# =============================================================================

class AttributeStore(_SessionStore):
    """Snapshots written at email-send time, read at verification time"""

    def _row(self, hash_id: str) -> Optional[RespondentAttribute]:
        return self.db.query(RespondentAttribute).filter(RespondentAttribute.hash_id == hash_id).first()

    def get(self, hash_id: str) -> Optional[Dict[str, Optional[str]]]:
        """Full snapshot (camelCase keys) or None"""
        row = self._row(hash_id)
        if row is None:
            return None
        data = {"hashId": row.hash_id}
        for field in SNAPSHOT_FIELDS:
            data[to_camel(field)] = getattr(row, field)
        return data

    def get_attributes(self, hash_id: str) -> Dict[str, Optional[str]]:
        """Categorical attributes (snake_case keys); empty when no snapshot exists"""
        row = self._row(hash_id)
        if row is None:
            return {}
        return {field: getattr(row, field) for field in ATTRIBUTE_FIELDS}

    def upsert(self, hash_id: str, values: Dict[str, Any]):
        """Replace the whole snapshot; empty values are stored as NULL"""
        row = self._row(hash_id)
        if row is None:
            row = RespondentAttribute(hash_id=hash_id)
            self.db.add(row)
        for field in SNAPSHOT_FIELDS:
            setattr(row, field, values.get(field) or None)
        row.updated_at = datetime.utcnow()
        self._commit()

    def delete_keys(self, hash_ids: Optional[List[str]] = None) -> int:
        query = self.db.query(RespondentAttribute)
        if hash_ids is not None:
            query = query.filter(RespondentAttribute.hash_id.in_(hash_ids))
        deleted = query.delete(synchronize_session=False)
        self._commit()
        return deleted


# =============================================================================
# VERIFICATION STATUSES
# =============================================================================

def pending_status() -> Dict[str, Any]:
    return {"verified": False, "proofStatus": ProofStatus.PENDING.value}


class VerificationStatusStore(_SessionStore):
    """Authoritative verification state; absence of a row means Pending"""

    def _row(self, hash_id: str) -> Optional[VerificationStatus]:
        return self.db.query(VerificationStatus).filter(VerificationStatus.hash_id == hash_id).first()

    @staticmethod
    def to_dict(row: VerificationStatus) -> Dict[str, Any]:
        return {
            "verified": bool(row.verified),
            "proofStatus": row.proof_status,
            "verifiedAt": _isoformat(row.verified_at),
            "linkedinName": row.linkedin_name,
            "linkedinEmail": row.linkedin_email,
            "autoVerified": bool(row.auto_verified),
            "failReason": row.fail_reason,
        }

    def get(self, hash_id: str) -> Optional[Dict[str, Any]]:
        row = self._row(hash_id)
        return self.to_dict(row) if row else None

    def get_or_pending(self, hash_id: str) -> Dict[str, Any]:
        return self.get(hash_id) or pending_status()

    def get_many(self, hash_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Status for every requested hashId; missing ones default to Pending"""
        rows = []
        if hash_ids:
            rows = self.db.query(VerificationStatus).filter(VerificationStatus.hash_id.in_(hash_ids)).all()
        found = {row.hash_id: self.to_dict(row) for row in rows}
        return {hash_id: found.get(hash_id) or pending_status() for hash_id in hash_ids}

    def upsert(
        self,
        hash_id: str,
        verified: bool,
        proof_status: str,
        verified_at: Optional[datetime] = None,
        linkedin_name: Optional[str] = None,
        linkedin_email: Optional[str] = None,
        auto_verified: bool = False,
        fail_reason: Optional[str] = None,
    ):
        """Write the full status record for a respondent"""
        if proof_status == ProofStatus.PENDING.value:
            raise ValueError("Pending is represented by the absence of a status row")

        row = self._row(hash_id)
        if row is None:
            row = VerificationStatus(hash_id=hash_id)
            self.db.add(row)

        row.verified = verified
        row.proof_status = proof_status
        row.verified_at = verified_at
        row.linkedin_name = linkedin_name
        row.linkedin_email = linkedin_email
        row.auto_verified = auto_verified
        row.fail_reason = fail_reason
        row.updated_at = datetime.utcnow()
        self._commit()

    def delete_keys(self, hash_ids: Optional[List[str]] = None) -> int:
        query = self.db.query(VerificationStatus)
        if hash_ids is not None:
            query = query.filter(VerificationStatus.hash_id.in_(hash_ids))
        deleted = query.delete(synchronize_session=False)
        self._commit()
        return deleted


# =============================================================================
# BATCH RELATIONSHIPS
# =============================================================================

class BatchRelationshipStore(_SessionStore):
    """Mate -> TEST- anchor links; append-only, upserted on the composite key"""

    def _row(self, anchor_hash_id: str, mate_hash_id: str) -> Optional[BatchRelationship]:
        return self.db.query(BatchRelationship).filter(
            BatchRelationship.test_hash_id == anchor_hash_id,
            BatchRelationship.mate_hash_id == mate_hash_id,
        ).first()

    def latest_send_seq(self, anchor_hash_id: str) -> int:
        latest = self.db.query(func.max(BatchRelationship.send_seq)).filter(
            BatchRelationship.test_hash_id == anchor_hash_id
        ).scalar()
        return latest or 0

    def add_batch(self, anchor_hash_id: str, mate_hash_ids: List[str]) -> int:
        """
        Link mates to an anchor in send order as a new send.
        Existing outcomes are kept; the current batch is the latest send.
        """
        mates = [m for m in dict.fromkeys(mate_hash_ids) if m != anchor_hash_id]
        if not mates:
            return 0

        send_seq = self.latest_send_seq(anchor_hash_id) + 1
        for position, mate_hash_id in enumerate(mates):
            row = self._row(anchor_hash_id, mate_hash_id)
            if row is None:
                row = BatchRelationship(test_hash_id=anchor_hash_id, mate_hash_id=mate_hash_id)
                self.db.add(row)
            row.position = position
            row.send_seq = send_seq
        self._commit()
        return len(mates)

    def get_links(self, anchor_hash_id: str) -> List[BatchRelationship]:
        return (
            self.db.query(BatchRelationship)
            .filter(BatchRelationship.test_hash_id == anchor_hash_id)
            .order_by(BatchRelationship.send_seq, BatchRelationship.position, BatchRelationship.mate_hash_id)
            .all()
        )

    def current_links(self, anchor_hash_id: str) -> List[BatchRelationship]:
        """Links made by the anchor's most recent send"""
        links = self.get_links(anchor_hash_id)
        if not links:
            return []
        latest = max(link.send_seq for link in links)
        return [link for link in links if link.send_seq == latest]

    def mate_ids(self, anchor_hash_id: str) -> List[str]:
        return [link.mate_hash_id for link in self.current_links(anchor_hash_id)]

    def record_outcomes(self, anchor_hash_id: str, outcomes: Dict[str, str]):
        """Persist the partition decision for an anchor's mates"""
        for link in self.get_links(anchor_hash_id):
            if link.mate_hash_id in outcomes:
                link.outcome = outcomes[link.mate_hash_id]
        self._commit()

    def reset_outcomes(self, hash_ids: Optional[List[str]] = None) -> int:
        """
        Forget stored partition decisions touching the given hashIds, either
        as anchor or as mate, or every decision when hash_ids is None.
        """
        query = self.db.query(BatchRelationship).filter(BatchRelationship.outcome.isnot(None))
        if hash_ids is not None:
            query = query.filter(or_(
                BatchRelationship.test_hash_id.in_(hash_ids),
                BatchRelationship.mate_hash_id.in_(hash_ids),
            ))
        reset = query.update({BatchRelationship.outcome: None}, synchronize_session=False)
        self._commit()
        return reset


# =============================================================================
# AGGREGATION LEDGER
# =============================================================================

class VerifiedPanelistStore(_SessionStore):
    """Permanent record of verification outcomes with their attributes"""

    def get(self, hash_id: str) -> Optional[VerifiedPanelist]:
        return self.db.query(VerifiedPanelist).filter(VerifiedPanelist.hash_id == hash_id).first()

    def upsert(
        self,
        hash_id: str,
        status: str,
        attributes: Optional[Dict[str, Any]] = None,
        verified_at: Optional[datetime] = None,
    ):
        attributes = attributes or {}
        row = self.get(hash_id)
        if row is None:
            row = VerifiedPanelist(hash_id=hash_id)
            self.db.add(row)

        row.status = status
        for field in ATTRIBUTE_FIELDS:
            setattr(row, field, attributes.get(field) or None)
        row.verified_at = verified_at or datetime.utcnow()
        self._commit()

    def list_by_status(self, status: str) -> List[VerifiedPanelist]:
        return self.db.query(VerifiedPanelist).filter(VerifiedPanelist.status == status).all()

    def count_by_status(self, status: str) -> int:
        return self.db.query(VerifiedPanelist).filter(VerifiedPanelist.status == status).count()
