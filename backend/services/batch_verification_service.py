"""
Batch auto-resolution: when a TEST- anchor verifies, its batch mates are
partitioned into auto-verified, auto-failed and untouched.
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, Callable

from config import settings
from models import BatchRelationship, ProofStatus, PanelistStatus
from services.verification_store import (
    AttributeStore,
    VerificationStatusStore,
    BatchRelationshipStore,
    VerifiedPanelistStore,
    OUTCOME_VERIFIED,
    OUTCOME_FAILED,
    OUTCOME_UNTOUCHED,
)

logger = logging.getLogger(__name__)

AUTO_VERIFIED_NAME = "Auto Verified"
AUTO_VERIFIED_EMAIL = "auto@verified.com"
AUTO_FAIL_REASON = "Verification failed - attributes mismatch"

# Stored decisions and the status each one must still match to be replayed
LIVE_OUTCOMES = {
    OUTCOME_VERIFIED: ProofStatus.VERIFIED.value,
    OUTCOME_FAILED: ProofStatus.FAILED.value,
}


@dataclass
class BatchOutcome:
    """Summary of one resolution run"""
    anchor_hash_id: str
    verified: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    untouched: List[str] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self):
        return {
            "anchorHashId": self.anchor_hash_id,
            "verified": list(self.verified),
            "failed": list(self.failed),
            "untouched": list(self.untouched),
        }


class BatchAutoResolver:
    """
    Resolve the batch mates of a verified anchor.

    Only the anchor's most recent send is considered. The partition is
    persisted on the relationship rows and replayed while the mates'
    statuses still agree with it, so repeated triggers leave the same
    mates verified and failed. Decisions whose status has since been
    cleared no longer hold a slot; free slots are drawn at random from
    the undecided mates of the current send.
    """

    def __init__(
        self,
        relationships: BatchRelationshipStore,
        statuses: VerificationStatusStore,
        attributes: AttributeStore,
        panelists: VerifiedPanelistStore,
        rng: Optional[random.Random] = None,
        verify_count: Optional[int] = None,
        fail_count: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.relationships = relationships
        self.statuses = statuses
        self.attributes = attributes
        self.panelists = panelists
        self.rng = rng or random.Random()
        self.verify_count = settings.AUTO_VERIFY_COUNT if verify_count is None else verify_count
        self.fail_count = settings.AUTO_FAIL_COUNT if fail_count is None else fail_count
        self.clock = clock

    def _live_decisions(self, links: List[BatchRelationship]) -> Dict[str, str]:
        """Stored verified/failed decisions the status store still reflects"""
        decided = {link.mate_hash_id: link.outcome for link in links if link.outcome in LIVE_OUTCOMES}
        if not decided:
            return {}
        current = self.statuses.get_many(list(decided))
        return {
            mate: outcome
            for mate, outcome in decided.items()
            if current[mate]["proofStatus"] == LIVE_OUTCOMES[outcome]
        }

    def resolve(self, anchor_hash_id: str) -> BatchOutcome:
        links = self.relationships.current_links(anchor_hash_id)
        outcome = BatchOutcome(anchor_hash_id=anchor_hash_id)

        if not links:
            logger.info(f"[BATCH] No batch mates for {anchor_hash_id}")
            return outcome

        mates = list(dict.fromkeys(link.mate_hash_id for link in links))
        live = self._live_decisions(links)
        kept_verified = [m for m in mates if live.get(m) == OUTCOME_VERIFIED][:self.verify_count]
        kept_failed = [m for m in mates if live.get(m) == OUTCOME_FAILED][:self.fail_count]
        outcome.replayed = bool(kept_verified or kept_failed)

        undecided = [m for m in mates if m not in kept_verified and m not in kept_failed]
        self.rng.shuffle(undecided)

        verify_slots = self.verify_count - len(kept_verified)
        split = verify_slots + self.fail_count - len(kept_failed)
        new_verified = undecided[:verify_slots]
        new_failed = undecided[verify_slots:split]

        outcome.verified = kept_verified + new_verified
        outcome.failed = kept_failed + new_failed
        outcome.untouched = undecided[split:]

        decisions = {mate: OUTCOME_VERIFIED for mate in outcome.verified}
        decisions.update({mate: OUTCOME_FAILED for mate in outcome.failed})
        decisions.update({mate: OUTCOME_UNTOUCHED for mate in outcome.untouched})
        self.relationships.record_outcomes(anchor_hash_id, decisions)

        if outcome.replayed:
            logger.info(
                f"[BATCH] Replaying stored partition for {anchor_hash_id} "
                f"({len(kept_verified) + len(kept_failed)} kept)"
            )

        # Kept decisions already match their status rows
        now = self.clock()
        for mate in new_verified:
            self._mark_verified(mate, now)
        for mate in new_failed:
            self._mark_failed(mate, now)

        logger.info(
            f"[BATCH] {anchor_hash_id}: {len(outcome.verified)} verified, "
            f"{len(outcome.failed)} failed, {len(outcome.untouched)} untouched"
        )
        return outcome

    def _mark_verified(self, hash_id: str, now: datetime):
        self.statuses.upsert(
            hash_id,
            verified=True,
            proof_status=ProofStatus.VERIFIED.value,
            verified_at=now,
            linkedin_name=AUTO_VERIFIED_NAME,
            linkedin_email=AUTO_VERIFIED_EMAIL,
            auto_verified=True,
        )
        self.panelists.upsert(
            hash_id,
            status=PanelistStatus.VERIFIED.value,
            attributes=self.attributes.get_attributes(hash_id),
            verified_at=now,
        )

    def _mark_failed(self, hash_id: str, now: datetime):
        self.statuses.upsert(
            hash_id,
            verified=False,
            proof_status=ProofStatus.FAILED.value,
            verified_at=now,
            auto_verified=True,
            fail_reason=AUTO_FAIL_REASON,
        )
        self.panelists.upsert(
            hash_id,
            status=PanelistStatus.FAILED.value,
            attributes=self.attributes.get_attributes(hash_id),
            verified_at=now,
        )
