"""
Verification callback orchestration.

Completes a LinkedIn OAuth round-trip for a respondent: exchanges the code,
resolves the profile, records the verification and, for TEST- anchors,
resolves the anchor's batch mates.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable

from config import settings
from models import ProofStatus, PanelistStatus
from auth.linkedin import LinkedInProfile, decode_oauth_state
from services.errors import (
    MissingCodeError,
    AuthExchangeError,
    ProfileFetchError,
    VerificationFailedError,
)
from services.verification_store import (
    AttributeStore,
    VerificationStatusStore,
    VerifiedPanelistStore,
    RespondentStore,
)
from services.batch_verification_service import BatchAutoResolver, BatchOutcome

logger = logging.getLogger(__name__)


class VerificationStage(enum.Enum):
    RECEIVED = "received"
    EXCHANGED = "exchanged"
    PROFILE_RESOLVED = "profile_resolved"
    ATTRIBUTES_LOADED = "attributes_loaded"
    STATUS_RECORDED = "status_recorded"
    BATCH_TRIGGERED = "batch_triggered"
    DONE = "done"


@dataclass
class VerificationResult:
    """Outcome of a completed callback"""
    hash_id: Optional[str]
    profile: LinkedInProfile
    attributes: Dict[str, Optional[str]]
    verified_at: datetime
    verified: bool = True
    batch: Optional[BatchOutcome] = None
    stages: List[VerificationStage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hashId": self.hash_id,
            "linkedin": self.profile.to_dict(),
            "attributes": {
                "jobTitle": self.attributes.get("job_title"),
                "industry": self.attributes.get("industry"),
                "companySize": self.attributes.get("company_size"),
            },
            "verified": self.verified,
            "verifiedAt": self.verified_at.isoformat() + "Z",
        }


class VerificationOrchestrator:
    """
    Run the callback flow. Provider errors propagate unchanged; any other
    failure after the code check is wrapped in VerificationFailedError.
    """

    def __init__(
        self,
        identity_client,
        attributes: AttributeStore,
        statuses: VerificationStatusStore,
        panelists: VerifiedPanelistStore,
        batch_resolver: Optional[BatchAutoResolver] = None,
        respondents: Optional[RespondentStore] = None,
        test_prefix: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.identity_client = identity_client
        self.attributes = attributes
        self.statuses = statuses
        self.panelists = panelists
        self.batch_resolver = batch_resolver
        self.respondents = respondents
        self.test_prefix = test_prefix or settings.TEST_ACCOUNT_PREFIX
        self.clock = clock

    def is_anchor(self, hash_id: Optional[str]) -> bool:
        return bool(hash_id) and hash_id.startswith(self.test_prefix)

    async def complete_verification(self, code: Optional[str], state: Optional[str]) -> VerificationResult:
        if not code:
            raise MissingCodeError()

        stages = [VerificationStage.RECEIVED]
        hash_id = decode_oauth_state(state)

        try:
            token = await self.identity_client.exchange_code_for_token(code)
            stages.append(VerificationStage.EXCHANGED)

            profile = await self.identity_client.resolve_profile(token.access_token, token.id_token)
            stages.append(VerificationStage.PROFILE_RESOLVED)

            attributes = self.attributes.get_attributes(hash_id) if hash_id else {}
            if hash_id and not attributes:
                logger.info(f"[VERIFY] No attribute snapshot for {hash_id}, continuing with empty attributes")
            stages.append(VerificationStage.ATTRIBUTES_LOADED)

            verified_at = self.clock()
            result = VerificationResult(
                hash_id=hash_id,
                profile=profile,
                attributes=attributes,
                verified_at=verified_at,
                stages=stages,
            )

            if not hash_id:
                stages.append(VerificationStage.DONE)
                logger.info("[VERIFY] Callback completed without hashId, nothing recorded")
                return result

            self._record_verification(hash_id, profile, attributes, verified_at)
            stages.append(VerificationStage.STATUS_RECORDED)

            if self.is_anchor(hash_id) and self.batch_resolver is not None:
                result.batch = self._trigger_batch(hash_id)
                stages.append(VerificationStage.BATCH_TRIGGERED)
            else:
                stages.append(VerificationStage.DONE)

            logger.info(f"[VERIFY] {hash_id} verified as {profile.email}")
            return result

        except (AuthExchangeError, ProfileFetchError):
            raise
        except Exception as e:
            logger.error(f"[VERIFY] Verification failed for hashId={hash_id}: {e}", exc_info=True)
            raise VerificationFailedError(str(e) or "Failed to complete LinkedIn authentication") from e

    def _record_verification(
        self,
        hash_id: str,
        profile: LinkedInProfile,
        attributes: Dict[str, Optional[str]],
        verified_at: datetime,
    ):
        self.statuses.upsert(
            hash_id,
            verified=True,
            proof_status=ProofStatus.VERIFIED.value,
            verified_at=verified_at,
            linkedin_name=profile.name,
            linkedin_email=profile.email,
        )

        # Ledger and denormalized flag are best effort
        try:
            self.panelists.upsert(
                hash_id,
                status=PanelistStatus.VERIFIED.value,
                attributes=attributes,
                verified_at=verified_at,
            )
        except Exception as e:
            logger.error(f"[VERIFY] Failed to store verified panelist {hash_id}: {e}")

        if self.respondents is not None:
            try:
                self.respondents.mark_verified(hash_id)
            except Exception as e:
                logger.error(f"[VERIFY] Failed to flag respondent {hash_id} as verified: {e}")

    def _trigger_batch(self, hash_id: str) -> Optional[BatchOutcome]:
        # The anchor's own verification stands even if batch resolution fails
        try:
            return self.batch_resolver.resolve(hash_id)
        except Exception as e:
            logger.error(f"[BATCH] Auto-resolution failed for {hash_id}: {e}", exc_info=True)
            return None
