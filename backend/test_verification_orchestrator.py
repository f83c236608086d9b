"""
Tests for the LinkedIn callback orchestration
"""
import random
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from auth.linkedin import LinkedInProfile, TokenResponse, encode_oauth_state
from models import AuditLog
from services.batch_verification_service import BatchAutoResolver
from services.errors import (
    AuthExchangeError,
    MissingCodeError,
    ProfileFetchError,
    VerificationFailedError,
)
from services.verification_service import VerificationOrchestrator, VerificationStage
from services.verification_store import (
    AttributeStore,
    BatchRelationshipStore,
    RespondentStore,
    VerificationStatusStore,
    VerifiedPanelistStore,
)

FIXED_NOW = datetime(2024, 6, 1, 9, 30, 0)


class FakeIdentityClient:
    """Records calls; raises when told to"""

    def __init__(self, exchange_error=None, profile_error=None):
        self.exchange_error = exchange_error
        self.profile_error = profile_error
        self.calls = []

    async def exchange_code_for_token(self, code):
        self.calls.append(("exchange", code))
        if self.exchange_error:
            raise self.exchange_error
        return TokenResponse(access_token="access-1", id_token=None)

    async def resolve_profile(self, access_token, id_token=None):
        self.calls.append(("profile", access_token))
        if self.profile_error:
            raise self.profile_error
        return LinkedInProfile(subject_id="li-1", name="Ada Lovelace", email="ada@example.com")


class ExplodingResolver:
    def resolve(self, anchor_hash_id):
        raise RuntimeError("batch store offline")


class ExplodingLedger(VerifiedPanelistStore):
    def upsert(self, *args, **kwargs):
        raise RuntimeError("ledger offline")


def _orchestrator(db: Session, client=None, resolver=None, panelists=None) -> VerificationOrchestrator:
    statuses = VerificationStatusStore(db)
    attributes = AttributeStore(db)
    panelists = panelists or VerifiedPanelistStore(db)
    if resolver is None:
        resolver = BatchAutoResolver(
            relationships=BatchRelationshipStore(db),
            statuses=statuses,
            attributes=attributes,
            panelists=panelists,
            rng=random.Random(11),
            clock=lambda: FIXED_NOW,
        )
    return VerificationOrchestrator(
        identity_client=client or FakeIdentityClient(),
        attributes=attributes,
        statuses=statuses,
        panelists=panelists,
        batch_resolver=resolver,
        respondents=RespondentStore(db),
        test_prefix="TEST-",
        clock=lambda: FIXED_NOW,
    )


@pytest.mark.asyncio
async def test_missing_code_is_rejected_before_any_call(db: Session):
    client = FakeIdentityClient()

    with pytest.raises(MissingCodeError) as exc_info:
        await _orchestrator(db, client).complete_verification(None, encode_oauth_state("h1"))

    assert exc_info.value.message == "Authorization code is required"
    assert client.calls == []


@pytest.mark.asyncio
async def test_verification_records_status_ledger_and_flag(db: Session):
    AttributeStore(db).upsert("h1", {"job_title": "Engineer", "industry": "Technology", "company_size": "51-200"})
    RespondentStore(db).upsert_many([{"hash_id": "h1", "first_name": "Ada"}], source="spreadsheet")

    result = await _orchestrator(db).complete_verification("code-1", encode_oauth_state("h1"))

    assert result.to_dict() == {
        "hashId": "h1",
        "linkedin": {
            "sub": "li-1",
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "picture": None,
            "email_verified": None,
        },
        "attributes": {"jobTitle": "Engineer", "industry": "Technology", "companySize": "51-200"},
        "verified": True,
        "verifiedAt": "2024-06-01T09:30:00Z",
    }

    status = VerificationStatusStore(db).get("h1")
    assert status["proofStatus"] == "Verified"
    assert status["linkedinEmail"] == "ada@example.com"
    assert status["autoVerified"] is False

    ledger = VerifiedPanelistStore(db).get("h1")
    assert ledger.status == "verified"
    assert ledger.job_title == "Engineer"
    assert RespondentStore(db).get("h1").verified is True


@pytest.mark.asyncio
async def test_undecodable_state_completes_without_writes(db: Session):
    result = await _orchestrator(db).complete_verification("code-1", "%%%garbage%%%")

    assert result.hash_id is None
    assert result.verified is True
    assert result.to_dict()["attributes"] == {"jobTitle": None, "industry": None, "companySize": None}
    assert VerificationStatusStore(db).delete_keys() == 0
    assert VerifiedPanelistStore(db).count_by_status("verified") == 0


@pytest.mark.asyncio
async def test_missing_snapshot_gives_empty_attributes(db: Session):
    result = await _orchestrator(db).complete_verification("code-1", encode_oauth_state("no-snapshot"))

    assert result.attributes == {}
    assert VerificationStatusStore(db).get("no-snapshot")["verified"] is True


@pytest.mark.asyncio
async def test_anchor_verification_resolves_batch(db: Session):
    BatchRelationshipStore(db).add_batch("TEST-1", ["m1", "m2", "m3", "m4", "m5"])

    result = await _orchestrator(db).complete_verification("code-1", encode_oauth_state("TEST-1"))

    assert result.batch is not None
    assert len(result.batch.verified) == 2
    assert len(result.batch.failed) == 2
    assert result.stages == [
        VerificationStage.RECEIVED,
        VerificationStage.EXCHANGED,
        VerificationStage.PROFILE_RESOLVED,
        VerificationStage.ATTRIBUTES_LOADED,
        VerificationStage.STATUS_RECORDED,
        VerificationStage.BATCH_TRIGGERED,
    ]

    statuses = VerificationStatusStore(db).get_many(["TEST-1", "m1", "m2", "m3", "m4", "m5"])
    assert statuses["TEST-1"]["autoVerified"] is False
    proof = sorted(s["proofStatus"] for hash_id, s in statuses.items() if hash_id != "TEST-1")
    assert proof == ["Failed", "Failed", "Pending", "Verified", "Verified"]


@pytest.mark.asyncio
async def test_non_anchor_does_not_trigger_batch(db: Session):
    BatchRelationshipStore(db).add_batch("TEST-1", ["m1"])

    result = await _orchestrator(db).complete_verification("code-1", encode_oauth_state("m1"))

    assert result.batch is None
    assert result.stages[-1] == VerificationStage.DONE
    assert VerificationStatusStore(db).get("m1")["autoVerified"] is False


@pytest.mark.asyncio
async def test_batch_failure_does_not_fail_anchor(db: Session):
    orchestrator = _orchestrator(db, resolver=ExplodingResolver())

    result = await orchestrator.complete_verification("code-1", encode_oauth_state("TEST-1"))

    assert result.batch is None
    assert VerificationStatusStore(db).get("TEST-1")["verified"] is True


@pytest.mark.asyncio
async def test_ledger_failure_is_best_effort(db: Session):
    orchestrator = _orchestrator(db, panelists=ExplodingLedger(db))

    result = await orchestrator.complete_verification("code-1", encode_oauth_state("h1"))

    assert result.verified is True
    assert VerificationStatusStore(db).get("h1")["verified"] is True


@pytest.mark.asyncio
async def test_exchange_error_propagates_without_writes(db: Session):
    client = FakeIdentityClient(exchange_error=AuthExchangeError("The authorization code has expired"))

    with pytest.raises(AuthExchangeError) as exc_info:
        await _orchestrator(db, client).complete_verification("code-1", encode_oauth_state("h1"))

    assert exc_info.value.message == "The authorization code has expired"
    assert client.calls == [("exchange", "code-1")]
    assert VerificationStatusStore(db).get("h1") is None


@pytest.mark.asyncio
async def test_profile_error_propagates(db: Session):
    client = FakeIdentityClient(profile_error=ProfileFetchError("Failed to fetch LinkedIn profile"))

    with pytest.raises(ProfileFetchError):
        await _orchestrator(db, client).complete_verification("code-1", encode_oauth_state("h1"))

    assert VerificationStatusStore(db).get("h1") is None


@pytest.mark.asyncio
async def test_unexpected_error_is_wrapped(db: Session):
    client = FakeIdentityClient(exchange_error=ConnectionError("connection reset"))

    with pytest.raises(VerificationFailedError) as exc_info:
        await _orchestrator(db, client).complete_verification("code-1", encode_oauth_state("h1"))

    assert exc_info.value.message == "connection reset"
    assert exc_info.value.status_code == 500
    assert db.query(AuditLog).count() == 0
