"""
LinkedIn OAuth endpoints: verification (authorize URL and callback completion)
and panelist sign-in
"""
import logging
import secrets
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from auth.linkedin import LinkedInClient
from services.errors import MissingCodeError, ProfileFetchError
from services.audit_service import audit_verification_completed
from services.batch_verification_service import BatchAutoResolver
from services.verification_service import VerificationOrchestrator
from services.verification_store import (
    AttributeStore,
    VerificationStatusStore,
    BatchRelationshipStore,
    VerifiedPanelistStore,
    RespondentStore,
)
from routers.responses import success_response, require_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/linkedin", tags=["LinkedIn Verification"])


class CallbackRequest(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None


def get_linkedin_client() -> LinkedInClient:
    """Dependency providing the identity provider client"""
    return LinkedInClient()


def get_batch_rng():
    """Dependency providing the batch partition RNG (None = fresh random.Random)"""
    return None


def build_orchestrator(db: Session, client: LinkedInClient, rng=None) -> VerificationOrchestrator:
    attributes = AttributeStore(db)
    statuses = VerificationStatusStore(db)
    panelists = VerifiedPanelistStore(db)
    resolver = BatchAutoResolver(
        relationships=BatchRelationshipStore(db),
        statuses=statuses,
        attributes=attributes,
        panelists=panelists,
        rng=rng,
    )
    return VerificationOrchestrator(
        identity_client=client,
        attributes=attributes,
        statuses=statuses,
        panelists=panelists,
        batch_resolver=resolver,
        respondents=RespondentStore(db),
    )


@router.get("/auth-url")
async def get_auth_url(
    hashId: Optional[str] = Query(None),
    client: LinkedInClient = Depends(get_linkedin_client),
):
    """Authorize URL whose state carries the respondent's hashId"""
    if not client.is_configured:
        raise HTTPException(status_code=500, detail="LinkedIn Client ID not configured")
    return {"success": True, "authUrl": client.build_authorization_url(hashId)}


@router.post("/callback")
async def linkedin_callback(
    body: CallbackRequest,
    request: Request,
    db: Session = Depends(get_db),
    client: LinkedInClient = Depends(get_linkedin_client),
    rng=Depends(get_batch_rng),
):
    """Complete the OAuth round-trip and record the verification"""
    orchestrator = build_orchestrator(require_db(db), client, rng)
    result = await orchestrator.complete_verification(body.code, body.state)

    if result.hash_id:
        audit_verification_completed(
            db,
            request,
            hash_id=result.hash_id,
            linkedin_email=result.profile.email,
            batch=result.batch.to_dict() if result.batch else None,
        )

    return success_response(result.to_dict())


# =============================================================================
# PANELIST SIGN-IN
# =============================================================================

signin_router = APIRouter(prefix="/api/auth/linkedin", tags=["LinkedIn Sign-in"])


@signin_router.get("")
async def get_signin_url(client: LinkedInClient = Depends(get_linkedin_client)):
    """Authorize URL for panelist sign-in; the state is a plain random nonce"""
    if not client.is_configured:
        raise HTTPException(status_code=500, detail="Failed to generate auth URL")
    state = secrets.token_hex(16)
    return {"success": True, "authUrl": client.build_authorization_url(state=state), "state": state}


@signin_router.post("/callback")
async def signin_callback(body: CallbackRequest, client: LinkedInClient = Depends(get_linkedin_client)):
    """
    Exchange the code and return the member's profile.
    Nothing is recorded: sign-in is not a verification.
    """
    if not body.code:
        raise MissingCodeError()

    token = await client.exchange_code_for_token(body.code)
    try:
        profile = await client.resolve_profile(token.access_token, token.id_token)
    except ProfileFetchError as e:
        logger.warning(f"LinkedIn sign-in profile fetch failed: {e.message}")
        raise HTTPException(status_code=400, detail="Failed to fetch profile")

    return {
        "success": True,
        "profile": {
            "id": profile.subject_id,
            "name": profile.name,
            "email": profile.email,
            "picture": profile.picture,
            "emailVerified": profile.email_verified,
        },
    }
