"""
LinkedIn OpenID Connect client - authorization URL, code exchange and profile resolution
"""
import asyncio
import base64
import json
import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Dict, Any
from urllib.parse import urlencode

import httpx
import jwt

from config import settings
from services.errors import AuthExchangeError, ProfileFetchError

logger = logging.getLogger(__name__)

OAUTH_SCOPE = "openid profile email"
ID_TOKEN_ALGORITHMS = ["RS256"]


# =============================================================================
# OAUTH STATE TOKEN
# =============================================================================

def encode_oauth_state(hash_id: Optional[str] = None) -> str:
    """
    Build the opaque OAuth state: base64-encoded JSON {hashId, nonce}.

    Args:
        hash_id: Respondent being verified (optional)

    Returns:
        State string to round-trip through the identity provider
    """
    payload = {"hashId": hash_id, "nonce": secrets.token_hex(16)}
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def _b64decode_lenient(value: str) -> bytes:
    """Standard or URL-safe alphabet, padding optional, '+' mangled to ' ' restored"""
    value = value.strip().replace(" ", "+")
    value += "=" * (-len(value) % 4)
    try:
        return base64.b64decode(value, validate=True)
    except ValueError:
        return base64.urlsafe_b64decode(value)


def decode_oauth_state(state: Optional[str]) -> Optional[str]:
    """
    Recover the hashId from an OAuth state string.
    Undecodable state is not an error: the caller continues without a hashId.
    """
    if not state:
        return None

    try:
        decoded = json.loads(_b64decode_lenient(state).decode("utf-8"))
    except ValueError:
        logger.warning("Failed to decode OAuth state, continuing without hashId")
        return None

    if not isinstance(decoded, dict):
        return None

    hash_id = decoded.get("hashId")
    if isinstance(hash_id, str) and hash_id:
        return hash_id
    return None


# =============================================================================
# PROVIDER RESPONSES
# =============================================================================

@dataclass
class TokenResponse:
    """Result of the authorization code exchange"""
    access_token: str
    id_token: Optional[str] = None


@dataclass
class LinkedInProfile:
    """Identity resolved from the id_token claims or the userinfo endpoint"""
    subject_id: Optional[str]
    name: Optional[str]
    email: Optional[str]
    picture: Optional[str] = None
    email_verified: Optional[bool] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "LinkedInProfile":
        name = claims.get("name")
        if not name:
            parts = [claims.get("given_name"), claims.get("family_name")]
            name = " ".join(p for p in parts if p) or None

        email_verified = claims.get("email_verified")
        if isinstance(email_verified, str):
            email_verified = email_verified.lower() == "true"

        return cls(
            subject_id=claims.get("sub"),
            name=name,
            email=claims.get("email"),
            picture=claims.get("picture"),
            email_verified=email_verified,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sub": self.subject_id,
            "name": self.name,
            "email": self.email,
            "picture": self.picture,
            "email_verified": self.email_verified,
        }


@lru_cache(maxsize=4)
def _default_jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    # Shared across requests so the provider keys stay cached
    return jwt.PyJWKClient(jwks_url)


# =============================================================================
# CLIENT
# =============================================================================

class LinkedInClient:
    """
    Client for LinkedIn's OpenID Connect endpoints.

    Profile resolution trusts id_token claims only after the signature,
    issuer and audience have been verified against the published JWKS.
    Otherwise it falls back to the authenticated userinfo endpoint.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        jwks_client: Optional[Any] = None,
        timeout: Optional[float] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.LINKEDIN_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.LINKEDIN_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.LINKEDIN_REDIRECT_URI
        self.timeout = timeout or settings.LINKEDIN_TIMEOUT_SEC
        self._transport = transport
        self._jwks_client = jwks_client

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id)

    @property
    def jwks_client(self):
        if self._jwks_client is None:
            self._jwks_client = _default_jwks_client(settings.LINKEDIN_JWKS_URL)
        return self._jwks_client

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def build_authorization_url(self, hash_id: Optional[str] = None, state: Optional[str] = None) -> str:
        """
        Authorize URL. Verification links carry the respondent's hashId
        inside the state; sign-in passes its own opaque state.
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state or encode_oauth_state(hash_id),
            "scope": OAUTH_SCOPE,
        }
        return f"{settings.LINKEDIN_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str) -> TokenResponse:
        """
        Exchange an authorization code for tokens.

        Raises:
            AuthExchangeError: provider rejected the code (expired, reused,
                redirect mismatch). Carries the provider's description.
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
        }

        async with self._http() as client:
            response = await client.post(
                settings.LINKEDIN_TOKEN_URL,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.is_error or payload.get("error") or not payload.get("access_token"):
            description = payload.get("error_description") or "Failed to exchange code for token"
            logger.warning(f"LinkedIn token exchange rejected ({response.status_code}): {description}")
            raise AuthExchangeError(description)

        return TokenResponse(
            access_token=payload["access_token"],
            id_token=payload.get("id_token"),
        )

    def verify_id_token(self, id_token: str) -> Dict[str, Any]:
        """
        Verify an id_token against the provider's signing keys.
        Blocking (JWKS fetch); call through a worker thread from async code.

        Raises:
            jwt.PyJWTError: signature, issuer, audience or expiry check failed
        """
        signing_key = self.jwks_client.get_signing_key_from_jwt(id_token)
        return jwt.decode(
            id_token,
            signing_key.key,
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=self.client_id,
            issuer=settings.LINKEDIN_ISSUER,
        )

    async def resolve_profile(self, access_token: str, id_token: Optional[str] = None) -> LinkedInProfile:
        """
        Resolve the authenticated member's profile.

        Raises:
            ProfileFetchError: id_token unusable and userinfo call failed
        """
        if id_token:
            try:
                claims = await asyncio.to_thread(self.verify_id_token, id_token)
                return LinkedInProfile.from_claims(claims)
            except jwt.PyJWTError as e:
                logger.warning(f"id_token rejected, falling back to userinfo: {e}")

        try:
            async with self._http() as client:
                response = await client.get(
                    settings.LINKEDIN_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            raise ProfileFetchError(f"Failed to fetch LinkedIn profile: {e}") from e

        if response.is_error:
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            raise ProfileFetchError(message or "Failed to fetch LinkedIn profile")

        return LinkedInProfile.from_claims(response.json())
