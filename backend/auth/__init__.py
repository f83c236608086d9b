"""
Authentication module for ProofPanel: accounts, access tokens and LinkedIn OpenID
"""

from .jwt_handler import create_access_token, decode_token
from .dependencies import get_current_user
from .password import hash_password, verify_password, generate_token
from .linkedin import LinkedInClient, encode_oauth_state, decode_oauth_state

__all__ = [
    # JWT
    "create_access_token",
    "decode_token",
    "get_current_user",
    # Passwords
    "hash_password",
    "verify_password",
    "generate_token",
    # LinkedIn
    "LinkedInClient",
    "encode_oauth_state",
    "decode_oauth_state",
]
