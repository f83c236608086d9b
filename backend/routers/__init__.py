"""
API Routers for ProofPanel
"""

from .auth import router as auth_router
from .users import router as users_router
from .studies import router as studies_router
from .linkedin import router as linkedin_router, signin_router as linkedin_signin_router
from .verification import router as verification_router
from .datasets import router as datasets_router

__all__ = [
    "auth_router",
    "users_router",
    "studies_router",
    "linkedin_router",
    "linkedin_signin_router",
    "verification_router",
    "datasets_router",
]
