"""
ProofPanel API
Respondent verification platform: LinkedIn OpenID verification, batch
auto-resolution for demo anchors and verified-attribute reporting
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

# Local imports
from config import settings
from database import init_db, DATABASE_AVAILABLE
from services.errors import ProofPanelError
from middleware import SecurityHeadersMiddleware, RequestTracingMiddleware
from routers import (
    auth_router,
    users_router,
    studies_router,
    linkedin_router,
    linkedin_signin_router,
    verification_router,
    datasets_router,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Setup logger
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="ProofPanel API",
    description="Zero-knowledge style respondent verification for research panels",
    version="1.0.0",
)

# CORS middleware - Use configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestTracingMiddleware)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(studies_router)
app.include_router(linkedin_router)
app.include_router(linkedin_signin_router)
app.include_router(verification_router)
app.include_router(datasets_router)


# =============================================================================
# ERROR ENVELOPES
# =============================================================================

@app.exception_handler(ProofPanelError)
async def proofpanel_error_handler(request: Request, exc: ProofPanelError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.debug(f"Invalid request body for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})


@app.on_event("startup")
async def startup_event():
    """Create tables on startup"""
    try:
        init_db()
        if DATABASE_AVAILABLE:
            logger.info("Database tables ready")
    except Exception as e:
        logger.warning(f"Database initialization warning: {e}")
        logger.warning("Running without database - persistence endpoints will return 503")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "proofpanel-api", "version": "1.0.0", "database": DATABASE_AVAILABLE}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
