"""
JSON envelopes shared by all API routes
"""
from typing import Any, Optional

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session


def success_response(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"success": True, "data": data}))


def message_response(message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": True, "message": message, "data": data}),
    )


def require_db(db: Optional[Session]) -> Session:
    """Fail with 503 when the database could not be initialized"""
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db
