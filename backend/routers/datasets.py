"""
Respondent dataset endpoints: panel API imports, spreadsheet uploads and lookups
"""
import uuid
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File, Form
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from services.audit_service import audit_dataset_upload, audit_panel_load
from services.panel_service import (
    FILTER_OPTIONS,
    PANEL_PROFILES_PATH,
    PANEL_USERS_PATH,
    SUPPORTED_UPLOAD_EXTENSIONS,
    PanelApiClient,
    PanelApiError,
    parse_filters,
    matches_filters,
    matches_spreadsheet_filters,
    read_spreadsheet,
    to_api_record,
)
from services.verification_store import AttributeStore, RespondentStore
from routers.responses import success_response, message_response, require_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Datasets"])

PANEL_ENDPOINTS = {"users": PANEL_USERS_PATH, "profiles": PANEL_PROFILES_PATH}


class PanelLoadRequest(BaseModel):
    endpoint: str = "users"
    filters: Dict[str, Any] = {}


def get_panel_client() -> PanelApiClient:
    """Dependency providing the panel API client"""
    return PanelApiClient()


@router.get("/datasets/filters")
async def get_filter_options():
    """Filter catalogue for the dataset screen"""
    return success_response(FILTER_OPTIONS)


@router.post("/datasets/panel")
async def load_panel_dataset(
    body: PanelLoadRequest,
    request: Request,
    db: Session = Depends(get_db),
    client: PanelApiClient = Depends(get_panel_client),
):
    """Import respondents from the panel API (AND across filter categories)"""
    endpoint = PANEL_ENDPOINTS.get(body.endpoint)
    if endpoint is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown endpoint. Must be one of: {', '.join(PANEL_ENDPOINTS)}",
        )

    db = require_db(db)
    filters = parse_filters(body.filters)

    try:
        result = await client.fetch_respondents(filters, endpoint=endpoint)
    except PanelApiError as e:
        raise HTTPException(status_code=502, detail=str(e))

    imported = RespondentStore(db).upsert_many(result["records"], source="panel_api")
    audit_panel_load(db, request, filters, imported)

    return message_response(
        f"Loaded {imported} respondents",
        {"total": result["total"], "records": [to_api_record(r) for r in result["records"]]},
    )


@router.post("/datasets/upload")
async def upload_dataset(
    request: Request,
    file: UploadFile = File(...),
    employmentStatus: Optional[str] = Form(None),
    jobTitle: Optional[str] = Form(None),
    jobFunction: Optional[str] = Form(None),
    companySize: Optional[str] = Form(None),
    industry: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    """Import respondents from an .xlsx/.xls/.csv sheet"""
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename is required")

    suffix = Path(file.filename).suffix.lower()
    if suffix not in SUPPORTED_UPLOAD_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Only {', '.join(SUPPORTED_UPLOAD_EXTENSIONS)} files are supported",
        )

    db = require_db(db)

    content = await file.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=413, detail="Uploaded file is too large")

    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = upload_dir / f"{uuid.uuid4()}{suffix}"

    try:
        with open(file_path, "wb") as f:
            f.write(content)
        records = read_spreadsheet(file_path)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        if file_path.exists():
            file_path.unlink()

    filters = parse_filters({
        "employmentStatus": employmentStatus,
        "jobTitle": jobTitle,
        "jobFunction": jobFunction,
        "companySize": companySize,
        "industry": industry,
    })
    rows = [to_api_record(r) for r in records]
    kept = [record for record, row in zip(records, rows) if matches_spreadsheet_filters(row, filters)]

    imported = RespondentStore(db).upsert_many(kept, source="spreadsheet")
    audit_dataset_upload(db, request, file.filename, n_rows=len(records), n_imported=imported)

    return message_response(
        f"Imported {imported} of {len(records)} rows",
        {"total": len(kept), "records": [to_api_record(r) for r in kept]},
    )


@router.get("/respondents")
async def list_respondents(request: Request, db: Session = Depends(get_db)):
    """Stored respondents, filtered exactly by ?<category>=a,b"""
    db = require_db(db)
    filters = parse_filters(request.query_params)
    store = RespondentStore(db)
    records = [store.to_dict(row) for row in store.list_all()]
    records = [r for r in records if matches_filters(r, filters)]
    return success_response({"total": len(records), "records": records})


@router.get("/respondent/{hash_id}")
async def get_respondent(hash_id: str, db: Session = Depends(get_db)):
    """Attribute snapshot captured when the verification email was sent"""
    db = require_db(db)
    snapshot = AttributeStore(db).get(hash_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Respondent not found")
    snapshot.pop("hashId", None)
    return success_response(snapshot)
