"""
Panel data service: respondent filters, the mock panel API client and
spreadsheet imports
"""
import logging
import re
import secrets
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Mapping

import httpx
import pandas as pd

from config import settings

logger = logging.getLogger(__name__)

# Filter catalogue served to the dataset screen
FILTER_OPTIONS: Dict[str, List[str]] = {
    "employmentStatus": ["Currently employed", "Recently active"],
    "jobTitle": ["C-Level", "VP+", "Director+", "Manager+", "Individual Contributor"],
    "jobFunction": [
        "IT Decision Maker",
        "Marketing DM",
        "HR Decision Maker",
        "Finance DM",
        "Procurement",
        "Sales DM",
        "Operations",
        "Legal/Compliance",
        "Product Mgmt",
        "Data/Analytics",
    ],
    "companySize": [
        "Enterprise (10K+)",
        "Large (1K-10K)",
        "Mid-Market (100-999)",
        "SMB (10-99)",
        "Small (<10)",
    ],
    "industry": [
        "Technology",
        "Financial Services",
        "Healthcare",
        "Manufacturing",
        "Retail/CPG",
        "Prof Services",
        "Energy/Utilities",
    ],
}

FILTER_CATEGORIES = tuple(FILTER_OPTIONS)

PANEL_USERS_PATH = "/api/v1/panel/users"
PANEL_PROFILES_PATH = "/api/v1/panel/profiles"
PANEL_PAGE_SIZE = 1000

SUPPORTED_UPLOAD_EXTENSIONS = (".xlsx", ".xls", ".csv")

# Respondent field -> accepted column spellings (compared after normalization)
COLUMN_ALIASES: Dict[str, List[str]] = {
    "hash_id": ["hashid", "hash", "id", "respondentid", "panelistid"],
    "first_name": ["firstname", "first", "givenname"],
    "last_name": ["lastname", "last", "surname", "familyname"],
    "email": ["email", "emailaddress", "mail"],
    "company": ["company", "companyname", "organization", "employer"],
    "location": ["location", "city", "region"],
    "employment_status": ["employmentstatus", "employment"],
    "job_title": ["jobtitle", "title", "role", "seniority"],
    "job_function": ["jobfunction", "function", "department"],
    "company_size": ["companysize", "size", "employees"],
    "industry": ["industry", "sector", "vertical"],
    "created_at": ["createdat", "created"],
    "last_active_at": ["lastactiveat", "lastactive", "lastupdated"],
}

_ALIAS_LOOKUP = {alias: field for field, aliases in COLUMN_ALIASES.items() for alias in aliases}


# =============================================================================
# FILTERS
# =============================================================================

def parse_filters(params: Mapping[str, Any]) -> Dict[str, List[str]]:
    """
    Read category filters from query params or a request body.
    Values may be lists or comma-separated strings; empty means "All".
    """
    filters = {}
    for category in FILTER_CATEGORIES:
        raw = params.get(category)
        if not raw:
            continue
        values = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
        values = [str(v).strip() for v in values if str(v).strip()]
        if values:
            filters[category] = values
    return filters


def matches_filters(record: Mapping[str, Any], filters: Dict[str, List[str]]) -> bool:
    """Exact match: AND across categories, OR within a category"""
    for category, values in filters.items():
        if values and record.get(category) not in values:
            return False
    return True


def matches_spreadsheet_filters(record: Mapping[str, Any], filters: Dict[str, List[str]]) -> bool:
    """
    Loose match for imported sheets, whose labels rarely match the catalogue
    exactly: case-insensitive, first selected value only, substring in
    either direction.
    """
    for category, values in filters.items():
        if not values:
            continue
        record_value = str(record.get(category) or "").lower()
        filter_value = values[0].lower()
        if not (record_value == filter_value or filter_value in record_value or record_value in filter_value):
            return False
    return True


# =============================================================================
# RECORD NORMALIZATION
# =============================================================================

def _normalize_column(name: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    try:
        parsed = pd.to_datetime(value, utc=True)
    except (ValueError, TypeError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.tz_convert(None).to_pydatetime()


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def generate_hash_id() -> str:
    return secrets.token_hex(16)


def normalize_record(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Map a panel API record or spreadsheet row onto respondent fields
    (snake_case). Rows without an id get a generated hashId.
    """
    record: Dict[str, Any] = {}
    for key, value in raw.items():
        field = _ALIAS_LOOKUP.get(_normalize_column(key))
        if field and field not in record:
            record[field] = value

    # Profile-style records carry a single fullName
    full_name = raw.get("fullName") or raw.get("full_name") or raw.get("name")
    if full_name and not (record.get("first_name") or record.get("last_name")):
        first, _, last = str(full_name).strip().partition(" ")
        record["first_name"], record["last_name"] = first, last

    normalized = {field: _clean(record.get(field)) for field in COLUMN_ALIASES if not field.endswith("_at")}
    normalized["hash_id"] = normalized["hash_id"] or generate_hash_id()
    normalized["created_at"] = _parse_datetime(record.get("created_at"))
    normalized["last_active_at"] = _parse_datetime(record.get("last_active_at"))
    return normalized


def to_api_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    """snake_case respondent -> camelCase wire record"""
    return {
        "hashId": record.get("hash_id"),
        "firstName": record.get("first_name"),
        "lastName": record.get("last_name"),
        "email": record.get("email"),
        "company": record.get("company"),
        "location": record.get("location"),
        "employmentStatus": record.get("employment_status"),
        "jobTitle": record.get("job_title"),
        "jobFunction": record.get("job_function"),
        "companySize": record.get("company_size"),
        "industry": record.get("industry"),
    }


# =============================================================================
# SPREADSHEETS
# =============================================================================

def read_spreadsheet(path: Path) -> List[Dict[str, Any]]:
    """
    Read an uploaded .xlsx/.xls/.csv into normalized respondent records.

    Raises:
        ValueError: unsupported extension or unreadable file
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_UPLOAD_EXTENSIONS:
        raise ValueError(f"Unsupported file type: {suffix or 'none'}")

    try:
        if suffix == ".csv":
            df = pd.read_csv(path, dtype=str, encoding="utf-8-sig")
        elif suffix == ".xlsx":
            df = pd.read_excel(path, dtype=str, engine="openpyxl")
        else:
            df = pd.read_excel(path, dtype=str)
    except Exception as e:
        raise ValueError(f"Could not read spreadsheet: {e}") from e

    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)

    records = [normalize_record(row) for row in df.to_dict(orient="records")]
    logger.info(f"Read {len(records)} rows from {path.name}")
    return records


# =============================================================================
# PANEL API
# =============================================================================

class PanelApiError(Exception):
    """Panel API unreachable or answered with an error"""


class PanelApiClient:
    """Client for the panel provider's respondent endpoints"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or settings.PANEL_API_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PANEL_API_KEY
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    async def fetch_respondents(
        self,
        filters: Optional[Dict[str, List[str]]] = None,
        endpoint: str = PANEL_USERS_PATH,
        page_size: int = PANEL_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        Fetch respondents matching the filters (AND across categories).

        Returns:
            {"total": int, "records": [normalized records]}
        """
        params = {category: ",".join(values) for category, values in (filters or {}).items() if values}
        params.update({"page": 1, "pageSize": page_size})

        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(endpoint, params=params, headers=self._headers())
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Panel API request to {endpoint} failed: {e}")
            raise PanelApiError(f"Panel API request failed: {e}") from e

        if not body.get("success"):
            raise PanelApiError("Panel API returned an unsuccessful response")

        data = body.get("data") or {}
        records = [normalize_record(r) for r in data.get("records", [])]
        logger.info(f"Loaded {len(records)} of {data.get('total', len(records))} respondents from panel API")
        return {"total": data.get("total", len(records)), "records": records}
