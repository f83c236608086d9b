"""
Verification dashboard state.

Pages a respondent list in batches, tracks each item's email and proof
status, and caches progress locally so a reload resumes where it left
off. Cached progress is discarded when the respondent set or the selected
verification queries change. The server-side status store stays the
source of truth; the cache is best effort.
"""
import hashlib
import json
import logging
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional, Dict, Any, List

import httpx

from config import settings
from services.errors import BatchGateError

logger = logging.getLogger(__name__)

EMAIL_PENDING = "Pending"
EMAIL_SENT = "Sent"
EMAIL_FAILED = "Failed"

PROOF_PENDING = "Pending"
PROOF_VERIFIED = "Verified"

ZKP_PENDING = "Pending"
ZKP_PASS = "Pass"

RECIPIENT_FIELDS = (
    "hashId", "email", "firstName", "lastName", "company", "location",
    "employmentStatus", "jobTitle", "jobFunction", "companySize", "industry",
)


class DashboardApiError(Exception):
    """Verification API answered with an error envelope"""


@dataclass
class VerificationDashboardItem:
    id: str
    panelistId: str
    email: Optional[str] = None
    emailStatus: str = EMAIL_PENDING
    proofStatus: str = PROOF_PENDING
    zkpResult: str = ZKP_PENDING

    @classmethod
    def for_respondent(cls, respondent: Dict[str, Any]) -> "VerificationDashboardItem":
        hash_id = respondent["hashId"]
        return cls(id=f"verification-{hash_id}", panelistId=hash_id, email=respondent.get("email"))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def config_fingerprint(hash_ids: List[str], selected_queries: List[str]) -> str:
    """Order-independent digest of a dashboard configuration"""
    canonical = json.dumps([sorted(set(hash_ids)), sorted(set(selected_queries))])
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# =============================================================================
# LOCAL STATE CACHE
# =============================================================================

class StateCache:
    """Persistent key-less store for one dashboard's state"""

    def load(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def save(self, state: Dict[str, Any]):
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


class MemoryStateCache(StateCache):
    def __init__(self, state: Optional[Dict[str, Any]] = None):
        self._state = json.loads(json.dumps(state)) if state else None

    def load(self) -> Optional[Dict[str, Any]]:
        return json.loads(json.dumps(self._state)) if self._state else None

    def save(self, state: Dict[str, Any]):
        self._state = json.loads(json.dumps(state))

    def clear(self):
        self._state = None


class JsonFileStateCache(StateCache):
    """State kept in a JSON file; read and write errors are logged and ignored"""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable dashboard cache {self.path}: {e}")
            return None
        return state if isinstance(state, dict) else None

    def save(self, state: Dict[str, Any]):
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(state, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(f"Failed to write dashboard cache {self.path}: {e}")

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clear dashboard cache {self.path}: {e}")


# =============================================================================
# VERIFICATION API
# =============================================================================

class DashboardApi:
    """Server operations the dashboard depends on"""

    async def fetch_statuses(self, hash_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    async def clear_statuses(self, hash_ids: List[str]):
        raise NotImplementedError

    async def send_verification_emails(
        self,
        recipients: List[Dict[str, Any]],
        smtp_email: Optional[str] = None,
        smtp_password: Optional[str] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        raise NotImplementedError


class DashboardApiClient(DashboardApi):
    """DashboardApi over the HTTP verification endpoints"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(path, json=payload)

        try:
            body = response.json()
        except ValueError:
            raise DashboardApiError(f"Invalid response from {path} ({response.status_code})")

        if response.is_error or not body.get("success"):
            raise DashboardApiError(body.get("error") or f"Request to {path} failed ({response.status_code})")
        return body

    async def fetch_statuses(self, hash_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        body = await self._post("/api/verification-statuses", {"hashIds": hash_ids})
        return body.get("data") or {}

    async def clear_statuses(self, hash_ids: List[str]):
        await self._post("/api/clear-verification-statuses", {"hashIds": hash_ids})

    async def send_verification_emails(
        self,
        recipients: List[Dict[str, Any]],
        smtp_email: Optional[str] = None,
        smtp_password: Optional[str] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        payload: Dict[str, Any] = {"recipients": recipients}
        if smtp_email and smtp_password:
            payload["smtpEmail"] = smtp_email
            payload["smtpPassword"] = smtp_password
        body = await self._post("/api/send-verification-emails", payload)
        return body.get("data") or {"sent": [], "failed": []}


# =============================================================================
# DASHBOARD STATE
# =============================================================================

class VerificationDashboardState:
    """
    Batched verification progress for one respondent list.

    Items are shown in pages of `batch_size`; the next page is only offered
    once every displayed email has been dispatched.
    """

    def __init__(
        self,
        api: DashboardApi,
        cache: Optional[StateCache] = None,
        batch_size: Optional[int] = None,
    ):
        self.api = api
        self.cache = cache or MemoryStateCache()
        self.batch_size = batch_size or settings.DASHBOARD_BATCH_SIZE
        self.items: List[VerificationDashboardItem] = []
        self.batch_index = 1
        self.last_config: Optional[Dict[str, List[str]]] = None
        self.error: Optional[str] = None
        self._respondents: Dict[str, Dict[str, Any]] = {}
        self._restore()

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def _restore(self):
        state = self.cache.load()
        if not state:
            return

        try:
            last_config = state["lastConfig"]
            if state.get("fingerprint") != config_fingerprint(last_config["hashIds"], last_config["selectedQueries"]):
                raise ValueError("fingerprint mismatch")
            items = [VerificationDashboardItem(**item) for item in state["items"]]
            batch_index = max(1, int(state.get("batchIndex", 1)))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding stale dashboard cache: {e}")
            self.cache.clear()
            return

        self.last_config = last_config
        self.items = items
        self.batch_index = batch_index

    def _persist(self):
        if self.last_config is None:
            return
        self.cache.save({
            "fingerprint": config_fingerprint(self.last_config["hashIds"], self.last_config["selectedQueries"]),
            "lastConfig": self.last_config,
            "batchIndex": self.batch_index,
            "items": [item.to_dict() for item in self.items],
        })

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def has_config_changed(self, hash_ids: List[str], selected_queries: List[str]) -> bool:
        """Set comparison, so reordering alone is not a change"""
        if self.last_config is None:
            return True
        return (
            set(hash_ids) != set(self.last_config["hashIds"])
            or set(selected_queries) != set(self.last_config["selectedQueries"])
        )

    async def initialize(
        self,
        respondents: List[Dict[str, Any]],
        selected_queries: List[str],
    ) -> List[VerificationDashboardItem]:
        """Load (or rebuild) items for the current respondents and queries"""
        self._respondents = {r["hashId"]: r for r in respondents if r.get("hashId")}
        hash_ids = list(self._respondents)

        if self.has_config_changed(hash_ids, selected_queries):
            logger.info(f"Dashboard configuration changed, resetting {len(hash_ids)} items")
            self.cache.clear()
            self.batch_index = 1
            self.items = [VerificationDashboardItem.for_respondent(r) for r in self._respondents.values()]
            self.last_config = {"hashIds": hash_ids, "selectedQueries": list(selected_queries)}
            try:
                await self.api.clear_statuses(hash_ids)
            except (httpx.HTTPError, DashboardApiError) as e:
                self._set_error("Failed to reset verification statuses", e)
        else:
            self._reconcile()

        self._persist()
        await self.refresh_statuses()
        return self.items

    def _reconcile(self):
        retained = [item for item in self.items if item.panelistId in self._respondents]
        known = {item.panelistId for item in retained}
        added = [
            VerificationDashboardItem.for_respondent(respondent)
            for hash_id, respondent in self._respondents.items()
            if hash_id not in known
        ]
        if len(retained) != len(self.items) or added:
            logger.info(f"Reconciled dashboard: dropped {len(self.items) - len(retained)}, added {len(added)}")
        self.items = retained + added

    # -------------------------------------------------------------------------
    # Statuses
    # -------------------------------------------------------------------------

    async def refresh_statuses(self) -> int:
        """Promote items the server reports as verified; returns how many changed"""
        if not self.items:
            return 0

        try:
            statuses = await self.api.fetch_statuses([item.panelistId for item in self.items])
        except (httpx.HTTPError, DashboardApiError) as e:
            self._set_error("Failed to refresh verification statuses", e)
            return 0

        updated = 0
        for item in self.items:
            status = statuses.get(item.panelistId) or {}
            if not status.get("verified"):
                continue
            if item.proofStatus != PROOF_VERIFIED or item.zkpResult != ZKP_PASS:
                updated += 1
            item.proofStatus = PROOF_VERIFIED
            item.zkpResult = ZKP_PASS

        if updated:
            self._persist()
        return updated

    # -------------------------------------------------------------------------
    # Batching
    # -------------------------------------------------------------------------

    def displayed_items(self) -> List[VerificationDashboardItem]:
        return self.items[:self.batch_index * self.batch_size]

    def has_more_items(self) -> bool:
        return len(self.displayed_items()) < len(self.items)

    def pending_in_view(self) -> List[VerificationDashboardItem]:
        return [item for item in self.displayed_items() if item.emailStatus == EMAIL_PENDING]

    def can_load_more(self) -> bool:
        return self.has_more_items() and not self.pending_in_view()

    def load_more(self) -> List[VerificationDashboardItem]:
        """
        Advance to the next batch.

        Raises:
            BatchGateError: a displayed item still has a pending email
        """
        pending = self.pending_in_view()
        if pending:
            raise BatchGateError(f"{len(pending)} email(s) in the current batch have not been sent yet")
        if not self.has_more_items():
            return self.displayed_items()

        self.batch_index += 1
        self._persist()
        return self.displayed_items()

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def _recipient_for(self, item: VerificationDashboardItem) -> Dict[str, Any]:
        respondent = self._respondents.get(item.panelistId, {})
        recipient = {field: respondent.get(field) for field in RECIPIENT_FIELDS if respondent.get(field)}
        recipient["hashId"] = item.panelistId
        recipient["email"] = respondent.get("email") or item.email
        return recipient

    async def send_verification(
        self,
        smtp_email: Optional[str] = None,
        smtp_password: Optional[str] = None,
    ) -> Optional[Dict[str, List[Dict[str, Any]]]]:
        """
        Send emails for displayed items still pending. The sent/failed
        manifest is applied only once the whole response has arrived.
        Returns None when the request itself failed.
        """
        pending = self.pending_in_view()
        if not pending:
            return {"sent": [], "failed": []}

        recipients = [self._recipient_for(item) for item in pending]
        try:
            manifest = await self.api.send_verification_emails(recipients, smtp_email, smtp_password)
        except (httpx.HTTPError, DashboardApiError) as e:
            self._set_error("Failed to send verification emails", e)
            return None

        sent_ids = {entry.get("hashId") for entry in manifest.get("sent", [])}
        failed_ids = {entry.get("hashId") for entry in manifest.get("failed", [])}
        for item in pending:
            if item.panelistId in sent_ids:
                item.emailStatus = EMAIL_SENT
            elif item.panelistId in failed_ids:
                item.emailStatus = EMAIL_FAILED

        self._persist()
        logger.info(f"Dashboard send: {len(sent_ids)} sent, {len(failed_ids)} failed")
        return manifest

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    def _set_error(self, message: str, exc: Exception):
        logger.warning(f"{message}: {exc}")
        self.error = f"{message}: {exc}"

    def dismiss_error(self):
        self.error = None
