"""
Tests for the verification dashboard state (batching, caching, status refresh)
"""
import httpx
import pytest

from services.errors import BatchGateError
from services.verification_dashboard import (
    DashboardApi,
    DashboardApiClient,
    DashboardApiError,
    JsonFileStateCache,
    MemoryStateCache,
    VerificationDashboardState,
    config_fingerprint,
)


class FakeDashboardApi(DashboardApi):
    """In-memory verification API"""

    def __init__(self):
        self.statuses = {}
        self.cleared = []
        self.sent_batches = []
        self.failing_emails = set()
        self.offline = False

    async def fetch_statuses(self, hash_ids):
        if self.offline:
            raise httpx.ConnectError("connection refused")
        return {h: self.statuses.get(h, {"verified": False, "proofStatus": "Pending"}) for h in hash_ids}

    async def clear_statuses(self, hash_ids):
        if self.offline:
            raise httpx.ConnectError("connection refused")
        self.cleared.append(list(hash_ids))
        for hash_id in hash_ids:
            self.statuses.pop(hash_id, None)

    async def send_verification_emails(self, recipients, smtp_email=None, smtp_password=None):
        if self.offline:
            raise DashboardApiError("SMTP email and password are required")
        self.sent_batches.append(recipients)
        manifest = {"sent": [], "failed": []}
        for recipient in recipients:
            if recipient["email"] in self.failing_emails:
                manifest["failed"].append({"hashId": recipient["hashId"], "error": "mailbox unavailable"})
            else:
                manifest["sent"].append({"hashId": recipient["hashId"], "email": recipient["email"]})
        return manifest


def _respondents(*hash_ids):
    return [
        {"hashId": h, "email": f"{h.lower()}@example.com", "firstName": h, "jobTitle": "Engineer"}
        for h in hash_ids
    ]


@pytest.fixture
def api():
    return FakeDashboardApi()


def test_config_change_uses_set_equality(api):
    state = VerificationDashboardState(api)
    assert state.has_config_changed(["A"], ["q1"]) is True

    state.last_config = {"hashIds": ["A", "B"], "selectedQueries": ["q1", "q2"]}
    assert state.has_config_changed(["B", "A"], ["q2", "q1"]) is False
    assert state.has_config_changed(["A", "B", "B"], ["q1", "q2"]) is False
    assert state.has_config_changed(["A", "C"], ["q1", "q2"]) is True
    assert state.has_config_changed(["A", "B"], ["q1"]) is True


def test_fingerprint_ignores_order():
    assert config_fingerprint(["A", "B"], ["q1"]) == config_fingerprint(["B", "A"], ["q1"])
    assert config_fingerprint(["A", "B"], ["q1"]) != config_fingerprint(["A", "B"], ["q2"])


@pytest.mark.asyncio
async def test_initialize_builds_pending_items(api):
    state = VerificationDashboardState(api, batch_size=5)
    items = await state.initialize(_respondents("A", "B"), ["q1"])

    assert [item.to_dict() for item in items] == [
        {
            "id": "verification-A",
            "panelistId": "A",
            "email": "a@example.com",
            "emailStatus": "Pending",
            "proofStatus": "Pending",
            "zkpResult": "Pending",
        },
        {
            "id": "verification-B",
            "panelistId": "B",
            "email": "b@example.com",
            "emailStatus": "Pending",
            "proofStatus": "Pending",
            "zkpResult": "Pending",
        },
    ]
    assert api.cleared == [["A", "B"]]


@pytest.mark.asyncio
async def test_batch_gate_blocks_until_pending_emails_resolve(api):
    """One pending email in view keeps the next batch locked"""
    hash_ids = [f"R{i}" for i in range(12)]
    api.failing_emails.add("r4@example.com")
    state = VerificationDashboardState(api, batch_size=5)
    await state.initialize(_respondents(*hash_ids), ["q1"])

    assert len(state.displayed_items()) == 5
    assert state.can_load_more() is False
    with pytest.raises(BatchGateError):
        state.load_more()

    manifest = await state.send_verification()

    assert len(manifest["sent"]) == 4
    assert [entry["hashId"] for entry in manifest["failed"]] == ["R4"]
    assert state.items[4].emailStatus == "Failed"
    assert [r["hashId"] for r in api.sent_batches[0]] == hash_ids[:5]
    assert api.sent_batches[0][0]["jobTitle"] == "Engineer"

    assert state.can_load_more() is True
    displayed = state.load_more()
    assert state.batch_index == 2
    assert len(displayed) == 10

    # Only the newly displayed pending items are sent next
    await state.send_verification()
    assert [r["hashId"] for r in api.sent_batches[1]] == hash_ids[5:10]


@pytest.mark.asyncio
async def test_load_more_on_last_batch_is_a_no_op(api):
    state = VerificationDashboardState(api, batch_size=5)
    await state.initialize(_respondents("A", "B"), ["q1"])
    await state.send_verification()

    assert state.has_more_items() is False
    assert len(state.load_more()) == 2
    assert state.batch_index == 1


@pytest.mark.asyncio
async def test_config_change_discards_cached_progress(api):
    cache = MemoryStateCache()
    state = VerificationDashboardState(api, cache=cache, batch_size=2)
    await state.initialize(_respondents("A", "B", "C"), ["q1"])
    await state.send_verification()
    state.load_more()
    api.statuses["A"] = {"verified": True, "proofStatus": "Verified"}
    await state.refresh_statuses()
    assert state.items[0].proofStatus == "Verified"

    # Reload with a different respondent set
    reloaded = VerificationDashboardState(api, cache=cache, batch_size=2)
    assert reloaded.batch_index == 2
    items = await reloaded.initialize(_respondents("A", "B", "D"), ["q1"])

    assert [item.panelistId for item in items] == ["A", "B", "D"]
    assert all(item.emailStatus == "Pending" for item in items)
    assert all(item.proofStatus == "Pending" for item in items)
    assert reloaded.batch_index == 1
    assert api.cleared[-1] == ["A", "B", "D"]
    assert cache.load()["lastConfig"]["hashIds"] == ["A", "B", "D"]


@pytest.mark.asyncio
async def test_same_config_restores_cached_progress(api):
    cache = MemoryStateCache()
    state = VerificationDashboardState(api, cache=cache, batch_size=2)
    await state.initialize(_respondents("A", "B", "C"), ["q1"])
    await state.send_verification()

    reloaded = VerificationDashboardState(api, cache=cache, batch_size=2)
    items = await reloaded.initialize(_respondents("C", "B", "A"), ["q1"])

    assert [item.emailStatus for item in items] == ["Sent", "Sent", "Pending"]
    assert api.cleared == [["A", "B", "C"]]


@pytest.mark.asyncio
async def test_verified_status_never_regresses(api):
    state = VerificationDashboardState(api, batch_size=5)
    await state.initialize(_respondents("A", "B"), ["q1"])

    api.statuses["A"] = {"verified": True, "proofStatus": "Verified"}
    assert await state.refresh_statuses() == 1
    assert state.items[0].zkpResult == "Pass"

    # Server forgets A (e.g. statuses cleared elsewhere)
    api.statuses.clear()
    assert await state.refresh_statuses() == 0
    assert state.items[0].proofStatus == "Verified"
    assert state.items[0].zkpResult == "Pass"
    assert state.items[1].proofStatus == "Pending"


@pytest.mark.asyncio
async def test_network_error_sets_dismissible_error(api):
    state = VerificationDashboardState(api, batch_size=5)
    await state.initialize(_respondents("A"), ["q1"])

    api.offline = True
    assert await state.send_verification() is None
    assert state.items[0].emailStatus == "Pending"
    assert "Failed to send verification emails" in state.error

    assert await state.refresh_statuses() == 0
    assert "Failed to refresh verification statuses" in state.error

    state.dismiss_error()
    assert state.error is None


@pytest.mark.asyncio
async def test_reconcile_keeps_progress_for_remaining_respondents(api):
    state = VerificationDashboardState(api, batch_size=5)
    await state.initialize(_respondents("A", "B"), ["q1"])
    await state.send_verification()

    # Respondent list grew while one cached item was lost
    state._respondents = {r["hashId"]: r for r in _respondents("A", "B", "C")}
    state.items = state.items[:1]
    state._reconcile()

    assert [(item.panelistId, item.emailStatus) for item in state.items] == [
        ("A", "Sent"),
        ("B", "Pending"),
        ("C", "Pending"),
    ]


def test_file_cache_round_trip(tmp_path):
    cache = JsonFileStateCache(tmp_path / "dashboard" / "state.json")
    assert cache.load() is None

    cache.save({"batchIndex": 3})
    assert cache.load() == {"batchIndex": 3}

    cache.clear()
    assert cache.load() is None
    cache.clear()


def test_unreadable_file_cache_is_ignored(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert JsonFileStateCache(path).load() is None


def test_tampered_cache_is_discarded(api):
    cache = MemoryStateCache({
        "fingerprint": "stale",
        "lastConfig": {"hashIds": ["A"], "selectedQueries": ["q1"]},
        "batchIndex": 4,
        "items": [],
    })

    state = VerificationDashboardState(api, cache=cache)

    assert state.last_config is None
    assert state.batch_index == 1
    assert cache.load() is None


@pytest.mark.asyncio
async def test_api_client_against_verification_endpoints(app, db):
    client = DashboardApiClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app))

    statuses = await client.fetch_statuses(["A", "B"])
    assert statuses["A"] == {"verified": False, "proofStatus": "Pending"}

    await client.clear_statuses(["A"])

    with pytest.raises(DashboardApiError) as exc_info:
        await client.send_verification_emails([])
    assert str(exc_info.value) == "Recipients list is required"


@pytest.mark.asyncio
async def test_api_client_rejects_non_json_response():
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))
    client = DashboardApiClient(base_url="http://panel", transport=transport)

    with pytest.raises(DashboardApiError):
        await client.fetch_statuses(["A"])

