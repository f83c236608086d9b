"""
API tests for accounts, professional categories, studies and the survey feed
"""
import random

import pytest
from sqlalchemy.orm import Session

from auth.jwt_handler import decode_token
from auth.password import hash_password, verify_password
from models import User
from routers.studies import compute_match_score
from services.validation import determine_target_category


def _signup(client, **overrides):
    payload = {
        "email": "Panelist@Example.com",
        "password": "secret123",
        "firstName": "Pat",
        "lastName": "Smith",
        "role": "panelist",
    }
    payload.update(overrides)
    return client.post("/api/auth/signup", json=payload)


def _create_study(client, **overrides):
    payload = {
        "name": "Developer tooling survey",
        "audience": "Software developers at B2B companies",
        "targetCompletes": 100,
        "surveyMethod": "external",
    }
    payload.update(overrides)
    return client.post("/api/studies", json=payload)


# =============================================================================
# ACCOUNTS
# =============================================================================

def test_signup_creates_account(client, db: Session):
    response = _signup(client)

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Account created successfully"
    assert body["data"]["email"] == "panelist@example.com"
    assert body["data"]["professionalCategories"] == []
    assert "password" not in body["data"]

    user = db.query(User).filter(User.id == body["data"]["id"]).first()
    assert user.password_hash != "secret123"
    assert verify_password("secret123", user.password_hash)


def test_same_email_allowed_once_per_role(client):
    assert _signup(client).status_code == 201
    assert _signup(client, role="insight_company").status_code == 201

    duplicate = _signup(client, email="panelist@example.com")
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "An account with this email and role already exists"


@pytest.mark.parametrize("overrides,error", [
    ({"lastName": None}, "All fields are required: email, password, firstName, lastName, role"),
    ({"role": "admin"}, "Invalid role. Must be one of: panel_company, insight_company, panelist"),
    ({"email": "not-an-email"}, "Invalid email format"),
    ({"password": "12345"}, "Password must be at least 6 characters long"),
])
def test_signup_validation(client, overrides, error):
    response = _signup(client, **overrides)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": error}


def test_signin_returns_access_token(client):
    user_id = _signup(client).json()["data"]["id"]

    response = client.post("/api/auth/signin", json={
        "email": "panelist@example.com",
        "password": "secret123",
        "role": "panelist",
    })

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == user_id
    token = decode_token(data["accessToken"])
    assert token.user_id == user_id
    assert token.role == "panelist"


def test_signin_failures(client):
    _signup(client)

    wrong_role = client.post("/api/auth/signin", json={
        "email": "panelist@example.com", "password": "secret123", "role": "panel_company",
    })
    assert wrong_role.status_code == 401
    assert wrong_role.json()["error"] == "No account found with this email and role. Please sign up first."

    wrong_password = client.post("/api/auth/signin", json={
        "email": "panelist@example.com", "password": "nope-nope", "role": "panelist",
    })
    assert wrong_password.status_code == 401
    assert wrong_password.json()["error"] == "Invalid password"

    missing = client.post("/api/auth/signin", json={"email": "panelist@example.com"})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Email, password, and role are required"


def test_password_hash_is_salted():
    first = hash_password("secret123")
    second = hash_password("secret123")

    assert first != second
    assert first.startswith("pbkdf2_sha256$")
    assert verify_password("secret123", second)
    assert not verify_password("secret124", first)
    assert not verify_password("secret123", "garbage")


def test_decode_rejects_tampered_token():
    assert decode_token("not.a.token") is None


def test_me_returns_account_for_bearer_token(client):
    user_id = _signup(client).json()["data"]["id"]
    token = client.post("/api/auth/signin", json={
        "email": "panelist@example.com",
        "password": "secret123",
        "role": "panelist",
    }).json()["data"]["accessToken"]

    response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["data"]["id"] == user_id
    assert response.json()["data"]["role"] == "panelist"


@pytest.mark.parametrize("headers,error", [
    ({}, "Not authenticated"),
    ({"Authorization": "Bearer not.a.token"}, "Invalid or expired token"),
])
def test_me_requires_valid_token(client, headers, error):
    response = client.get("/api/users/me", headers=headers)

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": error}
    assert response.headers["WWW-Authenticate"] == "Bearer"


# =============================================================================
# PROFESSIONAL CATEGORIES
# =============================================================================

def test_update_categories(client):
    user_id = _signup(client).json()["data"]["id"]

    response = client.patch(f"/api/users/{user_id}/categories", json={
        "professionalCategories": ["technology", "b2b"],
    })

    assert response.status_code == 200
    assert response.json()["message"] == "Professional categories updated successfully"
    assert client.get(f"/api/users/{user_id}").json()["data"]["professionalCategories"] == ["technology", "b2b"]


def test_update_categories_validation(client):
    user_id = _signup(client).json()["data"]["id"]

    missing = client.patch(f"/api/users/{user_id}/categories", json={})
    assert missing.status_code == 400
    assert missing.json()["error"] == "professionalCategories array is required"

    invalid = client.patch(f"/api/users/{user_id}/categories", json={"professionalCategories": ["gaming"]})
    assert invalid.status_code == 400
    assert invalid.json()["error"].startswith("Invalid categories: gaming.")

    unknown = client.get("/api/users/00000000-0000-4000-8000-000000000000")
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "User not found"


# =============================================================================
# STUDIES
# =============================================================================

def test_create_study_defaults(client):
    response = _create_study(client, tags=["dev", "saas"], createdBy="not-a-uuid")

    assert response.status_code == 201
    study = response.json()["data"]
    assert study["cpi"] == 7.5
    assert study["total_cost"] == 750.0
    assert study["payout"] == 4.5
    assert study["status"] == "active"
    assert study["launched_at"] is not None
    assert study["target_category"] == "technology"
    assert study["company_name"] == "Research Company"
    assert study["survey_length"] == 15
    assert study["created_by"] is None
    assert sorted(study["tags"]) == ["dev", "saas"]


def test_create_study_keeps_existing_creator(client):
    user_id = _signup(client, role="insight_company").json()["data"]["id"]

    study = _create_study(client, createdBy=user_id, status="draft", cpi=10).json()["data"]

    assert study["created_by"] == user_id
    assert study["launched_at"] is None
    assert study["payout"] == 6.0
    assert study["total_cost"] == 1000.0

    listed = client.get("/api/studies", params={"createdBy": user_id}).json()["data"]
    assert [s["id"] for s in listed] == [study["id"]]


def test_create_study_validation(client):
    missing = _create_study(client, surveyMethod=None)
    assert missing.status_code == 400
    assert missing.json()["error"] == "Required fields: name, audience, targetCompletes, surveyMethod"

    bad_category = _create_study(client, targetCategory="gaming")
    assert bad_category.status_code == 400
    assert bad_category.json()["error"].startswith("Invalid targetCategory")


def test_patch_study_status(client):
    study_id = _create_study(client, status="draft").json()["data"]["id"]

    response = client.patch(f"/api/studies/{study_id}", json={"status": "completed", "currentCompletes": 100})

    assert response.status_code == 200
    study = response.json()["data"]
    assert study["status"] == "completed"
    assert study["completed_at"] is not None
    assert study["current_completes"] == 100

    assert client.get("/api/studies/missing").status_code == 404


@pytest.mark.parametrize("audience,explicit,expected", [
    ("Hospital medical staff", None, "healthcare"),
    ("Retail investors in finance", None, "financial"),
    ("Car owners", None, "vehicle"),
    ("General consumers", None, "all"),
    ("Car owners", "b2b", "b2b"),
])
def test_target_category_derivation(audience, explicit, expected):
    assert determine_target_category(audience, explicit) == expected


# =============================================================================
# SURVEY FEED
# =============================================================================

def _panelist_with_categories(client, categories):
    user_id = _signup(client, email=f"{'-'.join(categories) or 'none'}@example.com").json()["data"]["id"]
    client.patch(f"/api/users/{user_id}/categories", json={"professionalCategories": categories})
    return user_id


def test_available_surveys_filtered_by_category(client):
    _create_study(client, name="Tech", audience="Developers", targetCategory="technology")
    _create_study(client, name="Health", audience="Nurses", targetCategory="healthcare", isUrgent=True)
    _create_study(client, name="Everyone", audience="General consumers")
    _create_study(client, name="Paused", audience="Developers", status="paused")

    tech_user = _panelist_with_categories(client, ["technology"])
    titles = {s["title"] for s in client.get("/api/surveys/available", params={"userId": tech_user}).json()["data"]}
    assert titles == {"Tech", "Everyone"}

    driver = _panelist_with_categories(client, ["vehicle"])
    feed = client.get("/api/surveys/available", params={"userId": driver}).json()["data"]
    assert {s["title"] for s in feed} == {"Tech", "Health", "Everyone"}
    assert feed[0]["title"] == "Health"
    assert feed[0]["urgent"] is True
    assert feed[0]["duration"] == "15 min"
    assert all(80 <= s["match"] <= 94 for s in feed if s["targetCategory"] != "all")

    anonymous = client.get("/api/surveys/available").json()["data"]
    assert len(anonymous) == 3
    assert all(85 <= s["match"] <= 99 for s in anonymous)


@pytest.mark.parametrize("target,categories,low,high", [
    ("technology", [], 85, 99),
    ("all", ["technology"], 85, 94),
    ("technology", ["technology"], 92, 99),
    ("healthcare", ["vehicle"], 80, 94),
    ("healthcare", ["technology"], 75, 84),
])
def test_match_score_ranges(target, categories, low, high):
    rng = random.Random(42)
    scores = [compute_match_score(target, categories, rng) for _ in range(50)]
    assert all(low <= score <= high for score in scores)
