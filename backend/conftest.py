"""
Shared pytest fixtures: in-memory SQLite database, API client and a
scripted LinkedIn provider
"""
import os
import tempfile

# Settings are read at import time, so the environment must be set first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "false"
os.environ["LINKEDIN_CLIENT_ID"] = "test-client-id"
os.environ["LINKEDIN_CLIENT_SECRET"] = "test-client-secret"
os.environ["FRONTEND_URL"] = "http://localhost:3000"
os.environ["SMTP_EMAIL"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="proofpanel-uploads-")

import httpx
import pytest
from fastapi.testclient import TestClient

import database
import models  # noqa: F401  (registers tables on Base.metadata)
from database import Base
from auth.linkedin import LinkedInClient


@pytest.fixture
def db():
    """Fresh schema and session per test"""
    Base.metadata.create_all(bind=database.engine)
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def app(db):
    from main import app as fastapi_app
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


class FakeLinkedInProvider:
    """
    Scripted token and userinfo endpoints served through httpx.MockTransport.
    Set `token_error` or `userinfo_status` to simulate provider failures.
    """

    def __init__(self):
        self.token_error = None
        self.userinfo_status = 200
        self.id_token = None
        self.profile = {
            "sub": "li-123",
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "picture": "https://media.example.com/ada.jpg",
            "email_verified": True,
        }
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/accessToken"):
            if self.token_error:
                return httpx.Response(400, json={
                    "error": "invalid_request",
                    "error_description": self.token_error,
                })
            payload = {"access_token": "access-abc", "expires_in": 3600}
            if self.id_token:
                payload["id_token"] = self.id_token
            return httpx.Response(200, json=payload)
        if request.url.path.endswith("/userinfo"):
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status, json={"message": "Unauthorized"})
            return httpx.Response(200, json=self.profile)
        return httpx.Response(404)

    def client(self, **kwargs) -> LinkedInClient:
        return LinkedInClient(transport=httpx.MockTransport(self.handler), **kwargs)


@pytest.fixture
def linkedin_provider():
    return FakeLinkedInProvider()
