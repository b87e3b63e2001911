"""Pytest configuration and fixtures for the backend API."""

import itertools
import os
import secrets

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)

from app.database import get_gateway  # noqa: E402
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from jobboard.config import BoardSettings, get_board_settings  # noqa: E402
from jobboard.gateway import InMemoryStoreGateway  # noqa: E402

from accounts import OWNER_ID, SEEKER_ID, STRANGER_ID, auth_headers_for  # noqa: E402


@pytest.fixture
def gateway():
    """In-memory store standing in for Supabase."""
    return InMemoryStoreGateway(
        unique_constraints={"job_applications": [("job_id", "applicant_id")]}
    )


@pytest.fixture
def client(gateway):
    """Create a test client wired to the in-memory store."""
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_board_settings] = lambda: BoardSettings(_env_file=None)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Rate limits are exercised explicitly in test_rate_limit.py."""
    limiter.enabled = False
    yield
    limiter.enabled = True
    limiter.reset()


@pytest.fixture
def owner_headers():
    return auth_headers_for(OWNER_ID, "owner@example.com")


@pytest.fixture
def seeker_headers():
    return auth_headers_for(SEEKER_ID, "seeker@example.com")


@pytest.fixture
def stranger_headers():
    return auth_headers_for(STRANGER_ID)


@pytest.fixture
def seed_job(gateway):
    """Insert a job row directly; returns its id."""

    def _seed(owner_id: str = OWNER_ID, **overrides) -> str:
        row = {
            "user_id": owner_id,
            "title": "Delivery Rider",
            "organization_name": "QuickMart",
            "city": "Bengaluru",
            "address": "Indiranagar",
            "location": "Bengaluru, Indiranagar",
            "contact_number": "9876543210",
            "amount": "650",
            "duration_type": "daily",
            "job_type": "delivery",
            "description": None,
            "requires_resume": False,
            "is_active": True,
            "accepted_application_id": None,
        }
        row.update(overrides)
        return gateway.seed("jobs", row)

    return _seed


@pytest.fixture
def seed_application(gateway):
    """Insert an application row directly; returns its id."""
    counter = itertools.count(1)

    def _seed(job_id: str, applicant_id: str | None = None, status: str = "pending", **overrides):
        applicant_id = applicant_id or f"usr_TEST_APPLICANT_{next(counter)}"
        row = {
            "job_id": job_id,
            "applicant_id": applicant_id,
            "applicant_name": "Test Applicant",
            "applicant_email": "applicant@example.com",
            "applicant_phone": "9123456780",
            "applicant_location": "Bengaluru",
            "message": "I have my own bike",
            "resume_url": None,
            "status": status,
        }
        row.update(overrides)
        return gateway.seed("job_applications", row)

    return _seed
