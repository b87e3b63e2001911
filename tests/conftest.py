"""
Pytest fixtures and test configuration for jobboard tests.
"""

from typing import Optional

import pytest
import pytest_asyncio

from factories import APPS, OWNER_ID, BoardBuilder
from jobboard.config import BoardSettings
from jobboard.gateway import InMemoryStoreGateway
from jobboard.identity import CurrentUser, StaticIdentity
from jobboard.service import JobBoardService


@pytest.fixture
def gateway():
    """In-memory store with the (job_id, applicant_id) unique constraint."""
    return InMemoryStoreGateway(unique_constraints={APPS: [("job_id", "applicant_id")]})


@pytest.fixture
def board(gateway):
    return BoardBuilder(gateway)


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return BoardSettings(_env_file=None, reconcile_delay_seconds=0.01)


@pytest.fixture
def owner():
    return CurrentUser(id=OWNER_ID, email="owner@example.com")


@pytest_asyncio.fixture
async def make_service(gateway, settings):
    """Factory for services acting as a given user; pending refreshes are cancelled afterwards."""
    services = []

    def _make(user: Optional[CurrentUser], use_cache: bool = True, **kwargs) -> JobBoardService:
        service = JobBoardService(
            gateway, StaticIdentity(user), settings=settings, use_cache=use_cache, **kwargs
        )
        services.append(service)
        return service

    yield _make
    for service in services:
        await service.aclose()
