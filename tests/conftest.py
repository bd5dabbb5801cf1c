"""Shared test fixtures."""

import os

# settings refuse to load without a JWT secret; must be set before importing the app
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("SYNC_SCHEDULER_ENABLED", "false")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from src.main import app  # noqa: E402


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def _clear_dependency_overrides():
    yield
    app.dependency_overrides.clear()
