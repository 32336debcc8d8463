"""Pytest configuration and fixtures for sekolah-rbac tests.

Every test gets fresh engines, stores and apps; nothing is shared between
tests except the immutable permission catalog.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from sekolah_rbac.auth.audit import AuditTrail
from sekolah_rbac.auth.custom_roles import CustomRoleStore
from sekolah_rbac.auth.engine import PermissionEngine
from sekolah_rbac.auth.route_guard import DEFAULT_ROUTES, RouteGuard
from sekolah_rbac.config import Settings
from sekolah_rbac.main import create_app
from sekolah_rbac.storage.blobs import MemoryBlobStorage


# ── Engine Fixtures ──────────────────────────────────────────────

@pytest.fixture
def storage() -> MemoryBlobStorage:
    return MemoryBlobStorage()


@pytest.fixture
def role_store(storage: MemoryBlobStorage) -> CustomRoleStore:
    return CustomRoleStore(storage)


@pytest.fixture
def engine(role_store: CustomRoleStore) -> PermissionEngine:
    return PermissionEngine(audit=AuditTrail(max_entries=1000), custom_roles=role_store)


@pytest.fixture
def guard(engine: PermissionEngine) -> RouteGuard:
    return RouteGuard(engine)


@pytest.fixture
def default_guard(engine: PermissionEngine) -> RouteGuard:
    return RouteGuard(engine, DEFAULT_ROUTES)


# ── API Fixtures ─────────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        storage_backend="memory",
        audit_max_entries=50,
    )


@pytest.fixture
def app(test_settings: Settings, storage: MemoryBlobStorage):
    return create_app(test_settings, storage=storage)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to a fresh app instance."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_headers() -> dict:
    return {"X-User-Role": "admin", "X-User-Id": "admin-1"}


@pytest.fixture
def kepsek_headers() -> dict:
    return {"X-User-Role": "teacher", "X-User-Extra-Role": "kepsek", "X-User-Id": "kepsek-1"}


@pytest.fixture
def student_headers() -> dict:
    return {"X-User-Role": "student", "X-User-Id": "student-1"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "integration: Integration tests")
