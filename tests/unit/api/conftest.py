"""Fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from flock.api.deps import get_tables
from flock.api.main import app
from flock.core.config import get_settings
from tests.factories import auth_headers, create_user


@pytest.fixture
def inline_tagging(monkeypatch):
    """Run tag recomputes in-process instead of queueing them."""
    monkeypatch.setattr(get_settings(), "tag_recompute_inline", True)


@pytest.fixture
def queued(monkeypatch):
    """Capture queued Celery tasks instead of sending them to the broker."""
    from flock.workers import tag_tasks

    calls = []
    monkeypatch.setattr(get_settings(), "tag_recompute_inline", False)
    monkeypatch.setattr(tag_tasks.apply_member_tags, "delay", lambda *a: calls.append(("apply", a)))
    monkeypatch.setattr(tag_tasks.recompute_all_tags, "delay", lambda *a: calls.append(("recompute", a)))
    return calls


@pytest.fixture
def client(tables, system_roles):
    """Test client over the in-memory store with system roles seeded."""
    app.dependency_overrides[get_tables] = lambda: tables
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin(tables):
    return auth_headers(create_user(tables, role="admin"))


@pytest.fixture
def staff(tables):
    return auth_headers(create_user(tables, role="staff"))


@pytest.fixture
def volunteer(tables):
    return auth_headers(create_user(tables, role="volunteer"))
