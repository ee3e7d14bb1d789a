"""Pytest configuration and shared fixtures."""

import pytest

from flock.core.rbac import AuthorizationGate, PermissionResolver, RoleStore
from flock.core.tagging import TaggingService, TagStore
from flock.db.seed import seed_system_roles
from flock.store import InMemoryTableService


@pytest.fixture
def tables():
    """Empty in-memory record store."""
    return InMemoryTableService()


@pytest.fixture
def role_store(tables):
    return RoleStore(tables)


@pytest.fixture
def system_roles(role_store):
    """System roles seeded into the store, keyed by name."""
    return seed_system_roles(role_store)


@pytest.fixture
def resolver(role_store):
    return PermissionResolver(role_store)


@pytest.fixture
def gate(resolver):
    return AuthorizationGate(resolver)


@pytest.fixture
def tag_store(tables):
    return TagStore(tables)


@pytest.fixture
def tagging(tables, tag_store):
    return TaggingService(tables, tag_store, workers=2)


@pytest.fixture
def sample_seed():
    """Sample seed file contents."""
    return {
        "roles": [
            {
                "name": "worship_team",
                "description": "Worship team coordinators",
                "permissions": ["events:read", "events:checkin", "media:read"],
            },
        ],
        "tags": [
            {"name": "new-friend", "category": "faith"},
            {"name": "long-timer", "category": "attendance"},
        ],
        "tag_rules": [
            {
                "name": "Seekers",
                "tag": "new-friend",
                "field": "faith_status",
                "operator": "equals",
                "value": "seeker",
                "priority": 1,
            },
            {
                "name": "Five years",
                "tag": "long-timer",
                "field": "join_date",
                "operator": "greater_than",
                "value": "1825",
                "condition_type": "date",
            },
        ],
    }
