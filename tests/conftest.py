"""
Pytest configuration and shared fixtures for Rhizome tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that sleep or run thread pools

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not slow"        # Skip slow tests
- pytest                      # All tests
"""
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from rhizome.services.graph_store import GraphStore
from rhizome.services.models import Encounter, Person, Workspace


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (thread pools, retry backoff)")


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed reference instant so computations are reproducible."""
    return NOW


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        yield f.name


@pytest.fixture
def store(temp_db):
    """Create a GraphStore with temp database."""
    return GraphStore(db_path=temp_db)


@pytest.fixture
def workspace(store):
    """A single workspace owned by alice@acme.com."""
    return store.add_workspace(Workspace(id="ws1", name="Alice", owner_id="alice@acme.com"))


@pytest.fixture
def make_person(store):
    """Factory: persist a person in a workspace."""
    def _make(tenant_id, full_name, owner_id="alice@acme.com", **kwargs):
        return store.add_person(Person(
            tenant_id=tenant_id,
            owner_id=owner_id,
            full_name=full_name,
            **kwargs,
        ))
    return _make


@pytest.fixture
def make_encounter(store):
    """Factory: persist an encounter linked to the given people."""
    def _make(tenant_id, person_ids, kind="meeting", occurred_at=None, owner_id="alice@acme.com"):
        return store.add_encounter(
            Encounter(
                tenant_id=tenant_id,
                owner_id=owner_id,
                kind=kind,
                occurred_at=occurred_at or NOW - timedelta(days=1),
            ),
            person_ids,
        )
    return _make
