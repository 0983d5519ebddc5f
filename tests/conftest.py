"""
Pytest configuration and shared fixtures.

Test Categories:
- unit: engine and repository tests against a throwaway SQLite file
- integration: HTTP tests through FastAPI's TestClient

Run categories:
- pytest -m unit
- pytest -m integration
- pytest
"""
from datetime import datetime

import pytest

from contact_repository import SqliteContactRepository
from db_models import ContactRecord
from db_setup import get_db_connection, init_db
from identity import IdentityEngine


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast tests against a temporary database")
    config.addinivalue_line("markers", "integration: HTTP tests through the FastAPI app")


@pytest.fixture
def db_path(tmp_path):
    """Path of an initialised, empty contacts database."""
    path = str(tmp_path / "contacts.db")
    init_db(path)
    return path


@pytest.fixture
def repository(db_path):
    return SqliteContactRepository(db_path)


@pytest.fixture
def engine(repository):
    return IdentityEngine(repository)


@pytest.fixture
def seed(repository):
    """Insert a contact with a fixed creation time."""
    def _seed(email=None, phone=None, precedence="primary", linked_id=None, created_at="2023-04-01 00:00:00"):
        return repository.create(
            email=email,
            phone_number=phone,
            link_precedence=precedence,
            linked_id=linked_id,
            created_at=datetime.fromisoformat(created_at),
        )
    return _seed


@pytest.fixture
def all_contacts(db_path):
    """Every stored contact, by id."""
    def _all():
        conn = get_db_connection(db_path)
        try:
            rows = conn.execute("SELECT * FROM Contact ORDER BY id").fetchall()
        finally:
            conn.close()
        return [ContactRecord(**dict(row)) for row in rows]
    return _all
