"""
Tests for the HTTP surface in main.py
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from contact_repository import SqliteContactRepository
from main import app, configure_logging, get_repository


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def client(repository):
    """Test client wired to the temporary database."""
    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def broken_client(tmp_path):
    """Test client whose database has no Contact table."""
    repository = SqliteContactRepository(str(tmp_path / "uninitialised.db"))
    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# /identify
# =============================================================================

@pytest.mark.integration
class TestIdentifyEndpoint:

    def test_new_contact(self, client):
        response = client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})

        assert response.status_code == 200
        contact = response.json()["contact"]
        assert contact["emails"] == ["lorraine@hillvalley.edu"]
        assert contact["phoneNumbers"] == ["123456"]
        assert contact["secondaryContactIds"] == []

    def test_secondary_and_merge_flow(self, client):
        first = client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"}).json()
        second = client.post("/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"}).json()
        third = client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"}).json()
        merged = client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "123456"}).json()

        primary_id = first["contact"]["primaryContactId"]
        assert second["contact"]["primaryContactId"] == primary_id
        assert merged["contact"] == {
            "primaryContactId": primary_id,
            "emails": ["george@hillvalley.edu", "lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
            "phoneNumbers": ["123456", "919191"],
            "secondaryContactIds": sorted(
                second["contact"]["secondaryContactIds"] + [third["contact"]["primaryContactId"]]
            ),
        }

    def test_numeric_phone_number_is_accepted(self, client):
        response = client.post("/identify", json={"email": None, "phoneNumber": 123456})

        assert response.status_code == 200
        assert response.json()["contact"]["phoneNumbers"] == ["123456"]

    @pytest.mark.parametrize("body", [{}, {"email": None, "phoneNumber": None}, {"email": "", "phoneNumber": ""}])
    def test_missing_contact_info_is_400(self, client, body):
        response = client.post("/identify", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Either email or phoneNumber must be provided"}

    def test_malformed_body_is_400(self, client):
        response = client.post("/identify", json={"email": ["not", "a", "string"]})

        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_boolean_phone_number_is_400(self, client, all_contacts):
        response = client.post("/identify", json={"email": None, "phoneNumber": True})

        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"
        assert all_contacts() == []

    def test_storage_failure_is_500(self, broken_client):
        response = broken_client.post("/identify", json={"email": "doc@hillvalley.edu"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


# =============================================================================
# Status endpoints
# =============================================================================

@pytest.mark.integration
class TestStatusEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "message" in response.json()

    def test_health_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_health_unavailable(self, broken_client):
        response = broken_client.get("/health")
        assert response.status_code == 503
        assert response.json() == {"status": "unavailable"}


# =============================================================================
# Logging
# =============================================================================

@pytest.mark.unit
def test_configure_logging_sets_level_and_format():
    with patch("main.logging.basicConfig") as basic_config:
        configure_logging("DEBUG")

    basic_config.assert_called_once_with(
        level="DEBUG",
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
