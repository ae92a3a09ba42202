"""
Tests for health and readiness endpoints.

CRITICAL: /health must return 200 without authentication so the platform
marks the service healthy; readiness must report a missing users table.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import Mock

from src.api.routes import health
from src.platform.db_readiness import REQUIRED_AUTH_TABLES, check_required_tables


def _client(session_factory) -> TestClient:
    app = FastAPI()
    app.state.session_factory = session_factory
    app.include_router(health.router)
    return TestClient(app)


@pytest.fixture
def empty_session_factory():
    """SQLite database with no tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


class TestHealthEndpoint:

    def test_health_returns_200(self, session_factory):
        response = _client(session_factory).get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_health_no_auth_required(self, session_factory):
        response = _client(session_factory).get("/health")

        assert response.status_code != 401
        assert response.headers["content-type"] == "application/json"


class TestReadiness:

    def test_ready_when_users_table_exists(self, session_factory):
        response = _client(session_factory).get("/api/health/readiness")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["auth_tables"]["missing"] == []
        assert data["checks"]["auth_tables"]["required"] == list(REQUIRED_AUTH_TABLES)

    def test_not_ready_when_users_table_missing(self, empty_session_factory):
        response = _client(empty_session_factory).get("/api/health/readiness")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "not_ready"
        assert data["checks"]["auth_tables"]["missing"] == ["users"]


class TestCheckRequiredTables:

    def test_reports_each_missing_table(self, db_session):
        result = check_required_tables(db_session, ["users", "orders"])

        assert result.ready is False
        assert result.missing_tables == ["orders"]
        assert result.checked_tables == ["users", "orders"]

    def test_database_error_propagates(self):
        from sqlalchemy.exc import OperationalError

        session = Mock()
        session.connection.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        with pytest.raises(OperationalError):
            check_required_tables(session, ["users"])
