"""Fixtures for API tests."""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

import sessionward
from sessionward.common.config import Config
from sessionward.web.main import create_app
from sessionward.web.settings import APISettings


@pytest.fixture
def api_settings(jwt_secret: str) -> APISettings:
    """Provide API settings for testing."""
    return APISettings(
        host="127.0.0.1",
        port=8000,
        debug=False,
        allowed_origins=["http://localhost:3000"],
        log_requests=False,  # Reduce noise in tests
        jwt_secret=jwt_secret,
    )


@pytest.fixture
def api_config(test_config: Config) -> Generator[Config, None, None]:
    """Install the test configuration as the package configuration."""
    sessionward._config = test_config
    sessionward._repository = None
    yield test_config
    sessionward._config = None
    sessionward._repository = None


@pytest.fixture
def test_app(api_settings: APISettings, api_config: Config, clock):
    """
    Provide a FastAPI application sharing the manual test clock.

    The lifespan opens the test database when the TestClient starts.
    """
    app = create_app(settings=api_settings)
    app.state.clock = clock
    return app


@pytest.fixture
def test_app_client(test_app) -> Generator[TestClient, None, None]:
    """Provide a test client with the application lifespan running."""
    with TestClient(test_app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def signup_payload() -> dict:
    """Provide a valid signup request body."""
    return {
        "name": "Alice",
        "email": "alice@example.com",
        "password": "Secure123!",
    }


@pytest.fixture
def signed_up(test_app_client: TestClient, signup_payload: dict) -> dict:
    """Register Alice and return the token response."""
    response = test_app_client.post("/auth/signup", json=signup_payload)
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def auth_headers(signed_up: dict) -> dict:
    return {"Authorization": f"Bearer {signed_up['access_token']}"}

