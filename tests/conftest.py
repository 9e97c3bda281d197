"""
Pytest configuration and shared fixtures.
"""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.auth import TokenManager
from api.config import APIConfig
from api.database import APIDatabaseService, create_database_engine
from api.main import create_app, get_db_service

TEST_SECRET = "test-secret"


@pytest.fixture
def test_config(tmp_path):
    """Configuration backed by a throwaway SQLite database."""
    return APIConfig(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'bookstore.db'}",
        jwt_secret=TEST_SECRET,
        bcrypt_rounds=4,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def client(test_config):
    """Test client running the full application lifespan against SQLite."""
    app = create_app(test_config)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mock_db_service():
    """Mock database service."""
    return AsyncMock(spec=APIDatabaseService)


@pytest.fixture
def mock_client(test_config, mock_db_service):
    """Test client whose store is replaced by mock_db_service."""
    app = create_app(test_config)
    app.dependency_overrides[get_db_service] = lambda: mock_db_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db_service(test_config):
    """Database service on a fresh SQLite database."""
    service = APIDatabaseService(create_database_engine(test_config))
    await service.create_tables()
    yield service
    await service.dispose()


@pytest.fixture
def token_manager():
    """Token manager sharing the test secret."""
    return TokenManager(secret=TEST_SECRET)


@pytest.fixture
def auth_headers(token_manager):
    """Authorization header carrying a valid token for user 1."""
    return {"Authorization": f"Bearer {token_manager.create_access_token(1)}"}


@pytest.fixture
def sample_book_payload():
    """Create sample book data for testing."""
    return {
        "title": "Dune",
        "author": "Herbert",
        "genre": "SciFi",
        "price": 9.99,
        "stock": 5
    }


@pytest.fixture
def user_headers(client):
    """Register and log in a user through the API; bearer headers for it."""
    email, password = "reader@example.com", "s3cret-pass"
    response = client.post("/register", json={"email": email, "password": password})
    assert response.status_code == 201
    response = client.post("/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}
