"""
AgriBuddy Test Fixtures
Every test gets its own app (fresh in-memory storage) running in simulation mode.
"""
import pytest
from typing import Dict
from fastapi.testclient import TestClient

from core.config import Settings
from server import create_app


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        OPENAI_API_KEY="",
        USE_SIMULATION=True,
        UPLOAD_PATH=tmp_path / "uploads",
        BCRYPT_ROUNDS=4,
        SEED_DEMO_DATA=False,
        WS_VOICE_COOLDOWN_MS=0,
        MAX_UPLOAD_MB=1,
    )


@pytest.fixture
def app(test_settings):
    return create_app(test_settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def register_user(client: TestClient, username: str, user_type: str = "farmer", password: str = "secret123") -> Dict[str, str]:
    """Register a user and return bearer headers for them"""
    response = client.post("/api/auth/register", json={
        "username": username,
        "password": password,
        "name": username.title(),
        "userType": user_type,
        "location": "Warangal",
    })
    assert response.status_code == 201, response.text
    # Tests act as several users at once, so identify by header only
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def farmer(client) -> Dict[str, str]:
    return register_user(client, "ravi_farmer", "farmer")


@pytest.fixture
def buyer(client) -> Dict[str, str]:
    return register_user(client, "sita_buyer", "consumer")


@pytest.fixture
def product(client, farmer) -> Dict:
    response = client.post("/api/products", headers=farmer, json={
        "title": "Organic Rice",
        "description": "Traditional paddy, 50kg bags",
        "price": 100,
        "category": "grains",
    })
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def register(client):
    """Factory fixture: register(username, user_type) -> bearer headers"""
    def _register(username: str, user_type: str = "farmer", password: str = "secret123"):
        return register_user(client, username, user_type, password)
    return _register
