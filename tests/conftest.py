import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Store
from main import create_app
from media import MediaIntake


@pytest.fixture
def store():
    return Store(
        url="mongodb://localhost:27017",
        name=f"catalog_test_{uuid.uuid4().hex[:8]}",
        client_factory=mongomock.MongoClient,
    )


@pytest.fixture
def media(tmp_path):
    return MediaIntake(str(tmp_path / "uploads"))


@pytest.fixture
def client(store, media):
    app = create_app(store=store, media=media)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def user(client):
    response = client.post("/user", json={"email": "buyer@shop.io", "password": "secret", "username": "buyer"})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def product(client):
    response = client.post("/product", data={"description": "Desk lamp", "pricing": "24.5", "shippingCost": "4"})
    assert response.status_code == 201
    return response.json()
