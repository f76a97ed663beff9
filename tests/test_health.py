from fastapi.testclient import TestClient

from app.main import app


def test_health_endpoint():
    """Test health endpoint"""
    client = TestClient(app)
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_health_without_background_workers_has_no_broker_section():
    client = TestClient(app)
    body = client.get("/health").json()

    assert "broker_connected" not in body
    assert "publishers" not in body
