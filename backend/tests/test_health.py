import logging

from fastapi.testclient import TestClient

from api.main import app


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


client = TestClient(app)


def test_root_health_check() -> None:
    response = client.get("/")
    logger.info(
        "Root health check response",
        extra={"status_code": response.status_code, "body": response.json()},
    )
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_check() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_health_check_includes_timestamp() -> None:
    response = client.get("/api/health")
    logger.info("API health response", extra={"body": response.json()})
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["timestamp"].endswith("Z")


def test_db_health_reports_uninitialized_pool() -> None:
    response = client.get("/health/db")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "pool_type" in response.json()["pool"]


def test_openapi_schema_available() -> None:
    response = client.get("/openapi.json")
    logger.info("OpenAPI response", extra={"status_code": response.status_code})
    assert response.status_code == 200
    payload = response.json()
    assert payload["info"]["title"] == "GitHub Mirror API"
    assert "/api/github/resync/{user_id}" in payload["paths"]
    assert "/api/data/query/{collection}" in payload["paths"]
