from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration


def test_request_id_header_and_metrics_snapshot(client: TestClient) -> None:
    first = client.get("/health")
    second = client.get("/health")
    not_found = client.get("/api/v1/articles/missing")
    metrics = client.get("/metrics")

    assert first.status_code == 200
    assert second.status_code == 200
    assert not_found.status_code == 404
    assert metrics.status_code == 200

    first_request_id = first.headers.get("x-request-id")
    second_request_id = second.headers.get("x-request-id")
    assert first_request_id
    assert second_request_id
    assert metrics.headers.get("x-request-id")
    assert first_request_id != second_request_id

    body = metrics.json()
    assert body["totals"]["requests"] >= 3
    assert body["totals"]["errors"] >= 1
    assert body["endpoints"]["GET /health"]["count"] >= 2
    assert body["endpoints"]["GET /api/v1/articles/{slug}"]["4xx"] == 1
    assert "GET /api/v1/articles/missing" not in body["endpoints"]


def test_incoming_request_id_is_preserved(client: TestClient) -> None:
    response = client.get("/health", headers={"x-request-id": "manual-request-id"})
    assert response.status_code == 200
    assert response.headers.get("x-request-id") == "manual-request-id"


def test_cors_preflight_is_answered(client: TestClient) -> None:
    response = client.options(
        "/api/v1/articles",
        headers={
            "Origin": "https://www.example.com",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") in ("*", "https://www.example.com")


def test_metrics_key_distinct_slugs_under_one_route_template(client: TestClient) -> None:
    for index in range(5):
        assert client.get(f"/api/v1/articles/missing-{index}").status_code == 404

    endpoints = client.get("/metrics").json()["endpoints"]

    article_keys = [key for key in endpoints if key.startswith("GET /api/v1/articles/")]
    assert article_keys == ["GET /api/v1/articles/{slug}"]
    assert endpoints["GET /api/v1/articles/{slug}"]["count"] == 5
    assert endpoints["GET /api/v1/articles/{slug}"]["4xx"] == 5


def test_unrouted_paths_share_one_metrics_entry(client: TestClient) -> None:
    assert client.get("/no/such/page").status_code == 404
    assert client.get("/another/unknown").status_code == 404

    endpoints = client.get("/metrics").json()["endpoints"]

    assert endpoints["GET unmatched"]["count"] == 2
    assert not any(key.startswith("GET /no/") or key.startswith("GET /another/") for key in endpoints)
