#!/usr/bin/env python3
"""
REST API tests using FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from radio_logging.api import create_api


@pytest.fixture
def fleet(make_fleet, storage):
    return make_fleet(targets=2, storage=storage)


@pytest.fixture
def client(fleet):
    return TestClient(create_api(fleet.commander))


@pytest.fixture
def target_client(fleet):
    return TestClient(create_api(fleet.targets[0]))


def test_health(client, target_client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["role"] == "commander"

    assert target_client.get("/api/health").json()["role"] == "target"


def test_status(client):
    data = client.get("/api/status").json()

    assert data["role"] == "commander"
    assert data["id"] == 0
    assert data["targets_connected"] == 2
    assert data["next_id_to_issue"] == 3
    assert data["row_count"] == 0


def test_target_endpoints_conflict(target_client):
    for method, path in [
        ("get", "/api/status"),
        ("get", "/api/targets"),
        ("get", "/api/targets/cached"),
        ("post", "/api/targets/watch"),
        ("get", "/api/rows"),
    ]:
        assert getattr(target_client, method)(path).status_code == 409

    response = target_client.post("/api/jobs", json={
        "sensors": [{"name": "Temp", "measurements": 1, "period_ms": 1000}],
    })
    assert response.status_code == 409


def test_targets_poll_and_cache(client):
    assert client.get("/api/targets/cached").json()["target_ids"] == []

    data = client.get("/api/targets").json()
    assert data == {"total": 2, "target_ids": [1, 2], "poll_rounds": 1}

    assert client.get("/api/targets/cached").json()["target_ids"] == [1, 2]


def test_registry_watch(client, fleet):
    response = client.post("/api/targets/watch")
    assert response.json()["success"]

    response = client.delete("/api/targets/watch")
    assert response.json()["success"]

    fleet.commander._watcher.join(timeout=5)
    assert not fleet.commander.watching_registry


def test_job_streams_rows_back(client):
    response = client.post("/api/jobs", json={
        "sensors": [
            {"name": "Temp", "measurements": 2, "period_ms": 1000},
            {"name": "Light", "measurements": 1, "inequality": ">=", "comparator": 50},
        ],
        "stream_back": True,
    })
    assert response.status_code == 200
    assert response.json()["success"]

    data = client.get("/api/rows").json()
    assert data["total"] == 6
    assert {row["device_id"] for row in data["rows"]} == {1, 2}

    data = client.get("/api/rows", params={"device_id": 2, "limit": 2}).json()
    assert data["total"] == 3
    assert [row["sensor"] for row in data["rows"]] == ["Temp", "Light"]

    assert client.get("/api/status").json()["streaming_done"]


@pytest.mark.parametrize("sensor", [
    {"name": "Temp", "measurements": 2},
    {"name": "Temp", "measurements": 2, "inequality": ">"},
    {"name": "Temp", "measurements": 2, "inequality": "~", "comparator": 1},
    {"name": "Te,mp", "measurements": 2, "period_ms": 100},
])
def test_bad_job_is_rejected(client, sensor):
    response = client.post("/api/jobs", json={"sensors": [sensor]})
    assert response.status_code == 400


def test_job_validation(client):
    assert client.post("/api/jobs", json={"sensors": []}).status_code == 422
    response = client.post("/api/jobs", json={
        "sensors": [{"name": "Temp", "measurements": 0, "period_ms": 100}],
    })
    assert response.status_code == 422
