"""HTTP API tests over the in-memory adapters."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from shepherd_gateway.app import app
from shepherd_gateway.app_state import GatewayState, set_state

AUTH = {"Authorization": "Bearer test-key"}


@pytest.fixture
def client(reconciler):
    set_state(GatewayState(reconciler))
    try:
        yield TestClient(app)
    finally:
        set_state(None)


@pytest.fixture
def payload(make_project):
    return make_project().model_dump(mode="json", by_alias=True)


def test_requires_api_key(client):
    assert client.get("/api/projects").status_code == 401
    assert client.get("/api/projects", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_health_is_public(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["projects"]["total"] == 0


def test_create_get_list(client, payload, ci):
    response = client.post("/api/projects", json=payload, headers=AUTH)
    assert response.status_code == 201

    response = client.get("/api/projects/vaadin-boot-example", headers=AUTH)
    assert response.json()["project"] == payload

    listed = client.get("/api/projects", headers=AUTH).json()["projects"]
    assert [p["project"]["id"] for p in listed] == ["vaadin-boot-example"]
    assert listed[0]["lastBuildResult"] == "NOT_BUILT"
    assert ci.builds == ["vaadin-boot-example"]


def test_create_twice_conflicts(client, payload):
    client.post("/api/projects", json=payload, headers=AUTH)
    response = client.post("/api/projects", json=payload, headers=AUTH)
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "ProjectAlreadyExistsError"


def test_quota_exceeded(client, payload, host):
    host.memory_quota_mb = 1000
    response = client.post("/api/projects", json=payload, headers=AUTH)
    assert response.status_code == 409
    assert response.json()["detail"]["deficitMb"] == 256 + 1024 - 1000


def test_invalid_descriptor(client, payload):
    payload["id"] = "Bad_ID"
    assert client.post("/api/projects", json=payload, headers=AUTH).status_code == 422


def test_update_outcome(client, payload, cluster):
    client.post("/api/projects", json=payload, headers=AUTH)
    cluster.images["vaadin-boot-example"] = "img:1"
    payload["owner"]["email"] = "new@example.com"
    response = client.put("/api/projects/vaadin-boot-example", json=payload, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["outcome"] == "no_op"


def test_update_id_mismatch(client, payload):
    response = client.put("/api/projects/other-id", json=payload, headers=AUTH)
    assert response.status_code == 422


def test_update_git_repo_rejected(client, payload):
    client.post("/api/projects", json=payload, headers=AUTH)
    payload["gitRepo"]["url"] = "https://github.com/elsewhere/repo"
    response = client.put("/api/projects/vaadin-boot-example", json=payload, headers=AUTH)
    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "ImmutableFieldError"


def test_delete_twice(client, payload):
    client.post("/api/projects", json=payload, headers=AUTH)
    assert client.delete("/api/projects/vaadin-boot-example", headers=AUTH).status_code == 200
    assert client.delete("/api/projects/vaadin-boot-example", headers=AUTH).status_code == 200
    assert client.get("/api/projects/vaadin-boot-example", headers=AUTH).status_code == 404


def test_partial_failure_is_bad_gateway(client, payload, ci):
    ci.fail_on = "build"
    response = client.post("/api/projects", json=payload, headers=AUTH)
    assert response.status_code == 502
    assert response.json()["detail"]["failedStep"] == "initial build"


def test_query_endpoints(client, payload):
    client.post("/api/projects", json=payload, headers=AUTH)
    base = "/api/projects/vaadin-boot-example"
    assert client.get(f"{base}/logs", headers=AUTH).json() == {"logs": "logs of vaadin-boot-example"}
    assert client.get(f"{base}/metrics", headers=AUTH).json()["metrics"] == {"memoryMb": 100, "cpu": 0.1}
    assert client.get(f"{base}/builds", headers=AUTH).json() == {"builds": []}
    assert client.get(f"{base}/builds/2/log", headers=AUTH).json()["log"] == "log of vaadin-boot-example #2"
    assert client.get(f"{base}/urls", headers=AUTH).json()["urls"] == ["https://v-herd.eu/vaadin-boot-example"]

    quota = client.get("/api/quota", headers=AUTH).json()["quota"]
    assert quota["used_mb"] == 256 + 1024
    assert quota["ceiling_mb"] == 4096


def test_unknown_project_logs(client):
    assert client.get("/api/projects/ghost/logs", headers=AUTH).status_code == 404


def test_corrupted_descriptor_is_reported(client, payload, store):
    client.post("/api/projects", json=payload, headers=AUTH)
    (store.projects_dir / "broken.json").write_text("{not json")

    response = client.get("/api/projects", headers=AUTH)
    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "CorruptedProjectError"
    assert "broken.json" in response.json()["detail"]["message"]

    assert client.get("/api/quota", headers=AUTH).status_code == 500


def test_failed_delete_lists_remaining_stores(client, payload, cluster):
    client.post("/api/projects", json=payload, headers=AUTH)
    cluster.fail_on = "delete_if_exists"
    response = client.delete("/api/projects/vaadin-boot-example", headers=AUTH)
    assert response.status_code == 502
    assert response.json()["detail"]["remaining"] == ["kubernetes", "descriptor"]
