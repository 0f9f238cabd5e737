from __future__ import annotations

from pixelpilot.schemas import RunRequest

from tests.stubs import ApiEnv

SCENARIOS = [
    {"label": "home", "url": "https://example.com"},
    {"label": "blog", "url": "https://example.com/blog", "selectors": [".post", "header"]},
]


def _create(api: ApiEnv, **extra) -> dict:
    resp = api.client.post("/api/projects", json={"name": "Acme", "scenarios": SCENARIOS, **extra})
    assert resp.status_code == 201
    return resp.json()


def test_project_crud(api: ApiEnv) -> None:
    project = _create(api, description="Visual regression suite")
    project_id = project["id"]

    resp = api.client.get("/api/projects")
    assert resp.status_code == 200
    assert [item["name"] for item in resp.json()] == ["Acme"]

    resp = api.client.patch(f"/api/projects/{project_id}", json={"description": "Updated"})
    assert resp.status_code == 200
    assert resp.json()["description"] == "Updated"

    resp = api.client.get(f"/api/projects/{project_id}")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Acme"

    report_dir = api.artifacts.project_dir(project_id)
    resp = api.client.delete(f"/api/projects/{project_id}")
    assert resp.status_code == 204
    assert not report_dir.exists()
    assert api.client.get(f"/api/projects/{project_id}").status_code == 404


def test_missing_project_returns_404(api: ApiEnv) -> None:
    assert api.client.get("/api/projects/nope").status_code == 404
    assert api.client.patch("/api/projects/nope", json={"name": "x"}).status_code == 404
    assert api.client.get("/api/projects/nope/config").status_code == 404
    assert api.client.put("/api/projects/nope/scenarios", json=SCENARIOS).status_code == 404


def test_new_project_gets_default_viewports(api: ApiEnv) -> None:
    project_id = _create(api)["id"]

    resp = api.client.get(f"/api/projects/{project_id}/config")
    assert resp.status_code == 200
    body = resp.json()
    assert body["projectId"] == project_id
    assert [item["label"] for item in body["viewports"]] == ["phone", "tablet", "desktop"]
    assert body["scenarios"][0]["selectors"] == ["document"]
    assert body["scenarios"][1]["selectors"] == [".post", "header"]


def test_duplicate_scenario_labels_rejected(api: ApiEnv) -> None:
    resp = api.client.post(
        "/api/projects",
        json={"name": "Dupes", "scenarios": [SCENARIOS[0], SCENARIOS[0]]},
    )
    assert resp.status_code == 400
    assert "Duplicate scenario label" in resp.json()["detail"]


def test_replace_scenarios_and_viewports(api: ApiEnv) -> None:
    project_id = _create(api)["id"]

    resp = api.client.put(
        f"/api/projects/{project_id}/scenarios",
        json=[{"label": "pricing", "url": "https://example.com/pricing", "delay": 250}],
    )
    assert resp.status_code == 200
    assert [item["label"] for item in resp.json()["scenarios"]] == ["pricing"]
    assert resp.json()["scenarios"][0]["delay"] == 250

    resp = api.client.put(
        f"/api/projects/{project_id}/viewports",
        json=[{"label": "Tablet_Landscape", "width": 1024, "height": 768}],
    )
    assert resp.status_code == 200
    assert [item["label"] for item in resp.json()["viewports"]] == ["Tablet_Landscape"]

    assert api.client.put(f"/api/projects/{project_id}/viewports", json=[]).status_code == 400
    resp = api.client.put(
        f"/api/projects/{project_id}/viewports",
        json=[{"label": "bad", "width": 0, "height": 10}],
    )
    assert resp.status_code == 422


def test_configuration_changes_blocked_during_run(api: ApiEnv) -> None:
    project_id = _create(api)["id"]

    with api.orchestrator.claim(RunRequest(project_id=project_id)):
        resp = api.client.put(f"/api/projects/{project_id}/scenarios", json=SCENARIOS[:1])
        assert resp.status_code == 409
        assert api.client.delete(f"/api/projects/{project_id}").status_code == 409
        health = api.client.get("/api/health").json()
        assert [item["projectId"] for item in health["activeRuns"]] == [project_id]

    resp = api.client.put(f"/api/projects/{project_id}/scenarios", json=SCENARIOS[:1])
    assert resp.status_code == 200
    assert api.client.get("/api/health").json()["activeRuns"] == []


def test_config_update_and_validation(api: ApiEnv) -> None:
    resp = api.client.get("/api/config")
    assert resp.status_code == 200
    assert resp.json()["engine_command"] == ["npx", "backstop"]

    resp = api.client.patch(
        "/api/config",
        json={"engine_command": ["backstop"], "run_timeout_seconds": 120, "display_timezone": "LOCAL"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["engine_command"] == ["backstop"]
    assert body["run_timeout_seconds"] == 120
    assert body["display_timezone"] == "local"

    assert api.client.patch("/api/config", json={"run_timeout_seconds": 0}).status_code == 400
    assert api.client.patch("/api/config", json={"preflight_timeout_seconds": 500}).status_code == 400
    assert api.client.patch("/api/config", json={"display_timezone": "mars"}).status_code == 400


def test_engine_command_update_reaches_orchestrator(api: ApiEnv) -> None:
    project_id = _create(api)["id"]
    api.client.patch("/api/config", json={"engine_command": ["node", "backstop.js"]})

    resp = api.client.post(f"/api/projects/{project_id}/test", json={"filter": ["home"]})
    assert resp.status_code == 200
    assert api.launcher.calls[0]["command"][:3] == ["node", "backstop.js", "test"]
