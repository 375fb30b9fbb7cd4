"""
Tests for the Flask JSON API (routes, auth, error mapping).
"""
from unittest.mock import patch

import pytest

from consultflow.config import Config
from consultflow.server import create_app

KEY = {"X-API-Key": "s3cret"}


@pytest.fixture
def client(config, store):
    app = create_app(config, store)
    app.testing = True
    return app.test_client()


def _create_project(client, name="Projeto API", stages=3):
    resp = client.post("/api/projects", json={
        "name": name,
        "stages": [{"name": f"Etapa {i + 1}"} for i in range(stages)],
    }, headers=KEY)
    assert resp.status_code == 201
    return resp.get_json()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAuth:

    def test_missing_key_is_401(self, client):
        assert client.post("/api/projects", json={"name": "x"}).status_code == 401

    def test_wrong_key_is_403(self, client):
        resp = client.post("/api/projects", json={"name": "x"}, headers={"X-API-Key": "nope"})
        assert resp.status_code == 403

    def test_unset_secret_is_503(self, tmp_path, store):
        app = create_app(Config(db_path=str(tmp_path / "board.db"), api_secret=""), store)
        resp = app.test_client().post("/functions/webhooks", json={"action": "list"}, headers=KEY)
        assert resp.status_code == 503

    def test_reads_need_no_key(self, client):
        assert client.get("/health").status_code == 200
        assert client.get("/api/columns").status_code == 200


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Projects and stages
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestProjects:

    def test_create_project_creates_task(self, client, store):
        data = _create_project(client)
        assert data["task_id"]
        assert [s["name"] for s in data["project"]["stages"]] == ["Etapa 1", "Etapa 2", "Etapa 3"]
        note = store.get_note(data["task_id"])
        assert note.title == "Projeto: Projeto API"
        assert len(note.checklists) == 3

    def test_create_requires_name(self, client):
        assert client.post("/api/projects", json={}, headers=KEY).status_code == 400

    def test_get_project(self, client):
        project_id = _create_project(client)["project"]["id"]
        assert client.get(f"/api/projects/{project_id}").get_json()["project"]["id"] == project_id
        assert client.get("/api/projects/missing").status_code == 404

    def test_list_projects_by_status(self, client):
        first = _create_project(client, name="Um")["project"]["id"]
        _create_project(client, name="Dois")
        client.post(f"/api/projects/{first}/move", json={"column_id": "em_producao"}, headers=KEY)

        assert client.get("/api/projects").get_json()["count"] == 2
        moved = client.get("/api/projects?status=em_producao").get_json()["projects"]
        assert [p["id"] for p in moved] == [first]

    def test_move_project(self, client):
        project_id = _create_project(client)["project"]["id"]
        resp = client.post(f"/api/projects/{project_id}/move", json={"column_id": "em_producao"}, headers=KEY)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["project"]["status"] == "em_producao"
        assert [s["completed"] for s in body["project"]["stages"]] == [True, True, False]
        assert body["result"]["task_status"] == "em_producao"

    def test_move_to_completion_with_open_stages_is_409(self, client):
        project_id = _create_project(client, stages=2)["project"]["id"]
        resp = client.post(f"/api/projects/{project_id}/move", json={"column_id": "finalizados"}, headers=KEY)
        assert resp.status_code == 409
        assert resp.get_json()["pending_stages"] == ["Etapa 1", "Etapa 2"]

    def test_move_errors(self, client):
        project_id = _create_project(client)["project"]["id"]
        assert client.post(f"/api/projects/{project_id}/move", json={}, headers=KEY).status_code == 400
        resp = client.post(f"/api/projects/{project_id}/move", json={"column_id": "nada"}, headers=KEY)
        assert resp.status_code == 404
        resp = client.post("/api/projects/missing/move", json={"column_id": "em_producao"}, headers=KEY)
        assert resp.status_code == 404

    def test_stage_complete_and_uncomplete(self, client):
        project = _create_project(client)["project"]
        stage_id = project["stages"][0]["id"]

        resp = client.post(f"/api/stages/{stage_id}/complete", headers=KEY)
        assert resp.status_code == 200
        assert resp.get_json()["stage"]["completed"] is True
        assert resp.get_json()["project_status"] == "iniciar_projeto"

        resp = client.post(f"/api/stages/{stage_id}/uncomplete", headers=KEY)
        assert resp.get_json()["stage"]["completed"] is False
        assert client.post("/api/stages/missing/complete", headers=KEY).status_code == 404

    def test_actions_show_up_in_system_logs(self, client):
        project_id = _create_project(client)["project"]["id"]
        client.post(f"/api/projects/{project_id}/move", json={"column_id": "em_producao"}, headers=KEY)
        logs = client.get("/api/logs?category=project_action").get_json()["logs"]
        assert logs[0]["details"]["project_id"] == project_id


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Columns, chat, webhooks
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_columns(client):
    cols = client.get("/api/columns").get_json()["columns"]
    assert len(cols) == 9
    resp = client.post("/api/columns", json={"title": "Pausados"}, headers=KEY)
    assert resp.status_code == 201
    assert resp.get_json()["column"]["column_id"] == "pausados"
    assert client.post("/api/columns", json={"title": ""}, headers=KEY).status_code == 400


def test_chat_rooms_soft_delete(client):
    room = client.post("/api/chat/rooms", json={"name": "Geral"}, headers=KEY).get_json()["room"]
    assert client.get("/api/chat/rooms").get_json()["count"] == 1
    assert client.delete(f"/api/chat/rooms/{room['id']}", headers=KEY).status_code == 200
    assert client.get("/api/chat/rooms").get_json()["count"] == 0
    assert client.delete("/api/chat/rooms/missing", headers=KEY).status_code == 404


def test_webhook_action_endpoint(client, http_response):
    resp = client.post("/functions/webhooks", json={
        "action": "register", "url": "https://hooks.test", "events": ["INSERT"], "tables": ["projects"],
    }, headers=KEY)
    assert resp.status_code == 200

    assert client.post("/functions/webhooks", json={"action": "nope"}, headers=KEY).status_code == 400

    client.post("/functions/webhooks", json={"action": "trigger_test"}, headers=KEY)
    with patch("consultflow.webhooks.requests.post", return_value=http_response()):
        body = client.post("/functions/webhooks", json={"action": "process"}, headers=KEY).get_json()
    assert body["processed"] == 1

    logs = client.get("/api/webhooks/logs").get_json()
    assert logs["count"] == 1
    assert logs["logs"][0]["success"] is True


def test_status_change_notification(tmp_path, store, http_response):
    config = Config(db_path=str(tmp_path / "board.db"), api_secret="s3cret",
                    notify_on_status_change=True, auto_process_webhooks=False)
    client = create_app(config, store).test_client()
    client.post("/functions/webhooks", json={
        "action": "register", "url": "https://hooks.test", "events": ["UPDATE"], "tables": ["projects"],
    }, headers=KEY)
    project_id = _create_project(client)["project"]["id"]

    client.post(f"/api/projects/{project_id}/move", json={"column_id": "em_producao"}, headers=KEY)
    pending = store.fetch_pending(10)
    assert len(pending) == 1
    assert pending[0].payload["data"]["id"] == project_id
    assert pending[0].payload["data"]["status"] == "em_producao"
