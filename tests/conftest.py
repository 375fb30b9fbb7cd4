"""Shared fixtures: a throwaway SQLite board seeded with the default columns."""

from unittest.mock import MagicMock

import pytest

from consultflow import columns as board
from consultflow.config import Config
from consultflow.notes import create_project_tasks
from consultflow.schema import Project, Stage
from consultflow.store import BoardStore


@pytest.fixture
def store(tmp_path):
    s = BoardStore(str(tmp_path / "board.db"))
    board.ensure_default_columns(s)
    return s


@pytest.fixture
def config(tmp_path):
    return Config(
        db_path=str(tmp_path / "board.db"),
        api_secret="s3cret",
        auto_process_webhooks=True,
        drain_interval_secs=0,
    )


@pytest.fixture
def make_project(store):
    """Factory: project with `stages` ordered stages, the first `completed` of them done."""
    def _make(name="Implantacao ERP", stages=3, completed=0,
              status="iniciar_projeto", with_task=True):
        project = Project(name=name, status=status)
        for i in range(stages):
            project.stages.append(Stage(
                project_id=project.id,
                name=f"Etapa {i + 1}",
                stage_order=i + 1,
                completed=i < completed,
            ))
        assert store.save_project(project)
        if with_task:
            create_project_tasks(store, project)
        return store.get_project(project.id)
    return _make


def _http_response(status_code=200, text="ok", reason="OK"):
    """Stand-in for a requests.Response."""
    r = MagicMock()
    r.status_code = status_code
    r.text = text
    r.reason = reason
    return r


@pytest.fixture(name="http_response")
def http_response_fixture():
    return _http_response
