"""
Tests for board ↔ stage ↔ task status propagation.
"""
import pytest

from consultflow.events import SyncEventBridge
from consultflow.kanban_sync import (
    KanbanSync, SyncError, IncompleteStagesError, task_status_for_column,
)
from consultflow.notes import find_project_task
from consultflow.schema import Note, NoteStatus


@pytest.fixture
def sync(store):
    return KanbanSync(store)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Task status mapping
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("column_id,expected", [
    ("iniciar_projeto", NoteStatus.A_FAZER),
    ("em_producao", NoteStatus.EM_PRODUCAO),
    ("aguardando_assinatura", NoteStatus.EM_PRODUCAO),
    ("aguardando_repasse", NoteStatus.EM_PRODUCAO),
    ("finalizados", NoteStatus.FINALIZADO),
    ("cancelados", NoteStatus.CANCELADO),
    ("coluna_nova", NoteStatus.A_FAZER),
])
def test_task_status_for_column(column_id, expected):
    assert task_status_for_column(column_id) == expected


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Forward: board → stages
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestMoveProjectToColumn:

    def test_progression_column_completes_stages_up_to_its_position(self, store, sync, make_project):
        project = make_project(stages=3)
        result = sync.move_project_to_column(project.id, "em_producao")

        stages = store.get_project(project.id).stages
        assert [s.completed for s in stages] == [True, True, False]
        assert stages[0].status == "finalizados"
        assert stages[1].client_approved and stages[1].manager_approved
        assert stages[0].completed_at is not None
        # Later stages untouched
        assert stages[2].status == "iniciar_projeto"
        assert not stages[2].manager_approved
        assert result.stage_ids == [stages[0].id, stages[1].id]
        assert store.get_project(project.id).status == "em_producao"

    def test_first_column_completes_first_stage(self, store, sync, make_project):
        project = make_project(stages=2)
        sync.move_project_to_column(project.id, "iniciar_projeto")
        assert [s.completed for s in store.get_project(project.id).stages] == [True, False]

    def test_late_column_completes_every_stage_of_short_project(self, store, sync, make_project):
        project = make_project(stages=3)
        sync.move_project_to_column(project.id, "aguardando_pagamento")
        loaded = store.get_project(project.id)
        assert loaded.completed_stages == 3
        assert loaded.status == "aguardando_pagamento"

    def test_completion_column_guard_blocks_open_stages(self, store, sync, make_project):
        project = make_project(stages=3, completed=2, status="em_producao")
        with pytest.raises(IncompleteStagesError) as exc:
            sync.move_project_to_column(project.id, "finalizados")

        assert exc.value.pending == ["Etapa 3"]
        loaded = store.get_project(project.id)
        assert loaded.status == "em_producao"
        assert [s.status for s in loaded.stages] == ["iniciar_projeto"] * 3

    def test_completion_column_with_all_stages_done(self, store, sync, make_project):
        project = make_project(stages=2, completed=2)
        sync.move_project_to_column(project.id, "finalizados")
        loaded = store.get_project(project.id)
        assert loaded.status == "finalizados"
        assert all(s.status == "finalizados" and s.completed for s in loaded.stages)
        assert all(s.completed_at for s in loaded.stages)

    def test_cancellation_skips_guard_and_keeps_completion(self, store, sync, make_project):
        project = make_project(stages=3, completed=1)
        sync.move_project_to_column(project.id, "cancelados")
        loaded = store.get_project(project.id)
        assert loaded.status == "cancelados"
        assert [s.status for s in loaded.stages] == ["cancelados"] * 3
        assert [s.completed for s in loaded.stages] == [True, False, False]

    def test_unknown_project_or_column(self, sync, make_project):
        project = make_project()
        with pytest.raises(SyncError):
            sync.move_project_to_column("missing", "em_producao")
        with pytest.raises(SyncError):
            sync.move_project_to_column(project.id, "nao_existe")

    def test_guard_error_is_a_sync_error(self):
        assert issubclass(IncompleteStagesError, SyncError)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Task mirror
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTaskMirror:

    def test_move_updates_task_status_and_checklist(self, store, sync, make_project):
        project = make_project(name="Alpha", stages=3)
        result = sync.move_project_to_column(project.id, "em_producao")

        task = find_project_task(store, "Alpha")
        assert result.task_id == task.id
        assert result.task_status == "em_producao"
        assert task.status == NoteStatus.EM_PRODUCAO
        assert {c.title: c.completed for c in task.checklists} == {
            "Etapa 1": True, "Etapa 2": True, "Etapa 3": False,
        }

    def test_completion_and_cancellation_statuses(self, store, sync, make_project):
        done = make_project(name="Feito", stages=1, completed=1)
        sync.move_project_to_column(done.id, "finalizados")
        assert find_project_task(store, "Feito").status == NoteStatus.FINALIZADO

        dropped = make_project(name="Parado", stages=1)
        sync.move_project_to_column(dropped.id, "cancelados")
        assert find_project_task(store, "Parado").status == NoteStatus.CANCELADO

    def test_ambiguous_task_is_skipped_but_move_succeeds(self, store, sync, make_project):
        project = make_project(name="Beta", stages=2)
        store.save_note(Note(title="Projeto: Beta (copia)"))

        result = sync.move_project_to_column(project.id, "em_producao")
        assert result.task_id is None
        assert store.get_project(project.id).status == "em_producao"
        for note in store.find_notes_by_title_prefix("Projeto: Beta"):
            assert note.status == NoteStatus.A_FAZER

    def test_missing_task_is_skipped(self, store, sync, make_project):
        project = make_project(name="Gama", with_task=False)
        result = sync.move_project_to_column(project.id, "em_producao")
        assert result.task_id is None

    def test_mirror_failure_does_not_fail_the_move(self, store, sync, make_project, monkeypatch):
        project = make_project(name="Delta")

        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(store, "update_note", boom)
        result = sync.move_project_to_column(project.id, "em_producao")
        assert result.task_id is None
        assert store.get_project(project.id).status == "em_producao"


def test_project_moved_event_is_emitted(store, make_project):
    bridge = SyncEventBridge(store)
    seen = []
    bridge.subscribe("project_moved", lambda **kw: seen.append(kw))
    project = make_project()

    KanbanSync(store, bridge).move_project_to_column(project.id, "em_producao")
    assert seen[0]["project_id"] == project.id
    assert seen[0]["column_id"] == "em_producao"


def test_failing_subscriber_does_not_break_the_move(store, make_project):
    bridge = SyncEventBridge(store)

    def broken(**kwargs):
        raise ValueError("subscriber bug")

    bridge.subscribe("project_moved", broken)
    project = make_project()
    KanbanSync(store, bridge).move_project_to_column(project.id, "em_producao")
    assert store.get_project(project.id).status == "em_producao"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Reverse: stages → board
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSyncStageToKanban:

    @pytest.mark.parametrize("completed,expected", [
        (1, "iniciar_projeto"),
        (2, "em_producao"),
        (3, "finalizados"),
    ])
    def test_completed_count_picks_column(self, store, sync, make_project, completed, expected):
        project = make_project(stages=3, completed=completed)
        assert sync.sync_stage_to_kanban(project.id, project.stages[0].id) == expected
        assert store.get_project(project.id).status == expected

    def test_nothing_completed_leaves_project_alone(self, store, sync, make_project):
        project = make_project(stages=3, status="em_producao")
        assert sync.sync_stage_to_kanban(project.id, project.stages[0].id) is None
        assert store.get_project(project.id).status == "em_producao"

    def test_index_is_capped_at_last_progression_column(self, sync, make_project):
        project = make_project(stages=9, completed=8)
        assert sync.sync_stage_to_kanban(project.id) == "aguardando_repasse"

    def test_foreign_stage_or_empty_project(self, sync, make_project):
        project = make_project(stages=2, completed=1)
        other = make_project(name="Outro", stages=1, completed=1)
        assert sync.sync_stage_to_kanban(project.id, other.stages[0].id) is None

        empty = make_project(name="Vazio", stages=0)
        assert sync.sync_stage_to_kanban(empty.id) is None
        assert sync.sync_stage_to_kanban("missing") is None

    def test_reverse_sync_mirrors_task(self, store, sync, make_project):
        project = make_project(name="Epsilon", stages=2, completed=2)
        sync.sync_stage_to_kanban(project.id)
        assert find_project_task(store, "Epsilon").status == NoteStatus.FINALIZADO
