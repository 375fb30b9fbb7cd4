"""
Tests for project tasks and checklist-driven task status.
"""
import pytest

from consultflow.notes import (
    create_project_tasks, update_note_status, toggle_checklist, find_project_task,
    IncompleteChecklistError, NoteError,
)
from consultflow.schema import NoteStatus


def test_create_project_tasks_one_item_per_stage(store, make_project):
    project = make_project(name="Omega", stages=3, with_task=False)
    note = create_project_tasks(store, project)

    assert note.title == "Projeto: Omega"
    loaded = store.get_note(note.id)
    assert [c.title for c in loaded.checklists] == ["Etapa 1", "Etapa 2", "Etapa 3"]
    assert loaded.status == NoteStatus.A_FAZER


def test_create_project_tasks_skips_existing(store, make_project):
    project = make_project(name="Omega", with_task=True)
    assert create_project_tasks(store, project) is None
    assert len(store.find_notes_by_title_prefix("Projeto: Omega")) == 1


def test_find_project_task_none_when_absent(store):
    assert find_project_task(store, "Ninguem") is None


class TestNoteStatus:

    def test_cannot_finalize_with_open_items(self, store, make_project):
        make_project(name="Sigma", stages=2)
        task = find_project_task(store, "Sigma")
        with pytest.raises(IncompleteChecklistError):
            update_note_status(store, task.id, "finalizado")
        assert store.get_note(task.id).status == NoteStatus.A_FAZER

    def test_finalize_when_all_items_done(self, store, make_project):
        make_project(name="Sigma", stages=2, completed=2)
        task = find_project_task(store, "Sigma")
        note = update_note_status(store, task.id, NoteStatus.FINALIZADO)
        assert note.status == NoteStatus.FINALIZADO

    def test_other_moves_are_free(self, store, make_project):
        make_project(name="Sigma", stages=2)
        task = find_project_task(store, "Sigma")
        assert update_note_status(store, task.id, "cancelado").status == NoteStatus.CANCELADO

    def test_unknown_note_or_status(self, store, make_project):
        with pytest.raises(NoteError):
            update_note_status(store, "missing", "em_producao")
        make_project(name="Sigma")
        task = find_project_task(store, "Sigma")
        with pytest.raises(ValueError):
            update_note_status(store, task.id, "arquivado")


class TestToggleChecklist:

    def test_first_item_starts_the_task(self, store, make_project):
        make_project(name="Tau", stages=3)
        task = find_project_task(store, "Tau")
        note = toggle_checklist(store, task.checklists[0].id, True)
        assert note.status == NoteStatus.EM_PRODUCAO
        assert note.checklists[0].completed
        assert note.checklists[0].completed_at is not None

    def test_last_item_finalizes_the_task(self, store, make_project):
        make_project(name="Tau", stages=2)
        task = find_project_task(store, "Tau")
        toggle_checklist(store, task.checklists[0].id, True)
        note = toggle_checklist(store, task.checklists[1].id, True)
        assert note.status == NoteStatus.FINALIZADO

    def test_unticking_reopens_a_finalized_task(self, store, make_project):
        make_project(name="Tau", stages=1)
        task = find_project_task(store, "Tau")
        toggle_checklist(store, task.checklists[0].id, True)
        note = toggle_checklist(store, task.checklists[0].id, False)
        assert note.status == NoteStatus.EM_PRODUCAO
        assert note.checklists[0].completed_at is None

    def test_cancelled_task_keeps_its_status(self, store, make_project):
        make_project(name="Tau", stages=1)
        task = find_project_task(store, "Tau")
        update_note_status(store, task.id, "cancelado")
        note = toggle_checklist(store, task.checklists[0].id, True)
        assert note.status == NoteStatus.CANCELADO

    def test_unknown_item(self, store):
        with pytest.raises(NoteError):
            toggle_checklist(store, "missing", True)
