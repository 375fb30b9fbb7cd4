"""
Project tasks on the notes board and their checklist rules.

Every project gets one task titled "Projeto: <name>" with a checklist item
per stage. Checklist progress drives the task status:
    first item ticked on an a_fazer task   → em_producao
    last open item ticked                  → finalizado
    an item unticked on a finalizado task  → em_producao
A task cannot be finalized by hand while items are open.
"""
import logging
from typing import Optional
from .schema import Project, Note, NoteStatus, ChecklistItem, utc_now
from .store import BoardStore

logger = logging.getLogger(__name__)


class IncompleteChecklistError(Exception):
    """Raised when finalizing a task that still has open checklist items."""
    pass


class NoteError(Exception):
    pass


def project_task_title(project_name: str) -> str:
    return f"Projeto: {project_name}"


def find_project_task(store: BoardStore, project_name: str) -> Optional[Note]:
    """The single task whose title starts with "Projeto: <name>" (case-insensitive).

    Returns None when no task or more than one task matches.
    """
    title = project_task_title(project_name)
    matches = store.find_notes_by_title_prefix(title)
    if len(matches) == 1:
        return matches[0]
    if matches:
        logger.warning(f"{len(matches)} tasks match {title!r}; refusing to pick one")
    else:
        logger.warning(f"No task matches {title!r}")
    return None


def create_project_tasks(store: BoardStore, project: Project) -> Optional[Note]:
    """Create the project task with one checklist item per stage.

    Skipped (returns None) when a task with the project title already exists.
    """
    if store.find_notes_by_title_prefix(project.task_title, limit=1):
        logger.info(f"Task {project.task_title!r} already exists, not creating another")
        return None

    note = Note(
        title=project.task_title,
        content=project.description,
        due_date=project.end_date,
        consultant_id=project.main_consultant_id,
        client_id=project.client_id,
        service_id=project.service_id,
    )
    for stage in sorted(project.stages, key=lambda s: s.stage_order):
        note.checklists.append(ChecklistItem(
            note_id=note.id,
            title=stage.name,
            description=stage.description,
            completed=stage.completed,
            completed_at=stage.completed_at,
            due_date=stage.end_date,
            responsible_consultant_id=stage.consultant_id,
        ))
    if not store.save_note(note):
        raise NoteError(f"Could not save task for project {project.id}")
    logger.info(f"Created task {note.id} with {len(note.checklists)} checklist item(s)")
    return note


def update_note_status(store: BoardStore, note_id: str, status) -> Note:
    """Move a task to another column of the notes board."""
    new_status = status if isinstance(status, NoteStatus) else NoteStatus(status)
    note = store.get_note(note_id)
    if not note:
        raise NoteError(f"Task {note_id} not found")
    if new_status == NoteStatus.FINALIZADO:
        open_items = [c.title for c in note.checklists if not c.completed]
        if open_items:
            raise IncompleteChecklistError(
                f"Task {note.title!r} has {len(open_items)} open checklist item(s)"
            )
    store.update_note(note_id, status=new_status.value)
    return store.get_note(note_id)


def toggle_checklist(store: BoardStore, checklist_id: str, completed: bool) -> Note:
    """Tick or untick a checklist item and apply the status rules to its task."""
    item = store.get_checklist(checklist_id)
    if not item:
        raise NoteError(f"Checklist item {checklist_id} not found")
    store.update_checklist(
        checklist_id,
        completed=completed,
        completed_at=utc_now() if completed else None,
    )

    note = store.get_note(item.note_id)
    if not note:
        raise NoteError(f"Task {item.note_id} not found")
    if note.status == NoteStatus.CANCELADO:
        return note

    all_done = bool(note.checklists) and all(c.completed for c in note.checklists)
    new_status = note.status
    if completed and all_done:
        new_status = NoteStatus.FINALIZADO
    elif completed and note.status == NoteStatus.A_FAZER:
        new_status = NoteStatus.EM_PRODUCAO
    elif not completed and note.status == NoteStatus.FINALIZADO:
        new_status = NoteStatus.EM_PRODUCAO

    if new_status != note.status:
        store.update_note(note.id, status=new_status.value)
        logger.info(f"Task {note.id} moved to {new_status.value} by checklist")
        note = store.get_note(note.id)
    return note
