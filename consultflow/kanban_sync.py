"""
Status propagation between the project board, project stages and the
mirrored project task.

Forward (board → stages): moving a project to a column completes the stages
the column implies.
    completion column    all stages must already be complete (guard)
    cancellation column  stages take the column as status, completion untouched
    any other column     stages 0..i complete, where i = column position

Reverse (stages → board): the number of completed stages picks the column.

Both directions mirror the result onto the "Projeto: <name>" task.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from .schema import Project, Note, NoteStatus, utc_now
from .store import BoardStore
from .events import SyncEventBridge
from .notes import find_project_task
from . import columns as board

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Raised when a project or column cannot be resolved."""
    pass


class IncompleteStagesError(SyncError):
    """Raised when moving to the completion column with stages still open."""

    def __init__(self, project_name: str, pending: List[str]):
        self.project_name = project_name
        self.pending = pending
        super().__init__(
            f"Project {project_name!r} has {len(pending)} incomplete stage(s): {', '.join(pending)}"
        )


# Board column → task status. Columns not listed fall back by prefix.
TASK_STATUS_MAP = {
    "iniciar_projeto": NoteStatus.A_FAZER,
    "em_producao": NoteStatus.EM_PRODUCAO,
    "finalizados": NoteStatus.FINALIZADO,
    "cancelados": NoteStatus.CANCELADO,
}


def task_status_for_column(column_id: str) -> NoteStatus:
    if column_id in TASK_STATUS_MAP:
        return TASK_STATUS_MAP[column_id]
    if column_id.startswith("aguardando_"):
        return NoteStatus.EM_PRODUCAO
    return NoteStatus.A_FAZER


@dataclass
class SyncResult:
    project_id: str
    column_id: str
    stage_ids: List[str] = field(default_factory=list)
    task_id: Optional[str] = None
    task_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "column_id": self.column_id,
            "stage_ids": self.stage_ids,
            "task_id": self.task_id,
            "task_status": self.task_status,
        }


class KanbanSync:
    """Applies the propagation rules against a BoardStore."""

    def __init__(self, store: BoardStore, bridge: Optional[SyncEventBridge] = None):
        self.store = store
        self.bridge = bridge or SyncEventBridge(store)

    # ── Forward ─────────────────────────────────────────────────────────────

    def move_project_to_column(self, project_id: str, column_id: str) -> SyncResult:
        project = self.store.get_project(project_id)
        if not project:
            raise SyncError(f"Project {project_id} not found")

        ordered = board.list_columns(self.store)
        position = next((i for i, c in enumerate(ordered) if c.column_id == column_id), None)
        if position is None:
            raise SyncError(f"Column {column_id} not found")
        destination = ordered[position]

        if destination.is_completion_column:
            pending = [s.name for s in project.stages if not s.completed]
            if pending:
                raise IncompleteStagesError(project.name, pending)

        now = utc_now()
        updated: List[str] = []

        if destination.is_completion_column:
            for stage in project.stages:
                fields = {"completed": True, "status": column_id}
                if not stage.completed_at:
                    fields["completed_at"] = now
                self.store.update_stage(stage.id, **fields)
                updated.append(stage.id)
        elif destination.is_cancellation_column:
            for stage in project.stages:
                self.store.update_stage(stage.id, status=column_id)
                updated.append(stage.id)
        else:
            done = board.completion_column(self.store)
            done_status = done.column_id if done else board.COMPLETION_COLUMN_ID
            # Stages beyond the column position keep their state
            for stage in project.stages[:position + 1]:
                fields = {
                    "completed": True,
                    "status": done_status,
                    "client_approved": True,
                    "manager_approved": True,
                }
                if not stage.completed_at:
                    fields["completed_at"] = now
                self.store.update_stage(stage.id, **fields)
                updated.append(stage.id)

        self.store.update_project(project_id, status=column_id)
        logger.info(f"Project {project_id} moved to {column_id} ({len(updated)} stage(s) updated)")

        result = SyncResult(project_id=project_id, column_id=column_id, stage_ids=updated)
        task = self.mirror_task(project_id, column_id)
        if task:
            result.task_id = task.id
            result.task_status = task.status.value

        self.bridge.emit(
            "project_moved",
            project_id=project_id,
            column_id=column_id,
            stage_ids=updated,
            task_id=result.task_id,
        )
        return result

    # ── Reverse ─────────────────────────────────────────────────────────────

    def target_column_for(self, project: Project) -> Optional[str]:
        """Column implied by the completed-stage count, or None when nothing is complete."""
        total = len(project.stages)
        done = project.completed_stages
        if total == 0 or done == 0:
            return None
        progression = board.progression_columns(self.store)
        if done == total:
            completion = board.completion_column(self.store)
            if completion:
                return completion.column_id
            return progression[-1].column_id if progression else None
        if not progression:
            return None
        return progression[min(done - 1, len(progression) - 1)].column_id

    def sync_stage_to_kanban(self, project_id: str, stage_id: Optional[str] = None) -> Optional[str]:
        """Recompute a project's column after a stage change. Returns the new column_id."""
        project = self.store.get_project(project_id)
        if not project or not project.stages:
            return None
        if stage_id and stage_id not in {s.id for s in project.stages}:
            logger.warning(f"Stage {stage_id} does not belong to project {project_id}")
            return None

        target = self.target_column_for(project)
        if target is None:
            return None

        if target != project.status:
            self.store.update_project(project_id, status=target)
            logger.info(f"Project {project_id} follows its stages to {target}")
        task = self.mirror_task(project_id, target)
        self.bridge.emit(
            "project_moved",
            project_id=project_id,
            column_id=target,
            stage_ids=[stage_id] if stage_id else [],
            task_id=task.id if task else None,
        )
        return target

    # ── Task mirror ─────────────────────────────────────────────────────────

    def mirror_task(self, project_id: str, column_id: str) -> Optional[Note]:
        """Best effort: failures are logged and never undo the board move."""
        try:
            project = self.store.get_project(project_id)
            if not project:
                return None
            task = find_project_task(self.store, project.name)
            if not task:
                return None

            status = task_status_for_column(column_id)
            if task.status != status:
                self.store.update_note(task.id, status=status.value)

            stages = {s.name: s for s in project.stages}
            now = utc_now()
            for item in task.checklists:
                stage = stages.get(item.title)
                if stage is None or item.completed == stage.completed:
                    continue
                self.store.update_checklist(
                    item.id,
                    completed=stage.completed,
                    completed_at=(stage.completed_at or now) if stage.completed else None,
                )

            self.bridge.emit("task_updated", note_id=task.id, status=status.value)
            return self.store.get_note(task.id)
        except Exception as e:
            logger.warning(f"Task mirror failed for project {project_id}: {e}")
            return None
