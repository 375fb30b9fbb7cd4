"""
User-facing project and stage actions.

Each action applies its change through KanbanSync, records a system_logs row
and then, when auto_process_webhooks is on, drains the webhook queue so the
row-change notifications go out right away.
"""
import logging
from typing import Optional, Dict, Any
from .config import Config
from .schema import utc_now
from .store import BoardStore
from .events import log_system_event
from .kanban_sync import KanbanSync, SyncError, SyncResult
from . import columns as board
from . import webhooks

logger = logging.getLogger(__name__)

COMPLETION_STATUSES = {"finalizados", "concluido", "completed"}
CANCELLATION_STATUSES = {"cancelados", "cancelled", "cancelado"}


class ProjectActions:
    """Project/stage commands with audit logging and webhook draining."""

    def __init__(self, store: BoardStore, config: Optional[Config] = None,
                 sync: Optional[KanbanSync] = None):
        self.store = store
        self.config = config or Config()
        self.sync = sync or KanbanSync(store)

    def _drain(self) -> Optional[Dict[str, int]]:
        if not self.config.auto_process_webhooks:
            return None
        try:
            return webhooks.process_queue(self.store, self.config)
        except Exception as e:
            logger.error(f"Webhook drain after action failed: {e}")
            return None

    def _project_name(self, project_id: str) -> str:
        project = self.store.get_project(project_id)
        return project.name if project else project_id

    # ── Projects ────────────────────────────────────────────────────────────

    def update_project_status(self, project_id: str, column_id: str) -> SyncResult:
        """Move a project on the board (stage guard applies for the completion column)."""
        try:
            result = self.sync.move_project_to_column(project_id, column_id)
        except SyncError as e:
            log_system_event(self.store, "error", "project_action", str(e), {
                "project_id": project_id,
                "column_id": column_id,
            })
            raise
        log_system_event(
            self.store, "info", "project_action",
            f"Project {self._project_name(project_id)!r} moved to {column_id}",
            result.to_dict(),
        )
        self._drain()
        return result

    def complete_project(self, project_id: str) -> SyncResult:
        column = board.completion_column(self.store)
        if not column:
            raise SyncError("No completion column configured")
        return self.update_project_status(project_id, column.column_id)

    def cancel_project(self, project_id: str) -> SyncResult:
        column = board.cancellation_column(self.store)
        if not column:
            raise SyncError("No cancellation column configured")
        return self.update_project_status(project_id, column.column_id)

    # ── Stages ──────────────────────────────────────────────────────────────

    def _stage_or_raise(self, stage_id: str):
        stage = self.store.get_stage(stage_id)
        if not stage:
            raise SyncError(f"Stage {stage_id} not found")
        return stage

    def _after_stage_change(self, stage, message: str, details: Dict[str, Any]) -> Dict[str, Any]:
        column_id = self.sync.sync_stage_to_kanban(stage.project_id, stage.id)
        details = {**details, "stage_id": stage.id, "project_id": stage.project_id,
                   "project_status": column_id}
        log_system_event(self.store, "info", "stage_action", message, details)
        updated = self.store.get_stage(stage.id)
        self.sync.bridge.emit(
            "stage_updated",
            project_id=stage.project_id,
            stage_id=stage.id,
            completed=updated.completed if updated else False,
        )
        self._drain()
        return {"stage": updated, "project_status": column_id}

    def update_stage_status(self, stage_id: str, status: str) -> Dict[str, Any]:
        """Set a stage status; completion statuses also mark the stage complete."""
        stage = self._stage_or_raise(stage_id)
        fields: Dict[str, Any] = {"status": status}
        if status in COMPLETION_STATUSES:
            fields["completed"] = True
            fields["completed_at"] = stage.completed_at or utc_now()
        elif status not in CANCELLATION_STATUSES and stage.completed:
            fields["completed"] = False
            fields["completed_at"] = None
        self.store.update_stage(stage_id, **fields)
        return self._after_stage_change(
            stage, f"Stage {stage.name!r} status set to {status}", {"status": status},
        )

    def complete_stage(self, stage_id: str) -> Dict[str, Any]:
        stage = self._stage_or_raise(stage_id)
        done = board.completion_column(self.store)
        self.store.update_stage(
            stage_id,
            completed=True,
            completed_at=stage.completed_at or utc_now(),
            status=done.column_id if done else board.COMPLETION_COLUMN_ID,
        )
        return self._after_stage_change(stage, f"Stage {stage.name!r} completed", {"completed": True})

    def uncomplete_stage(self, stage_id: str) -> Dict[str, Any]:
        stage = self._stage_or_raise(stage_id)
        self.store.update_stage(stage_id, completed=False, completed_at=None, status="em_producao")
        return self._after_stage_change(stage, f"Stage {stage.name!r} reopened", {"completed": False})

    def delete_stage(self, stage_id: str) -> Dict[str, Any]:
        stage = self._stage_or_raise(stage_id)
        if not self.store.delete_stage(stage_id):
            raise SyncError(f"Could not delete stage {stage_id}")
        column_id = self.sync.sync_stage_to_kanban(stage.project_id)
        log_system_event(self.store, "warning", "stage_action", f"Stage {stage.name!r} deleted", {
            "stage_id": stage_id,
            "project_id": stage.project_id,
            "project_status": column_id,
        })
        self._drain()
        return {"deleted": stage_id, "project_status": column_id}
