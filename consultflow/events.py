"""
Event bridge: fans board changes out to in-process subscribers and records
business events in the system_logs table.

Events emitted by the sync and action layers:
    project_moved   project_id, column_id, stage_ids, task_id
    stage_updated   project_id, stage_id, completed
    task_updated    note_id, status
"""
import logging
from typing import Optional, Dict, Any, Callable, List
from .store import BoardStore

logger = logging.getLogger(__name__)

LOG_TYPES = {"info", "warning", "error", "success"}


class SyncEventBridge:
    """Routes board change notifications to registered callbacks."""

    def __init__(self, store: BoardStore):
        self.store = store
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def _emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. A failing callback does not stop the others."""
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    def emit(self, event_type: str, **kwargs) -> None:
        self._emit(event_type, **kwargs)


def log_system_event(
    store: BoardStore,
    log_type: str,
    category: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[int]:
    """
    Record a business event in system_logs.

    Args:
        store: BoardStore instance
        log_type: "info" | "warning" | "error" | "success"
        category: e.g. "project_action", "stage_action", "webhook"
        message: Short human-readable line
        details: Optional JSON-serialisable context

    Returns:
        Log row id, or None if the write failed
    """
    if log_type not in LOG_TYPES:
        raise ValueError(f"Invalid log_type: {log_type}")
    log_fn = logger.warning if log_type in ("warning", "error") else logger.info
    log_fn(f"[{category}] {message}")
    return store.add_system_log(log_type, category, message, details)


def get_recent_logs(store: BoardStore, category: Optional[str] = None, limit: int = 50) -> List[dict]:
    """Recent system logs, most recent first, optionally filtered by category."""
    return store.list_system_logs(category=category, limit=limit)
