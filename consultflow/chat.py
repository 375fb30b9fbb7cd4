"""Chat rooms. Deleting a room only deactivates it."""
import logging
from typing import List, Optional, Dict, Any
from .schema import ChatRoom
from .store import BoardStore

logger = logging.getLogger(__name__)


class ChatError(Exception):
    pass


def create_room(store: BoardStore, name: str, description: str = "",
                project_id: Optional[str] = None) -> ChatRoom:
    name = (name or "").strip()
    if not name:
        raise ChatError("name is required")
    room = ChatRoom(name=name, description=description or "", project_id=project_id)
    if not store.save_chat_room(room):
        raise ChatError(f"Could not create room {name!r}")
    return room


def list_rooms(store: BoardStore, project_id: Optional[str] = None) -> List[ChatRoom]:
    """Active rooms only."""
    return store.list_chat_rooms(active_only=True, project_id=project_id)


def update_room(store: BoardStore, room_id: str, changes: Dict[str, Any]) -> ChatRoom:
    room = store.get_chat_room(room_id)
    if not room:
        raise ChatError(f"Room {room_id} not found")
    fields = {k: v for k, v in changes.items() if k in ("name", "description", "project_id")}
    if "name" in fields and not (fields["name"] or "").strip():
        raise ChatError("name cannot be empty")
    if fields:
        store.update_chat_room(room_id, **fields)
    return store.get_chat_room(room_id)


def delete_room(store: BoardStore, room_id: str) -> bool:
    """Soft delete: the row stays with is_active = false."""
    room = store.get_chat_room(room_id)
    if not room:
        return False
    ok = store.update_chat_room(room_id, is_active=False)
    if ok:
        logger.info(f"Chat room {room_id} deactivated")
    return ok
