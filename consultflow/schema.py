"""
Row schema for the consultancy board.

Project lifecycle on the board:
  iniciar_projeto → em_producao → aguardando_* → finalizados
                                               ↘ cancelados

Each project owns ordered stages; a project's board column decides which
stages are complete. A mirrored task ("Projeto: <name>") tracks the project
in the notes board with one checklist item per stage.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import json
import uuid


def utc_now() -> str:
    """ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _json_list(value) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
            return parsed if isinstance(parsed, list) else []
        except (json.JSONDecodeError, TypeError):
            return []
    return []


def _json_obj(value) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value
    return value


class NoteStatus(Enum):
    """Columns of the notes (task) board."""
    A_FAZER = "a_fazer"
    EM_PRODUCAO = "em_producao"
    FINALIZADO = "finalizado"
    CANCELADO = "cancelado"

    @classmethod
    def from_str(cls, value: str) -> "NoteStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.A_FAZER


class WebhookEvent(Enum):
    """Row events a webhook can subscribe to."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class KanbanColumn:
    """A configurable status bucket on the project board."""
    column_id: str                  # Status slug stored on projects (e.g. "em_producao")
    title: str
    order_index: int = 0
    bg_color: str = "bg-gray-50"
    is_default: bool = False
    is_completion_column: bool = False
    is_cancellation_column: bool = False
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.is_completion_column or self.is_cancellation_column

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "column_id": self.column_id,
            "title": self.title,
            "bg_color": self.bg_color,
            "order_index": self.order_index,
            "is_default": self.is_default,
            "is_completion_column": self.is_completion_column,
            "is_cancellation_column": self.is_cancellation_column,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KanbanColumn":
        return cls(
            id=data.get("id") or new_id(),
            column_id=data.get("column_id", ""),
            title=data.get("title", ""),
            bg_color=data.get("bg_color") or "bg-gray-50",
            order_index=int(data.get("order_index") or 0),
            is_default=bool(data.get("is_default", False)),
            is_completion_column=bool(data.get("is_completion_column", False)),
            is_cancellation_column=bool(data.get("is_cancellation_column", False)),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class Stage:
    """A sub-phase of a project with its own dates, value and completion flag."""
    project_id: str
    name: str
    stage_order: int = 1
    description: str = ""
    status: str = "iniciar_projeto"
    completed: bool = False
    completed_at: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    value: float = 0.0
    hours: float = 8.0
    days: int = 1
    consultant_id: Optional[str] = None
    client_approved: bool = False
    manager_approved: bool = False
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "stage_order": self.stage_order,
            "status": self.status,
            "completed": self.completed,
            "completed_at": self.completed_at,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "value": self.value,
            "hours": self.hours,
            "days": self.days,
            "consultant_id": self.consultant_id,
            "client_approved": self.client_approved,
            "manager_approved": self.manager_approved,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stage":
        return cls(
            id=data.get("id") or new_id(),
            project_id=data.get("project_id", ""),
            name=data.get("name", ""),
            description=data.get("description") or "",
            stage_order=int(data.get("stage_order") or 1),
            status=data.get("status") or "iniciar_projeto",
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completed_at"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            value=float(data.get("value") or 0),
            hours=float(data.get("hours") or 0),
            days=int(data.get("days") or 0),
            consultant_id=data.get("consultant_id"),
            client_approved=bool(data.get("client_approved", False)),
            manager_approved=bool(data.get("manager_approved", False)),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class Project:
    """A client engagement tracked on the board."""
    name: str
    description: str = ""
    status: str = "iniciar_projeto"   # Kanban column_id
    client_id: Optional[str] = None
    service_id: Optional[str] = None
    main_consultant_id: Optional[str] = None
    support_consultant_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    total_value: float = 0.0
    tags: List[str] = field(default_factory=list)
    stages: List[Stage] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def task_title(self) -> str:
        """Title of the mirrored task in the notes board."""
        return f"Projeto: {self.name}"

    @property
    def completed_stages(self) -> int:
        return sum(1 for s in self.stages if s.completed)

    def to_dict(self, include_stages: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "client_id": self.client_id,
            "service_id": self.service_id,
            "main_consultant_id": self.main_consultant_id,
            "support_consultant_id": self.support_consultant_id,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "total_value": self.total_value,
            "tags": self.tags,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_stages:
            data["stages"] = [s.to_dict() for s in self.stages]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        project = cls(
            id=data.get("id") or new_id(),
            name=data.get("name", ""),
            description=data.get("description") or "",
            status=data.get("status") or "iniciar_projeto",
            client_id=data.get("client_id"),
            service_id=data.get("service_id"),
            main_consultant_id=data.get("main_consultant_id"),
            support_consultant_id=data.get("support_consultant_id"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            total_value=float(data.get("total_value") or 0),
            tags=_json_list(data.get("tags")),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )
        for i, raw in enumerate(data.get("stages") or []):
            stage = Stage.from_dict({"stage_order": i + 1, **raw, "project_id": project.id})
            project.stages.append(stage)
        return project


@dataclass
class ChecklistItem:
    """One checklist line of a task; project tasks get one per stage."""
    note_id: str
    title: str
    description: str = ""
    completed: bool = False
    completed_at: Optional[str] = None
    due_date: Optional[str] = None
    responsible_consultant_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "note_id": self.note_id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "completed_at": self.completed_at,
            "due_date": self.due_date,
            "responsible_consultant_id": self.responsible_consultant_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChecklistItem":
        return cls(
            id=data.get("id") or new_id(),
            note_id=data.get("note_id", ""),
            title=data.get("title", ""),
            description=data.get("description") or "",
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completed_at"),
            due_date=data.get("due_date"),
            responsible_consultant_id=data.get("responsible_consultant_id"),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class Note:
    """A task on the notes board."""
    title: str
    content: str = ""
    status: NoteStatus = NoteStatus.A_FAZER
    color: str = ""
    due_date: Optional[str] = None
    consultant_id: Optional[str] = None
    client_id: Optional[str] = None
    service_id: Optional[str] = None
    checklists: List[ChecklistItem] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "status": self.status.value,
            "color": self.color,
            "due_date": self.due_date,
            "consultant_id": self.consultant_id,
            "client_id": self.client_id,
            "service_id": self.service_id,
            "checklists": [c.to_dict() for c in self.checklists],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Note":
        return cls(
            id=data.get("id") or new_id(),
            title=data.get("title", ""),
            content=data.get("content") or "",
            status=NoteStatus.from_str(data.get("status") or "a_fazer"),
            color=data.get("color") or "",
            due_date=data.get("due_date"),
            consultant_id=data.get("consultant_id"),
            client_id=data.get("client_id"),
            service_id=data.get("service_id"),
            checklists=[ChecklistItem.from_dict(c) for c in data.get("checklists") or []],
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class ChatRoom:
    name: str
    description: str = ""
    project_id: Optional[str] = None
    is_active: bool = True
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "project_id": self.project_id,
            "is_active": self.is_active,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatRoom":
        return cls(
            id=data.get("id") or new_id(),
            name=data.get("name", ""),
            description=data.get("description") or "",
            project_id=data.get("project_id"),
            is_active=bool(data.get("is_active", True)),
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class Webhook:
    """An outbound subscription: which table events go to which URL."""
    url: str
    events: List[str] = field(default_factory=list)   # INSERT / UPDATE / DELETE
    tables: List[str] = field(default_factory=list)
    secret_key: Optional[str] = None
    is_active: bool = True
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)

    def subscribes_to(self, table: str, event: str) -> bool:
        return self.is_active and table in self.tables and event in self.events

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "events": self.events,
            "tables": self.tables,
            "secret_key": self.secret_key,
            "is_active": self.is_active,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Webhook":
        return cls(
            id=data.get("id") or new_id(),
            url=data.get("url", ""),
            events=_json_list(data.get("events")),
            tables=_json_list(data.get("tables")),
            secret_key=data.get("secret_key") or None,
            is_active=bool(data.get("is_active", True)),
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class WebhookQueueItem:
    """A pending outbound notification. The payload is opaque JSON."""
    webhook_id: str
    event_type: str
    table_name: str
    payload: Any = None
    id: Optional[int] = None        # autoincrement, assigned by the store
    created_at: str = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookQueueItem":
        return cls(
            id=data.get("id"),
            webhook_id=data.get("webhook_id", ""),
            event_type=data.get("event_type", ""),
            table_name=data.get("table_name", ""),
            payload=_json_obj(data.get("payload")),
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class WebhookLog:
    """Evidence of one delivery attempt."""
    webhook_id: str
    event_type: str
    table_name: str
    success: bool
    payload: Any = None
    response_status: Optional[int] = None
    response_body: str = ""
    error: str = ""
    attempt_count: int = 1
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "webhook_id": self.webhook_id,
            "event_type": self.event_type,
            "table_name": self.table_name,
            "payload": self.payload,
            "success": self.success,
            "response_status": self.response_status,
            "response_body": self.response_body,
            "error": self.error,
            "attempt_count": self.attempt_count,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookLog":
        return cls(
            id=data.get("id"),
            webhook_id=data.get("webhook_id", ""),
            event_type=data.get("event_type", ""),
            table_name=data.get("table_name", ""),
            payload=_json_obj(data.get("payload")),
            success=bool(data.get("success", False)),
            response_status=data.get("response_status"),
            response_body=data.get("response_body") or "",
            error=data.get("error") or "",
            attempt_count=int(data.get("attempt_count") or 1),
            created_at=data.get("created_at") or utc_now(),
        )
