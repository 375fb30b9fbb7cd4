"""
Board storage backend (SQLite).

Provides CRUD operations and queries for projects, stages, board columns,
tasks, chat rooms, webhooks, the webhook queue and the log tables.
"""
import sqlite3
import json
import logging
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable
from .schema import (
    Project, Stage, KanbanColumn, Note, NoteStatus, ChecklistItem, ChatRoom,
    Webhook, WebhookQueueItem, WebhookLog, utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "consultflow" / "consultflow.db"

# Tables a caller may patch through _update(); guards the dynamic SQL.
_UPDATABLE = {
    "projects": {
        "name", "description", "status", "client_id", "service_id",
        "main_consultant_id", "support_consultant_id", "start_date", "end_date",
        "total_value", "tags",
    },
    "project_stages": {
        "name", "description", "stage_order", "status", "completed", "completed_at",
        "start_date", "end_date", "value", "hours", "days", "consultant_id",
        "client_approved", "manager_approved",
    },
    "kanban_columns": {
        "title", "bg_color", "order_index", "is_default",
        "is_completion_column", "is_cancellation_column",
    },
    "notes": {
        "title", "content", "status", "color", "due_date", "consultant_id",
        "client_id", "service_id",
    },
    "note_checklists": {
        "title", "description", "completed", "completed_at", "due_date",
        "responsible_consultant_id",
    },
    "chat_rooms": {"name", "description", "project_id", "is_active"},
    "webhooks": {"url", "events", "tables", "secret_key", "is_active"},
}

_JSON_FIELDS = {"tags", "events", "tables"}

REFERENCE_TABLES = ("clients", "consultants", "services")


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _to_db(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    if isinstance(value, NoteStatus):
        return value.value
    return value


class BoardStore:
    """SQLite-backed store for the consultancy board."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(DEFAULT_DB_PATH)
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def connect(self) -> sqlite3.Connection:
        return _connect(self.db_path)

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            for table in REFERENCE_TABLES:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT,
                        phone TEXT,
                        data TEXT,  -- JSON: any extra fields
                        created_at TEXT NOT NULL
                    )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    status TEXT DEFAULT 'iniciar_projeto',
                    client_id TEXT,
                    service_id TEXT,
                    main_consultant_id TEXT,
                    support_consultant_id TEXT,
                    start_date TEXT,
                    end_date TEXT,
                    total_value REAL DEFAULT 0,
                    tags TEXT,  -- JSON list
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS project_stages (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    stage_order INTEGER DEFAULT 1,
                    status TEXT DEFAULT 'iniciar_projeto',
                    completed INTEGER DEFAULT 0,
                    completed_at TEXT,
                    start_date TEXT,
                    end_date TEXT,
                    value REAL DEFAULT 0,
                    hours REAL DEFAULT 8,
                    days INTEGER DEFAULT 1,
                    consultant_id TEXT,
                    client_approved INTEGER DEFAULT 0,
                    manager_approved INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kanban_columns (
                    id TEXT PRIMARY KEY,
                    column_id TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    bg_color TEXT DEFAULT 'bg-gray-50',
                    order_index INTEGER DEFAULT 0,
                    is_default INTEGER DEFAULT 0,
                    is_completion_column INTEGER DEFAULT 0,
                    is_cancellation_column INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT DEFAULT '',
                    status TEXT DEFAULT 'a_fazer',
                    color TEXT DEFAULT '',
                    due_date TEXT,
                    consultant_id TEXT,
                    client_id TEXT,
                    service_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS note_checklists (
                    id TEXT PRIMARY KEY,
                    note_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    completed INTEGER DEFAULT 0,
                    completed_at TEXT,
                    due_date TEXT,
                    responsible_consultant_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chat_rooms (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    project_id TEXT,
                    is_active INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS webhooks (
                    id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    events TEXT NOT NULL,  -- JSON list
                    tables TEXT NOT NULL,  -- JSON list
                    secret_key TEXT,
                    is_active INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS webhook_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    webhook_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    payload TEXT,  -- opaque JSON
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS webhook_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    webhook_id TEXT,
                    event_type TEXT,
                    table_name TEXT,
                    payload TEXT,
                    success INTEGER NOT NULL DEFAULT 0,
                    response_status INTEGER,
                    response_body TEXT,
                    error TEXT,
                    attempt_count INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS system_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    log_type TEXT NOT NULL,
                    category TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details TEXT,  -- JSON object
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_stages_project ON project_stages(project_id, stage_order)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_checklists_note ON note_checklists(note_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_webhook_logs_created ON webhook_logs(created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_system_logs_created ON system_logs(created_at)")
            conn.commit()

    # ── Generic helpers ─────────────────────────────────────────────────────

    def _update(self, table: str, row_id: str, fields: Dict[str, Any]) -> bool:
        """Patch selected columns of one row. Unknown columns raise ValueError."""
        allowed = _UPDATABLE[table]
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update {table} columns: {sorted(unknown)}")
        if not fields:
            return True
        values = dict(fields)
        if table not in ("chat_rooms", "webhooks"):
            values["updated_at"] = utc_now()
        assignments = ", ".join(f"{col} = ?" for col in values)
        params = [_to_db(v) for v in values.values()] + [row_id]
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", params)
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Error updating {table} {row_id}: {e}")
            return False

    def table_columns(self, table: str) -> List[str]:
        with _connect(self.db_path) as conn:
            return [row["name"] for row in conn.execute(f"PRAGMA table_info({table})")]

    def execute_script(self, sql: str) -> None:
        """Run DDL (trigger installation). Errors propagate to the caller."""
        with _connect(self.db_path) as conn:
            conn.executescript(sql)

    # ── Reference rows (clients, consultants, services) ─────────────────────

    def save_reference(self, table: str, row: Dict[str, Any]) -> bool:
        if table not in REFERENCE_TABLES:
            raise ValueError(f"Not a reference table: {table}")
        extra = {k: v for k, v in row.items() if k not in ("id", "name", "email", "phone", "created_at")}
        try:
            with _connect(self.db_path) as conn:
                conn.execute(f"""
                    INSERT INTO {table} (id, name, email, phone, data, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name=excluded.name, email=excluded.email,
                        phone=excluded.phone, data=excluded.data
                """, (
                    row["id"], row.get("name", ""), row.get("email"), row.get("phone"),
                    json.dumps(extra), row.get("created_at") or utc_now(),
                ))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error saving {table} {row.get('id')}: {e}")
            return False

    def get_reference(self, table: str, row_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if table not in REFERENCE_TABLES or not row_id:
            return None
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Error retrieving {table} {row_id}: {e}")
            return None
        if not row:
            return None
        data = dict(row)
        extra = data.pop("data", None)
        if extra:
            try:
                data.update(json.loads(extra))
            except (json.JSONDecodeError, TypeError):
                pass
        return data

    # ── Projects and stages ─────────────────────────────────────────────────

    def save_project(self, project: Project) -> bool:
        """Upsert a project and its stages."""
        data = project.to_dict(include_stages=False)
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO projects
                    (id, name, description, status, client_id, service_id,
                     main_consultant_id, support_consultant_id, start_date, end_date,
                     total_value, tags, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name=excluded.name, description=excluded.description,
                        status=excluded.status, client_id=excluded.client_id,
                        service_id=excluded.service_id,
                        main_consultant_id=excluded.main_consultant_id,
                        support_consultant_id=excluded.support_consultant_id,
                        start_date=excluded.start_date, end_date=excluded.end_date,
                        total_value=excluded.total_value, tags=excluded.tags,
                        updated_at=excluded.updated_at
                """, (
                    data["id"], data["name"], data["description"], data["status"],
                    data["client_id"], data["service_id"], data["main_consultant_id"],
                    data["support_consultant_id"], data["start_date"], data["end_date"],
                    data["total_value"], json.dumps(data["tags"]),
                    data["created_at"], data["updated_at"],
                ))
                for stage in project.stages:
                    stage.project_id = project.id
                    self._upsert_stage(conn, stage)
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error saving project {project.id}: {e}")
            return False

    def _upsert_stage(self, conn: sqlite3.Connection, stage: Stage):
        d = stage.to_dict()
        conn.execute("""
            INSERT INTO project_stages
            (id, project_id, name, description, stage_order, status, completed,
             completed_at, start_date, end_date, value, hours, days, consultant_id,
             client_approved, manager_approved, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, description=excluded.description,
                stage_order=excluded.stage_order, status=excluded.status,
                completed=excluded.completed, completed_at=excluded.completed_at,
                start_date=excluded.start_date, end_date=excluded.end_date,
                value=excluded.value, hours=excluded.hours, days=excluded.days,
                consultant_id=excluded.consultant_id,
                client_approved=excluded.client_approved,
                manager_approved=excluded.manager_approved,
                updated_at=excluded.updated_at
        """, (
            d["id"], d["project_id"], d["name"], d["description"], d["stage_order"],
            d["status"], _to_db(d["completed"]), d["completed_at"], d["start_date"],
            d["end_date"], d["value"], d["hours"], d["days"], d["consultant_id"],
            _to_db(d["client_approved"]), _to_db(d["manager_approved"]),
            d["created_at"], d["updated_at"],
        ))

    def get_project(self, project_id: str) -> Optional[Project]:
        """Retrieve a project by ID with its stages in stage_order."""
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
                if not row:
                    return None
                project = Project.from_dict(dict(row))
                stages = conn.execute(
                    "SELECT * FROM project_stages WHERE project_id = ? ORDER BY stage_order ASC, created_at ASC",
                    (project_id,),
                ).fetchall()
                project.stages = [Stage.from_dict(dict(s)) for s in stages]
                return project
        except sqlite3.Error as e:
            logger.error(f"Error retrieving project {project_id}: {e}")
            return None

    def list_projects(self, limit: int = 500) -> List[Project]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT id FROM projects ORDER BY created_at DESC LIMIT ?", (limit,)
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error listing projects: {e}")
            return []
        return [p for p in (self.get_project(r["id"]) for r in rows) if p]

    def update_project(self, project_id: str, **fields) -> bool:
        return self._update("projects", project_id, fields)

    def delete_project(self, project_id: str) -> bool:
        try:
            with _connect(self.db_path) as conn:
                conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error deleting project {project_id}: {e}")
            return False

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM project_stages WHERE id = ?", (stage_id,)).fetchone()
            return Stage.from_dict(dict(row)) if row else None
        except sqlite3.Error as e:
            logger.error(f"Error retrieving stage {stage_id}: {e}")
            return None

    def list_stages(self, project_id: str) -> List[Stage]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM project_stages WHERE project_id = ? ORDER BY stage_order ASC, created_at ASC",
                    (project_id,),
                ).fetchall()
            return [Stage.from_dict(dict(r)) for r in rows]
        except sqlite3.Error as e:
            logger.error(f"Error listing stages for project {project_id}: {e}")
            return []

    def update_stage(self, stage_id: str, **fields) -> bool:
        return self._update("project_stages", stage_id, fields)

    def delete_stage(self, stage_id: str) -> bool:
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("DELETE FROM project_stages WHERE id = ?", (stage_id,))
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Error deleting stage {stage_id}: {e}")
            return False

    # ── Board columns ───────────────────────────────────────────────────────

    def save_column(self, column: KanbanColumn) -> bool:
        d = column.to_dict()
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO kanban_columns
                    (id, column_id, title, bg_color, order_index, is_default,
                     is_completion_column, is_cancellation_column, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title=excluded.title, bg_color=excluded.bg_color,
                        order_index=excluded.order_index, is_default=excluded.is_default,
                        is_completion_column=excluded.is_completion_column,
                        is_cancellation_column=excluded.is_cancellation_column,
                        updated_at=excluded.updated_at
                """, (
                    d["id"], d["column_id"], d["title"], d["bg_color"], d["order_index"],
                    _to_db(d["is_default"]), _to_db(d["is_completion_column"]),
                    _to_db(d["is_cancellation_column"]), d["created_at"], d["updated_at"],
                ))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error saving column {column.column_id}: {e}")
            return False

    def list_columns(self) -> List[KanbanColumn]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM kanban_columns ORDER BY order_index ASC, created_at ASC"
                ).fetchall()
            return [KanbanColumn.from_dict(dict(r)) for r in rows]
        except sqlite3.Error as e:
            logger.error(f"Error listing columns: {e}")
            return []

    def get_column(self, row_id: str) -> Optional[KanbanColumn]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM kanban_columns WHERE id = ?", (row_id,)).fetchone()
        return KanbanColumn.from_dict(dict(row)) if row else None

    def count_default_columns(self) -> int:
        with _connect(self.db_path) as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM kanban_columns WHERE is_default = 1"
            ).fetchone()[0]

    def update_column(self, row_id: str, **fields) -> bool:
        return self._update("kanban_columns", row_id, fields)

    def delete_column(self, row_id: str) -> bool:
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("DELETE FROM kanban_columns WHERE id = ?", (row_id,))
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Error deleting column {row_id}: {e}")
            return False

    # ── Notes (tasks) and checklists ────────────────────────────────────────

    def save_note(self, note: Note) -> bool:
        d = note.to_dict()
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO notes
                    (id, title, content, status, color, due_date, consultant_id,
                     client_id, service_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title=excluded.title, content=excluded.content,
                        status=excluded.status, color=excluded.color,
                        due_date=excluded.due_date, consultant_id=excluded.consultant_id,
                        client_id=excluded.client_id, service_id=excluded.service_id,
                        updated_at=excluded.updated_at
                """, (
                    d["id"], d["title"], d["content"], d["status"], d["color"],
                    d["due_date"], d["consultant_id"], d["client_id"], d["service_id"],
                    d["created_at"], d["updated_at"],
                ))
                for item in note.checklists:
                    item.note_id = note.id
                    self._insert_checklist(conn, item)
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error saving note {note.id}: {e}")
            return False

    def _insert_checklist(self, conn: sqlite3.Connection, item: ChecklistItem):
        d = item.to_dict()
        conn.execute("""
            INSERT OR REPLACE INTO note_checklists
            (id, note_id, title, description, completed, completed_at, due_date,
             responsible_consultant_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            d["id"], d["note_id"], d["title"], d["description"], _to_db(d["completed"]),
            d["completed_at"], d["due_date"], d["responsible_consultant_id"],
            d["created_at"], d["updated_at"],
        ))

    def get_note(self, note_id: str) -> Optional[Note]:
        """Retrieve a note with its checklist items."""
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
                if not row:
                    return None
                note = Note.from_dict(dict(row))
                items = conn.execute(
                    "SELECT * FROM note_checklists WHERE note_id = ? ORDER BY created_at ASC, rowid ASC",
                    (note_id,),
                ).fetchall()
                note.checklists = [ChecklistItem.from_dict(dict(i)) for i in items]
                return note
        except sqlite3.Error as e:
            logger.error(f"Error retrieving note {note_id}: {e}")
            return None

    def find_notes_by_title_prefix(self, prefix: str, limit: int = 10) -> List[Note]:
        """Case-insensitive title prefix match (LIKE wildcards in the prefix are escaped)."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT id FROM notes WHERE title LIKE ? ESCAPE '\\' ORDER BY created_at ASC LIMIT ?",
                    (escaped + "%", limit),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error searching notes by title {prefix!r}: {e}")
            return []
        return [n for n in (self.get_note(r["id"]) for r in rows) if n]

    def update_note(self, note_id: str, **fields) -> bool:
        return self._update("notes", note_id, fields)

    def get_checklist(self, checklist_id: str) -> Optional[ChecklistItem]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM note_checklists WHERE id = ?", (checklist_id,)).fetchone()
        return ChecklistItem.from_dict(dict(row)) if row else None

    def update_checklist(self, checklist_id: str, **fields) -> bool:
        return self._update("note_checklists", checklist_id, fields)


    def save_chat_room(self, room: ChatRoom) -> bool:
        d = room.to_dict()
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO chat_rooms (id, name, description, project_id, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name=excluded.name, description=excluded.description,
                        project_id=excluded.project_id, is_active=excluded.is_active
                """, (
                    d["id"], d["name"], d["description"], d["project_id"],
                    _to_db(d["is_active"]), d["created_at"],
                ))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error saving chat room {room.id}: {e}")
            return False

    def get_chat_room(self, room_id: str) -> Optional[ChatRoom]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM chat_rooms WHERE id = ?", (room_id,)).fetchone()
        return ChatRoom.from_dict(dict(row)) if row else None

    def list_chat_rooms(self, active_only: bool = True, project_id: Optional[str] = None) -> List[ChatRoom]:
        query = "SELECT * FROM chat_rooms WHERE 1 = 1"
        params: list = []
        if active_only:
            query += " AND is_active = 1"
        if project_id:
            query += " AND project_id = ?"
            params.append(project_id)
        query += " ORDER BY created_at DESC"
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(query, params).fetchall()
            return [ChatRoom.from_dict(dict(r)) for r in rows]
        except sqlite3.Error as e:
            logger.error(f"Error listing chat rooms: {e}")
            return []

    def update_chat_room(self, room_id: str, **fields) -> bool:
        return self._update("chat_rooms", room_id, fields)

    # ── Webhooks ────────────────────────────────────────────────────────────

    def save_webhook(self, webhook: Webhook) -> bool:
        d = webhook.to_dict()
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO webhooks (id, url, events, tables, secret_key, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        url=excluded.url, events=excluded.events, tables=excluded.tables,
                        secret_key=excluded.secret_key, is_active=excluded.is_active
                """, (
                    d["id"], d["url"], json.dumps(d["events"]), json.dumps(d["tables"]),
                    d["secret_key"], _to_db(d["is_active"]), d["created_at"],
                ))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error saving webhook {webhook.id}: {e}")
            return False

    def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM webhooks WHERE id = ?", (webhook_id,)).fetchone()
            return Webhook.from_dict(dict(row)) if row else None
        except sqlite3.Error as e:
            logger.error(f"Error retrieving webhook {webhook_id}: {e}")
            return None

    def list_webhooks(self, active_only: bool = False) -> List[Webhook]:
        query = "SELECT * FROM webhooks"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC"
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(query).fetchall()
            return [Webhook.from_dict(dict(r)) for r in rows]
        except sqlite3.Error as e:
            logger.error(f"Error listing webhooks: {e}")
            return []

    def update_webhook(self, webhook_id: str, **fields) -> bool:
        return self._update("webhooks", webhook_id, fields)

    def delete_webhook(self, webhook_id: str) -> bool:
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,))
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Error deleting webhook {webhook_id}: {e}")
            return False

    # ── Webhook queue ───────────────────────────────────────────────────────

    def enqueue(self, item: WebhookQueueItem) -> Optional[int]:
        """Add a pending delivery. Returns the queue row id."""
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("""
                    INSERT INTO webhook_queue (webhook_id, event_type, table_name, payload, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    item.webhook_id, item.event_type, item.table_name,
                    json.dumps(item.payload), item.created_at,
                ))
                conn.commit()
                item.id = cur.lastrowid
                return item.id
        except sqlite3.Error as e:
            logger.error(f"Error enqueueing webhook {item.webhook_id}: {e}")
            return None

    def fetch_pending(self, limit: int = 10) -> List[WebhookQueueItem]:
        """Oldest pending queue rows first, by insertion order."""
        try:
            with _connect(self.db_path) as conn:
                # created_at mixes trigger and Python timestamp formats; id is monotonic
                rows = conn.execute(
                    "SELECT * FROM webhook_queue ORDER BY id ASC LIMIT ?",
                    (limit,),
                ).fetchall()
            return [WebhookQueueItem.from_dict(dict(r)) for r in rows]
        except sqlite3.Error as e:
            logger.error(f"Error fetching webhook queue: {e}")
            return []

    def delete_queue_item(self, item_id: int) -> bool:
        try:
            with _connect(self.db_path) as conn:
                conn.execute("DELETE FROM webhook_queue WHERE id = ?", (item_id,))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error deleting queue row {item_id}: {e}")
            return False

    def count_pending(self) -> int:
        with _connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM webhook_queue").fetchone()[0]

    # ── Logs ────────────────────────────────────────────────────────────────

    def add_webhook_log(self, log: WebhookLog) -> Optional[int]:
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("""
                    INSERT INTO webhook_logs
                    (webhook_id, event_type, table_name, payload, success, response_status,
                     response_body, error, attempt_count, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    log.webhook_id, log.event_type, log.table_name, json.dumps(log.payload),
                    _to_db(log.success), log.response_status, log.response_body,
                    log.error, log.attempt_count, log.created_at,
                ))
                conn.commit()
                log.id = cur.lastrowid
                return log.id
        except sqlite3.Error as e:
            logger.error(f"Error writing webhook log for {log.webhook_id}: {e}")
            return None

    def list_webhook_logs(self, webhook_id: Optional[str] = None, limit: int = 50) -> List[WebhookLog]:
        """Most recent delivery logs first."""
        query = "SELECT * FROM webhook_logs"
        params: list = []
        if webhook_id:
            query += " WHERE webhook_id = ?"
            params.append(webhook_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(query, params).fetchall()
            return [WebhookLog.from_dict(dict(r)) for r in rows]
        except sqlite3.Error as e:
            logger.error(f"Error listing webhook logs: {e}")
            return []

    def add_system_log(self, log_type: str, category: str, message: str,
                       details: Optional[Dict[str, Any]] = None) -> Optional[int]:
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("""
                    INSERT INTO system_logs (log_type, category, message, details, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (log_type, category, message, json.dumps(details or {}), utc_now()))
                conn.commit()
                return cur.lastrowid
        except sqlite3.Error as e:
            logger.error(f"Error writing system log ({category}): {e}")
            return None

    def list_system_logs(self, category: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        query = "SELECT * FROM system_logs"
        params: list = []
        if category:
            query += " WHERE category = ?"
            params.append(category)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error listing system logs: {e}")
            return []
        logs = []
        for row in rows:
            entry = dict(row)
            try:
                entry["details"] = json.loads(entry["details"]) if entry["details"] else {}
            except (json.JSONDecodeError, TypeError):
                entry["details"] = {}
            logs.append(entry)
        return logs

    def iter_tables(self) -> Iterable[str]:
        with _connect(self.db_path) as conn:
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'"):
                yield row["name"]
