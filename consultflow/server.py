#!/usr/bin/env python3
"""
consultflow server
------------------
JSON API over the SQLite board: the webhook action endpoint plus the project,
stage, column and chat operations that drive status propagation.

Usage:
    consultflow-server --config config.yaml
    CONSULTFLOW_API_SECRET=... consultflow-server --port 3000 --db /tmp/board.db

API:
    POST /functions/webhooks          → { action, ... }  (see webhooks.handle_action)
    GET  /api/columns                 → { columns }
    POST /api/columns                 → { title, bg_color? }
    POST /api/projects                → { name, stages: [...], ... }
    GET  /api/projects?status=        → { projects, count }
    GET  /api/projects/<id>           → { project }
    POST /api/projects/<id>/move      → { column_id }   409 when stages are open
    POST /api/stages/<id>/complete
    POST /api/stages/<id>/uncomplete
    GET  /api/chat/rooms, POST /api/chat/rooms, DELETE /api/chat/rooms/<id>
    GET  /api/logs?category=          → system logs
    GET  /api/webhooks/logs?webhook_id=
    GET  /health

Mutating routes need an X-API-Key header matching api_secret.
"""

import argparse
import hmac
import logging
import sys
from pathlib import Path
from functools import wraps

from flask import Flask, jsonify, request, current_app

from .config import Config, ConfigError
from .store import BoardStore
from .schema import Project
from .events import SyncEventBridge, get_recent_logs
from .kanban_sync import KanbanSync, SyncError, IncompleteStagesError
from .project_actions import ProjectActions
from .notes import create_project_tasks, NoteError
from .processor import WebhookProcessor
from . import columns as board
from . import chat
from . import webhooks

logger = logging.getLogger(__name__)


# ── Auth ─────────────────────────────────────────────────────────────────────

def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config.get("API_SECRET", "")
        if not secret:
            return jsonify({"error": "API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


def _json_body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(config: Config = None, store: BoardStore = None) -> Flask:
    if config is None:
        config = Config.load()
    if store is None:
        store = BoardStore(config.db_path)

    bridge = SyncEventBridge(store)
    sync = KanbanSync(store, bridge)
    actions = ProjectActions(store, config, sync)

    if config.notify_on_status_change:
        def _notify(project_id, **_):
            webhooks.enqueue_project_webhook(store, project_id)
        bridge.subscribe("project_moved", _notify)

    app = Flask(__name__)
    app.config["API_SECRET"] = config.api_secret
    app.extensions["consultflow"] = {
        "config": config,
        "store": store,
        "bridge": bridge,
        "sync": sync,
        "actions": actions,
    }

    board.ensure_default_columns(store)

    @app.route("/health")
    def health():
        return jsonify({
            "status": "ok",
            "pending_webhooks": store.count_pending(),
        })

    # ── Webhook actions ──────────────────────────────────────────────────────

    @app.route("/functions/webhooks", methods=["POST"])
    @require_api_key
    def webhook_actions():
        body, status = webhooks.handle_action(store, _json_body(), config)
        return jsonify(body), status

    @app.route("/api/webhooks/logs", methods=["GET"])
    def webhook_logs():
        limit = request.args.get("limit", 50, type=int)
        logs = store.list_webhook_logs(webhook_id=request.args.get("webhook_id"), limit=limit)
        return jsonify({"logs": [log.to_dict() for log in logs], "count": len(logs)})

    # ── Columns ──────────────────────────────────────────────────────────────

    @app.route("/api/columns", methods=["GET"])
    def list_columns():
        return jsonify({"columns": [c.to_dict() for c in board.list_columns(store)]})

    @app.route("/api/columns", methods=["POST"])
    @require_api_key
    def create_column():
        data = _json_body()
        try:
            column = board.create_column(
                store,
                data.get("title", ""),
                bg_color=data.get("bg_color") or "bg-gray-50",
                column_id=data.get("column_id"),
            )
        except board.ColumnError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"column": column.to_dict()}), 201

    # ── Projects and stages ──────────────────────────────────────────────────

    @app.route("/api/projects", methods=["GET"])
    def list_projects():
        projects = store.list_projects()
        status = request.args.get("status")
        if status:
            projects = [p for p in projects if p.status == status]
        return jsonify({"projects": [p.to_dict() for p in projects], "count": len(projects)})

    @app.route("/api/projects", methods=["POST"])
    @require_api_key
    def create_project():
        data = _json_body()
        if not (data.get("name") or "").strip():
            return jsonify({"error": "name is required"}), 400
        project = Project.from_dict(data)
        if not store.save_project(project):
            return jsonify({"error": "Could not save project"}), 500
        try:
            task = create_project_tasks(store, project)
        except NoteError as e:
            logger.warning(f"Project {project.id} saved without task: {e}")
            task = None
        return jsonify({
            "project": store.get_project(project.id).to_dict(),
            "task_id": task.id if task else None,
        }), 201

    @app.route("/api/projects/<project_id>", methods=["GET"])
    def get_project(project_id):
        project = store.get_project(project_id)
        if not project:
            return jsonify({"error": "Project not found"}), 404
        return jsonify({"project": project.to_dict()})

    @app.route("/api/projects/<project_id>/move", methods=["POST"])
    @require_api_key
    def move_project(project_id):
        column_id = (_json_body().get("column_id") or "").strip()
        if not column_id:
            return jsonify({"error": "column_id is required"}), 400
        try:
            result = actions.update_project_status(project_id, column_id)
        except IncompleteStagesError as e:
            return jsonify({"error": str(e), "pending_stages": e.pending}), 409
        except SyncError as e:
            return jsonify({"error": str(e)}), 404
        return jsonify({"result": result.to_dict(), "project": store.get_project(project_id).to_dict()})

    def _stage_response(outcome):
        return jsonify({
            "stage": outcome["stage"].to_dict() if outcome["stage"] else None,
            "project_status": outcome["project_status"],
        })

    @app.route("/api/stages/<stage_id>/complete", methods=["POST"])
    @require_api_key
    def complete_stage(stage_id):
        try:
            return _stage_response(actions.complete_stage(stage_id))
        except SyncError as e:
            return jsonify({"error": str(e)}), 404

    @app.route("/api/stages/<stage_id>/uncomplete", methods=["POST"])
    @require_api_key
    def uncomplete_stage(stage_id):
        try:
            return _stage_response(actions.uncomplete_stage(stage_id))
        except SyncError as e:
            return jsonify({"error": str(e)}), 404

    # ── Chat ─────────────────────────────────────────────────────────────────

    @app.route("/api/chat/rooms", methods=["GET"])
    def list_rooms():
        rooms = chat.list_rooms(store, project_id=request.args.get("project_id"))
        return jsonify({"rooms": [r.to_dict() for r in rooms], "count": len(rooms)})

    @app.route("/api/chat/rooms", methods=["POST"])
    @require_api_key
    def create_room():
        data = _json_body()
        try:
            room = chat.create_room(
                store, data.get("name", ""), data.get("description", ""), data.get("project_id"),
            )
        except chat.ChatError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"room": room.to_dict()}), 201

    @app.route("/api/chat/rooms/<room_id>", methods=["DELETE"])
    @require_api_key
    def delete_room(room_id):
        if not chat.delete_room(store, room_id):
            return jsonify({"error": "Room not found"}), 404
        return jsonify({"deleted": room_id})

    # ── Logs ─────────────────────────────────────────────────────────────────

    @app.route("/api/logs", methods=["GET"])
    def system_logs():
        limit = request.args.get("limit", 50, type=int)
        logs = get_recent_logs(store, category=request.args.get("category"), limit=limit)
        return jsonify({"logs": logs, "count": len(logs)})

    return app


# ── Entry point ──────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="consultflow board and webhook server")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--db", default=None, help="SQLite database path")
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.db:
        config.db_path = str(Path(args.db).expanduser())

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [consultflow] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not config.api_secret:
        logger.warning("api_secret is not set: mutating routes will answer 503")

    store = BoardStore(config.db_path)
    for table, status in webhooks.setup_triggers(store).items():
        if status != "ok":
            logger.warning(f"Webhook triggers on {table}: {status}")

    app = create_app(config, store)
    processor = WebhookProcessor(store, config)
    processor.start()

    logger.info(f"consultflow server starting on http://{config.host}:{config.port} (db={config.db_path})")
    try:
        app.run(host=config.host, port=config.port, debug=False)
    finally:
        processor.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
