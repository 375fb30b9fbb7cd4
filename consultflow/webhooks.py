"""
Outbound webhooks: registry, delivery queue and the action endpoint.

Row changes on monitored tables land in webhook_queue (SQLite triggers
installed by setup_triggers). process_queue delivers each pending row once:
one POST, one webhook_logs row, then the queue row is removed whatever the
outcome. There is no retry.
"""
import json
import logging
from datetime import datetime, date, timedelta
from typing import Optional, Dict, Any, List, Tuple, Union

import requests

from .config import Config
from .schema import Webhook, WebhookEvent, WebhookQueueItem, WebhookLog, new_id, utc_now
from .store import BoardStore

logger = logging.getLogger(__name__)

MONITORED_TABLES = ("clients", "consultants", "services", "projects", "project_stages")

VALID_EVENTS = {e.value for e in WebhookEvent}

# Keys always rendered as date + time; any other key containing "date" is rendered as a date.
DATETIME_FIELDS = {
    "created_at", "updated_at", "due_date", "start_date", "end_date",
    "completed_at", "deleted_at",
}


class WebhookError(Exception):
    """Raised on invalid webhook requests."""
    pass


# ── Brazilian date formatting ────────────────────────────────────────────────

def _parse_when(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def format_date_br(value) -> str:
    """'2024-03-07' -> '07/03/2024'; '-' for empty or unparseable input."""
    when = _parse_when(value)
    return when.strftime("%d/%m/%Y") if when else "-"


def format_datetime_br(value) -> str:
    """'2024-03-07T14:05:00' -> '07/03/2024 14:05'; '-' for empty or unparseable input."""
    when = _parse_when(value)
    return when.strftime("%d/%m/%Y %H:%M") if when else "-"


def format_payload_dates(obj: Any) -> Any:
    """Rewrite date-like values of a (nested) payload in place."""
    if isinstance(obj, list):
        for item in obj:
            format_payload_dates(item)
    elif isinstance(obj, dict):
        for key, value in obj.items():
            if key in DATETIME_FIELDS and value:
                obj[key] = format_datetime_br(value)
            elif "date" in key and isinstance(value, str) and value:
                obj[key] = format_date_br(value)
            elif isinstance(value, (dict, list)):
                format_payload_dates(value)
    return obj


# ── Delivery ─────────────────────────────────────────────────────────────────

def build_headers(webhook: Webhook, event_type: str, table_name: str, config: Config) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "User-Agent": config.user_agent,
        "X-Webhook-Event": event_type,
        "X-Webhook-Table": table_name,
        "X-Webhook-Timestamp": utc_now(),
    }
    if webhook.secret_key:
        headers["Authorization"] = f"Bearer {webhook.secret_key}"
    return headers


def deliver(webhook: Webhook, item: WebhookQueueItem, config: Config) -> WebhookLog:
    """POST one queued payload, unmodified. Never raises; failures land in the log."""
    log = WebhookLog(
        webhook_id=webhook.id,
        event_type=item.event_type,
        table_name=item.table_name,
        payload=item.payload,
        success=False,
    )
    try:
        r = requests.post(
            webhook.url,
            data=json.dumps(item.payload),
            headers=build_headers(webhook, item.event_type, item.table_name, config),
            timeout=config.webhook_timeout,
        )
        log.response_status = r.status_code
        log.response_body = (r.text or "")[:config.response_body_limit]
        log.success = 200 <= r.status_code < 300
        if not log.success:
            log.error = f"HTTP {r.status_code}"
    except requests.RequestException as e:
        log.error = str(e) or e.__class__.__name__
    except Exception as e:
        # e.g. header values http.client cannot encode; the row must still be logged and dropped
        log.error = f"{e.__class__.__name__}: {e}"
        logger.error(f"Webhook {webhook.id} delivery raised {log.error}")
    return log


def process_queue(store: BoardStore, config: Optional[Config] = None,
                  limit: Optional[int] = None) -> Dict[str, int]:
    """
    Drain up to `limit` pending deliveries, oldest first.

    Every fetched row gets exactly one attempt and one log entry, then it is
    removed from the queue.

    Returns:
        {"processed": n, "succeeded": s, "failed": f}
    """
    config = config or Config()
    batch = limit if limit is not None else config.webhook_batch_size
    summary = {"processed": 0, "succeeded": 0, "failed": 0}

    for item in store.fetch_pending(batch):
        webhook = store.get_webhook(item.webhook_id)
        if webhook is None or not webhook.is_active:
            log = WebhookLog(
                webhook_id=item.webhook_id,
                event_type=item.event_type,
                table_name=item.table_name,
                payload=item.payload,
                success=False,
                error="webhook not found" if webhook is None else "webhook inactive",
            )
        else:
            log = deliver(webhook, item, config)

        store.add_webhook_log(log)
        store.delete_queue_item(item.id)

        summary["processed"] += 1
        if log.success:
            summary["succeeded"] += 1
        else:
            summary["failed"] += 1
            logger.warning(
                f"Webhook {item.webhook_id} {item.table_name}/{item.event_type} failed: {log.error}"
            )

    if summary["processed"]:
        logger.info(
            f"Webhook queue drained: {summary['processed']} processed, "
            f"{summary['succeeded']} ok, {summary['failed']} failed"
        )
    return summary


# ── Registry ─────────────────────────────────────────────────────────────────

def _normalize_events(events) -> List[str]:
    if isinstance(events, str):
        events = [events]
    normalized = []
    for event in events or []:
        name = str(event).strip().upper()
        if name in VALID_EVENTS and name not in normalized:
            normalized.append(name)
    return normalized


def register_webhook(store: BoardStore, url: str, events, tables,
                     secret_key: Optional[str] = None) -> Webhook:
    url = (url or "").strip()
    if not url:
        raise WebhookError("url is required")
    if not events:
        raise WebhookError("events must not be empty")
    normalized = _normalize_events(events)
    if not normalized:
        raise WebhookError(f"events must be among {sorted(VALID_EVENTS)}")
    if isinstance(tables, str):
        tables = [tables]
    tables = [str(t).strip() for t in tables or [] if str(t).strip()]
    if not tables:
        raise WebhookError("tables must not be empty")
    webhook = Webhook(
        url=url,
        events=normalized,
        tables=tables,
        secret_key=secret_key or None,
    )
    if not store.save_webhook(webhook):
        raise WebhookError(f"Could not save webhook for {url}")
    logger.info(f"Registered webhook {webhook.id} → {url} ({','.join(webhook.events)})")
    return webhook


def enqueue_for_table(store: BoardStore, table_name: str, event_type: str, payload: Any) -> int:
    """Queue a payload for every active webhook subscribed to table/event. Returns rows queued."""
    queued = 0
    for webhook in store.list_webhooks(active_only=True):
        if webhook.subscribes_to(table_name, event_type):
            item = WebhookQueueItem(
                webhook_id=webhook.id,
                event_type=event_type,
                table_name=table_name,
                payload=payload,
            )
            if store.enqueue(item) is not None:
                queued += 1
    return queued


# ── Test payloads ────────────────────────────────────────────────────────────

def build_test_payload(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now()
    return {
        "event_type": "TEST",
        "table_name": "test",
        "timestamp": format_datetime_br(now),
        "data": {
            "message": "Este é um payload de teste do webhook",
            "test": True,
            "data_sistema": format_date_br(now),
            "hora_sistema": format_datetime_br(now),
            "project": {
                "id": "test-project-id",
                "name": "Projeto de Teste",
                "status": "iniciar_projeto",
                "created_at": format_date_br(now),
                "due_date": format_date_br(now + timedelta(days=30)),
            },
            "client": {
                "id": "test-client-id",
                "name": "Cliente de Teste",
                "email": "cliente@teste.com",
                "created_at": format_date_br(now),
            },
            "consultant": {
                "id": "test-consultant-id",
                "name": "Consultor de Teste",
                "email": "consultor@teste.com",
                "created_at": format_date_br(now),
            },
        },
    }


def build_test_entities(now: Optional[datetime] = None) -> List[Tuple[str, Dict[str, Any]]]:
    """(table, row) samples queued by trigger_test."""
    now = now or datetime.now()
    client = {
        "id": new_id(),
        "name": "Cliente de Teste Webhook",
        "contact_name": "João Silva",
        "email": "joao@clienteteste.com",
        "phone": "(11) 99999-9999",
        "created_at": format_datetime_br(now),
    }
    consultant = {
        "id": new_id(),
        "name": "Consultor de Teste Webhook",
        "email": "consultor@teste.com",
        "phone": "(11) 88888-8888",
        "commission_percentage": 15,
        "hours_per_month": 160,
        "created_at": format_datetime_br(now),
    }
    project = {
        "id": new_id(),
        "name": "Projeto de Teste Webhook",
        "description": "Este é um projeto criado para testar webhooks",
        "status": "iniciar_projeto",
        "total_value": 5000,
        "client_id": client["id"],
        "main_consultant_id": consultant["id"],
        "created_at": format_datetime_br(now),
        "start_date": format_date_br(now),
        "due_date": format_date_br(now + timedelta(days=30)),
    }
    stage = {
        "id": new_id(),
        "project_id": project["id"],
        "name": "Etapa de Teste",
        "description": "Etapa criada para teste de webhook",
        "value": 1000,
        "completed": False,
        "created_at": format_datetime_br(now),
        "due_date": format_date_br(now + timedelta(days=15)),
    }
    return [
        ("clients", client),
        ("consultants", consultant),
        ("projects", project),
        ("project_stages", stage),
    ]


def send_test_payload(url: str, config: Config) -> Dict[str, Any]:
    """POST a sample payload straight to `url` (no queue, no log)."""
    try:
        r = requests.post(
            url,
            data=json.dumps(build_test_payload()),
            headers={"Content-Type": "application/json", "User-Agent": config.user_agent},
            timeout=config.webhook_timeout,
        )
    except requests.RequestException as e:
        return {"success": False, "message": f"Test failed: {e}", "error": str(e)}
    success = 200 <= r.status_code < 300
    return {
        "success": success,
        "message": "Test sent" if success else f"Test failed: {r.status_code} {r.reason}",
        "status": r.status_code,
        "statusText": r.reason,
        "responseBody": r.text,
    }


# ── Triggers ─────────────────────────────────────────────────────────────────

def _trigger_name(table: str, event: str) -> str:
    return f"webhook_{table}_{event.lower()}"


def _trigger_sql(table: str, event: str, columns: List[str]) -> str:
    row = "OLD" if event == "DELETE" else "NEW"
    pairs = ", ".join(f"'{col}', {row}.{col}" for col in columns)
    return f"""
        CREATE TRIGGER IF NOT EXISTS {_trigger_name(table, event)}
        AFTER {event} ON {table}
        BEGIN
            INSERT INTO webhook_queue (webhook_id, event_type, table_name, payload, created_at)
            SELECT w.id, '{event}', '{table}', json_object({pairs}),
                   strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')
            FROM webhooks w
            WHERE w.is_active = 1
              AND EXISTS (SELECT 1 FROM json_each(w.tables) WHERE value = '{table}')
              AND EXISTS (SELECT 1 FROM json_each(w.events) WHERE value = '{event}');
        END;
    """


def setup_triggers(store: BoardStore, tables=MONITORED_TABLES) -> Dict[str, str]:
    """Install AFTER INSERT/UPDATE/DELETE triggers. Returns {table: status}."""
    results = {}
    for table in tables:
        if table not in MONITORED_TABLES:
            results[table] = "error: not a monitored table"
            continue
        try:
            columns = store.table_columns(table)
            for event in ("INSERT", "UPDATE", "DELETE"):
                store.execute_script(_trigger_sql(table, event, columns))
            results[table] = "ok"
        except Exception as e:
            logger.error(f"Could not install webhook triggers on {table}: {e}")
            results[table] = f"error: {e}"
    return results


def verify_triggers(store: BoardStore) -> Dict[str, List[str]]:
    """Installed webhook triggers per monitored table: {table: [events]}."""
    found: Dict[str, List[str]] = {t: [] for t in MONITORED_TABLES}
    with store.connect() as conn:
        rows = conn.execute(
            "SELECT name, tbl_name FROM sqlite_master WHERE type = 'trigger' AND name LIKE 'webhook_%'"
        ).fetchall()
    for row in rows:
        table = row["tbl_name"]
        if table in found:
            found[table].append(row["name"].rsplit("_", 1)[-1].upper())
    return {t: sorted(events) for t, events in found.items()}


# ── Consolidated project payload ─────────────────────────────────────────────

def build_project_payload(store: BoardStore, project_id: str) -> Optional[Dict[str, Any]]:
    """Project with client, consultants, service and stage progress; dates in Brazilian format."""
    project = store.get_project(project_id)
    if not project:
        return None
    total = len(project.stages)
    done = project.completed_stages
    data = project.to_dict(include_stages=False)
    data.update({
        "client": store.get_reference("clients", project.client_id),
        "main_consultant": store.get_reference("consultants", project.main_consultant_id),
        "support_consultant": store.get_reference("consultants", project.support_consultant_id),
        "service": store.get_reference("services", project.service_id),
        "stages": [s.to_dict() for s in project.stages],
        "stages_total": total,
        "stages_completed": done,
        "progress_percentage": round(done * 100 / total) if total else 0,
    })
    format_payload_dates(data)
    return {
        "event_type": "UPDATE",
        "table_name": "projects",
        "timestamp": format_datetime_br(datetime.now()),
        "data": data,
    }


def enqueue_project_webhook(store: BoardStore, project_id: str) -> int:
    """Queue the consolidated payload for every active webhook watching projects."""
    payload = build_project_payload(store, project_id)
    if payload is None:
        raise WebhookError(f"Project {project_id} not found")
    queued = 0
    for webhook in store.list_webhooks(active_only=True):
        if "projects" not in webhook.tables:
            continue
        item = WebhookQueueItem(
            webhook_id=webhook.id,
            event_type=payload["event_type"],
            table_name="projects",
            payload=payload,
        )
        if store.enqueue(item) is not None:
            queued += 1
    return queued


# ── Action endpoint ──────────────────────────────────────────────────────────

def _bad_request(message: str) -> Tuple[Dict[str, Any], int]:
    return {"success": False, "message": message}, 400


def _parse_flag(value) -> Optional[bool]:
    """JSON boolean or its string spelling; anything else is None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return {"true": True, "false": False}.get(value.strip().lower())
    return None


def handle_action(store: BoardStore, body: Optional[Dict[str, Any]],
                  config: Optional[Config] = None) -> Tuple[Dict[str, Any], int]:
    """Dispatch one webhook action. Returns (response body, HTTP status)."""
    config = config or Config()
    body = body or {}
    action = body.get("action")
    try:
        if action == "register":
            try:
                webhook = register_webhook(
                    store, body.get("url"), body.get("events"), body.get("tables"),
                    body.get("secret_key"),
                )
            except WebhookError as e:
                return _bad_request(str(e))
            return {"success": True, "webhook": webhook.to_dict()}, 200

        if action == "list":
            return {"success": True, "webhooks": [w.to_dict() for w in store.list_webhooks()]}, 200

        if action == "delete":
            webhook_id = body.get("id")
            if not webhook_id:
                return _bad_request("id is required")
            if not store.delete_webhook(webhook_id):
                return {"success": False, "message": f"Webhook {webhook_id} not found"}, 404
            return {"success": True}, 200

        if action == "toggle_active":
            webhook_id = body.get("id")
            if not webhook_id or "is_active" not in body:
                return _bad_request("id and is_active are required")
            is_active = _parse_flag(body["is_active"])
            if is_active is None:
                return _bad_request("is_active must be true or false")
            if not store.update_webhook(webhook_id, is_active=is_active):
                return {"success": False, "message": f"Webhook {webhook_id} not found"}, 404
            return {"success": True, "webhook": store.get_webhook(webhook_id).to_dict()}, 200

        if action == "test":
            if not body.get("url"):
                return _bad_request("url is required for testing")
            return send_test_payload(body["url"], config), 200

        if action in ("process", "process_queue"):
            summary = process_queue(store, config)
            return {"success": True, **summary}, 200

        if action == "trigger_test":
            active = store.list_webhooks(active_only=True)
            if not active:
                return {"success": False, "message": "No active webhook found"}, 200
            queued = 0
            for table, row in build_test_entities():
                queued += enqueue_for_table(store, table, "INSERT", row)
            return {
                "success": True,
                "queued": queued,
                "message": f"{queued} test event(s) queued for {len(active)} active webhook(s)",
            }, 200

        if action in ("setup_triggers", "verify_triggers"):
            if action == "setup_triggers":
                results = setup_triggers(store)
                ok = all(status == "ok" for status in results.values())
                return {"success": ok, "tables": results}, 200
            return {"success": True, "triggers": verify_triggers(store)}, 200

        if action == "send_project_webhook":
            project_id = body.get("project_id")
            if not project_id:
                return _bad_request("project_id is required")
            try:
                queued = enqueue_project_webhook(store, project_id)
            except WebhookError as e:
                return {"success": False, "message": str(e)}, 404
            response = {"success": True, "queued": queued}
            if body.get("process"):
                response["processed"] = process_queue(store, config)
            return response, 200

        return {"success": False, "message": "Invalid action"}, 400
    except Exception as e:
        logger.exception(f"Webhook action {action!r} failed")
        return {"success": False, "error": str(e)}, 500
