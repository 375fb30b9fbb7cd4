# consultflow: status propagation and webhook delivery for the consultancy board
#
# Components:
#   schema.py          - Data model (Project, Stage, KanbanColumn, Note, Webhook, ...)
#   store.py           - SQLite persistence layer
#   columns.py         - Kanban column configuration and ordering
#   events.py          - Event bridge and system_logs writer
#   kanban_sync.py     - Kanban <-> Stage <-> Task status propagation
#   notes.py           - Project tasks and checklist-driven status
#   project_actions.py - Project/stage actions with logging and webhook drain
#   chat.py            - Chat rooms (soft delete)
#   webhooks.py        - Webhook registry, queue drain and action dispatcher
#   processor.py       - Periodic background queue drain
#   server.py          - Flask JSON API

__version__ = "0.3.0"
