"""
Board column configuration.

The board always carries the nine default columns unless an operator has
replaced them. Exactly one column is flagged as the completion column
(finalizados) and one as the cancellation column (cancelados); the remaining
columns form the progression used by stage sync.
"""
import logging
import re
from typing import List, Optional, Dict, Any
from .schema import KanbanColumn
from .store import BoardStore

logger = logging.getLogger(__name__)


class ColumnError(Exception):
    """Raised on invalid column operations."""
    pass


# (column_id, title, bg_color)
DEFAULT_COLUMNS = [
    ("iniciar_projeto", "Iniciar Projeto", "bg-blue-50"),
    ("em_producao", "Em Produção", "bg-yellow-50"),
    ("aguardando_assinatura", "Aguardando Assinatura", "bg-orange-50"),
    ("aguardando_aprovacao", "Aguardando Aprovação", "bg-purple-50"),
    ("aguardando_nota_fiscal", "Aguardando Nota Fiscal", "bg-indigo-50"),
    ("aguardando_pagamento", "Aguardando Pagamento", "bg-pink-50"),
    ("aguardando_repasse", "Aguardando Repasse", "bg-cyan-50"),
    ("finalizados", "Finalizados", "bg-green-50"),
    ("cancelados", "Cancelados", "bg-red-50"),
]

COMPLETION_COLUMN_ID = "finalizados"
CANCELLATION_COLUMN_ID = "cancelados"

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """'Em Revisão Final' -> 'em_revis_o_final'"""
    return _SLUG_RE.sub("_", title.strip().lower()).strip("_")


def ensure_default_columns(store: BoardStore) -> int:
    """Create the default columns when none of them exist. Returns how many were created."""
    if store.count_default_columns() > 0:
        return 0
    existing = {c.column_id for c in store.list_columns()}
    created = 0
    for index, (column_id, title, bg_color) in enumerate(DEFAULT_COLUMNS):
        if column_id in existing:
            continue
        column = KanbanColumn(
            column_id=column_id,
            title=title,
            bg_color=bg_color,
            order_index=index,
            is_default=True,
            is_completion_column=column_id == COMPLETION_COLUMN_ID,
            is_cancellation_column=column_id == CANCELLATION_COLUMN_ID,
        )
        if store.save_column(column):
            created += 1
    logger.info(f"Created {created} default board columns")
    return created


def list_columns(store: BoardStore) -> List[KanbanColumn]:
    """All columns in board order, seeding the defaults on first use."""
    ensure_default_columns(store)
    return store.list_columns()


def get_column(store: BoardStore, column_id: str) -> Optional[KanbanColumn]:
    for column in list_columns(store):
        if column.column_id == column_id:
            return column
    return None


def completion_column(store: BoardStore) -> Optional[KanbanColumn]:
    for column in list_columns(store):
        if column.is_completion_column:
            return column
    return None


def cancellation_column(store: BoardStore) -> Optional[KanbanColumn]:
    for column in list_columns(store):
        if column.is_cancellation_column:
            return column
    return None


def progression_columns(store: BoardStore) -> List[KanbanColumn]:
    """Non-terminal columns in board order."""
    return [c for c in list_columns(store) if not c.is_terminal]


def create_column(store: BoardStore, title: str, bg_color: str = "bg-gray-50",
                  column_id: Optional[str] = None,
                  is_completion_column: bool = False,
                  is_cancellation_column: bool = False) -> KanbanColumn:
    """Append a column at the end of the board."""
    title = (title or "").strip()
    if not title:
        raise ColumnError("title is required")
    column_id = column_id or slugify(title)
    if not column_id:
        raise ColumnError(f"Cannot derive a column id from {title!r}")
    columns = list_columns(store)
    if any(c.column_id == column_id for c in columns):
        raise ColumnError(f"Column {column_id} already exists")
    if is_completion_column and is_cancellation_column:
        raise ColumnError("A column cannot both complete and cancel projects")

    column = KanbanColumn(
        column_id=column_id,
        title=title,
        bg_color=bg_color,
        order_index=max((c.order_index for c in columns), default=-1) + 1,
        is_completion_column=is_completion_column,
        is_cancellation_column=is_cancellation_column,
    )
    if not store.save_column(column):
        raise ColumnError(f"Could not save column {column_id}")
    return column


def update_column(store: BoardStore, row_id: str, changes: Dict[str, Any]) -> KanbanColumn:
    column = store.get_column(row_id)
    if not column:
        raise ColumnError(f"Column {row_id} not found")
    allowed = {"title", "bg_color", "is_completion_column", "is_cancellation_column"}
    fields = {k: v for k, v in changes.items() if k in allowed}
    if fields and not store.update_column(row_id, **fields):
        raise ColumnError(f"Could not update column {row_id}")
    return store.get_column(row_id)


def delete_column(store: BoardStore, row_id: str) -> bool:
    """Delete a custom column. Default columns stay."""
    column = store.get_column(row_id)
    if not column:
        return False
    if column.is_default:
        raise ColumnError(f"Default column {column.column_id} cannot be deleted")
    return store.delete_column(row_id)


def reorder_columns(store: BoardStore, ordered_ids: List[str]) -> List[KanbanColumn]:
    """Rewrite order_index from a full list of column row ids."""
    current = {c.id for c in list_columns(store)}
    if set(ordered_ids) != current or len(ordered_ids) != len(current):
        raise ColumnError("Reorder needs every column id exactly once")
    for index, row_id in enumerate(ordered_ids):
        store.update_column(row_id, order_index=index)
    return store.list_columns()


def swap_columns(store: BoardStore, first_id: str, second_id: str) -> List[KanbanColumn]:
    """Exchange the board positions of two columns."""
    first = store.get_column(first_id)
    second = store.get_column(second_id)
    if not first or not second:
        raise ColumnError("Both columns must exist to swap")
    store.update_column(first.id, order_index=second.order_index)
    store.update_column(second.id, order_index=first.order_index)
    return store.list_columns()
