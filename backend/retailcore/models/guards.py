"""
Structural append-only enforcement.

Tables registered here reject every mutation after insert:
- ORM flushes of dirty or deleted instances (mapper events)
- UPDATE / DELETE statements executed through a Session (ORM or Core)
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..errors import InternalError


class AppendOnlyError(InternalError):
    """Raised when code attempts to update or delete an append-only row."""


_APPEND_ONLY_TABLES: set[str] = set()


def _reject_mutation(mapper, connection, target):
    raise AppendOnlyError(f"{mapper.local_table.name} rows are append-only")


def register_append_only(model) -> None:
    event.listen(model, "before_update", _reject_mutation)
    event.listen(model, "before_delete", _reject_mutation)
    _APPEND_ONLY_TABLES.add(model.__table__.name)


def is_append_only(table_name: str) -> bool:
    return table_name in _APPEND_ONLY_TABLES


@event.listens_for(Session, "do_orm_execute")
def _reject_bulk_mutation(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    table = getattr(orm_execute_state.statement, "table", None)
    name = getattr(table, "name", None)
    if name is not None and is_append_only(name):
        raise AppendOnlyError(f"{name} rows are append-only")
