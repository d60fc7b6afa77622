"""
Append-Only Tables
==================

Storage-level protection for ledgers that may only ever grow.

Three layers refuse mutation of a protected table:
- ORM mapper events reject flushing an update or delete of a loaded row
- A session hook rejects bulk ``update()`` / ``delete()`` statements
- Database triggers abort raw SQL UPDATE/DELETE (SQLite and PostgreSQL)

Usage:
    class AuditLogModel(Base):
        __tablename__ = "audit_logs"
        ...

    protect_append_only(AuditLogModel)
"""

from typing import Dict, Type

from sqlalchemy import DDL, event
from sqlalchemy.orm import ORMExecuteState, Session

from src.core.exceptions import AppendOnlyViolationException


# mapped class -> table name
_PROTECTED: Dict[type, str] = {}


_PG_FUNCTION = DDL(
    "CREATE OR REPLACE FUNCTION reject_append_only_mutation() RETURNS trigger AS $$ "
    "BEGIN "
    "RAISE EXCEPTION USING MESSAGE = TG_TABLE_NAME || ' is append-only'; "
    "END; "
    "$$ LANGUAGE plpgsql"
)


def _sqlite_trigger(table: str, operation: str) -> DDL:
    return DDL(
        f"CREATE TRIGGER IF NOT EXISTS {table}_no_{operation.lower()} "
        f"BEFORE {operation} ON {table} "
        f"BEGIN SELECT RAISE(ABORT, '{table} is append-only'); END"
    )


def _pg_trigger(table: str) -> DDL:
    return DDL(
        f"CREATE TRIGGER {table}_append_only "
        f"BEFORE UPDATE OR DELETE ON {table} "
        f"FOR EACH ROW EXECUTE FUNCTION reject_append_only_mutation()"
    )


def _reject(operation: str):
    def listener(mapper, connection, target):
        raise AppendOnlyViolationException(mapper.local_table.name, operation)
    return listener


def protect_append_only(model: Type) -> Type:
    """Register every append-only guard for a mapped class."""
    table = model.__table__
    _PROTECTED[model] = table.name

    event.listen(model, "before_update", _reject("update"))
    event.listen(model, "before_delete", _reject("delete"))

    event.listen(table, "after_create", _sqlite_trigger(table.name, "UPDATE").execute_if(dialect="sqlite"))
    event.listen(table, "after_create", _sqlite_trigger(table.name, "DELETE").execute_if(dialect="sqlite"))
    event.listen(table, "after_create", _PG_FUNCTION.execute_if(dialect="postgresql"))
    event.listen(table, "after_create", _pg_trigger(table.name).execute_if(dialect="postgresql"))

    return model


@event.listens_for(Session, "do_orm_execute")
def _reject_bulk_mutations(orm_execute_state: ORMExecuteState) -> None:
    """Refuse ORM-level bulk UPDATE/DELETE against protected tables."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    operation = "update" if orm_execute_state.is_update else "delete"
    for mapper in orm_execute_state.all_mappers:
        table = _PROTECTED.get(mapper.class_)
        if table is not None:
            raise AppendOnlyViolationException(table, f"bulk {operation}")
