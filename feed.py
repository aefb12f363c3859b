"""
Change feed storage.

Each mutation appends a ChangeEvent whose integer id is a monotonic cursor,
and fans it out to the principals allowed to see it at write time. Readers
ask for everything after their cursor and patch local state row by row.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import ChangeEvent, change_audience

logger = logging.getLogger(__name__)

OPS = ("insert", "update", "delete")


def record_change(
    db: Session,
    table: str,
    op: str,
    row_id: int,
    row: Optional[dict],
    recipients: Iterable[int],
) -> ChangeEvent:
    """Append a change event inside the caller's transaction."""
    if op not in OPS:
        raise ValueError(f"unknown change op {op!r}")
    event = ChangeEvent(table_name=table, op=op, row_id=row_id, data=row)
    db.add(event)
    db.flush()
    recipients = sorted(set(recipients))
    if recipients:
        db.execute(
            change_audience.insert(),
            [{"event_id": event.id, "profile_id": pid} for pid in recipients],
        )
    logger.debug(f"change #{event.id} {table}.{op} row={row_id} -> {recipients}")
    return event


def changes_since(
    db: Session,
    principal_id: int,
    cursor: int = 0,
    limit: int = 100,
    tables: Optional[Iterable[str]] = None,
) -> Tuple[List[ChangeEvent], int]:
    """Events visible to ``principal_id`` after ``cursor``, oldest first.

    Returns the events and the cursor to resume from.
    """
    query = (
        db.query(ChangeEvent)
        .join(change_audience, change_audience.c.event_id == ChangeEvent.id)
        .filter(change_audience.c.profile_id == principal_id, ChangeEvent.id > cursor)
    )
    if tables:
        query = query.filter(ChangeEvent.table_name.in_(list(tables)))
    events = query.order_by(ChangeEvent.id.asc()).limit(limit).all()
    next_cursor = events[-1].id if events else cursor
    return events, next_cursor


def prune_changes(db: Session, older_than: datetime) -> int:
    """Delete events created before ``older_than`` along with their audience.

    A client resuming from a pruned cursor simply receives what is left.
    """
    stale = select(ChangeEvent.id).where(ChangeEvent.created_at < older_than)
    db.execute(change_audience.delete().where(change_audience.c.event_id.in_(stale)))
    removed = (
        db.query(ChangeEvent)
        .filter(ChangeEvent.created_at < older_than)
        .delete(synchronize_session=False)
    )
    logger.info(f"Pruned {removed} change events older than {older_than:%Y-%m-%d %H:%M}")
    return removed

