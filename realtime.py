"""
Change feed endpoints.

``GET /changes`` returns row-level deltas after a cursor. ``GET
/changes/stream`` pushes the same deltas as server-sent events and stops
polling as soon as the client goes away.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from auth import CareSession, current_session
from config import settings
from db import SessionLocal, get_db
from feed import changes_since

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/changes", tags=["realtime"])


class ChangeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    cursor: int = Field(validation_alias="id")
    table: str = Field(validation_alias="table_name")
    op: str
    row_id: int
    row: Optional[Any] = Field(None, validation_alias="data")
    created_at: Optional[datetime] = None


class ChangesOut(BaseModel):
    cursor: int
    changes: List[ChangeOut]


def _sse_format(event: str, data: dict, event_id: int) -> str:
    return f"id: {event_id}\nevent: {event}\ndata: {json.dumps(data)}\n\n"


def _poll(principal_id: int, cursor: int, tables: Optional[List[str]]):
    session = SessionLocal()
    try:
        events, next_cursor = changes_since(
            session, principal_id, cursor, settings.realtime_batch_size, tables
        )
        return [ChangeOut.model_validate(e).model_dump(mode="json") for e in events], next_cursor
    finally:
        session.close()


@router.get("/", response_model=ChangesOut)
def list_changes(
    cursor: int = Query(0, ge=0),
    table: Optional[List[str]] = Query(None),
    session: CareSession = Depends(current_session),
    db: Session = Depends(get_db),
):
    events, next_cursor = changes_since(
        db, session.principal.id, cursor, settings.realtime_batch_size, table
    )
    return ChangesOut(cursor=next_cursor, changes=[ChangeOut.model_validate(e) for e in events])


@router.get("/stream")
async def stream_changes(
    request: Request,
    cursor: int = Query(0, ge=0),
    table: Optional[List[str]] = Query(None),
    session: CareSession = Depends(current_session),
):
    principal_id = session.principal.id

    async def events():
        position = cursor
        logger.info(f"Change stream opened for {principal_id} at cursor {position}")
        try:
            while not await request.is_disconnected():
                changes, position = await run_in_threadpool(_poll, principal_id, position, table)
                for change in changes:
                    yield _sse_format("change", change, change["cursor"])
                if not changes:
                    await asyncio.sleep(settings.realtime_poll_interval)
        finally:
            logger.info(f"Change stream closed for {principal_id} at cursor {position}")

    return StreamingResponse(events(), media_type="text/event-stream")
