import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth import CareSession, current_session, require_caregiver
from db import get_db
from feed import record_change
from models import Patient, Reminder, utcnow
from scoping import audience, get_owned_patient, scoped

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reminders", tags=["reminders"])


class ReminderRequest(BaseModel):
    patient_id: int
    title: str = Field(..., min_length=1)
    description: str = ""
    due_time: datetime


class ReminderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    title: str
    description: str
    due_time: datetime
    completed: bool


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _publish(db: Session, op: str, reminder: Reminder, patient: Patient):
    record_change(
        db, "reminders", op, reminder.id,
        ReminderOut.model_validate(reminder).model_dump(mode="json"), audience(patient),
    )


@router.get("/", response_model=List[ReminderOut])
def list_reminders(
    patient_id: Optional[int] = Query(None),
    upcoming: bool = Query(False, description="Only incomplete reminders due from now on"),
    limit: int = Query(5, ge=1, le=200),
    session: CareSession = Depends(current_session),
    db: Session = Depends(get_db),
):
    query = scoped(db, session.principal, Reminder)
    if patient_id is not None:
        query = query.filter(Reminder.patient_id == patient_id)
    if upcoming:
        query = query.filter(Reminder.completed.is_(False), Reminder.due_time >= utcnow())
    return query.order_by(Reminder.due_time.asc(), Reminder.id.asc()).limit(limit).all()


@router.post("/", response_model=ReminderOut, status_code=201)
def create_reminder(req: ReminderRequest, session: CareSession = Depends(require_caregiver), db: Session = Depends(get_db)):
    patient = get_owned_patient(db, session.principal, req.patient_id)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")

    reminder = Reminder(
        patient_id=patient.id,
        title=req.title,
        description=req.description,
        due_time=_naive_utc(req.due_time),
        completed=False,
    )
    db.add(reminder)
    db.flush()
    _publish(db, "insert", reminder, patient)
    db.commit()
    db.refresh(reminder)
    return reminder


@router.post("/{reminder_id}/complete", response_model=ReminderOut)
def complete_reminder(reminder_id: int, session: CareSession = Depends(require_caregiver), db: Session = Depends(get_db)):
    reminder = db.get(Reminder, reminder_id)
    patient = None
    if reminder is not None:
        patient = get_owned_patient(db, session.principal, reminder.patient_id)
    if patient is None:
        raise HTTPException(status_code=404, detail="Reminder not found")

    if not reminder.completed:
        reminder.completed = True
        db.flush()
        _publish(db, "update", reminder, patient)
        db.commit()
        db.refresh(reminder)
    return reminder
