"""
Emergency alerts.

Anyone who can see a patient can raise an alert for them. An alert starts
``active`` and moves once to ``resolved``; nothing moves it back.
"""

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from auth import CareSession, current_session
from db import get_db
from feed import record_change
from models import EmergencyAlert, Patient, utcnow
from scoping import (
    Principal, audience, can_resolve_alert, can_trigger_alert, get_visible_patient, scoped,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])

ACTIVE = "active"
RESOLVED = "resolved"
NO_LOCATION = "Location not provided"


class AlertAlreadyResolved(Exception):
    pass


class AlertRequest(BaseModel):
    patient_id: int
    location: Optional[str] = None


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    triggered_by: int
    location: Optional[str] = None
    status: str
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


def resolve(alert: EmergencyAlert, principal: Principal) -> EmergencyAlert:
    if alert.status != ACTIVE:
        raise AlertAlreadyResolved(f"alert {alert.id} is already {alert.status}")
    alert.status = RESOLVED
    alert.resolved_by = principal.id
    alert.resolved_at = utcnow()
    return alert


def _publish(db: Session, op: str, alert: EmergencyAlert, patient: Patient):
    record_change(
        db, "emergency_alerts", op, alert.id,
        AlertOut.model_validate(alert).model_dump(mode="json"), audience(patient),
    )


@router.post("/", response_model=AlertOut, status_code=201)
def trigger_alert(req: AlertRequest, session: CareSession = Depends(current_session), db: Session = Depends(get_db)):
    patient = get_visible_patient(db, session.principal, req.patient_id)
    if patient is None or not can_trigger_alert(session.principal, patient):
        raise HTTPException(status_code=404, detail="Patient not found")

    alert = EmergencyAlert(
        patient_id=patient.id,
        triggered_by=session.principal.id,
        location=(req.location or "").strip() or NO_LOCATION,
        status=ACTIVE,
    )
    db.add(alert)
    db.flush()
    db.refresh(alert)
    _publish(db, "insert", alert, patient)
    db.commit()
    db.refresh(alert)
    logger.info(f"Emergency alert {alert.id} raised for patient {patient.id} by {session.principal.id}")
    return alert


@router.get("/", response_model=List[AlertOut])
def list_alerts(
    status: Optional[Literal["active", "resolved"]] = Query(None),
    patient_id: Optional[int] = Query(None),
    session: CareSession = Depends(current_session),
    db: Session = Depends(get_db),
):
    query = scoped(db, session.principal, EmergencyAlert)
    if status is not None:
        query = query.filter(EmergencyAlert.status == status)
    if patient_id is not None:
        query = query.filter(EmergencyAlert.patient_id == patient_id)
    return query.order_by(EmergencyAlert.created_at.desc(), EmergencyAlert.id.desc()).all()


@router.post("/{alert_id}/resolve", response_model=AlertOut)
def resolve_alert(alert_id: int, session: CareSession = Depends(current_session), db: Session = Depends(get_db)):
    alert = db.query(EmergencyAlert).filter_by(id=alert_id).with_for_update().first()
    patient = None
    if alert is not None:
        patient = get_visible_patient(db, session.principal, alert.patient_id)
    if patient is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    if not can_resolve_alert(session.principal, patient):
        raise HTTPException(status_code=403, detail="Not allowed to resolve this alert")

    try:
        resolve(alert, session.principal)
    except AlertAlreadyResolved as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.flush()
    _publish(db, "update", alert, patient)
    db.commit()
    db.refresh(alert)
    logger.info(f"Emergency alert {alert.id} resolved by {session.principal.id}")
    return alert
