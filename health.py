import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from sqlalchemy.orm import Session

import vitals
from auth import CareSession, current_session
from db import get_db
from feed import record_change
from models import HealthLog
from scoping import audience, can_log_health, get_visible_patient, scoped

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health-logs", tags=["health"])

MetricType = Literal["blood_pressure", "blood_sugar", "temperature", "mood"]


class HealthLogRequest(BaseModel):
    """
    A single reading for a patient. The format of ``value`` depends on the
    metric: "120/80" for blood pressure, whole mg/dL for blood sugar,
    Fahrenheit for temperature and a mood token for mood.
    """
    patient_id: int = Field(..., description="Patient the reading belongs to")
    type: MetricType
    value: str = Field(..., description="Reading, e.g. '120/80', '95', '98.6', 'good'")
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_value(self) -> "HealthLogRequest":
        self.value = vitals.normalize_value(self.type, self.value)
        if self.notes is not None and not self.notes.strip():
            self.notes = None
        return self


class HealthLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    type: str
    value: str
    notes: Optional[str] = None
    logged_by: int
    created_at: Optional[datetime] = None

    @computed_field
    @property
    def severity(self) -> Optional[str]:
        try:
            return vitals.severity(self.type, self.value)
        except ValueError:
            return None


class TrendPoint(BaseModel):
    date: str
    value: float
    notes: Optional[str] = None


class TrendOut(BaseModel):
    patient_id: int
    type: str
    unit: str
    points: List[TrendPoint]


@router.post("/", response_model=HealthLogOut, status_code=201)
def create_health_log(req: HealthLogRequest, session: CareSession = Depends(current_session), db: Session = Depends(get_db)):
    """
    Append a reading. Caregivers and family members may both log for the
    patients they can see; logs are never edited afterwards.
    """
    patient = get_visible_patient(db, session.principal, req.patient_id)
    if patient is None or not can_log_health(session.principal, patient):
        raise HTTPException(status_code=404, detail="Patient not found")

    log = HealthLog(
        patient_id=patient.id,
        type=req.type,
        value=req.value,
        notes=req.notes,
        logged_by=session.principal.id,
    )
    db.add(log)
    db.flush()
    db.refresh(log)
    record_change(
        db, "health_logs", "insert", log.id,
        HealthLogOut.model_validate(log).model_dump(mode="json"), audience(patient),
    )
    db.commit()
    db.refresh(log)
    return log


@router.get("/", response_model=List[HealthLogOut])
def list_health_logs(
    patient_id: Optional[int] = Query(None),
    type: Optional[MetricType] = Query(None),
    limit: int = Query(10, ge=1, le=500),
    session: CareSession = Depends(current_session),
    db: Session = Depends(get_db),
):
    """
    Most recent readings first, across every patient the caller can see
    unless narrowed down by ``patient_id`` and ``type``.
    """
    query = scoped(db, session.principal, HealthLog)
    if patient_id is not None:
        query = query.filter(HealthLog.patient_id == patient_id)
    if type is not None:
        query = query.filter(HealthLog.type == type)
    return query.order_by(HealthLog.created_at.desc(), HealthLog.id.desc()).limit(limit).all()


@router.get("/trend", response_model=TrendOut)
def health_trend(
    patient_id: int,
    type: MetricType,
    limit: int = Query(10, ge=1, le=100),
    session: CareSession = Depends(current_session),
    db: Session = Depends(get_db),
):
    """Chart points for one metric, oldest to newest, over the last ``limit`` readings."""
    logs = (
        scoped(db, session.principal, HealthLog)
        .filter(HealthLog.patient_id == patient_id, HealthLog.type == type)
        .order_by(HealthLog.created_at.desc(), HealthLog.id.desc())
        .limit(limit)
        .all()
    )
    points = []
    for log in reversed(logs):
        try:
            value = vitals.chart_value(log.type, log.value)
        except ValueError:
            logger.warning(f"Skipping unreadable {log.type} value on log {log.id}")
            continue
        points.append(TrendPoint(
            date=log.created_at.date().isoformat() if log.created_at else "",
            value=value,
            notes=log.notes,
        ))
    return TrendOut(patient_id=patient_id, type=type, unit=vitals.UNITS[type], points=points)
