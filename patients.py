import logging
from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from auth import CareSession, ProfileOut, current_session, require_caregiver
from db import get_db
from feed import record_change
from models import Patient, Profile
from plans import PlanLimitReached, check_patient_limit
from scoping import (
    FAMILY, add_family_member, audience, family_profiles, find_family_profile,
    get_owned_patient, get_visible_patient, visible_patients,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["patients"])


def split_conditions(value):
    # the form sends "Diabetes, Hypertension"
    if isinstance(value, str):
        return [c.strip() for c in value.split(",") if c.strip()]
    return [c.strip() for c in value if c and c.strip()]


class PatientCreate(BaseModel):
    name: str = Field(..., min_length=1)
    age: int = Field(..., ge=0, le=150)
    medical_conditions: Union[List[str], str] = Field(default_factory=list)
    emergency_contact: str = ""
    family_members: List[int] = Field(default_factory=list)

    @field_validator("medical_conditions")
    @classmethod
    def _conditions(cls, v):
        return split_conditions(v)


class PatientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    age: Optional[int] = Field(None, ge=0, le=150)
    medical_conditions: Optional[Union[List[str], str]] = None
    emergency_contact: Optional[str] = None
    family_members: Optional[List[int]] = None

    @field_validator("medical_conditions")
    @classmethod
    def _conditions(cls, v):
        return None if v is None else split_conditions(v)


class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    caregiver_id: int
    name: str
    age: int
    medical_conditions: List[str]
    emergency_contact: str
    family_members: List[int]
    created_at: Optional[datetime] = None


class FamilyRequest(BaseModel):
    email: EmailStr


def snapshot(patient: Patient) -> dict:
    return PatientOut.model_validate(patient).model_dump(mode="json")


def _not_found():
    return HTTPException(status_code=404, detail="Patient not found")


def _resolve_family(db: Session, ids):
    try:
        return family_profiles(db, ids)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/", response_model=List[PatientOut])
def list_patients(session: CareSession = Depends(current_session), db: Session = Depends(get_db)):
    return (
        visible_patients(db, session.principal)
        .order_by(Patient.created_at.desc(), Patient.id.desc())
        .all()
    )


@router.get("/family-profiles", response_model=List[ProfileOut])
def list_family_profiles(session: CareSession = Depends(require_caregiver), db: Session = Depends(get_db)):
    """Family accounts a caregiver can pick from when adding members."""
    return db.query(Profile).filter(Profile.role == FAMILY).order_by(Profile.full_name).all()


@router.get("/{patient_id}", response_model=PatientOut)
def get_patient(patient_id: int, session: CareSession = Depends(current_session), db: Session = Depends(get_db)):
    patient = get_visible_patient(db, session.principal, patient_id)
    if patient is None:
        raise _not_found()
    return patient


@router.post("/", response_model=PatientOut, status_code=201)
def create_patient(req: PatientCreate, session: CareSession = Depends(require_caregiver), db: Session = Depends(get_db)):
    caregiver_id = session.principal.id
    try:
        check_patient_limit(db, caregiver_id)
    except PlanLimitReached as e:
        db.rollback()
        logger.warning(f"Caregiver {caregiver_id} hit the patient limit ({e.limit})")
        return JSONResponse(
            status_code=402,
            content={"detail": str(e), "code": "upgrade_required", "limit": e.limit, "plan": e.plan},
        )

    patient = Patient(
        caregiver_id=caregiver_id,
        name=req.name,
        age=req.age,
        medical_conditions=req.medical_conditions,
        emergency_contact=req.emergency_contact,
    )
    patient.family = _resolve_family(db, req.family_members)
    db.add(patient)
    db.flush()
    db.refresh(patient)
    record_change(db, "patients", "insert", patient.id, snapshot(patient), audience(patient))
    db.commit()
    db.refresh(patient)
    logger.info(f"Caregiver {caregiver_id} created patient {patient.id}")
    return patient


@router.patch("/{patient_id}", response_model=PatientOut)
def update_patient(
    patient_id: int,
    req: PatientUpdate,
    session: CareSession = Depends(require_caregiver),
    db: Session = Depends(get_db),
):
    patient = get_owned_patient(db, session.principal, patient_id)
    if patient is None:
        raise _not_found()

    before = audience(patient)
    changes = req.model_dump(exclude_unset=True)
    family_ids = changes.pop("family_members", None)
    for field, value in changes.items():
        if value is not None:
            setattr(patient, field, value)
    if family_ids is not None:
        patient.family = _resolve_family(db, family_ids)

    db.flush()
    # members removed by this update still learn that they lost the row
    record_change(db, "patients", "update", patient.id, snapshot(patient), before | audience(patient))
    db.commit()
    db.refresh(patient)
    return patient


@router.delete("/{patient_id}", status_code=204)
def delete_patient(patient_id: int, session: CareSession = Depends(require_caregiver), db: Session = Depends(get_db)):
    patient = get_owned_patient(db, session.principal, patient_id)
    if patient is None:
        raise _not_found()
    recipients = audience(patient)
    # the cascade removes dependent rows too; readers must drop them as well
    for table, rows in (
        ("health_logs", patient.health_logs),
        ("reminders", patient.reminders),
        ("emergency_alerts", patient.alerts),
    ):
        for row in rows:
            record_change(db, table, "delete", row.id, None, recipients)
    record_change(db, "patients", "delete", patient.id, None, recipients)
    db.delete(patient)
    db.commit()
    logger.info(f"Caregiver {session.principal.id} deleted patient {patient_id}")


@router.post("/{patient_id}/family", response_model=PatientOut)
def add_family(
    patient_id: int,
    req: FamilyRequest,
    session: CareSession = Depends(require_caregiver),
    db: Session = Depends(get_db),
):
    patient = get_owned_patient(db, session.principal, patient_id)
    if patient is None:
        raise _not_found()

    member = find_family_profile(db, req.email)
    if member is None:
        logger.warning(f"No family account for the email given to patient {patient_id}")
        raise HTTPException(
            status_code=404,
            detail="Family member not found. Please make sure they have created a family account.",
        )

    if add_family_member(session.principal, patient, member):
        db.flush()
        record_change(db, "patients", "update", patient.id, snapshot(patient), audience(patient))
        db.commit()
        db.refresh(patient)
        logger.info(f"Added family member {member.id} to patient {patient.id}")
    return patient
