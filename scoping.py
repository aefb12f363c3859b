"""
Care-relationship scoping.

Every read and write goes through these filters. A caregiver sees the
patients they own; a family member sees the patients whose membership list
contains them. Health logs, reminders and alerts are visible exactly when
their patient is. Rows outside the scope are filtered away, never reported
as errors, so callers get empty results (or a 404 for a single row).
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import Select, false, select
from sqlalchemy.orm import Query, Session

from config import settings
from models import Patient, Profile, patient_family

CAREGIVER = "caregiver"
FAMILY = "family"


@dataclass(frozen=True)
class Principal:
    id: int
    role: str

    @property
    def is_caregiver(self) -> bool:
        return self.role == CAREGIVER

    @property
    def is_family(self) -> bool:
        return self.role == FAMILY


# Pure predicates over loaded rows

def can_view_patient(principal: Principal, patient) -> bool:
    if principal.is_caregiver:
        return patient.caregiver_id == principal.id
    if principal.is_family:
        return principal.id in set(patient.family_members)
    return False


def can_view_row(principal: Principal, row, patient) -> bool:
    """Dependent rows inherit the visibility of the patient they point at."""
    if patient is None or row.patient_id != patient.id:
        return False
    return can_view_patient(principal, patient)


def owns_patient(principal: Principal, patient) -> bool:
    return principal.is_caregiver and patient.caregiver_id == principal.id


def can_log_health(principal: Principal, patient) -> bool:
    return can_view_patient(principal, patient)


def can_trigger_alert(principal: Principal, patient) -> bool:
    # any reader may raise an emergency
    return can_view_patient(principal, patient)


def can_resolve_alert(principal: Principal, patient) -> bool:
    if not can_view_patient(principal, patient):
        return False
    return principal.is_caregiver or settings.family_can_resolve_alerts


def audience(patient) -> set:
    """Principals who can currently see ``patient``."""
    return {patient.caregiver_id, *patient.family_members}


# Query filters

def visible_patients(db: Session, principal: Principal) -> Query:
    query = db.query(Patient)
    if principal.is_caregiver:
        return query.filter(Patient.caregiver_id == principal.id)
    if principal.is_family:
        return query.join(patient_family, patient_family.c.patient_id == Patient.id).filter(
            patient_family.c.profile_id == principal.id
        )
    return query.filter(false())


def visible_patient_ids(principal: Principal) -> Select:
    if principal.is_caregiver:
        return select(Patient.id).where(Patient.caregiver_id == principal.id)
    if principal.is_family:
        return select(patient_family.c.patient_id).where(patient_family.c.profile_id == principal.id)
    return select(Patient.id).where(false())


def scoped(db: Session, principal: Principal, model) -> Query:
    """Rows of a patient-dependent ``model`` the principal may read."""
    return db.query(model).filter(model.patient_id.in_(visible_patient_ids(principal)))


def get_visible_patient(db: Session, principal: Principal, patient_id: int) -> Optional[Patient]:
    return visible_patients(db, principal).filter(Patient.id == patient_id).first()


def get_owned_patient(db: Session, principal: Principal, patient_id: int) -> Optional[Patient]:
    if not principal.is_caregiver:
        return None
    return db.query(Patient).filter(
        Patient.id == patient_id, Patient.caregiver_id == principal.id
    ).first()


# Family membership

def find_family_profile(db: Session, email: str) -> Optional[Profile]:
    return db.query(Profile).filter(
        Profile.email == email.strip().lower(), Profile.role == FAMILY
    ).first()


def family_profiles(db: Session, ids: Iterable[int]) -> list:
    """Resolve ``ids`` to family profiles; raises ValueError on any other id."""
    ids = set(ids)
    if not ids:
        return []
    found = db.query(Profile).filter(Profile.id.in_(ids), Profile.role == FAMILY).all()
    missing = ids - {p.id for p in found}
    if missing:
        raise ValueError(f"not family profiles: {sorted(missing)}")
    return found


def add_family_member(owner: Principal, patient: Patient, member: Profile) -> bool:
    """Append ``member`` to the patient's membership list.

    Only the owning caregiver may append and only family-role profiles can be
    appended. Returns False when the member was already present.
    """
    if not owns_patient(owner, patient):
        raise PermissionError("only the owning caregiver can add family members")
    if member.role != FAMILY:
        raise ValueError("only family profiles can be added")
    if member.id in patient.family_members:
        return False
    patient.family.append(member)
    return True
