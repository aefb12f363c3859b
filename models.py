# models.py
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Table, Text, func
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ROLES = ("caregiver", "family")
HEALTH_LOG_TYPES = ("blood_pressure", "blood_sugar", "temperature", "mood")
ALERT_STATUSES = ("active", "resolved")

patient_family = Table(
    "patient_family", Base.metadata,
    Column("patient_id", ForeignKey("patients.id", ondelete="CASCADE"), primary_key=True),
    Column("profile_id", ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True),
    Column("added_at", DateTime, server_default=func.now()),
)


# Identity provider side: credentials and sessions
class Account(Base):
    __tablename__ = "accounts"
    id            = Column(Integer, primary_key=True, index=True)
    email         = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    user_metadata = Column(JSON, nullable=False, default=dict)
    created_at    = Column(DateTime, server_default=func.now())


class AuthSession(Base):
    __tablename__ = "auth_sessions"
    id         = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)


# Application side
class Profile(Base):
    __tablename__ = "profiles"
    # shares its id with the Account it belongs to
    id         = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    email      = Column(String, unique=True, nullable=False, index=True)
    role       = Column(String, nullable=False)        # "caregiver" | "family"
    full_name  = Column(String, nullable=False)
    phone      = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Patient(Base):
    __tablename__ = "patients"
    id                 = Column(Integer, primary_key=True, index=True)
    caregiver_id       = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    name               = Column(String, nullable=False)
    age                = Column(Integer, nullable=False)
    medical_conditions = Column(JSON, nullable=False, default=list)
    emergency_contact  = Column(String, nullable=False, default="")
    created_at         = Column(DateTime, server_default=func.now())

    family = relationship("Profile", secondary=patient_family, lazy="selectin")
    health_logs = relationship("HealthLog", cascade="all, delete-orphan")
    reminders = relationship("Reminder", cascade="all, delete-orphan")
    alerts = relationship("EmergencyAlert", cascade="all, delete-orphan")

    @property
    def family_members(self):
        return sorted(member.id for member in self.family)


class HealthLog(Base):
    __tablename__ = "health_logs"
    id         = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    type       = Column(String, nullable=False)        # e.g. "blood_pressure"
    value      = Column(String, nullable=False)        # "120/80", "95", "98.6", "good"
    notes      = Column(Text, nullable=True)
    logged_by  = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), index=True)


class Reminder(Base):
    __tablename__ = "reminders"
    id          = Column(Integer, primary_key=True, index=True)
    patient_id  = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    title       = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    due_time    = Column(DateTime, nullable=False)
    completed   = Column(Boolean, nullable=False, default=False)
    created_at  = Column(DateTime, server_default=func.now())


class EmergencyAlert(Base):
    __tablename__ = "emergency_alerts"
    id           = Column(Integer, primary_key=True, index=True)
    patient_id   = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    triggered_by = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    location     = Column(String, nullable=True)
    status       = Column(String, nullable=False, default="active")
    resolved_by  = Column(Integer, ForeignKey("profiles.id"), nullable=True)
    resolved_at  = Column(DateTime, nullable=True)
    created_at   = Column(DateTime, server_default=func.now(), index=True)


class Subscription(Base):
    __tablename__ = "subscriptions"
    caregiver_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    plan         = Column(String, nullable=False, default="free")
    status       = Column(String, nullable=False, default="free")   # free | pending | active
    checkout_ref = Column(String, unique=True, nullable=True)
    updated_at   = Column(DateTime, server_default=func.now(), onupdate=func.now())


# Change feed: the autoincrement id is the cursor
class ChangeEvent(Base):
    __tablename__ = "change_events"
    id         = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String, nullable=False)
    op         = Column(String, nullable=False)        # insert | update | delete
    row_id     = Column(Integer, nullable=False)
    data       = Column(JSON, nullable=True)    # row snapshot, None on delete
    created_at = Column(DateTime, server_default=func.now())


change_audience = Table(
    "change_audience", Base.metadata,
    Column("event_id", ForeignKey("change_events.id", ondelete="CASCADE"), primary_key=True),
    Column("profile_id", Integer, primary_key=True, index=True),
)


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)
