"""
Identity and session resolution.

Accounts hold credentials and sign-up metadata; profiles hold the
application role. A signed-in request resolves to a ``CareSession`` that
carries the principal every scoping check needs.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.orm import Session

from config import settings
from db import get_db
from feed import record_change
from models import Account, AuthSession, Profile, ROLES, utcnow
from scoping import CAREGIVER, Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_bearer = HTTPBearer(auto_error=False)


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)
    role: Literal["caregiver", "family"]
    phone: Optional[str] = None


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: str
    full_name: str
    phone: Optional[str] = None


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    profile: ProfileOut


@dataclass(frozen=True)
class CareSession:
    session_id: int
    principal: Principal
    profile: Profile


def hash_password(password: str) -> str:
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return _pwd.verify(password, password_hash)


def issue_token(account_id: int, session_id: int, expires_at: datetime) -> str:
    claims = {
        "sub": str(account_id),
        "sid": session_id,
        "exp": expires_at.replace(tzinfo=timezone.utc),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def provision_profile(db: Session, account: Account) -> Profile:
    """Return the account's profile, creating a default one if it is missing."""
    profile = db.get(Profile, account.id)
    if profile is not None:
        return profile
    meta = account.user_metadata or {}
    role = meta.get("role") if meta.get("role") in ROLES else CAREGIVER
    profile = Profile(
        id=account.id,
        email=account.email,
        role=role,
        full_name=meta.get("full_name") or "User",
        phone=meta.get("phone"),
    )
    db.add(profile)
    db.flush()
    logger.info(f"Provisioned {role} profile for account {account.id}")
    return profile


def open_session(db: Session, account: Account, profile: Profile) -> SessionOut:
    expires_at = utcnow() + timedelta(minutes=settings.session_ttl_minutes)
    auth_session = AuthSession(account_id=account.id, expires_at=expires_at)
    db.add(auth_session)
    db.flush()
    record_change(db, "auth", "insert", auth_session.id, {"event": "SIGNED_IN"}, [profile.id])
    token = issue_token(account.id, auth_session.id, expires_at)
    return SessionOut(
        access_token=token,
        expires_at=expires_at,
        profile=ProfileOut.model_validate(profile),
    )


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    db: Session = Depends(get_db),
) -> CareSession:
    if credentials is None:
        raise _unauthorized()
    try:
        claims = decode_token(credentials.credentials)
        account_id = int(claims["sub"])
        session_id = int(claims["sid"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise _unauthorized("Invalid or expired token")

    auth_session = db.get(AuthSession, session_id)
    if (
        auth_session is None
        or auth_session.account_id != account_id
        or auth_session.revoked_at is not None
        or auth_session.expires_at <= utcnow()
    ):
        raise _unauthorized("Session is no longer valid")

    account = db.get(Account, account_id)
    if account is None:
        raise _unauthorized("Session is no longer valid")
    profile = db.get(Profile, account_id)
    if profile is None:
        profile = provision_profile(db, account)
        db.commit()
    return CareSession(
        session_id=session_id,
        principal=Principal(id=profile.id, role=profile.role),
        profile=profile,
    )


def require_caregiver(session: CareSession = Depends(current_session)) -> CareSession:
    if not session.principal.is_caregiver:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Caregiver role required")
    return session


@router.post("/signup", response_model=SessionOut, status_code=201)
def sign_up(req: SignUpRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    if db.query(Account).filter_by(email=email).first():
        raise HTTPException(status_code=409, detail="Email already registered")

    account = Account(
        email=email,
        password_hash=hash_password(req.password),
        user_metadata={"full_name": req.full_name, "role": req.role, "phone": req.phone},
    )
    db.add(account)
    db.flush()
    profile = provision_profile(db, account)
    result = open_session(db, account, profile)
    db.commit()
    logger.info(f"Signed up {req.role} account {account.id}")
    return result


@router.post("/signin", response_model=SessionOut)
def sign_in(req: SignInRequest, db: Session = Depends(get_db)):
    account = db.query(Account).filter_by(email=req.email.lower()).first()
    if account is None or not verify_password(req.password, account.password_hash):
        logger.warning("Rejected sign-in attempt")
        raise _unauthorized("Invalid login credentials")

    profile = provision_profile(db, account)
    result = open_session(db, account, profile)
    db.commit()
    logger.info(f"Account {account.id} signed in")
    return result


@router.post("/signout", status_code=204)
def sign_out(session: CareSession = Depends(current_session), db: Session = Depends(get_db)):
    auth_session = db.get(AuthSession, session.session_id)
    auth_session.revoked_at = utcnow()
    record_change(db, "auth", "delete", auth_session.id, {"event": "SIGNED_OUT"}, [session.principal.id])
    db.commit()
    logger.info(f"Account {session.principal.id} signed out")


@router.get("/session", response_model=ProfileOut)
def get_session(session: CareSession = Depends(current_session)):
    return session.profile
