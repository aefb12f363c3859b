"""
Plans, subscriptions and the patient-count gate.

Free caregivers may own a limited number of patients. Upgrading moves the
subscription free -> pending; the payment provider's webhook then settles it
to active (or back to free). Only an active paid plan lifts the limit.
"""

import hashlib
import hmac
import json
import logging
import secrets
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from auth import CareSession, require_caregiver
from config import settings
from db import get_db
from models import Patient, Profile, Subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

PLANS = {
    "free": {"name": "Basic Care", "price": 0, "period": "forever", "patient_limit": "free"},
    "premium": {"name": "Premium Care", "price": 35, "period": "month", "patient_limit": None},
    "enterprise": {"name": "Care Facility", "price": 99, "period": "month", "patient_limit": None},
}

FREE, PENDING, ACTIVE = "free", "pending", "active"

TRANSITIONS = {
    (FREE, PENDING),
    (PENDING, ACTIVE),
    (PENDING, FREE),
    (ACTIVE, FREE),
}

WEBHOOK_EVENTS = {
    "payment.succeeded": ACTIVE,
    "payment.failed": FREE,
    "subscription.cancelled": FREE,
}


class PlanLimitReached(Exception):
    def __init__(self, limit: int, plan: str):
        super().__init__(f"patient limit of {limit} reached on the {plan} plan")
        self.limit = limit
        self.plan = plan


class IllegalTransition(Exception):
    pass


def allow_create(current_count: int, limit: Optional[int]) -> bool:
    return limit is None or current_count < limit


def plan_limit(plan: str) -> Optional[int]:
    limit = PLANS[plan]["patient_limit"]
    return settings.free_patient_limit if limit == "free" else limit


def get_subscription(db: Session, caregiver_id: int) -> Subscription:
    sub = db.get(Subscription, caregiver_id)
    if sub is None:
        sub = Subscription(caregiver_id=caregiver_id, plan=FREE, status=FREE)
        db.add(sub)
        db.flush()
    return sub


def effective_limit(sub: Subscription) -> Optional[int]:
    if sub.status == ACTIVE:
        return plan_limit(sub.plan)
    return plan_limit(FREE)


def transition(sub: Subscription, status: str, plan: Optional[str] = None) -> Subscription:
    if (sub.status, status) not in TRANSITIONS:
        raise IllegalTransition(f"cannot move subscription from {sub.status} to {status}")
    logger.info(f"Subscription of caregiver {sub.caregiver_id}: {sub.status} -> {status}")
    sub.status = status
    if plan is not None:
        sub.plan = plan
    if status == FREE:
        sub.plan = FREE
        sub.checkout_ref = None
    return sub


def check_patient_limit(db: Session, caregiver_id: int) -> None:
    """Raise PlanLimitReached if the caregiver may not own another patient.

    Locks the caregiver's profile row first so two concurrent creates for the
    same caregiver count one after the other.
    """
    db.query(Profile).filter(Profile.id == caregiver_id).with_for_update().one()
    sub = get_subscription(db, caregiver_id)
    limit = effective_limit(sub)
    count = db.query(Patient).filter(Patient.caregiver_id == caregiver_id).count()
    if not allow_create(count, limit):
        raise PlanLimitReached(limit, sub.plan if sub.status == ACTIVE else FREE)


def sign_payload(body: bytes) -> str:
    return hmac.new(settings.payment_webhook_secret.encode(), body, hashlib.sha256).hexdigest()


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan: str
    status: str
    checkout_ref: Optional[str] = None


class UpgradeRequest(BaseModel):
    plan: Literal["premium", "enterprise"]


@router.get("/plans")
def list_plans():
    return [
        dict(plan, id=plan_id, patient_limit=plan_limit(plan_id))
        for plan_id, plan in PLANS.items()
    ]


@router.get("/subscription", response_model=SubscriptionOut)
def read_subscription(session: CareSession = Depends(require_caregiver), db: Session = Depends(get_db)):
    sub = get_subscription(db, session.principal.id)
    db.commit()
    return sub


@router.post("/upgrade", response_model=SubscriptionOut)
def request_upgrade(
    req: UpgradeRequest,
    session: CareSession = Depends(require_caregiver),
    db: Session = Depends(get_db),
):
    sub = get_subscription(db, session.principal.id)
    try:
        transition(sub, PENDING, plan=req.plan)
    except IllegalTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    sub.checkout_ref = f"chk_{secrets.token_urlsafe(16)}"
    db.commit()
    db.refresh(sub)
    return sub


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_signature: str = Header(""),
    db: Session = Depends(get_db),
):
    body = await request.body()
    if not hmac.compare_digest(sign_payload(body), x_signature):
        logger.warning("Rejected payment webhook with bad signature")
        raise HTTPException(status_code=400, detail="Invalid signature")
    try:
        payload = json.loads(body)
        event_type = payload["type"]
        checkout_ref = payload["checkout_ref"]
    except (ValueError, KeyError, TypeError):
        raise HTTPException(status_code=400, detail="Malformed webhook payload")
    if not isinstance(event_type, str) or not isinstance(checkout_ref, str):
        raise HTTPException(status_code=400, detail="Malformed webhook payload")

    target = WEBHOOK_EVENTS.get(event_type)
    if target is None:
        return {"received": True, "handled": False}

    sub = db.query(Subscription).filter_by(checkout_ref=checkout_ref).first()
    if sub is None:
        raise HTTPException(status_code=404, detail="Unknown checkout reference")
    try:
        transition(sub, target)
    except IllegalTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    return {"received": True, "handled": True, "status": sub.status}
