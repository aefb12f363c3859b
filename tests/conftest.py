"""Test-specific fixtures."""

import os

# must be set before the app modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "whsec-test"

import pytest
from fastapi.testclient import TestClient

import db
from main import app
from models import Base


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=db.engine)
    Base.metadata.create_all(bind=db.engine)
    yield


@pytest.fixture
def session():
    s = db.SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def sign_up(client, email, role="caregiver", full_name=None, password="secret123"):
    resp = client.post("/auth/signup", json={
        "email": email,
        "password": password,
        "full_name": full_name or email.split("@")[0].title(),
        "role": role,
    })
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["profile"]


def create_patient(client, headers, name="Eleanor Johnson", **extra):
    payload = {
        "name": name,
        "age": 78,
        "medical_conditions": ["Diabetes", "Hypertension"],
        "emergency_contact": "+1 (555) 123-4567",
    }
    payload.update(extra)
    return client.post("/patients/", json=payload, headers=headers)


@pytest.fixture
def caregiver(client):
    return sign_up(client, "carol@example.com", "caregiver", "Carol Caregiver")


@pytest.fixture
def family(client):
    return sign_up(client, "frank@example.com", "family", "Frank Family")


@pytest.fixture
def patient(client, caregiver):
    headers, _ = caregiver
    resp = create_patient(client, headers)
    assert resp.status_code == 201, resp.text
    return resp.json()
