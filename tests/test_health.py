"""
API tests for health logging and trends
"""

import pytest

from conftest import sign_up


@pytest.fixture
def shared_patient(client, caregiver, family, patient):
    headers, _ = caregiver
    client.post(f"/patients/{patient['id']}/family", json={"email": "frank@example.com"}, headers=headers)
    return patient


def log(client, headers, patient_id, type, value, notes=None):
    return client.post(
        "/health-logs/",
        json={"patient_id": patient_id, "type": type, "value": value, "notes": notes},
        headers=headers,
    )


class TestHealthLogs:
    """Appending and reading readings"""

    def test_caregiver_logs_with_severity(self, client, caregiver, patient):
        headers, profile = caregiver
        resp = log(client, headers, patient["id"], "blood_pressure", "145/95", "after walk")
        assert resp.status_code == 201
        body = resp.json()
        assert body["severity"] == "high"
        assert body["logged_by"] == profile["id"]
        assert body["notes"] == "after walk"

    def test_family_member_can_log(self, client, family, shared_patient):
        headers, profile = family
        resp = log(client, headers, shared_patient["id"], "mood", "good")
        assert resp.status_code == 201
        assert resp.json()["logged_by"] == profile["id"]
        assert resp.json()["severity"] is None

    def test_outsider_cannot_log(self, client, family, patient):
        headers, _ = family
        assert log(client, headers, patient["id"], "mood", "good").status_code == 404

    def test_invalid_value_rejected(self, client, caregiver, patient):
        headers, _ = caregiver
        assert log(client, headers, patient["id"], "blood_pressure", "high").status_code == 422
        assert log(client, headers, patient["id"], "weight", "70").status_code == 422

    def test_list_is_scoped_and_newest_first(self, client, caregiver, family, shared_patient):
        headers, _ = caregiver
        for value in ("95", "150", "190"):
            log(client, headers, shared_patient["id"], "blood_sugar", value)

        fam_logs = client.get("/health-logs/", headers=family[0]).json()
        assert [entry["value"] for entry in fam_logs] == ["190", "150", "95"]
        assert [entry["severity"] for entry in fam_logs] == ["high", "elevated", "normal"]

        outsider, _ = sign_up(client, "olga@example.com", "caregiver")
        assert client.get("/health-logs/", headers=outsider).json() == []
        resp = client.get("/health-logs/", params={"patient_id": shared_patient["id"]}, headers=outsider)
        assert resp.json() == []

    def test_filters_and_limit(self, client, caregiver, patient):
        headers, _ = caregiver
        log(client, headers, patient["id"], "mood", "good")
        for value in ("98.6", "99.9", "103.1"):
            log(client, headers, patient["id"], "temperature", value)
        resp = client.get("/health-logs/", params={"type": "temperature", "limit": 2}, headers=headers)
        assert [entry["value"] for entry in resp.json()] == ["103.1", "99.9"]

    def test_logs_are_append_only(self, client, caregiver, patient):
        headers, _ = caregiver
        entry = log(client, headers, patient["id"], "mood", "good").json()
        assert client.delete(f"/health-logs/{entry['id']}", headers=headers).status_code in (404, 405)
        assert client.patch(f"/health-logs/{entry['id']}", json={}, headers=headers).status_code in (404, 405)


class TestTrend:
    """Chart series"""

    def test_oldest_to_newest_last_n(self, client, caregiver, patient):
        headers, _ = caregiver
        for value in ("130/80", "125/82", "118/79"):
            log(client, headers, patient["id"], "blood_pressure", value)
        resp = client.get(
            "/health-logs/trend",
            params={"patient_id": patient["id"], "type": "blood_pressure", "limit": 2},
            headers=headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["unit"] == "mmHg"
        assert [p["value"] for p in body["points"]] == [125.0, 118.0]

    def test_mood_trend_uses_scores(self, client, caregiver, patient):
        headers, _ = caregiver
        for value in ("very_poor", "neutral", "excellent"):
            log(client, headers, patient["id"], "mood", value)
        body = client.get(
            "/health-logs/trend", params={"patient_id": patient["id"], "type": "mood"}, headers=headers
        ).json()
        assert [p["value"] for p in body["points"]] == [1.0, 3.0, 5.0]

    def test_trend_out_of_scope_is_empty(self, client, family, patient):
        body = client.get(
            "/health-logs/trend", params={"patient_id": patient["id"], "type": "mood"}, headers=family[0]
        ).json()
        assert body["points"] == []
