"""
API tests for patient management and family membership
"""

from conftest import create_patient, sign_up


class TestPatientCrud:
    """Owner-only writes, scoped reads"""

    def test_create_and_list(self, client, caregiver):
        headers, profile = caregiver
        resp = create_patient(client, headers, medical_conditions="Diabetes, , Hypertension")
        assert resp.status_code == 201
        body = resp.json()
        assert body["caregiver_id"] == profile["id"]
        assert body["medical_conditions"] == ["Diabetes", "Hypertension"]
        assert body["family_members"] == []

        listed = client.get("/patients/", headers=headers).json()
        assert [p["id"] for p in listed] == [body["id"]]

    def test_requires_session(self, client):
        assert client.get("/patients/").status_code == 401

    def test_family_cannot_create(self, client, family):
        headers, _ = family
        assert create_patient(client, headers).status_code == 403

    def test_other_caregiver_sees_nothing(self, client, patient):
        other, _ = sign_up(client, "olga@example.com", "caregiver")
        assert client.get("/patients/", headers=other).json() == []
        assert client.get(f"/patients/{patient['id']}", headers=other).status_code == 404
        resp = client.patch(f"/patients/{patient['id']}", json={"age": 1}, headers=other)
        assert resp.status_code == 404
        assert client.delete(f"/patients/{patient['id']}", headers=other).status_code == 404

    def test_partial_update(self, client, caregiver, patient):
        headers, _ = caregiver
        resp = client.patch(
            f"/patients/{patient['id']}", json={"age": 79, "medical_conditions": "Arthritis"}, headers=headers
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["age"] == 79
        assert body["medical_conditions"] == ["Arthritis"]
        assert body["name"] == patient["name"]

    def test_delete_removes_dependents(self, client, caregiver, patient):
        headers, _ = caregiver
        client.post("/health-logs/", json={"patient_id": patient["id"], "type": "mood", "value": "good"},
                    headers=headers)
        assert client.delete(f"/patients/{patient['id']}", headers=headers).status_code == 204
        assert client.get("/patients/", headers=headers).json() == []
        assert client.get("/health-logs/", headers=headers).json() == []


class TestPlanLimit:
    """Free caregivers may own two patients"""

    def test_second_allowed_third_rejected(self, client, caregiver):
        headers, _ = caregiver
        assert create_patient(client, headers, name="One").status_code == 201
        assert create_patient(client, headers, name="Two").status_code == 201
        resp = create_patient(client, headers, name="Three")
        assert resp.status_code == 402
        assert resp.json()["code"] == "upgrade_required"
        assert resp.json()["limit"] == 2
        assert len(client.get("/patients/", headers=headers).json()) == 2

    def test_limit_is_per_caregiver(self, client, caregiver):
        headers, _ = caregiver
        other, _ = sign_up(client, "olga@example.com", "caregiver")
        create_patient(client, headers, name="One")
        create_patient(client, headers, name="Two")
        assert create_patient(client, other, name="Mine").status_code == 201

    def test_deleting_frees_a_slot(self, client, caregiver):
        headers, _ = caregiver
        first = create_patient(client, headers, name="One").json()
        create_patient(client, headers, name="Two")
        client.delete(f"/patients/{first['id']}", headers=headers)
        assert create_patient(client, headers, name="Three").status_code == 201


class TestFamilyMembership:
    """Adding family members by email"""

    def test_add_family_grants_visibility(self, client, caregiver, family, patient):
        headers, _ = caregiver
        fam_headers, fam_profile = family
        assert client.get(f"/patients/{patient['id']}", headers=fam_headers).status_code == 404
        assert client.get("/patients/", headers=fam_headers).json() == []

        resp = client.post(f"/patients/{patient['id']}/family", json={"email": "frank@example.com"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["family_members"] == [fam_profile["id"]]

        assert client.get(f"/patients/{patient['id']}", headers=fam_headers).status_code == 200
        assert [p["id"] for p in client.get("/patients/", headers=fam_headers).json()] == [patient["id"]]

    def test_adding_twice_is_idempotent(self, client, caregiver, family, patient):
        headers, _ = caregiver
        for _ in range(2):
            resp = client.post(f"/patients/{patient['id']}/family", json={"email": "frank@example.com"},
                               headers=headers)
        assert resp.json()["family_members"] == [family[1]["id"]]

    def test_caregiver_email_is_not_a_family_member(self, client, caregiver, patient):
        headers, _ = caregiver
        sign_up(client, "olga@example.com", "caregiver")
        resp = client.post(f"/patients/{patient['id']}/family", json={"email": "olga@example.com"}, headers=headers)
        assert resp.status_code == 404

    def test_family_cannot_add_members(self, client, caregiver, family, patient):
        headers, _ = caregiver
        fam_headers, _ = family
        client.post(f"/patients/{patient['id']}/family", json={"email": "frank@example.com"}, headers=headers)
        sign_up(client, "fiona@example.com", "family")
        resp = client.post(f"/patients/{patient['id']}/family", json={"email": "fiona@example.com"},
                           headers=fam_headers)
        assert resp.status_code == 403

    def test_initial_members_must_be_family(self, client, caregiver, family):
        headers, profile = caregiver
        assert create_patient(client, headers, family_members=[profile["id"]]).status_code == 422
        resp = create_patient(client, headers, family_members=[family[1]["id"]])
        assert resp.status_code == 201
        assert resp.json()["family_members"] == [family[1]["id"]]

    def test_family_profile_picker(self, client, caregiver, family):
        headers, _ = caregiver
        listed = client.get("/patients/family-profiles", headers=headers).json()
        assert [p["email"] for p in listed] == ["frank@example.com"]
        assert client.get("/patients/family-profiles", headers=family[0]).status_code == 403
