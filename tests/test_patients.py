from clinicdesk.models import AuditLog


def _patient(dn="DN-0100", **extra):
    return {"dn": dn, "first_name": "Mary", "last_name": "Jones", "mobile_phone": "0899999999", **extra}


def test_create_patient(client, db, nurse_headers):
    response = client.post("/api/patients", json=_patient(), headers=nurse_headers)

    assert response.status_code == 201
    assert response.json()["display_name"] == "Mary Jones"
    assert db.query(AuditLog).filter(AuditLog.action == "create_patient").count() == 1


def test_duplicate_dn_is_conflict(client, nurse_headers):
    client.post("/api/patients", json=_patient(), headers=nurse_headers)
    assert client.post("/api/patients", json=_patient(), headers=nurse_headers).status_code == 409


def test_search_by_name_phone_and_dn(client, nurse_headers, patient):
    client.post("/api/patients", json=_patient(), headers=nurse_headers)

    by_name = client.get("/api/patients?query=smi", headers=nurse_headers).json()
    by_phone = client.get("/api/patients?query=08999", headers=nurse_headers).json()
    by_dn = client.get("/api/patients?query=DN-0001", headers=nurse_headers).json()
    everyone = client.get("/api/patients", headers=nurse_headers).json()

    assert [p["last_name"] for p in by_name] == ["Smith"]
    assert [p["last_name"] for p in by_phone] == ["Jones"]
    assert [p["dn"] for p in by_dn] == ["DN-0001"]
    assert len(everyone) == 2


def test_update_patient(client, nurse_headers, patient):
    response = client.put(f"/api/patients/{patient.id}", json={"allergies": "Penicillin"}, headers=nurse_headers)

    assert response.status_code == 200
    assert response.json()["allergies"] == "Penicillin"
    assert response.json()["first_name"] == "John"


def test_update_to_taken_dn_is_conflict(client, nurse_headers, patient):
    other = client.post("/api/patients", json=_patient(), headers=nurse_headers).json()

    response = client.put(f"/api/patients/{other['id']}", json={"dn": patient.dn}, headers=nurse_headers)

    assert response.status_code == 409


def test_unknown_patient_is_404(client, nurse_headers):
    assert client.get("/api/patients/999", headers=nurse_headers).status_code == 404
