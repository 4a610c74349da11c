from clinicdesk.models import Doctor, User, UserRole


def test_list_doctors_includes_clinics(client, nurse_headers, doctor, other_doctor):
    response = client.get("/api/doctors", headers=nurse_headers)

    assert response.status_code == 200
    body = response.json()
    assert [d["full_name"] for d in body] == ["Ada Lovelace", "Grace Hopper"]
    assert [c["name"] for c in body[0]["clinics"]] == ["Central", "North"]


def test_list_doctors_filters_by_clinic(client, nurse_headers, clinics, doctor, other_doctor):
    _central, north = clinics

    response = client.get(f"/api/doctors?clinic_id={north.id}", headers=nurse_headers)

    assert [d["id"] for d in response.json()] == [doctor.id]


def test_get_unknown_doctor_is_404(client, nurse_headers):
    assert client.get("/api/doctors/999", headers=nurse_headers).status_code == 404


def test_admin_creates_doctor_with_account(client, db, admin_headers, clinics):
    central, north = clinics
    payload = {
        "full_name": "Barbara Liskov",
        "specialty": "Surgery",
        "clinic_ids": [central.id, north.id],
        "email": "barbara@example.com",
        "password": "pw123456",
    }

    response = client.post("/api/doctors", json=payload, headers=admin_headers)

    assert response.status_code == 201
    body = response.json()
    assert sorted(c["id"] for c in body["clinics"]) == sorted([central.id, north.id])
    account = db.query(User).filter(User.email == "barbara@example.com").one()
    assert account.role == UserRole.DOCTOR
    assert account.doctor_id == body["id"]


def test_create_doctor_without_clinics_is_rejected(client, db, admin_headers, clinics):
    payload = {"full_name": "No Clinic", "clinic_ids": [], "email": "none@example.com"}

    response = client.post("/api/doctors", json=payload, headers=admin_headers)

    assert response.status_code == 400
    assert db.query(Doctor).count() == 0


def test_create_doctor_with_unknown_clinic_is_rejected(client, admin_headers, clinics):
    payload = {"full_name": "Lost", "clinic_ids": [999], "email": "lost@example.com"}
    assert client.post("/api/doctors", json=payload, headers=admin_headers).status_code == 400


def test_duplicate_doctor_email_is_conflict(client, admin_headers, clinics, doctor):
    central, _north = clinics
    payload = {"full_name": "Ada Again", "clinic_ids": [central.id], "email": doctor.email}
    assert client.post("/api/doctors", json=payload, headers=admin_headers).status_code == 409


def test_nurse_cannot_create_doctor(client, nurse_headers, clinics):
    central, _north = clinics
    payload = {"full_name": "X", "clinic_ids": [central.id], "email": "x@example.com"}
    assert client.post("/api/doctors", json=payload, headers=nurse_headers).status_code == 403


def test_update_doctor_syncs_clinic_assignments(client, db, admin_headers, clinics, doctor):
    central, north = clinics

    response = client.put(
        f"/api/doctors/{doctor.id}",
        json={"clinic_ids": [north.id], "color": "#00ff00"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert [c["id"] for c in body["clinics"]] == [north.id]
    assert body["color"] == "#00ff00"
    db.expire_all()
    assert db.get(Doctor, doctor.id).clinic_ids == [north.id]


def test_update_doctor_password_creates_account(client, db, admin_headers, clinics, doctor):
    central, _north = clinics

    response = client.put(
        f"/api/doctors/{doctor.id}",
        json={"clinic_ids": [central.id], "password": "newpass1"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    login = client.post("/api/auth/login", json={"username": doctor.email, "password": "newpass1"})
    assert login.status_code == 200
    assert login.json()["doctor_id"] == doctor.id
