from clinicdesk.models import Appointment, AuditLog
from clinicdesk.models.appointment import ACTIVE_STATUSES


def _booking(patient, doctor, clinic, time="10:00", day="2025-01-06", **extra):
    return {
        "patient_id": patient.id,
        "doctor_id": doctor.id,
        "clinic_id": clinic.id,
        "appointment_date": day,
        "appointment_time": time,
        **extra,
    }


def test_book_inside_working_hours(client, db, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics

    response = client.post("/api/appointments", json=_booking(patient, doctor, central), headers=nurse_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["start_time"] == "2025-01-06T10:00:00"
    assert body["end_time"] == "2025-01-06T10:30:00"
    assert body["status"] == "confirmed"
    assert body["patient_name_at_booking"] == "John Smith"
    assert body["patient_phone_at_booking"] == "0812345678"
    assert db.query(AuditLog).filter(AuditLog.action == "create_appointment").count() == 1


def test_booking_on_a_day_off_is_rejected(client, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics

    response = client.post(
        "/api/appointments", json=_booking(patient, doctor, central, day="2025-01-07"), headers=nurse_headers
    )

    assert response.status_code == 400
    assert "not working" in response.json()["detail"]


def test_booking_at_another_clinic_is_rejected(client, nurse_headers, clinics, doctor, patient, monday_hours):
    _central, north = clinics
    response = client.post("/api/appointments", json=_booking(patient, doctor, north), headers=nurse_headers)
    assert response.status_code == 400


def test_booking_at_unassigned_clinic_is_rejected(client, nurse_headers, admin_headers, clinics, doctor, patient, monday_hours):
    central, north = clinics
    client.put(f"/api/doctors/{doctor.id}", json={"clinic_ids": [north.id]}, headers=admin_headers)

    schedule = client.get(f"/api/clinic-day-schedule?clinic_id={central.id}&date=2025-01-06", headers=nurse_headers)
    response = client.post("/api/appointments", json=_booking(patient, doctor, central), headers=nurse_headers)

    assert schedule.json()["doctors"] == []
    assert response.status_code == 400
    assert "not working" in response.json()["detail"]


def test_slot_must_fit_inside_window(client, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics

    too_early = client.post(
        "/api/appointments", json=_booking(patient, doctor, central, time="08:30"), headers=nurse_headers
    )
    overruns = client.post(
        "/api/appointments", json=_booking(patient, doctor, central, time="16:45"), headers=nurse_headers
    )
    last_slot = client.post(
        "/api/appointments", json=_booking(patient, doctor, central, time="16:30"), headers=nurse_headers
    )

    assert too_early.status_code == 400
    assert overruns.status_code == 400
    assert last_slot.status_code == 201


def test_overlapping_booking_is_rejected(client, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics
    client.post("/api/appointments", json=_booking(patient, doctor, central, time="10:00"), headers=nurse_headers)

    overlap = client.post(
        "/api/appointments", json=_booking(patient, doctor, central, time="10:15"), headers=nurse_headers
    )
    adjacent = client.post(
        "/api/appointments", json=_booking(patient, doctor, central, time="10:30"), headers=nurse_headers
    )

    assert overlap.status_code == 400
    assert overlap.json()["detail"] == "Time slot is not available"
    assert adjacent.status_code == 201


def test_cancelled_appointment_frees_slot(client, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics
    first = client.post("/api/appointments", json=_booking(patient, doctor, central), headers=nurse_headers).json()

    cancelled = client.patch(f"/api/appointments/{first['id']}", json={"status": "cancelled"}, headers=nurse_headers)
    rebook = client.post("/api/appointments", json=_booking(patient, doctor, central), headers=nurse_headers)

    assert cancelled.status_code == 200
    assert rebook.status_code == 201


def test_reconfirming_cancelled_appointment_checks_slot(client, db, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics
    first = client.post("/api/appointments", json=_booking(patient, doctor, central), headers=nurse_headers).json()
    client.patch(f"/api/appointments/{first['id']}", json={"status": "cancelled"}, headers=nurse_headers)
    client.post("/api/appointments", json=_booking(patient, doctor, central), headers=nurse_headers)

    response = client.patch(f"/api/appointments/{first['id']}", json={"status": "confirmed"}, headers=nurse_headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Time slot is not available"
    active = db.query(Appointment).filter(Appointment.status.in_(ACTIVE_STATUSES)).count()
    assert active == 1


def test_reconfirming_cancelled_appointment_with_free_slot(client, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics
    first = client.post("/api/appointments", json=_booking(patient, doctor, central), headers=nurse_headers).json()
    client.patch(f"/api/appointments/{first['id']}", json={"status": "cancelled"}, headers=nurse_headers)

    response = client.patch(f"/api/appointments/{first['id']}", json={"status": "confirmed"}, headers=nurse_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"


def test_unknown_patient_is_404(client, nurse_headers, clinics, doctor, monday_hours):
    central, _north = clinics
    payload = {
        "patient_id": 999,
        "doctor_id": doctor.id,
        "clinic_id": central.id,
        "appointment_date": "2025-01-06",
        "appointment_time": "10:00",
    }
    assert client.post("/api/appointments", json=payload, headers=nurse_headers).status_code == 404


def test_list_and_pending(client, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics
    client.post("/api/appointments", json=_booking(patient, doctor, central, time="09:00"), headers=nurse_headers)
    client.post(
        "/api/appointments",
        json=_booking(patient, doctor, central, time="11:00", status="pending_confirmation"),
        headers=nurse_headers,
    )

    listed = client.get(
        f"/api/appointments?clinic_id={central.id}&start_date=2025-01-06&end_date=2025-01-06", headers=nurse_headers
    )
    confirmed = client.get(
        f"/api/appointments?clinic_id={central.id}&start_date=2025-01-06&end_date=2025-01-06&status=confirmed",
        headers=nurse_headers,
    )
    pending = client.get(f"/api/appointments/pending?clinic_id={central.id}", headers=nurse_headers)

    assert [a["start_time"][11:16] for a in listed.json()] == ["09:00", "11:00"]
    assert [a["start_time"][11:16] for a in confirmed.json()] == ["09:00"]
    assert [a["status"] for a in pending.json()] == ["pending_confirmation"]


def test_reschedule_validates_new_slot(client, db, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics
    first = client.post("/api/appointments", json=_booking(patient, doctor, central, time="09:00"), headers=nurse_headers)
    second = client.post("/api/appointments", json=_booking(patient, doctor, central, time="10:00"), headers=nurse_headers)
    appointment_id = second.json()["id"]

    clash = client.put(f"/api/appointments/{appointment_id}", json={"appointment_time": "09:00"}, headers=nurse_headers)
    moved = client.put(f"/api/appointments/{appointment_id}", json={"appointment_time": "13:00"}, headers=nurse_headers)

    assert first.status_code == 201
    assert clash.status_code == 400
    assert moved.status_code == 200
    assert moved.json()["end_time"] == "2025-01-06T13:30:00"


def test_moving_within_own_slot_is_allowed(client, nurse_headers, clinics, doctor, patient, monday_hours):
    central, _north = clinics
    created = client.post("/api/appointments", json=_booking(patient, doctor, central, time="10:00"), headers=nurse_headers)

    response = client.put(
        f"/api/appointments/{created.json()['id']}", json={"appointment_time": "10:15"}, headers=nurse_headers
    )

    assert response.status_code == 200


def test_get_unknown_appointment_is_404(client, nurse_headers):
    assert client.get("/api/appointments/999", headers=nurse_headers).status_code == 404


def test_booking_requires_authentication(client, db, clinics, doctor, patient):
    central, _north = clinics
    assert client.post("/api/appointments", json=_booking(patient, doctor, central)).status_code == 401
    assert db.query(Appointment).count() == 0
