from datetime import date, datetime, time

from clinicdesk.models import Appointment, AppointmentStatus, SpecialSchedule


def test_clinic_day_schedule_lists_working_doctors(client, nurse_headers, clinics, doctor, other_doctor, monday_hours):
    central, _north = clinics

    response = client.get(f"/api/clinic-day-schedule?clinic_id={central.id}&date=2025-01-06", headers=nurse_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["date"] == "2025-01-06"
    assert [(d["doctor_id"], d["name"], d["start_time"]) for d in body["doctors"]] == [
        (doctor.id, "Ada Lovelace", "09:00:00")
    ]
    assert sorted(d["name"] for d in body["all_doctors_in_clinic"]) == ["Ada Lovelace", "Grace Hopper"]


def test_clinic_day_schedule_applies_day_off(client, db, nurse_headers, clinics, doctor, monday_hours):
    central, _north = clinics
    db.add(SpecialSchedule(doctor_id=doctor.id, clinic_id=central.id, schedule_date=date(2025, 1, 6), is_available=False))
    db.commit()

    response = client.get(f"/api/clinic-day-schedule?clinic_id={central.id}&date=2025-01-06", headers=nurse_headers)

    assert response.json()["doctors"] == []


def test_clinic_day_schedule_lists_confirmed_appointments(
    client, db, nurse_headers, clinics, doctor, patient, monday_hours
):
    central, _north = clinics
    db.add_all(
        [
            Appointment(
                patient_id=patient.id,
                doctor_id=doctor.id,
                clinic_id=central.id,
                start_time=datetime(2025, 1, 6, 10, 0),
                end_time=datetime(2025, 1, 6, 10, 30),
                status=AppointmentStatus.CONFIRMED,
            ),
            Appointment(
                patient_id=patient.id,
                doctor_id=doctor.id,
                clinic_id=central.id,
                start_time=datetime(2025, 1, 6, 11, 0),
                end_time=datetime(2025, 1, 6, 11, 30),
                status=AppointmentStatus.CANCELLED,
            ),
        ]
    )
    db.commit()

    response = client.get(f"/api/clinic-day-schedule?clinic_id={central.id}&date=2025-01-06", headers=nurse_headers)

    appointments = response.json()["appointments"]
    assert [(a["appointment_time"], a["end_time"]) for a in appointments] == [("10:00", "10:30")]


def test_clinic_day_schedule_rejects_bad_date(client, nurse_headers, clinics):
    central, _north = clinics

    response = client.get(f"/api/clinic-day-schedule?clinic_id={central.id}&date=06-01-2025", headers=nurse_headers)

    assert response.status_code == 400


def test_clinic_day_schedule_unknown_clinic(client, nurse_headers):
    response = client.get("/api/clinic-day-schedule?clinic_id=999&date=2025-01-06", headers=nurse_headers)
    assert response.status_code == 404


def test_doctor_work_schedule_over_range(client, db, nurse_headers, clinics, doctor, monday_hours):
    central, north = clinics
    db.add(
        SpecialSchedule(
            doctor_id=doctor.id,
            clinic_id=north.id,
            schedule_date=date(2025, 1, 8),
            start_time=time(14),
            end_time=time(18),
            is_available=True,
        )
    )
    db.commit()

    response = client.get(
        f"/api/doctor-work-schedule/{doctor.id}?start_date=2025-01-01&end_date=2025-01-14",
        headers=nurse_headers,
    )

    assert response.status_code == 200
    assert [(d["date"], d["clinic_name"], d["start_time"]) for d in response.json()] == [
        ("2025-01-06", "Central", "09:00:00"),
        ("2025-01-08", "North", "14:00:00"),
        ("2025-01-13", "Central", "09:00:00"),
    ]


def test_doctor_work_schedule_range_validation(client, nurse_headers, doctor):
    backwards = client.get(
        f"/api/doctor-work-schedule/{doctor.id}?start_date=2025-02-01&end_date=2025-01-01", headers=nurse_headers
    )
    too_long = client.get(
        f"/api/doctor-work-schedule/{doctor.id}?start_date=2025-01-01&end_date=2025-12-31", headers=nurse_headers
    )

    assert backwards.status_code == 400
    assert too_long.status_code == 400


def test_doctor_work_schedule_unknown_doctor(client, nurse_headers):
    assert client.get("/api/doctor-work-schedule/999", headers=nurse_headers).status_code == 404


def test_doctor_work_schedule_defaults_to_upcoming_days(client, nurse_headers, doctor, monday_hours):
    response = client.get(f"/api/doctor-work-schedule/{doctor.id}", headers=nurse_headers)

    assert response.status_code == 200
    # Sixty days always contain eight or nine Mondays
    assert len(response.json()) in (8, 9)
