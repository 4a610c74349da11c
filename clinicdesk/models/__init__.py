from clinicdesk.models.appointment import Appointment, AppointmentStatus
from clinicdesk.models.audit_log import AuditLog
from clinicdesk.models.billing import Billing, PaymentStatus, Treatment
from clinicdesk.models.clinic import Clinic, DoctorClinicAssignment
from clinicdesk.models.doctor import Doctor
from clinicdesk.models.patient import Patient
from clinicdesk.models.user import User, UserRole
from clinicdesk.models.visit import AlertLevel, Visit, VisitStatus, VisitTreatment
from clinicdesk.models.working_hours import RecurringRule, SpecialSchedule, WeeklyAvailability

__all__ = [
    "AlertLevel",
    "Appointment",
    "AppointmentStatus",
    "AuditLog",
    "Billing",
    "Clinic",
    "Doctor",
    "DoctorClinicAssignment",
    "Patient",
    "PaymentStatus",
    "RecurringRule",
    "SpecialSchedule",
    "Treatment",
    "User",
    "UserRole",
    "Visit",
    "VisitStatus",
    "VisitTreatment",
    "WeeklyAvailability",
]
