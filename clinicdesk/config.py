import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinicdesk.db")

# Security - no default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Booking
APPOINTMENT_SLOT_MINUTES = int(os.getenv("APPOINTMENT_SLOT_MINUTES", "30"))

# Work schedule horizon (days)
MAX_SCHEDULE_RANGE_DAYS = int(os.getenv("MAX_SCHEDULE_RANGE_DAYS", "90"))
DEFAULT_SCHEDULE_DAYS = int(os.getenv("DEFAULT_SCHEDULE_DAYS", "60"))

# Visit queue alerting
WAITING_WARNING_MINUTES = int(os.getenv("WAITING_WARNING_MINUTES", "30"))
WAITING_CRITICAL_MINUTES = int(os.getenv("WAITING_CRITICAL_MINUTES", "60"))
QUEUE_CHECK_INTERVAL_MINUTES = int(os.getenv("QUEUE_CHECK_INTERVAL_MINUTES", "5"))
ENABLE_SCHEDULER = os.getenv("ENABLE_SCHEDULER", "true").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
