import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import clinicdesk.models  # noqa: F401
from clinicdesk.config import CORS_ORIGINS, ENABLE_SCHEDULER, LOG_LEVEL
from clinicdesk.core.availability import InvalidDate, UnknownEntity
from clinicdesk.core.scheduler import shutdown_scheduler, start_scheduler
from clinicdesk.database import Base, engine
from clinicdesk.routers import (
    appointments,
    audit_logs,
    auth,
    availability,
    billing,
    clinics,
    doctors,
    patients,
    visits,
    working_hours,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Clinic Desk API")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidDate)
async def invalid_date_handler(request: Request, exc: InvalidDate):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(UnknownEntity)
async def unknown_entity_handler(request: Request, exc: UnknownEntity):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


# Include routers
app.include_router(auth.router)
app.include_router(clinics.router)
app.include_router(doctors.router)
app.include_router(working_hours.router)
app.include_router(availability.router)
app.include_router(appointments.router)
app.include_router(patients.router)
app.include_router(visits.router)
app.include_router(billing.router)
app.include_router(audit_logs.router)


@app.on_event("startup")
async def startup_event():
    if ENABLE_SCHEDULER:
        start_scheduler()
    else:
        logger.info("Background scheduler disabled")


@app.on_event("shutdown")
async def shutdown_event():
    shutdown_scheduler()


@app.get("/")
async def root():
    return {"message": "Welcome to Clinic Desk API"}
