import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from clinicdesk.config import QUEUE_CHECK_INTERVAL_MINUTES, WAITING_CRITICAL_MINUTES, WAITING_WARNING_MINUTES
from clinicdesk.database import SessionLocal
from clinicdesk.models.visit import AlertLevel, Visit, VisitStatus

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def alert_level_for(waited: timedelta) -> AlertLevel:
    if waited >= timedelta(minutes=WAITING_CRITICAL_MINUTES):
        return AlertLevel.CRITICAL
    if waited >= timedelta(minutes=WAITING_WARNING_MINUTES):
        return AlertLevel.WARNING
    return AlertLevel.NORMAL


def escalate_waiting_visits(db: Session, now: Optional[datetime] = None) -> int:
    """Raise the alert level of visits that have been waiting too long. Returns how many changed."""
    now = now or datetime.now()
    waiting = db.query(Visit).filter(Visit.status == VisitStatus.WAITING).all()

    changed = 0
    for visit in waiting:
        level = alert_level_for(now - visit.check_in_time)
        if level != visit.waiting_alert_level:
            visit.waiting_alert_level = level
            changed += 1

    if changed:
        db.commit()
    return changed


def check_waiting_visits():
    db = SessionLocal()
    try:
        changed = escalate_waiting_visits(db)
        if changed:
            logger.info("Updated waiting alert level on %d visit(s)", changed)
    finally:
        db.close()


def start_scheduler():
    # Re-evaluate queue alert levels on a fixed interval
    scheduler.add_job(
        check_waiting_visits,
        trigger=IntervalTrigger(minutes=QUEUE_CHECK_INTERVAL_MINUTES),
        id="check_waiting_visits",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Background scheduler started (queue check every %d min)", QUEUE_CHECK_INTERVAL_MINUTES)


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
