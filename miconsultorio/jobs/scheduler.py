import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..config import settings
from ..services.entitlements import expire_overdue_subscriptions

logger = logging.getLogger(__name__)


def expiry_job():
    db: Session = SessionLocal()
    try:
        expired = expire_overdue_subscriptions(db)
        if expired:
            logger.info("Barrido de suscripciones: %s vencida(s)", expired)
    finally:
        db.close()


def start_scheduler():
    scheduler = BackgroundScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(expiry_job, CronTrigger(minute=0))  # cada hora
    scheduler.start()
    return scheduler
