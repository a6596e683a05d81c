import logging

from celery import Celery
from sqlmodel import Session

from . import db, followup, lifecycle, receipts
from .config import REDIS_URL, WORKER_QUEUE

logger = logging.getLogger(__name__)

cel = Celery("roofdesk", broker=REDIS_URL, backend=REDIS_URL)
cel.conf.task_default_queue = WORKER_QUEUE
cel.conf.beat_schedule = {
    # housekeeping only: reads already treat overdue pending documents as expired
    "sweep-expired-documents": {
        "task": "roofdesk.sweep_expired_documents",
        "schedule": 3600.0,
    },
    "follow-up-pending-documents": {
        "task": "roofdesk.follow_up_pending_documents",
        "schedule": 86400.0,
    },
}


@cel.task(name="roofdesk.archive_receipt", queue=WORKER_QUEUE, bind=True, max_retries=8, default_retry_delay=120)
def archive_receipt(self, receipt_id: str):
    with Session(db.engine) as session:
        try:
            receipt = receipts.archive(session, receipt_id)
        except Exception as exc:
            logger.warning("receipt %s archive attempt failed: %s", receipt_id, exc)
            raise self.retry(exc=exc)
        return {"receipt_id": receipt.id, "status": receipt.status, "sha256": receipt.sha256}


@cel.task(name="roofdesk.sweep_expired_documents", queue=WORKER_QUEUE)
def sweep_expired_documents():
    with Session(db.engine) as session:
        count = lifecycle.sweep_expired(session)
    if count:
        logger.info("marked %d documents expired", count)
    return {"expired": count}


@cel.task(name="roofdesk.follow_up_pending_documents", queue=WORKER_QUEUE)
def follow_up_pending_documents():
    with Session(db.engine) as session:
        counts = followup.follow_up_pending(session)
    logger.info("follow-ups sent: %d, escalations sent: %d", counts["followed_up"], counts["escalated"])
    return counts
