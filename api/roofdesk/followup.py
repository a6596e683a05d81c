"""Reminders for documents nobody has answered yet.

A pending document gets a reminder to its creator once it has waited
``FOLLOW_UP_AFTER_DAYS`` (at most ``MAX_FOLLOW_UPS`` times, one per day) and a
single escalation to the branch admin after ``ESCALATE_AFTER_DAYS``.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlmodel import Session, select

from . import audit, notifications
from .config import ESCALATE_AFTER_DAYS, FOLLOW_UP_AFTER_DAYS, MAX_FOLLOW_UPS
from .enums import DocumentStatus
from .lifecycle import effective_status
from .models import DOCUMENT_MODELS
from .utils import utcnow

logger = logging.getLogger(__name__)


def _claim(session: Session, document, values: dict, *conditions) -> bool:
    # at most one worker gets to notify for a given step
    model = type(document)
    stmt = (
        update(model)
        .where(model.id == document.id, model.status == DocumentStatus.PENDING.value, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if session.exec(stmt).rowcount != 1:
        session.rollback()
        return False
    return True


def _follow_up(session: Session, document, days: int, now: datetime) -> bool:
    model = type(document)
    attempts = document.follow_up_attempts or 0
    if attempts >= MAX_FOLLOW_UPS:
        return False
    if document.last_follow_up_at and now - document.last_follow_up_at < timedelta(days=1):
        return False
    claimed = _claim(
        session, document,
        {"follow_up_attempts": attempts + 1, "last_follow_up_at": now},
        model.follow_up_attempts == attempts,
    )
    if not claimed:
        return False
    audit.append_event(session, document, "system", "follow_up", {"attempt": attempts + 1, "days_pending": days})
    session.commit()
    session.refresh(document)
    try:
        notifications.notify_follow_up(session, document, days)
    except Exception:
        logger.exception("follow-up reminder for %s %s not sent", document.KIND.value, document.id)
    return True


def _escalate(session: Session, document, days: int, now: datetime) -> bool:
    model = type(document)
    if document.escalated_at is not None:
        return False
    if not _claim(session, document, {"escalated_at": now}, model.escalated_at.is_(None)):
        return False
    audit.append_event(session, document, "system", "escalated", {"days_pending": days})
    session.commit()
    session.refresh(document)
    try:
        notifications.notify_escalation(session, document, days)
    except Exception:
        logger.exception("escalation for %s %s not sent", document.KIND.value, document.id)
    return True


def follow_up_pending(session: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    cutoff = now - timedelta(days=FOLLOW_UP_AFTER_DAYS)
    counts = {"followed_up": 0, "escalated": 0}
    for model in DOCUMENT_MODELS.values():
        waiting = session.exec(
            select(model).where(
                model.status == DocumentStatus.PENDING.value,
                model.sent_at.is_not(None),
                model.sent_at <= cutoff,
                or_(model.expires_at.is_(None), model.expires_at > now),
            )
        ).all()
        for document in waiting:
            if effective_status(document, now) != DocumentStatus.PENDING:
                continue
            days = (now - document.sent_at).days
            if _follow_up(session, document, days, now):
                counts["followed_up"] += 1
            if days >= ESCALATE_AFTER_DAYS and _escalate(session, document, days, now):
                counts["escalated"] += 1
    return counts
