import json
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .enums import Outcome
from .models import AcceptanceRecord, AuditEvent
from .utils import canonical_json, sha256_bytes, utcnow

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64
APPEND_ATTEMPTS = 5


def _chain_head(session: Session, document) -> str:
    last = session.exec(
        select(AuditEvent)
        .where(AuditEvent.document_kind == document.KIND.value, AuditEvent.document_id == document.id)
        .order_by(AuditEvent.id.desc())
    ).first()
    return last.hash if last else GENESIS_HASH


def append_event(
    session: Session,
    document,
    actor: str,
    type_: str,
    meta: Optional[dict] = None,
    ip=None,
    ua=None,
) -> AuditEvent:
    """Stage a hash-chained event for ``document`` in the open transaction.

    Another writer may extend the chain between reading its head and inserting;
    the link constraint rejects the second insert and the event is re-chained
    onto the new head inside a savepoint, leaving the caller's transaction intact.
    """
    payload = {"actor": actor, "type": type_, "meta": meta or {}}
    meta_json = canonical_json(payload)
    # anything the caller staged must not ride along in the savepoint
    session.flush()
    for attempt in range(1, APPEND_ATTEMPTS + 1):
        prev_hash = _chain_head(session, document)
        event = AuditEvent(
            document_kind=document.KIND.value,
            document_id=document.id,
            actor=actor,
            type=type_,
            meta_json=meta_json,
            prev_hash=prev_hash,
            hash=sha256_bytes((prev_hash + meta_json).encode()),
            ip=ip,
            ua=ua,
        )
        try:
            with session.begin_nested():
                session.add(event)
        except IntegrityError:
            if attempt == APPEND_ATTEMPTS:
                raise
            logger.info("audit chain for %s %s moved on, re-chaining %s", document.KIND.value, document.id, type_)
            continue
        return event


def list_events(session: Session, document) -> list[AuditEvent]:
    return session.exec(
        select(AuditEvent)
        .where(AuditEvent.document_kind == document.KIND.value, AuditEvent.document_id == document.id)
        .order_by(AuditEvent.id)
    ).all()


def verify_chain(events: list[AuditEvent]) -> bool:
    prev_hash = GENESIS_HASH
    for event in events:
        if event.prev_hash != prev_hash:
            return False
        if sha256_bytes((prev_hash + event.meta_json).encode()) != event.hash:
            return False
        prev_hash = event.hash
    return True


def record(
    session: Session,
    document,
    outcome: Outcome,
    actor_name: str,
    actor_email: str,
    reason: Optional[str] = None,
    origin_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AcceptanceRecord:
    """Append the acceptance record for a terminal transition.

    Must run inside the transaction that performed the status compare-and-set;
    it never commits on its own.
    """
    entry = AcceptanceRecord(
        document_kind=document.KIND.value,
        document_id=document.id,
        outcome=outcome.value,
        actor_name=actor_name,
        actor_email=actor_email,
        origin_address=origin_address,
        user_agent=user_agent,
        reason=reason,
        occurred_at=utcnow(),
    )
    session.add(entry)
    append_event(
        session,
        document,
        f"public:{actor_email}",
        outcome.value,
        {"acceptance_record_id": entry.id, "actor_name": actor_name, "reason": reason},
        ip=origin_address,
        ua=user_agent,
    )
    return entry


def acceptance_for(session: Session, document) -> Optional[AcceptanceRecord]:
    return session.exec(
        select(AcceptanceRecord).where(
            AcceptanceRecord.document_kind == document.KIND.value,
            AcceptanceRecord.document_id == document.id,
        )
    ).first()


def event_meta(event: AuditEvent) -> dict:
    try:
        return json.loads(event.meta_json or "{}").get("meta", {})
    except json.JSONDecodeError:
        return {}
