"""Document lifecycle shared by offers and service agreements.

    draft -> pending -> accepted | rejected | expired | cancelled

Every status change is a compare-and-set against the stored status so that
two simultaneous requests on the same document can never both win. Expiry is
evaluated at read time; ``sweep_expired`` only tidies stored rows.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import or_, update
from sqlmodel import Session, select

from . import audit, receipts, tokens
from .config import DEFAULT_VALIDITY_DAYS
from .enums import Action, DocumentKind, DocumentStatus, Outcome, Role, TERMINAL_STATUSES
from .errors import AlreadyResolved, Expired, InvalidTransition, NotFound, Unauthorized, ValidationError
from .guard import ensure_allowed
from .identity import Principal
from .models import AcceptanceRecord, DOCUMENT_MODELS, Receipt
from .tenancy import save_scoped, tenant_of
from .utils import as_naive_utc, mask_token, utcnow

logger = logging.getLogger(__name__)

S = DocumentStatus

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_NAME_LENGTH = 200
MAX_REASON_LENGTH = 4000
CANCEL_ROLES = frozenset({Role.SUPERADMIN, Role.BRANCH_ADMIN})
EDITABLE_FIELDS = frozenset({
    "title", "description", "currency", "total_amount", "agreement_type",
    "service_frequency", "price", "start_date", "end_date",
})


@dataclass
class PublicResponse:
    document: object
    record: AcceptanceRecord
    replayed: bool = False
    receipt: Optional[Receipt] = None


def effective_status(document, now: Optional[datetime] = None) -> DocumentStatus:
    status = DocumentStatus(document.status)
    if status == S.PENDING and document.expires_at is not None:
        if as_naive_utc(document.expires_at) <= (now or utcnow()):
            return S.EXPIRED
    return status


def is_terminal(status: DocumentStatus) -> bool:
    return status in TERMINAL_STATUSES


def _user_actor(principal: Principal) -> str:
    return f"user:{principal.subject_id}"


def _compare_and_set(
    session: Session,
    document,
    expected: Iterable[DocumentStatus],
    values: dict,
    now: Optional[datetime] = None,
    require_unexpired: bool = False,
) -> bool:
    model = type(document)
    stmt = update(model).where(
        model.id == document.id,
        model.status.in_([s.value for s in expected]),
    )
    if require_unexpired:
        stmt = stmt.where(or_(model.expires_at.is_(None), model.expires_at > (now or utcnow())))
    stmt = stmt.values(**values).execution_options(synchronize_session=False)
    result = session.exec(stmt)
    won = result.rowcount == 1
    if won:
        session.refresh(document)
    return won


def validate_recipient(name: Optional[str], email: Optional[str], label: str = "recipient") -> tuple[str, str]:
    name = (name or "").strip()
    email = (email or "").strip()
    if not name:
        raise ValidationError(f"{label} name is required", field=f"{label}_name")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"{label} name is too long", field=f"{label}_name")
    if not email:
        raise ValidationError(f"{label} email is required", field=f"{label}_email")
    if not EMAIL_RE.match(email):
        raise ValidationError(f"{label} email is not a valid address", field=f"{label}_email")
    return name, email


# ---------- staff transitions ----------

def create_document(session: Session, principal: Principal, document):
    document.status = S.DRAFT.value
    document.public_token = None
    document.created_by = principal.subject_id
    save_scoped(session, principal, document, Action.CREATE)
    session.flush()
    audit.append_event(session, document, _user_actor(principal), "created", {"title": document.title})
    session.commit()
    session.refresh(document)
    logger.info("%s %s created by %s", document.KIND.value, document.id, principal.subject_id)
    return document


def update_draft(session: Session, principal: Principal, document, changes: dict, now: Optional[datetime] = None):
    ensure_allowed(principal, tenant_of(document), Action.UPDATE)
    now = now or utcnow()
    model_fields = type(document).model_fields
    unknown = {k for k in changes if k not in EDITABLE_FIELDS or k not in model_fields}
    if unknown:
        raise ValidationError(f"fields cannot be edited: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])
    if not changes:
        return document
    status = effective_status(document, now)
    if status not in (S.DRAFT, S.PENDING):
        raise InvalidTransition(f"a {status.value} document can no longer be edited")
    values = dict(changes)
    values["updated_at"] = now
    if not _compare_and_set(session, document, [S.DRAFT, S.PENDING], values, now, require_unexpired=True):
        session.rollback()
        raise InvalidTransition("document changed state while editing; reload and retry")
    audit.append_event(session, document, _user_actor(principal), "edited", {"fields": sorted(changes)})
    session.commit()
    session.refresh(document)
    return document


def send(
    session: Session,
    principal: Principal,
    document,
    recipient_name: str,
    recipient_email: str,
    expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> str:
    """Move a draft (or re-send a pending document) to ``pending`` and return its fresh token."""
    ensure_allowed(principal, tenant_of(document), Action.SEND)
    now = now or utcnow()
    status = effective_status(document, now)
    if status not in (S.DRAFT, S.PENDING):
        raise InvalidTransition(f"a {status.value} document cannot be sent")
    recipient_name, recipient_email = validate_recipient(recipient_name, recipient_email)
    expires_at = as_naive_utc(expires_at) or now + timedelta(days=DEFAULT_VALIDITY_DAYS)
    if expires_at <= now:
        raise ValidationError("expiry must be in the future", field="expires_at")
    values = {
        "status": S.PENDING.value,
        "recipient_name": recipient_name,
        "recipient_email": recipient_email,
        "sent_at": now,
        "expires_at": expires_at,
        "follow_up_attempts": 0,
        "last_follow_up_at": None,
        "escalated_at": None,
        "updated_at": now,
    }
    if not _compare_and_set(session, document, [S.DRAFT, S.PENDING], values, now, require_unexpired=True):
        session.rollback()
        raise InvalidTransition("document changed state while sending; reload and retry")
    actor = _user_actor(principal)
    token = tokens.issue(session, document, actor)
    audit.append_event(
        session, document, actor, "sent",
        {"recipient_email": recipient_email, "expires_at": expires_at.isoformat(), "previous_status": status.value},
    )
    session.commit()
    session.refresh(document)
    logger.info("%s %s sent to %s (token %s)", document.KIND.value, document.id, recipient_email, mask_token(token))
    return token


def extend_validity(session: Session, principal: Principal, document, expires_at: datetime, now: Optional[datetime] = None):
    ensure_allowed(principal, tenant_of(document), Action.UPDATE)
    now = now or utcnow()
    expires_at = as_naive_utc(expires_at)
    if expires_at is None or expires_at <= now:
        raise ValidationError("expiry must be in the future", field="expires_at")
    status = effective_status(document, now)
    if status != S.PENDING:
        raise InvalidTransition(f"only pending documents can be extended, not {status.value}")
    previous = document.expires_at
    if not _compare_and_set(
        session, document, [S.PENDING], {"expires_at": expires_at, "updated_at": now}, now, require_unexpired=True,
    ):
        session.rollback()
        raise InvalidTransition("document changed state while extending; reload and retry")
    audit.append_event(
        session, document, _user_actor(principal), "extended",
        {"from": previous.isoformat() if previous else None, "to": expires_at.isoformat()},
    )
    session.commit()
    session.refresh(document)
    return document


def cancel(session: Session, principal: Principal, document, reason: Optional[str] = None, now: Optional[datetime] = None):
    if principal.role not in CANCEL_ROLES:
        raise Unauthorized(f"{principal.role.value} may not cancel documents")
    ensure_allowed(principal, tenant_of(document), Action.CANCEL)
    now = now or utcnow()
    status = effective_status(document, now)
    if is_terminal(status):
        raise InvalidTransition(f"a {status.value} document cannot be cancelled")
    if not _compare_and_set(
        session, document, [S.DRAFT, S.PENDING], {"status": S.CANCELLED.value, "updated_at": now}, now,
        require_unexpired=True,
    ):
        session.rollback()
        session.refresh(document)
        raise InvalidTransition(f"document is already {effective_status(document, now).value}")
    audit.append_event(session, document, _user_actor(principal), "cancelled", {"reason": reason, "from": status.value})
    session.commit()
    session.refresh(document)
    logger.info("%s %s cancelled by %s", document.KIND.value, document.id, principal.subject_id)
    return document


def correct(
    session: Session,
    principal: Principal,
    document,
    new_status: DocumentStatus,
    note: str,
    now: Optional[datetime] = None,
):
    """Administrative correction of a terminal document; logged as its own event type."""
    if principal.role != Role.SUPERADMIN:
        raise Unauthorized("only a superadmin may correct a resolved document")
    ensure_allowed(principal, tenant_of(document), Action.CORRECT)
    now = now or utcnow()
    note = (note or "").strip()
    if not note:
        raise ValidationError("a correction note is required", field="note")
    if not is_terminal(new_status):
        raise ValidationError("a correction must target a terminal status", field="status")
    current = effective_status(document, now)
    if not is_terminal(current):
        raise InvalidTransition(f"a {current.value} document is not resolved; use the normal transitions")
    if current == new_status:
        raise InvalidTransition(f"document is already {current.value}")
    stored = DocumentStatus(document.status)
    if not _compare_and_set(session, document, [stored], {"status": new_status.value, "updated_at": now}):
        session.rollback()
        raise InvalidTransition("document changed state while correcting; reload and retry")
    audit.append_event(
        session, document, _user_actor(principal), "corrected",
        {"from": current.value, "to": new_status.value, "note": note},
    )
    session.commit()
    session.refresh(document)
    logger.warning(
        "administrative correction of %s %s by %s: %s -> %s",
        document.KIND.value, document.id, principal.subject_id, current.value, new_status.value,
    )
    return document


# ---------- expiry ----------

def materialize_expiry(session: Session, document, now: Optional[datetime] = None) -> bool:
    """Store ``expired`` for a pending document past its expiry; no-op otherwise."""
    now = now or utcnow()
    model = type(document)
    stmt = (
        update(model)
        .where(
            model.id == document.id,
            model.status == S.PENDING.value,
            model.expires_at.is_not(None),
            model.expires_at <= now,
        )
        .values(status=S.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if session.exec(stmt).rowcount != 1:
        session.rollback()
        return False
    audit.append_event(session, document, "system", "expired", {"expires_at": document.expires_at.isoformat()})
    session.commit()
    session.refresh(document)
    logger.info("%s %s expired", document.KIND.value, document.id)
    return True


def sweep_expired(session: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    count = 0
    for model in DOCUMENT_MODELS.values():
        stale = session.exec(
            select(model).where(
                model.status == S.PENDING.value,
                model.expires_at.is_not(None),
                model.expires_at <= now,
            )
        ).all()
        for document in stale:
            if materialize_expiry(session, document, now):
                count += 1
    return count


# ---------- public responses ----------

def _replay_or_conflict(session: Session, document, status: DocumentStatus, outcome: Outcome, actor_email: str, now):
    if status == S.EXPIRED:
        if document.status == S.PENDING.value:
            materialize_expiry(session, document, now)
        raise Expired()
    if status == outcome.status:
        entry = audit.acceptance_for(session, document)
        if entry is not None and entry.actor_email.lower() == actor_email.lower():
            logger.info("replayed %s on %s %s", outcome.value, document.KIND.value, document.id)
            return PublicResponse(document=document, record=entry, replayed=True)
    raise AlreadyResolved(status.value)


def respond_public(
    session: Session,
    kind: DocumentKind,
    token: str,
    outcome: Outcome,
    actor_name: str,
    actor_email: str,
    reason: Optional[str] = None,
    origin_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PublicResponse:
    """Accept or reject a pending document on behalf of an anonymous holder of its token."""
    now = now or utcnow()
    actor_name, actor_email = validate_recipient(actor_name, actor_email, label="actor")
    if outcome == Outcome.ACCEPTED:
        reason = None
    elif reason is not None and len(reason) > MAX_REASON_LENGTH:
        raise ValidationError("reason is too long", field="reason")

    document = tokens.resolve(session, kind, token)
    status = effective_status(document, now)
    if status == S.DRAFT:
        # a draft never has a live token; treat as unknown
        raise NotFound(f"{kind.value} {document.id} is a draft")
    if status != S.PENDING:
        return _replay_or_conflict(session, document, status, outcome, actor_email, now)

    values = {"status": outcome.value, "responded_at": now, "updated_at": now}
    if outcome == Outcome.ACCEPTED:
        values.update(accepted_at=now, accepted_by=actor_name, accepted_by_email=actor_email)
    else:
        values["rejection_reason"] = reason

    if not _compare_and_set(session, document, [S.PENDING], values, now, require_unexpired=True):
        # lost the race, or expiry passed between read and write
        session.rollback()
        document = tokens.resolve(session, kind, token)
        return _replay_or_conflict(session, document, effective_status(document, now), outcome, actor_email, now)

    entry = audit.record(
        session, document, outcome, actor_name, actor_email,
        reason=reason, origin_address=origin_address, user_agent=user_agent,
    )
    receipt = receipts.stage(session, entry)
    session.commit()
    session.refresh(document)
    logger.info(
        "%s %s %s by %s (token %s)",
        kind.value, document.id, outcome.value, actor_email, mask_token(token),
    )
    return PublicResponse(document=document, record=entry, replayed=False, receipt=receipt)


# ---------- projections ----------

KIND_PUBLIC_FIELDS = {
    DocumentKind.OFFER: ("total_amount",),
    DocumentKind.SERVICE_AGREEMENT: ("agreement_type", "service_frequency", "price", "start_date", "end_date"),
}


def public_view(document, now: Optional[datetime] = None) -> dict:
    status = effective_status(document, now)
    view = {
        "kind": document.KIND.value,
        "title": document.title,
        "description": document.description,
        "status": status.value,
        "can_respond": status == S.PENDING,
        "recipient_name": document.recipient_name,
        "currency": document.currency,
        "sent_at": document.sent_at,
        "expires_at": document.expires_at,
        "responded_at": document.responded_at,
        "accepted_at": document.accepted_at,
        "accepted_by": document.accepted_by,
        "rejection_reason": document.rejection_reason,
    }
    for field in KIND_PUBLIC_FIELDS[document.KIND]:
        view[field] = getattr(document, field)
    return view


def staff_view(document, now: Optional[datetime] = None) -> dict:
    data = document.model_dump()
    data["kind"] = document.KIND.value
    data["status"] = effective_status(document, now).value
    data["public_url"] = tokens.public_url(document.KIND, document.public_token) if document.public_token else None
    return data


def finish_response(session: Session, response: PublicResponse) -> None:
    """Post-commit bookkeeping; failures alert operators but never fail the response."""
    if response.replayed or response.receipt is None:
        return
    receipts.archive_or_enqueue(session, response.receipt.id)
    from .notifications import notify_response
    try:
        notify_response(session, response.document, response.record)
    except Exception:
        logger.exception(
            "OPERATIONAL ALERT: response notice for %s %s not sent",
            response.document.KIND.value, response.document.id,
        )
