"""Staff routes shared by offers and service agreements."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlmodel import Session

from .. import audit, lifecycle, receipts
from ..auth import require_principal, require_staff, require_superadmin
from ..db import get_session
from ..enums import Action, DocumentKind, DocumentStatus, Outcome, ReceiptStatus, Role
from ..errors import InvalidTransition, NotFound, Unauthorized, ValidationError
from ..identity import Principal
from ..models import Building, Customer, DOCUMENT_MODELS, Report, User
from ..notifications import send_document_link
from ..schemas import (
    DocumentCancel,
    DocumentCorrect,
    DocumentExtend,
    DocumentSend,
    DocumentUpdate,
    OfferCreate,
    PortalRespond,
    ServiceAgreementCreate,
)
from ..storage import get_bytes
from ..tenancy import list_scoped, load_scoped

logger = logging.getLogger(__name__)

OUTCOMES = {"accept": Outcome.ACCEPTED, "reject": Outcome.REJECTED}


def _linked(session: Session, principal: Principal, model, record_id: Optional[str], customer: Customer):
    if not record_id:
        return None
    record = load_scoped(session, principal, model, record_id)
    if record.customer_id != customer.id:
        raise ValidationError(f"{model.__name__.lower()} belongs to another customer", field=f"{model.__name__.lower()}_id")
    return record


def _build_offer(session: Session, principal: Principal, payload: OfferCreate, customer: Customer):
    _linked(session, principal, Report, payload.report_id, customer)
    return DOCUMENT_MODELS[DocumentKind.OFFER](
        **payload.model_dump(exclude={"customer_id"}),
        branch_id=customer.branch_id,
        customer_id=customer.id,
        company_id=customer.company_id,
        created_by=principal.subject_id,
    )


def _build_agreement(session: Session, principal: Principal, payload: ServiceAgreementCreate, customer: Customer):
    _linked(session, principal, Building, payload.building_id, customer)
    return DOCUMENT_MODELS[DocumentKind.SERVICE_AGREEMENT](
        **payload.model_dump(exclude={"customer_id"}),
        branch_id=customer.branch_id,
        customer_id=customer.id,
        company_id=customer.company_id,
        created_by=principal.subject_id,
    )


def make_router(kind: DocumentKind, create_schema, build) -> APIRouter:
    model = DOCUMENT_MODELS[kind]
    router = APIRouter()

    @router.get("")
    def list_documents(
        status: Optional[DocumentStatus] = Query(default=None),
        customer_id: Optional[str] = Query(default=None),
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_principal),
    ):
        criteria = [model.customer_id == customer_id] if customer_id else []
        rows = list_scoped(session, principal, model, *criteria, order_by=model.created_at.desc())
        views = [lifecycle.staff_view(doc) for doc in rows]
        if status is not None:
            views = [v for v in views if v["status"] == status.value]
        return views

    @router.post("", status_code=201)
    def create_document(
        payload: create_schema,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_staff),
    ):
        customer = load_scoped(session, principal, Customer, payload.customer_id)
        document = build(session, principal, payload, customer)
        lifecycle.create_document(session, principal, document)
        return lifecycle.staff_view(document)

    @router.get("/{document_id}")
    def get_document(
        document_id: str,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_principal),
    ):
        return lifecycle.staff_view(load_scoped(session, principal, model, document_id))

    @router.patch("/{document_id}")
    def update_document(
        document_id: str,
        payload: DocumentUpdate,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_staff),
    ):
        document = load_scoped(session, principal, model, document_id, Action.UPDATE)
        lifecycle.update_draft(session, principal, document, payload.model_dump(exclude_unset=True))
        return lifecycle.staff_view(document)

    @router.post("/{document_id}/send")
    def send_document(
        document_id: str,
        payload: DocumentSend,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_staff),
    ):
        document = load_scoped(session, principal, model, document_id, Action.SEND)
        token = lifecycle.send(
            session, principal, document, payload.recipient_name, payload.recipient_email, payload.expires_at,
        )
        try:
            send_document_link(document, token, payload.requester_name, payload.requester_email)
        except Exception:
            logger.exception("OPERATIONAL ALERT: link for %s %s was not emailed", kind.value, document.id)
        return lifecycle.staff_view(document)

    @router.post("/{document_id}/extend")
    def extend_document(
        document_id: str,
        payload: DocumentExtend,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_staff),
    ):
        document = load_scoped(session, principal, model, document_id, Action.UPDATE)
        lifecycle.extend_validity(session, principal, document, payload.expires_at)
        return lifecycle.staff_view(document)

    @router.post("/{document_id}/cancel")
    def cancel_document(
        document_id: str,
        payload: DocumentCancel,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_staff),
    ):
        document = load_scoped(session, principal, model, document_id, Action.CANCEL)
        lifecycle.cancel(session, principal, document, payload.reason)
        return lifecycle.staff_view(document)

    @router.post("/{document_id}/correct")
    def correct_document(
        document_id: str,
        payload: DocumentCorrect,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_superadmin),
    ):
        document = load_scoped(session, principal, model, document_id, Action.CORRECT)
        lifecycle.correct(session, principal, document, payload.status, payload.note)
        return lifecycle.staff_view(document)

    @router.post("/{document_id}/respond")
    def respond_as_customer(
        document_id: str,
        payload: PortalRespond,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_principal),
    ):
        # portal path for signed-in customers; same compare-and-set as the public link
        if principal.role != Role.CUSTOMER:
            raise Unauthorized(f"{principal.role.value} cannot respond on behalf of a customer")
        document = load_scoped(session, principal, model, document_id, Action.ACCEPT_PUBLIC_DOCUMENT)
        if not document.public_token:
            raise InvalidTransition(f"a {document.status} document cannot be answered")
        # actor comes from the user row behind the session
        user = session.get(User, principal.subject_id)
        if user is None:
            raise Unauthorized(f"no user row for {principal.subject_id}")
        response = lifecycle.respond_public(
            session, kind, document.public_token, OUTCOMES[payload.outcome],
            user.name, user.email, reason=payload.reason,
        )
        lifecycle.finish_response(session, response)
        return {"ok": True, "replayed": response.replayed, "document": lifecycle.staff_view(response.document)}

    @router.get("/{document_id}/audit")
    def document_audit(
        document_id: str,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_staff),
    ):
        document = load_scoped(session, principal, model, document_id)
        events = audit.list_events(session, document)
        return {"chain_valid": audit.verify_chain(events), "events": events}

    @router.get("/{document_id}/acceptance")
    def document_acceptance(
        document_id: str,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_principal),
    ):
        document = load_scoped(session, principal, model, document_id)
        entry = audit.acceptance_for(session, document)
        if entry is None:
            raise NotFound(f"no acceptance record for {kind.value} {document_id}")
        return entry

    @router.get("/{document_id}/receipt")
    def download_receipt(
        document_id: str,
        session: Session = Depends(get_session),
        principal: Principal = Depends(require_principal),
    ):
        document = load_scoped(session, principal, model, document_id)
        entry = audit.acceptance_for(session, document)
        receipt = receipts.receipt_for(session, entry) if entry else None
        if receipt is None or receipt.status != ReceiptStatus.ARCHIVED.value:
            raise NotFound(f"no archived receipt for {kind.value} {document_id}")
        return Response(
            content=get_bytes(receipt.s3_key_pdf),
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="receipt-{entry.id}.pdf"'},
        )

    return router


offers = make_router(DocumentKind.OFFER, OfferCreate, _build_offer)
service_agreements = make_router(DocumentKind.SERVICE_AGREEMENT, ServiceAgreementCreate, _build_agreement)
