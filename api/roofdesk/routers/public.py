from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from .. import audit, lifecycle, tokens
from ..db import get_session
from ..enums import DocumentKind, DocumentStatus, Outcome
from ..errors import NotFound
from ..schemas import PublicRespond

router = APIRouter()

OUTCOMES = {"accept": Outcome.ACCEPTED, "reject": Outcome.REJECTED}


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.get("/{kind}/public/{token}")
def load_public_document(kind: DocumentKind, token: str, request: Request, session: Session = Depends(get_session)):
    document = tokens.resolve(session, kind, token)
    if document.status == DocumentStatus.DRAFT.value:
        raise NotFound(f"{kind.value} {document.id} is a draft")
    audit.append_event(
        session, document, "public", "opened", {}, ip=_client_ip(request), ua=request.headers.get("user-agent"),
    )
    session.commit()
    session.refresh(document)
    return lifecycle.public_view(document)


@router.post("/{kind}/public/{token}/respond")
def respond_to_public_document(
    kind: DocumentKind,
    token: str,
    payload: PublicRespond,
    request: Request,
    session: Session = Depends(get_session),
):
    response = lifecycle.respond_public(
        session,
        kind,
        token,
        OUTCOMES[payload.outcome],
        payload.actor_name,
        payload.actor_email,
        reason=payload.reason,
        origin_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    lifecycle.finish_response(session, response)
    return {"ok": True, "replayed": response.replayed, "document": lifecycle.public_view(response.document)}
