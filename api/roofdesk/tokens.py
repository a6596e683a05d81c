import logging
import secrets

from sqlmodel import Session, select

from .audit import append_event
from .config import WEB_BASE_URL
from .enums import DocumentKind
from .errors import NotFound
from .models import DOCUMENT_MODELS
from .utils import mask_token

logger = logging.getLogger(__name__)

# 32 random bytes -> 43 url-safe characters
TOKEN_BYTES = 32
MIN_TOKEN_LENGTH = 16


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def issue(session: Session, document, actor: str = "system") -> str:
    """Bind a fresh token to ``document``, invalidating any previous one."""
    previous = document.public_token
    token = generate_token()
    document.public_token = token
    session.add(document)
    if previous:
        append_event(session, document, actor, "token_rotated", {"previous": mask_token(previous)})
        logger.info("rotated public token for %s %s", document.KIND.value, document.id)
    return token


def resolve(session: Session, kind: DocumentKind, token: str):
    """Look a document up by its public token only.

    Unknown, rotated and deleted all raise the same ``NotFound``.
    """
    if not token or len(token) < MIN_TOKEN_LENGTH:
        raise NotFound(f"malformed token {mask_token(token)}")
    model = DOCUMENT_MODELS[kind]
    document = session.exec(select(model).where(model.public_token == token)).first()
    if document is None:
        raise NotFound(f"no {kind.value} for token {mask_token(token)}")
    return document


def public_url(kind: DocumentKind, token: str) -> str:
    return f"{WEB_BASE_URL}/{kind.value}/public/{token}"
