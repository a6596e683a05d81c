"""Acceptance receipts archived to object storage after a response commits.

The receipt row is staged in the same transaction as the acceptance record,
so bookkeeping can lag but never be lost; archiving itself happens after the
commit and is retried by the worker when it fails.
"""
import json
import logging
from io import BytesIO
from typing import Optional

from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlmodel import Session, select

from . import audit
from .enums import DocumentKind, ReceiptStatus
from .errors import NotFound
from .models import AcceptanceRecord, DOCUMENT_MODELS, Receipt
from .storage import put_bytes, receipt_key
from .utils import sha256_bytes, utcnow

logger = logging.getLogger(__name__)


def stage(session: Session, entry: AcceptanceRecord) -> Receipt:
    receipt = Receipt(acceptance_record_id=entry.id)
    session.add(receipt)
    return receipt


def render_certificate(info: dict) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setFont("Helvetica-Bold", 14)
    c.drawString(72, 780, info.get("heading", "Response Certificate"))
    c.setFont("Helvetica", 10)
    y = 750
    for k, v in info.items():
        if k == "heading":
            continue
        txt = f"{k}: {'' if v is None else v}"
        c.drawString(72, y, txt[:95])
        y -= 14
        if y < 72:
            c.showPage(); c.setFont("Helvetica", 10); y = 780
    c.showPage(); c.save()
    return buf.getvalue()


def stamp_metadata(pdf: bytes, info: dict) -> bytes:
    """Copy the certificate pages and record the acceptance ids in the PDF document info."""
    reader = PdfReader(BytesIO(pdf))
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    writer.add_metadata({
        "/Title": info.get("heading", "Response Certificate"),
        "/Subject": f"{info.get('document_kind')} {info.get('document_id')}",
        "/AcceptanceRecord": str(info.get("acceptance_record_id")),
        "/Outcome": str(info.get("outcome")),
    })
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def receipt_payload(document, entry: AcceptanceRecord) -> dict:
    return {
        "heading": f"{document.KIND.value.replace('-', ' ').title()} {entry.outcome}",
        "document_kind": document.KIND.value,
        "document_id": document.id,
        "title": document.title,
        "outcome": entry.outcome,
        "actor_name": entry.actor_name,
        "actor_email": entry.actor_email,
        "origin_address": entry.origin_address,
        "reason": entry.reason,
        "occurred_at": entry.occurred_at.isoformat() + "Z",
        "acceptance_record_id": entry.id,
    }


def archive(session: Session, receipt_id: str) -> Receipt:
    receipt = session.get(Receipt, receipt_id)
    if receipt is None:
        raise NotFound(f"receipt {receipt_id}")
    if receipt.status == ReceiptStatus.ARCHIVED.value:
        return receipt
    entry = session.get(AcceptanceRecord, receipt.acceptance_record_id)
    document = session.get(DOCUMENT_MODELS[DocumentKind(entry.document_kind)], entry.document_id)
    if document is None:
        raise NotFound(f"{entry.document_kind} {entry.document_id} for receipt {receipt_id}")
    receipt.attempts += 1
    try:
        payload = receipt_payload(document, entry)
        pdf = stamp_metadata(render_certificate(payload), payload)
        sha = sha256_bytes(pdf)
        pdf_key = receipt_key(document.branch_id, document.KIND.value, document.id, entry.id, "pdf")
        json_key = receipt_key(document.branch_id, document.KIND.value, document.id, entry.id, "json")
        put_bytes(pdf_key, pdf, content_type="application/pdf")
        put_bytes(json_key, json.dumps({**payload, "sha256_pdf": sha}).encode(), content_type="application/json")
    except Exception as exc:
        receipt.status = ReceiptStatus.FAILED.value
        receipt.last_error = str(exc)[:500]
        receipt.updated_at = utcnow()
        session.add(receipt)
        session.commit()
        raise
    receipt.status = ReceiptStatus.ARCHIVED.value
    receipt.s3_key_pdf = pdf_key
    receipt.s3_key_json = json_key
    receipt.sha256 = sha
    receipt.last_error = None
    receipt.updated_at = utcnow()
    session.add(receipt)
    audit.append_event(session, document, "system", "receipt_archived", {"receipt_id": receipt.id, "sha256": sha})
    session.commit()
    session.refresh(receipt)
    return receipt


def archive_or_enqueue(session: Session, receipt_id: str) -> bool:
    """Archive now; on failure raise an operational alert and hand off to the worker."""
    try:
        archive(session, receipt_id)
        return True
    except Exception:
        logger.exception("OPERATIONAL ALERT: receipt %s could not be archived; queueing retry", receipt_id)
        session.rollback()
    from .worker import archive_receipt
    try:
        archive_receipt.delay(receipt_id)
    except Exception:
        logger.exception("OPERATIONAL ALERT: receipt %s retry could not be queued", receipt_id)
    return False


def receipt_for(session: Session, entry: AcceptanceRecord) -> Optional[Receipt]:
    return session.exec(select(Receipt).where(Receipt.acceptance_record_id == entry.id)).first()
