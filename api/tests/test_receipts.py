from io import BytesIO

import pytest
from pypdf import PdfReader
from sqlmodel import select

from roofdesk import audit, lifecycle, receipts
from roofdesk.enums import DocumentKind, Outcome, ReceiptStatus, Role
from roofdesk.errors import NotFound
from roofdesk.models import Offer, Receipt

from conftest import make_principal


def _accepted(session, customer):
    admin = make_principal(Role.BRANCH_ADMIN, branch_id=customer.branch_id)
    offer = lifecycle.create_document(
        session, admin, Offer(title="Roof", branch_id=customer.branch_id, customer_id=customer.id),
    )
    token = lifecycle.send(session, admin, offer, "Alice", "alice@example.com")
    return lifecycle.respond_public(session, DocumentKind.OFFER, token, Outcome.ACCEPTED, "Alice", "alice@example.com")


def test_certificate_carries_record_metadata():
    info = {
        "heading": "Offer accepted",
        "document_kind": "offer",
        "document_id": "d1",
        "outcome": "accepted",
        "acceptance_record_id": "r1",
    }
    pdf = receipts.stamp_metadata(receipts.render_certificate(info), info)
    meta = PdfReader(BytesIO(pdf)).metadata
    assert meta["/Title"] == "Offer accepted"
    assert meta["/AcceptanceRecord"] == "r1"
    assert meta["/Subject"] == "offer d1"


def test_archive_writes_pdf_and_json(session, two_branches, mock_storage):
    response = _accepted(session, two_branches["c1"])
    receipt = receipts.archive(session, response.receipt.id)
    assert receipt.status == ReceiptStatus.ARCHIVED.value
    assert receipt.attempts == 1
    assert set(mock_storage) == {receipt.s3_key_pdf, receipt.s3_key_json}
    assert receipts.sha256_bytes(mock_storage[receipt.s3_key_pdf]) == receipt.sha256
    # archiving twice is a no-op
    assert receipts.archive(session, receipt.id).attempts == 1
    events = audit.list_events(session, response.document)
    assert events[-1].type == "receipt_archived"
    assert audit.verify_chain(events)


def test_archive_or_enqueue_hands_failures_to_worker(session, two_branches, monkeypatch, queued_archives, caplog):
    response = _accepted(session, two_branches["c1"])

    def broken_put(key, data, content_type="application/octet-stream"):
        raise OSError("disk full")

    monkeypatch.setattr(receipts, "put_bytes", broken_put)
    assert receipts.archive_or_enqueue(session, response.receipt.id) is False
    assert queued_archives.calls == [(response.receipt.id,)]
    assert "OPERATIONAL ALERT" in caplog.text
    stored = session.exec(select(Receipt).where(Receipt.id == response.receipt.id)).one()
    assert stored.status == ReceiptStatus.FAILED.value
    assert stored.last_error == "disk full"


def test_archive_unknown_receipt(session):
    with pytest.raises(NotFound):
        receipts.archive(session, "missing")
