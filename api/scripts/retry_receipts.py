"""Re-archive receipts the worker gave up on, and mark overdue documents expired."""
from sqlmodel import Session, select

from roofdesk.db import engine
from roofdesk.enums import ReceiptStatus
from roofdesk.lifecycle import sweep_expired
from roofdesk.models import Receipt
from roofdesk.receipts import archive


with Session(engine) as session:
    stuck = session.exec(
        select(Receipt).where(Receipt.status != ReceiptStatus.ARCHIVED.value).order_by(Receipt.updated_at)
    ).all()
    for receipt_id in [r.id for r in stuck]:
        try:
            archived = archive(session, receipt_id)
        except Exception as exc:
            session.rollback()
            print(f"Receipt {receipt_id} still failing: {exc}")
            continue
        print(f"Archived receipt {receipt_id} -> {archived.s3_key_pdf}")
    print(f"Expired {sweep_expired(session)} overdue documents")
