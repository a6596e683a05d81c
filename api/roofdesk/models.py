from typing import ClassVar, Optional
from datetime import datetime
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field as ORMField

from .enums import DocumentKind, DocumentStatus, ReceiptStatus
from .utils import utcnow


def new_id() -> str:
    return uuid4().hex


class TenantFields(SQLModel):
    branch_id: Optional[str] = ORMField(default=None, index=True)
    customer_id: Optional[str] = ORMField(default=None, index=True)
    company_id: Optional[str] = ORMField(default=None, index=True)


class Branch(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    name: str
    email: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class User(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    email: str = ORMField(index=True)
    name: str
    role: Optional[str] = None
    permission_level: Optional[int] = None
    branch_id: Optional[str] = None
    company_id: Optional[str] = None
    customer_id: Optional[str] = None
    claims_updated_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class Customer(TenantFields, table=True):
    # a customer row owns itself: customer_id == id
    OWNED: ClassVar[bool] = True

    id: str = ORMField(default_factory=new_id, primary_key=True)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class Building(TenantFields, table=True):
    OWNED: ClassVar[bool] = True

    id: str = ORMField(default_factory=new_id, primary_key=True)
    name: Optional[str] = None
    address: str
    created_by: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class Report(TenantFields, table=True):
    OWNED: ClassVar[bool] = True

    id: str = ORMField(default_factory=new_id, primary_key=True)
    building_id: Optional[str] = ORMField(default=None, index=True)
    title: str
    status: str = "draft"
    summary: str = ""
    created_by: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)


class DocumentFields(TenantFields):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    status: str = ORMField(default=DocumentStatus.DRAFT.value, index=True)
    public_token: Optional[str] = ORMField(default=None, unique=True, index=True)
    title: str
    description: str = ""
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    created_by: str
    created_by_name: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    accepted_by_email: Optional[str] = None
    rejection_reason: Optional[str] = None
    currency: str = "DKK"
    follow_up_attempts: int = 0
    last_follow_up_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None


class Offer(DocumentFields, table=True):
    KIND: ClassVar[DocumentKind] = DocumentKind.OFFER
    OWNED: ClassVar[bool] = True

    report_id: Optional[str] = ORMField(default=None, index=True)
    total_amount: float = 0.0


class ServiceAgreement(DocumentFields, table=True):
    __tablename__ = "service_agreement"
    KIND: ClassVar[DocumentKind] = DocumentKind.SERVICE_AGREEMENT
    OWNED: ClassVar[bool] = True

    building_id: Optional[str] = ORMField(default=None, index=True)
    agreement_type: str = "maintenance"  # maintenance|inspection|repair|other
    service_frequency: str = "annual"
    price: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


DOCUMENT_MODELS = {
    DocumentKind.OFFER: Offer,
    DocumentKind.SERVICE_AGREEMENT: ServiceAgreement,
}


class AcceptanceRecord(SQLModel, table=True):
    __tablename__ = "acceptance_record"
    __table_args__ = (
        UniqueConstraint("document_kind", "document_id", name="uq_acceptance_document"),
    )

    id: str = ORMField(default_factory=new_id, primary_key=True)
    document_kind: str
    document_id: str = ORMField(index=True)
    outcome: str  # accepted|rejected
    actor_name: str
    actor_email: str
    origin_address: Optional[str] = None
    user_agent: Optional[str] = None
    reason: Optional[str] = None
    occurred_at: datetime = ORMField(default_factory=utcnow)


class AuditEvent(SQLModel, table=True):
    __tablename__ = "audit_event"
    # one successor per chain link; concurrent appenders collide here and retry
    __table_args__ = (
        UniqueConstraint("document_kind", "document_id", "prev_hash", name="uq_audit_chain_link"),
    )

    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_kind: str
    document_id: str = ORMField(index=True)
    actor: str  # system|public:<email>|user:<subject>
    type: str   # created|sent|opened|token_rotated|accepted|rejected|expired|cancelled|corrected|receipt_archived|follow_up|escalated
    meta_json: str = "{}"
    ip: Optional[str] = None
    ua: Optional[str] = None
    at: datetime = ORMField(default_factory=utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None


class Receipt(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    acceptance_record_id: str = ORMField(index=True, unique=True)
    status: str = ReceiptStatus.PENDING.value
    attempts: int = 0
    s3_key_pdf: Optional[str] = None
    s3_key_json: Optional[str] = None
    sha256: Optional[str] = None
    last_error: Optional[str] = None
    updated_at: datetime = ORMField(default_factory=utcnow)
