from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

from .enums import DocumentStatus


class BranchCreate(BaseModel):
    name: str
    email: Optional[str] = None

class CustomerCreate(BaseModel):
    name: str
    branch_id: Optional[str] = None
    company_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

class BuildingCreate(BaseModel):
    address: str
    name: Optional[str] = None

class ReportCreate(BaseModel):
    building_id: str
    title: str
    summary: str = ""

class OfferCreate(BaseModel):
    customer_id: str
    title: str
    description: str = ""
    report_id: Optional[str] = None
    total_amount: float = 0.0
    currency: str = "DKK"

class ServiceAgreementCreate(BaseModel):
    customer_id: str
    title: str
    description: str = ""
    building_id: Optional[str] = None
    agreement_type: Literal["maintenance", "inspection", "repair", "other"] = "maintenance"
    service_frequency: Literal["weekly", "monthly", "quarterly", "biannual", "annual", "custom"] = "annual"
    price: Optional[float] = None
    currency: str = "DKK"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

class DocumentUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    total_amount: Optional[float] = None
    agreement_type: Optional[str] = None
    service_frequency: Optional[str] = None
    price: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

class DocumentSend(BaseModel):
    recipient_name: str
    recipient_email: str
    expires_at: Optional[datetime] = None
    requester_name: Optional[str] = None
    requester_email: Optional[str] = None

class DocumentExtend(BaseModel):
    expires_at: datetime

class DocumentCancel(BaseModel):
    reason: Optional[str] = None

class DocumentCorrect(BaseModel):
    status: DocumentStatus
    note: str

class PublicRespond(BaseModel):
    outcome: Literal["accept", "reject"]
    actor_name: str
    actor_email: str
    reason: Optional[str] = None

class PortalRespond(BaseModel):
    outcome: Literal["accept", "reject"]
    reason: Optional[str] = None

class ClaimsUpdate(BaseModel):
    role: str
    permission_level: int
    branch_id: Optional[str] = None
    company_id: Optional[str] = None
    customer_id: Optional[str] = None

class UserCreate(BaseModel):
    email: str
    name: str
