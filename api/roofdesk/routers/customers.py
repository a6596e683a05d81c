from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..auth import require_principal, require_staff
from ..db import get_session
from ..enums import Role
from ..identity import Principal
from ..models import Building, Customer
from ..schemas import BuildingCreate, CustomerCreate
from ..tenancy import list_scoped, load_scoped, save_scoped

router = APIRouter()

@router.get("")
def list_customers(session: Session = Depends(get_session), principal: Principal = Depends(require_principal)):
    return list_scoped(session, principal, Customer, order_by=Customer.created_at.desc())

@router.post("", status_code=201)
def create_customer(
    payload: CustomerCreate,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_staff),
):
    branch_id = payload.branch_id
    if branch_id is None and principal.role != Role.SUPERADMIN:
        # branch staff can only ever write into their own branch
        branch_id = principal.branch_id
    customer = Customer(**payload.model_dump(exclude={"branch_id"}), branch_id=branch_id, created_by=principal.subject_id)
    customer.customer_id = customer.id
    save_scoped(session, principal, customer)
    session.commit()
    session.refresh(customer)
    return customer

@router.get("/{customer_id}")
def get_customer(customer_id: str, session: Session = Depends(get_session), principal: Principal = Depends(require_principal)):
    return load_scoped(session, principal, Customer, customer_id)

@router.get("/{customer_id}/buildings")
def list_customer_buildings(
    customer_id: str,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_principal),
):
    customer = load_scoped(session, principal, Customer, customer_id)
    return list_scoped(session, principal, Building, Building.customer_id == customer.id, order_by=Building.created_at.desc())

@router.post("/{customer_id}/buildings", status_code=201)
def create_building(
    customer_id: str,
    payload: BuildingCreate,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_staff),
):
    customer = load_scoped(session, principal, Customer, customer_id)
    building = Building(
        **payload.model_dump(),
        branch_id=customer.branch_id,
        customer_id=customer.id,
        company_id=customer.company_id,
        created_by=principal.subject_id,
    )
    save_scoped(session, principal, building)
    session.commit()
    session.refresh(building)
    return building
