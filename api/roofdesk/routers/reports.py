from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..auth import require_principal, require_staff
from ..db import get_session
from ..identity import Principal
from ..models import Building, Report
from ..schemas import ReportCreate
from ..tenancy import list_scoped, load_scoped, save_scoped

router = APIRouter()

@router.get("")
def list_reports(session: Session = Depends(get_session), principal: Principal = Depends(require_principal)):
    return list_scoped(session, principal, Report, order_by=Report.created_at.desc())

@router.post("", status_code=201)
def create_report(
    payload: ReportCreate,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_staff),
):
    building = load_scoped(session, principal, Building, payload.building_id)
    report = Report(
        **payload.model_dump(),
        branch_id=building.branch_id,
        customer_id=building.customer_id,
        company_id=building.company_id,
        created_by=principal.subject_id,
    )
    save_scoped(session, principal, report)
    session.commit()
    session.refresh(report)
    return report

@router.get("/{report_id}")
def get_report(report_id: str, session: Session = Depends(get_session), principal: Principal = Depends(require_principal)):
    return load_scoped(session, principal, Report, report_id)
