import logging

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..auth import require_principal, require_superadmin
from ..db import get_session
from ..enums import Action
from ..errors import InvalidTransition
from ..identity import Principal
from ..models import Branch, Customer
from ..schemas import BranchCreate
from ..tenancy import list_scoped, load_scoped, save_scoped

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("")
def list_branches(session: Session = Depends(get_session), principal: Principal = Depends(require_principal)):
    return list_scoped(session, principal, Branch, order_by=Branch.name)

@router.post("", status_code=201)
def create_branch(
    payload: BranchCreate,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_superadmin),
):
    branch = Branch(name=payload.name, email=payload.email)
    save_scoped(session, principal, branch)
    session.commit()
    session.refresh(branch)
    return branch

@router.delete("/{branch_id}", status_code=204)
def delete_branch(
    branch_id: str,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_principal),
):
    branch = load_scoped(session, principal, Branch, branch_id, Action.DELETE_BRANCH)
    # raw select: emptiness is checked across every tenant, not the caller's view
    in_use = session.exec(select(Customer.id).where(Customer.branch_id == branch.id)).first()
    if in_use:
        raise InvalidTransition("branch still has customers; move or remove them first")
    session.delete(branch)
    session.commit()
    logger.info("branch %s deleted by %s", branch_id, principal.subject_id)
