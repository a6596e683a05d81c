import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..auth import require_principal, require_staff, require_superadmin
from ..db import get_session
from ..enums import Action, Role
from ..errors import NotFound, Unauthorized, ValidationError
from ..guard import ResourceTenant, ensure_allowed
from ..identity import InvalidClaims, Principal, issue_session_token, validate_claims
from ..models import Customer, User
from ..schemas import ClaimsUpdate, UserCreate
from ..utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

# roles a branch admin may hand out inside their own branch
DELEGABLE_ROLES = frozenset({Role.INSPECTOR, Role.CUSTOMER})


def _stored_claims(user: User) -> dict:
    return {
        "role": user.role,
        "permissionLevel": user.permission_level,
        "branchId": user.branch_id,
        "companyId": user.company_id,
        "customerId": user.customer_id,
    }


def _current_branch(session: Session, user: User) -> Optional[str]:
    if user.role == Role.CUSTOMER.value and user.customer_id:
        customer = session.get(Customer, user.customer_id)
        if customer is not None:
            return customer.branch_id
    return user.branch_id


def _company_branches(session: Session, company_id: str) -> set:
    rows = session.exec(select(Customer.branch_id).where(Customer.company_id == company_id)).all()
    return set(rows)


def _customer_branch(session: Session, payload: ClaimsUpdate, grantor: Principal) -> Optional[str]:
    """Resolve the branch that owns a customer grant and check the ids agree."""
    branch_id = payload.branch_id
    if payload.customer_id:
        customer = session.get(Customer, payload.customer_id)
        if customer is None:
            raise ValidationError("unknown customer", field="customer_id")
        if payload.company_id and payload.company_id != customer.company_id:
            raise ValidationError("company does not match the customer record", field="company_id")
        # a customer belongs to the branch that owns their record
        branch_id = customer.branch_id
    if payload.company_id and grantor.role != Role.SUPERADMIN:
        branches = _company_branches(session, payload.company_id)
        if not branches:
            raise ValidationError("unknown company", field="company_id")
        if len(branches) > 1:
            # company-wide claims would reach records outside the grantor's branch
            raise Unauthorized(f"{grantor.subject_id} may not grant claims on a company spanning branches")
        branch_id = branches.pop()
    return branch_id


@router.get("/me")
def me(principal: Principal = Depends(require_principal)):
    return {"subject_id": principal.subject_id, **principal.to_claims()}


@router.post("/users", status_code=201)
def create_user(
    payload: UserCreate,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_superadmin),
):
    user = User(email=payload.email.strip().lower(), name=payload.name.strip())
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@router.put("/users/{user_id}/claims")
def set_user_claims(
    user_id: str,
    payload: ClaimsUpdate,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_staff),
):
    user = session.get(User, user_id)
    if user is None:
        raise NotFound(f"user {user_id}")
    try:
        role = validate_claims(
            payload.role, payload.permission_level, payload.branch_id, payload.company_id, payload.customer_id,
        )
    except InvalidClaims as exc:
        raise ValidationError(str(exc), field="role")

    branch_id = payload.branch_id
    if role == Role.CUSTOMER:
        branch_id = _customer_branch(session, payload, principal)

    if principal.role != Role.SUPERADMIN:
        if role not in DELEGABLE_ROLES:
            raise Unauthorized(f"{principal.subject_id} may not grant {role.value}")
        if user.role and user.role not in {r.value for r in DELEGABLE_ROLES}:
            raise Unauthorized(f"{principal.subject_id} may not change a {user.role} user")
        ensure_allowed(principal, ResourceTenant(branch_id=branch_id), Action.MANAGE_USERS)
        current = _current_branch(session, user)
        if user.role and current is None:
            raise Unauthorized(f"{principal.subject_id} may not change claims outside their branch")
        if current:
            ensure_allowed(principal, ResourceTenant(branch_id=current), Action.MANAGE_USERS)

    user.role = role.value
    user.permission_level = payload.permission_level
    user.branch_id = branch_id
    user.company_id = payload.company_id
    user.customer_id = payload.customer_id
    user.claims_updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("claims for user %s set to %s by %s", user.id, role.value, principal.subject_id)
    return user


@router.post("/users/{user_id}/session")
def mint_session(
    user_id: str,
    session: Session = Depends(get_session),
    principal: Principal = Depends(require_superadmin),
):
    user = session.get(User, user_id)
    if user is None:
        raise NotFound(f"user {user_id}")
    try:
        token = issue_session_token(user.id, _stored_claims(user))
    except InvalidClaims as exc:
        raise ValidationError(f"user has no usable claims: {exc}", field="role")
    return {"access_token": token}
