"""Tenant isolation filter.

Every staff read or list of a business record is built here, so the query
predicate and the guard's idea of a tenant boundary come from one place.
"""
import logging

from sqlalchemy import false, or_
from sqlmodel import Session, select

from .enums import Action, Role
from .errors import NotFound, TenantMismatch, Unauthorized, ValidationError
from .guard import ResourceTenant, authorize, ensure_allowed
from .identity import AnyPrincipal
from .models import Branch

logger = logging.getLogger(__name__)


def tenant_of(record) -> ResourceTenant:
    if isinstance(record, Branch):
        return ResourceTenant(branch_id=record.id)
    return ResourceTenant(
        branch_id=record.branch_id,
        customer_id=record.customer_id,
        company_id=record.company_id,
    )


def _branch_column(model):
    return model.id if model is Branch else model.branch_id


def scope_query(principal: AnyPrincipal, statement, model):
    if principal.is_anonymous:
        raise Unauthorized("anonymous principal cannot query records")
    role = principal.role
    if role == Role.SUPERADMIN:
        return statement
    if role in (Role.BRANCH_ADMIN, Role.INSPECTOR):
        return statement.where(_branch_column(model) == principal.branch_id)
    if role == Role.CUSTOMER:
        if model is Branch:
            return statement.where(false())
        predicates = []
        if principal.customer_id:
            predicates.append(model.customer_id == principal.customer_id)
        if principal.company_id:
            predicates.append(model.company_id == principal.company_id)
        if not predicates:
            return statement.where(false())
        return statement.where(or_(*predicates))
    raise Unauthorized(f"unhandled role {role!r}")


def scoped_select(principal: AnyPrincipal, model):
    return scope_query(principal, select(model), model)


def _cross_check(principal: AnyPrincipal, record, model) -> None:
    decision = authorize(principal, tenant_of(record), Action.READ)
    if not decision.allowed:
        logger.error(
            "tenant filter returned %s %s to %s (%s): %s",
            model.__name__, record.id, principal.subject_id, principal.role, decision.reason,
        )
        raise TenantMismatch(f"{model.__name__} {record.id}: {decision.reason}")


def list_scoped(session: Session, principal: AnyPrincipal, model, *criteria, order_by=None):
    statement = scoped_select(principal, model)
    if criteria:
        statement = statement.where(*criteria)
    if order_by is not None:
        statement = statement.order_by(order_by)
    rows = session.exec(statement).all()
    for row in rows:
        _cross_check(principal, row, model)
    return rows


def load_scoped(session: Session, principal: AnyPrincipal, model, record_id: str, action: Action = Action.READ):
    record = session.exec(scoped_select(principal, model).where(model.id == record_id)).first()
    if record is None:
        raise NotFound(f"{model.__name__} {record_id} not visible to {principal.subject_id}")
    _cross_check(principal, record, model)
    if action != Action.READ:
        ensure_allowed(principal, tenant_of(record), action)
    return record


def validate_tenant(record) -> None:
    if isinstance(record, Branch):
        return
    if not record.branch_id:
        raise ValidationError(f"{type(record).__name__} requires a branch_id", field="branch_id")
    if getattr(type(record), "OWNED", False) and not (record.customer_id or record.company_id):
        raise ValidationError(
            f"{type(record).__name__} requires a customer_id or company_id", field="customer_id"
        )


def save_scoped(session: Session, principal: AnyPrincipal, record, action: Action = Action.CREATE):
    """Validate, authorize and stage a write; the caller commits."""
    validate_tenant(record)
    ensure_allowed(principal, tenant_of(record), action)
    session.add(record)
    return record
