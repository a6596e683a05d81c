"""Authorization guard: the single decision point for (principal, tenant, action).

Rules are evaluated in order and the first match wins. The guard is pure; it
never touches the database, and callers scope their queries with
``tenancy.scope_query`` before rows ever reach it.
"""
from dataclasses import dataclass
from typing import Optional

from .enums import Action, Role
from .errors import Unauthorized
from .identity import AnyPrincipal

INSPECTOR_DENIED_ACTIONS = frozenset({Action.DELETE_BRANCH, Action.MANAGE_USERS})
CUSTOMER_ALLOWED_ACTIONS = frozenset({Action.READ, Action.ACCEPT_PUBLIC_DOCUMENT})


@dataclass(frozen=True)
class ResourceTenant:
    branch_id: Optional[str] = None
    customer_id: Optional[str] = None
    company_id: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True, "allowed")


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def _ids_match(ours: Optional[str], theirs: Optional[str]) -> bool:
    return bool(ours) and ours == theirs


def authorize(principal: AnyPrincipal, resource: ResourceTenant, action: Action) -> Decision:
    if principal.is_anonymous:
        return deny("anonymous principal")
    role = principal.role
    if role == Role.SUPERADMIN:
        return ALLOW
    if role in (Role.BRANCH_ADMIN, Role.INSPECTOR):
        if not _ids_match(principal.branch_id, resource.branch_id):
            return deny(f"branch {resource.branch_id!r} outside principal branch {principal.branch_id!r}")
        if role == Role.INSPECTOR and action in INSPECTOR_DENIED_ACTIONS:
            return deny(f"inspector may not {action.value}")
        return ALLOW
    if role == Role.CUSTOMER:
        if action not in CUSTOMER_ALLOWED_ACTIONS:
            return deny(f"customer may not {action.value}")
        if _ids_match(principal.customer_id, resource.customer_id):
            return ALLOW
        if _ids_match(principal.company_id, resource.company_id):
            return ALLOW
        return deny("record not owned by customer or company")
    return deny(f"unhandled role {role!r}")


def ensure_allowed(principal: AnyPrincipal, resource: ResourceTenant, action: Action) -> None:
    decision = authorize(principal, resource, action)
    if not decision.allowed:
        raise Unauthorized(f"{principal.subject_id} {action.value}: {decision.reason}")
