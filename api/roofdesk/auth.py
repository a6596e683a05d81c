import hmac
from typing import Optional

from fastapi import Depends, Header

from .config import ADMIN_ACCESS_TOKEN
from .enums import Role
from .errors import Unauthenticated, Unauthorized
from .identity import AnyPrincipal, Principal, batch_principal, principal_from_session_token


def resolve_principal(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
) -> AnyPrincipal:
    if ADMIN_ACCESS_TOKEN and x_access_token and hmac.compare_digest(x_access_token, ADMIN_ACCESS_TOKEN):
        return batch_principal()
    return principal_from_session_token(x_access_token)


def require_principal(principal: AnyPrincipal = Depends(resolve_principal)) -> Principal:
    if principal.is_anonymous:
        raise Unauthenticated("no valid session")
    return principal


def require_staff(principal: Principal = Depends(require_principal)) -> Principal:
    if not principal.is_staff:
        raise Unauthorized(f"{principal.role.value} is not staff")
    return principal


def require_superadmin(principal: Principal = Depends(require_principal)) -> Principal:
    if principal.role != Role.SUPERADMIN:
        raise Unauthorized("superadmin required")
    return principal
