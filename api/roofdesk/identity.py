"""Principals and the signed identity claims they are built from.

Claims are issued by an administrative operation (see ``routers/users.py``)
and carried by the caller as a signed, time-limited session token. Nothing a
request body says can change the resolved principal.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer

from .config import SECRET_KEY, SESSION_MAX_AGE_SECONDS
from .enums import PERMISSION_LEVELS, Role

logger = logging.getLogger(__name__)

_SALT = "roofdesk-session"
BATCH_SUBJECT = "system:batch"


class InvalidClaims(ValueError):
    pass


@dataclass(frozen=True)
class Principal:
    subject_id: str
    role: Role
    permission_level: int
    branch_id: Optional[str] = None
    company_id: Optional[str] = None
    customer_id: Optional[str] = None

    is_anonymous = False

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.SUPERADMIN, Role.BRANCH_ADMIN, Role.INSPECTOR)

    def to_claims(self) -> dict:
        return {
            "role": self.role.value,
            "permissionLevel": self.permission_level,
            "branchId": self.branch_id,
            "companyId": self.company_id,
            "customerId": self.customer_id,
        }


@dataclass(frozen=True)
class AnonymousPrincipal:
    subject_id: str = "anonymous"
    role = None
    permission_level = None
    branch_id = None
    company_id = None
    customer_id = None

    is_anonymous = True
    is_staff = False


ANONYMOUS = AnonymousPrincipal()

AnyPrincipal = Union[Principal, AnonymousPrincipal]


def batch_principal() -> Principal:
    return Principal(
        subject_id=BATCH_SUBJECT,
        role=Role.SUPERADMIN,
        permission_level=PERMISSION_LEVELS[Role.SUPERADMIN],
    )


def validate_claims(
    role,
    permission_level,
    branch_id: Optional[str] = None,
    company_id: Optional[str] = None,
    customer_id: Optional[str] = None,
) -> Role:
    try:
        resolved = Role(role)
    except ValueError:
        raise InvalidClaims(f"unknown role {role!r}")
    if isinstance(permission_level, bool) or permission_level != PERMISSION_LEVELS[resolved]:
        raise InvalidClaims(
            f"permission level {permission_level!r} does not match role {resolved.value}"
        )
    if resolved in (Role.BRANCH_ADMIN, Role.INSPECTOR) and not branch_id:
        raise InvalidClaims(f"{resolved.value} claims require a branchId")
    if resolved == Role.CUSTOMER and not (customer_id or company_id):
        raise InvalidClaims("customer claims require a customerId or companyId")
    return resolved


def principal_from_claims(subject_id: str, claims: dict) -> Principal:
    if not subject_id:
        raise InvalidClaims("missing subject")
    role = validate_claims(
        claims.get("role"),
        claims.get("permissionLevel"),
        claims.get("branchId"),
        claims.get("companyId"),
        claims.get("customerId"),
    )
    return Principal(
        subject_id=subject_id,
        role=role,
        permission_level=claims["permissionLevel"],
        branch_id=claims.get("branchId") or None,
        company_id=claims.get("companyId") or None,
        customer_id=claims.get("customerId") or None,
    )


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(SECRET_KEY, salt=_SALT)


def issue_session_token(subject_id: str, claims: dict) -> str:
    # refuse to sign claims that could never resolve
    principal = principal_from_claims(subject_id, claims)
    return _serializer().dumps({"sub": principal.subject_id, "claims": principal.to_claims()})


def principal_from_session_token(token: Optional[str], max_age: Optional[int] = None) -> AnyPrincipal:
    if not token:
        return ANONYMOUS
    try:
        payload = _serializer().loads(token, max_age=max_age or SESSION_MAX_AGE_SECONDS)
    except SignatureExpired:
        logger.info("expired session token presented")
        return ANONYMOUS
    except BadData:
        logger.warning("session token with invalid signature presented")
        return ANONYMOUS
    if not isinstance(payload, dict) or not isinstance(payload.get("claims"), dict):
        logger.warning("session token with malformed payload presented")
        return ANONYMOUS
    try:
        return principal_from_claims(payload.get("sub"), payload["claims"])
    except InvalidClaims as exc:
        logger.warning("session token with inconsistent claims: %s", exc)
        return ANONYMOUS
