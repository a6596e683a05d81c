import time

import pytest
from itsdangerous import URLSafeTimedSerializer

from roofdesk import identity
from roofdesk.enums import Role
from roofdesk.identity import (
    ANONYMOUS,
    InvalidClaims,
    issue_session_token,
    principal_from_claims,
    principal_from_session_token,
)

from conftest import make_principal


def test_round_trip_claims():
    principal = make_principal(Role.BRANCH_ADMIN, branch_id="b1", subject_id="u-1")
    resolved = principal_from_session_token(issue_session_token("u-1", principal.to_claims()))
    assert resolved == principal
    assert resolved.is_staff


def test_missing_token_is_anonymous():
    assert principal_from_session_token(None) is ANONYMOUS
    assert principal_from_session_token("") is ANONYMOUS


def test_tampered_token_is_anonymous():
    token = issue_session_token("u-1", make_principal(Role.INSPECTOR, branch_id="b1").to_claims())
    assert principal_from_session_token(token[:-2] + "xx") is ANONYMOUS


def test_token_signed_with_other_key_is_anonymous():
    forged = URLSafeTimedSerializer("not-the-key", salt="roofdesk-session").dumps(
        {"sub": "u-1", "claims": make_principal(Role.SUPERADMIN).to_claims()}
    )
    assert principal_from_session_token(forged) is ANONYMOUS


def test_expired_token_is_anonymous(monkeypatch):
    token = issue_session_token("u-1", make_principal(Role.INSPECTOR, branch_id="b1").to_claims())
    real_time = time.time
    monkeypatch.setattr(time, "time", lambda: real_time() + 7200)
    assert principal_from_session_token(token, max_age=60) is ANONYMOUS


def test_inconsistent_signed_claims_are_anonymous():
    # signed correctly but the level does not match the role
    payload = {"sub": "u-1", "claims": {"role": "superadmin", "permissionLevel": 0}}
    token = identity._serializer().dumps(payload)
    assert principal_from_session_token(token) is ANONYMOUS


@pytest.mark.parametrize(
    "claims",
    [
        {"role": "owner", "permissionLevel": 2},
        {"role": "inspector", "permissionLevel": 1, "branchId": "b1"},
        {"role": "inspector", "permissionLevel": True, "branchId": "b1"},
        {"role": "branchAdmin", "permissionLevel": 1},
        {"role": "customer", "permissionLevel": -1},
    ],
)
def test_invalid_claims_rejected(claims):
    with pytest.raises(InvalidClaims):
        principal_from_claims("u-1", claims)


def test_issue_refuses_unresolvable_claims():
    with pytest.raises(InvalidClaims):
        issue_session_token("u-1", {"role": "branchAdmin", "permissionLevel": 1})


def test_company_only_customer_is_valid():
    principal = principal_from_claims("u-2", {"role": "customer", "permissionLevel": -1, "companyId": "acme"})
    assert principal.company_id == "acme"
    assert principal.customer_id is None
    assert not principal.is_staff
