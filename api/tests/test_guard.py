import pytest

from roofdesk.enums import Action, Role
from roofdesk.errors import Unauthorized
from roofdesk.guard import ResourceTenant, authorize, ensure_allowed
from roofdesk.identity import ANONYMOUS

from conftest import make_principal

B1 = ResourceTenant(branch_id="b1", customer_id="c1")
B2 = ResourceTenant(branch_id="b2", customer_id="c2", company_id="acme")


@pytest.mark.parametrize("action", list(Action))
def test_superadmin_allowed_everywhere(action):
    admin = make_principal(Role.SUPERADMIN)
    assert authorize(admin, B1, action)
    assert authorize(admin, B2, action)


@pytest.mark.parametrize("role", [Role.BRANCH_ADMIN, Role.INSPECTOR])
def test_staff_confined_to_own_branch(role):
    staff = make_principal(role, branch_id="b1")
    assert authorize(staff, B1, Action.READ)
    decision = authorize(staff, B2, Action.READ)
    assert not decision
    assert "b2" in decision.reason


def test_staff_without_branch_never_matches_unbranched_record():
    staff = make_principal(Role.BRANCH_ADMIN, branch_id=None)
    assert not authorize(staff, ResourceTenant(), Action.READ)


def test_inspector_denied_admin_actions_in_own_branch():
    inspector = make_principal(Role.INSPECTOR, branch_id="b1")
    assert authorize(inspector, B1, Action.SEND)
    assert not authorize(inspector, B1, Action.DELETE_BRANCH)
    assert not authorize(inspector, B1, Action.MANAGE_USERS)

    admin = make_principal(Role.BRANCH_ADMIN, branch_id="b1")
    assert authorize(admin, B1, Action.DELETE_BRANCH)
    assert authorize(admin, B1, Action.MANAGE_USERS)


def test_customer_reads_only_own_records():
    customer = make_principal(Role.CUSTOMER, customer_id="c1")
    assert authorize(customer, B1, Action.READ)
    assert authorize(customer, B1, Action.ACCEPT_PUBLIC_DOCUMENT)
    assert not authorize(customer, B1, Action.UPDATE)
    assert not authorize(customer, B1, Action.SEND)
    assert not authorize(customer, B2, Action.READ)


def test_customer_matches_on_company():
    employee = make_principal(Role.CUSTOMER, company_id="acme")
    assert authorize(employee, B2, Action.READ)
    assert not authorize(employee, B1, Action.READ)


def test_unset_ids_never_match():
    customer = make_principal(Role.CUSTOMER, customer_id="c1")
    assert not authorize(customer, ResourceTenant(branch_id="b1"), Action.READ)


@pytest.mark.parametrize("action", list(Action))
def test_anonymous_denied(action):
    assert not authorize(ANONYMOUS, ResourceTenant(), action)
    assert not authorize(ANONYMOUS, B1, action)


def test_ensure_allowed_raises_generic_message():
    inspector = make_principal(Role.INSPECTOR, branch_id="b1")
    with pytest.raises(Unauthorized) as exc:
        ensure_allowed(inspector, B2, Action.READ)
    assert exc.value.message == "You do not have access to this resource"
    assert "b2" in exc.value.detail
