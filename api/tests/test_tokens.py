import pytest

from roofdesk import lifecycle, tokens
from roofdesk.enums import DocumentKind, Role
from roofdesk.errors import NotFound
from roofdesk.models import Offer

from conftest import make_principal


def _draft(session, customer):
    admin = make_principal(Role.BRANCH_ADMIN, branch_id=customer.branch_id)
    offer = Offer(title="Roof repair", branch_id=customer.branch_id, customer_id=customer.id)
    return admin, lifecycle.create_document(session, admin, offer)


def test_tokens_are_long_and_distinct():
    seen = {tokens.generate_token() for _ in range(200)}
    assert len(seen) == 200
    assert all(len(t) >= 43 for t in seen)


def test_token_carries_no_document_identifiers(session, two_branches):
    admin, offer = _draft(session, two_branches["c1"])
    token = lifecycle.send(session, admin, offer, "Alice", "alice@example.com")
    assert offer.id not in token
    assert offer.customer_id not in token
    assert offer.branch_id not in token


def test_resolve_by_token_only(session, two_branches):
    admin, offer = _draft(session, two_branches["c1"])
    token = lifecycle.send(session, admin, offer, "Alice", "alice@example.com")
    assert tokens.resolve(session, DocumentKind.OFFER, token).id == offer.id
    with pytest.raises(NotFound):
        tokens.resolve(session, DocumentKind.SERVICE_AGREEMENT, token)


@pytest.mark.parametrize("token", [None, "", "short", "x" * 43])
def test_unknown_and_malformed_tokens_look_the_same(session, token):
    with pytest.raises(NotFound) as exc:
        tokens.resolve(session, DocumentKind.OFFER, token)
    assert exc.value.message == "not found"


def test_resend_rotates_token(session, two_branches):
    admin, offer = _draft(session, two_branches["c1"])
    first = lifecycle.send(session, admin, offer, "Alice", "alice@example.com")
    second = lifecycle.send(session, admin, offer, "Alice", "alice@example.com")
    assert first != second
    with pytest.raises(NotFound):
        tokens.resolve(session, DocumentKind.OFFER, first)
    assert tokens.resolve(session, DocumentKind.OFFER, second).id == offer.id


def test_public_url_uses_kind_path():
    url = tokens.public_url(DocumentKind.SERVICE_AGREEMENT, "abc")
    assert url.endswith("/service-agreement/public/abc")
