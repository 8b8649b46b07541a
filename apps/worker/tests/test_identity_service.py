"""Tests for client identity extraction and routing."""

import pytest

from formflow.core.errors import UnresolvableIdentity
from formflow.schemas.intake import ClientIdentity
from formflow.services import client_service
from formflow.services.identity_service import extract_identity, resolve_identity


def test_extract_identity_from_numeric_keys():
    identity = extract_identity(
        {
            "2": {"answer": {"first": "Jane", "last": "Doe"}},
            "3": {"answer": " Jane@Example.com "},
            "4": {"answer": {"area": "555", "phone": "1234567"}},
        }
    )

    assert identity == ClientIdentity(email="jane@example.com", name="Jane Doe", phone="+15551234567")


def test_extract_identity_from_named_keys():
    identity = extract_identity(
        {
            "q1_email": {"answer": "sam@example.com"},
            "q2_name": {"answer": "Sam   Seller"},
            "q3_phone": {"answer": "(555) 987-6543"},
        }
    )

    assert identity.email == "sam@example.com"
    assert identity.name == "Sam Seller"
    assert identity.phone == "+15559876543"


def test_extract_identity_first_nonempty_key_wins():
    identity = extract_identity(
        {
            "3": {"answer": ""},
            "q3_email": {"answer": "second@example.com"},
            "email": {"answer": "third@example.com"},
        }
    )

    assert identity.email == "second@example.com"


def test_extract_identity_keeps_unparseable_phone():
    identity = extract_identity({"3": {"answer": "a@x.com"}, "phone": {"answer": "ext 42"}})

    assert identity.phone == "ext 42"


def test_extract_identity_full_name_answer():
    identity = extract_identity({"name": {"answer": {"full": "Pat Smith"}}})

    assert identity.name == "Pat Smith"
    assert identity.email is None


def test_resolve_identity_without_email_raises(db, make_submission):
    with pytest.raises(UnresolvableIdentity):
        resolve_identity(db, make_submission(email=None), "buyer")


def test_resolve_identity_routes_by_email_and_type(db, make_submission):
    existing = client_service.create_client(
        db, ClientIdentity(email="a@x.com", name="A"), "buyer"
    )

    buyer = resolve_identity(db, make_submission(email="A@X.com"), "buyer")
    seller = resolve_identity(db, make_submission(email="a@x.com"), "seller")

    assert buyer.client.id == existing.id
    assert not buyer.is_new
    assert seller.is_new
