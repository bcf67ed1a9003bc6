"""Organization and requester resolution."""

import pytest
from sqlalchemy.exc import IntegrityError

from helpdesk.core.errors import ConflictError, InvalidAddress, ValidationError
from helpdesk.db.enums import RequesterPolicy
from helpdesk.db.models import Organization, Requester
from helpdesk.services import directory_service


def test_mapped_domain_resolves_to_owning_org(db, org, fallback_org):
    resolved = directory_service.resolve_organization(db, email="jane@acme.com")
    assert resolved.id == org.id


def test_domain_lookup_ignores_case_and_whitespace(db, org, fallback_org):
    resolved = directory_service.resolve_organization(db, email="  Jane@ACME.com ")
    assert resolved.id == org.id


def test_unmapped_domain_resolves_to_fallback(db, org, fallback_org):
    resolved = directory_service.resolve_organization(db, email="someone@unknown.example")
    assert resolved.id == fallback_org.id
    assert resolved.is_fallback is True


def test_fallback_created_lazily_once(db):
    first = directory_service.resolve_organization(db, email="a@nowhere.example")
    second = directory_service.resolve_organization(db, email="b@elsewhere.example")
    db.commit()

    assert first.id == second.id
    assert first.is_fallback is True
    assert first.name == "Unclassified"
    assert db.query(Organization).filter(Organization.is_fallback.is_(True)).count() == 1


@pytest.mark.parametrize("address", ["no-at-sign", "user@", "", "   "])
def test_missing_domain_raises_invalid_address(db, fallback_org, address):
    with pytest.raises(InvalidAddress) as exc_info:
        directory_service.resolve_organization(db, email=address)
    assert isinstance(exc_info.value, ValidationError)
    assert exc_info.value.status_code == 400


def test_lookup_only_never_creates(db, org):
    found = directory_service.resolve_requester(
        db,
        organization_id=org.id,
        email="new.person@acme.com",
        name="New Person",
        policy=RequesterPolicy.LOOKUP_ONLY,
    )
    assert found is None
    assert db.query(Requester).count() == 0


def test_get_or_create_seeds_name_from_local_part(db, org):
    requester = directory_service.get_or_create_requester(
        db, organization_id=org.id, email="  Carlos.Diaz@Acme.com "
    )
    db.commit()

    assert requester.email == "carlos.diaz@acme.com"
    assert requester.name == "carlos.diaz"
    assert requester.organization_id == org.id


def test_get_or_create_prefers_sender_name(db, org):
    requester = directory_service.get_or_create_requester(
        db, organization_id=org.id, email="carlos@acme.com", name="Carlos Díaz"
    )
    assert requester.name == "Carlos Díaz"


def test_get_or_create_reuses_existing_by_normalized_email(db, org):
    first = directory_service.get_or_create_requester(db, organization_id=org.id, email="jo@acme.com")
    db.commit()
    second = directory_service.get_or_create_requester(db, organization_id=org.id, email="JO@acme.com")

    assert first.id == second.id
    assert db.query(Requester).count() == 1


def test_requesters_are_scoped_per_organization(db, org, fallback_org):
    in_org = directory_service.get_or_create_requester(db, organization_id=org.id, email="x@acme.com")
    in_fallback = directory_service.get_or_create_requester(
        db, organization_id=fallback_org.id, email="x@acme.com"
    )
    assert in_org.id != in_fallback.id


def test_inactive_requester_is_not_returned(db, org):
    db.add(Requester(organization_id=org.id, name="Old", email="old@acme.com", is_active=False))
    db.commit()

    assert directory_service.lookup_requester(db, organization_id=org.id, email="old@acme.com") is None


def test_external_ref_match_wins_over_email(db, org):
    existing = Requester(
        organization_id=org.id, name="Synced", email="synced@acme.com", external_ref="dir-42"
    )
    db.add(existing)
    db.commit()

    found = directory_service.get_or_create_requester(
        db, organization_id=org.id, email="other.address@acme.com", external_ref="dir-42"
    )
    assert found.id == existing.id


def test_second_fallback_organization_is_rejected(db, fallback_org):
    db.add(Organization(name="Another bucket", is_fallback=True))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_fallback_created_concurrently_raises_conflict(db, fallback_org, monkeypatch):
    monkeypatch.setattr(directory_service, "find_fallback_organization", lambda session: None)

    with pytest.raises(ConflictError):
        directory_service.get_fallback_organization(db)
    db.rollback()

    assert db.query(Organization).filter(Organization.is_fallback.is_(True)).count() == 1


def test_duplicate_active_requester_is_rejected(db, org):
    db.add(Requester(organization_id=org.id, name="Jane", email="jane@acme.com"))
    db.commit()

    db.add(Requester(organization_id=org.id, name="Jane again", email="jane@acme.com"))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_inactive_requester_does_not_block_new_one(db, org):
    db.add(Requester(organization_id=org.id, name="Old", email="jane@acme.com", is_active=False))
    db.commit()

    created = directory_service.get_or_create_requester(db, organization_id=org.id, email="jane@acme.com")
    db.commit()

    assert created.is_active is True
    assert db.query(Requester).count() == 2


def test_requester_created_concurrently_raises_conflict(db, org, monkeypatch):
    db.add(Requester(organization_id=org.id, name="Jane", email="jane@acme.com"))
    db.commit()
    monkeypatch.setattr(directory_service, "lookup_requester", lambda session, **kwargs: None)

    with pytest.raises(ConflictError):
        directory_service.get_or_create_requester(db, organization_id=org.id, email="jane@acme.com")
    db.rollback()

    assert db.query(Requester).count() == 1
