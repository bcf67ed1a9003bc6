"""Organization and requester resolution for inbound contacts."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.errors import ConflictError, InvalidAddress, NotFoundError
from helpdesk.core.structured_logging import mask_email
from helpdesk.db.enums import RequesterPolicy
from helpdesk.db.models import Organization, OrganizationDomain, Requester
from helpdesk.utils.text import email_domain, normalize_email

logger = logging.getLogger(__name__)


# =============================================================================
# Organizations
# =============================================================================


def find_fallback_organization(db: Session) -> Organization | None:
    return db.scalars(
        select(Organization).where(Organization.is_fallback.is_(True)).order_by(Organization.id)
    ).first()


def get_fallback_organization(db: Session) -> Organization:
    """Return the fallback bucket, creating it on first use.

    Raises:
        ConflictError: another transaction created the bucket first
    """
    org = find_fallback_organization(db)
    if org:
        return org

    org = Organization(name=settings.FALLBACK_ORGANIZATION_NAME, is_fallback=True)
    db.add(org)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError("Fallback organization created concurrently") from exc
    logger.info("Created fallback organization", extra={"organization_id": org.id})
    return org


def resolve_organization(db: Session, *, email: str) -> Organization:
    """Map a sender address to its organization by domain.

    Unmapped domains resolve to the fallback bucket; never returns None.

    Raises:
        InvalidAddress: the address has no domain part
    """
    domain = email_domain(email)
    if not domain:
        raise InvalidAddress(
            "Email address has no domain",
            detail=[{"field": "from", "message": "missing domain"}],
        )

    org = db.scalars(
        select(Organization)
        .join(OrganizationDomain, OrganizationDomain.organization_id == Organization.id)
        .where(OrganizationDomain.domain == domain)
    ).first()
    if org:
        return org
    return get_fallback_organization(db)


def get_organization(db: Session, *, organization_id: int) -> Organization:
    org = db.get(Organization, organization_id)
    if not org:
        raise NotFoundError("Organization not found")
    return org


def add_organization_domain(db: Session, *, organization_id: int, domain: str) -> OrganizationDomain:
    get_organization(db, organization_id=organization_id)
    row = OrganizationDomain(organization_id=organization_id, domain=domain.strip().lower())
    db.add(row)
    db.flush()
    return row


# =============================================================================
# Requesters
# =============================================================================


def lookup_requester(db: Session, *, organization_id: int, email: str) -> Requester | None:
    """Return an active requester with this email in the organization, if any."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.scalars(
        select(Requester)
        .where(
            Requester.organization_id == organization_id,
            Requester.email == normalized,
            Requester.is_active.is_(True),
        )
        .order_by(Requester.id)
    ).first()


def get_or_create_requester(
    db: Session,
    *,
    organization_id: int,
    email: str,
    name: str | None = None,
    external_ref: str | None = None,
) -> Requester:
    """Find a requester by external identity, then email; create one otherwise.

    Raises:
        ConflictError: another transaction created the same active requester
    """
    if external_ref:
        by_ref = db.scalars(
            select(Requester).where(
                Requester.organization_id == organization_id,
                Requester.external_ref == external_ref,
                Requester.is_active.is_(True),
            )
        ).first()
        if by_ref:
            return by_ref

    existing = lookup_requester(db, organization_id=organization_id, email=email)
    if existing:
        return existing

    normalized = normalize_email(email)
    display_name = (name or "").strip() or normalized.split("@", 1)[0] or normalized
    requester = Requester(
        organization_id=organization_id,
        name=display_name,
        email=normalized or None,
        external_ref=external_ref,
    )
    db.add(requester)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError("Requester created concurrently") from exc
    logger.info(
        "Created requester %s",
        mask_email(normalized),
        extra={"organization_id": organization_id},
    )
    return requester


def resolve_requester(
    db: Session,
    *,
    organization_id: int,
    email: str,
    name: str | None,
    policy: RequesterPolicy,
) -> Requester | None:
    if policy == RequesterPolicy.LOOKUP_ONLY:
        return lookup_requester(db, organization_id=organization_id, email=email)
    return get_or_create_requester(db, organization_id=organization_id, email=email, name=name)


def get_requester(db: Session, *, requester_id: int) -> Requester:
    requester = db.get(Requester, requester_id)
    if not requester:
        raise NotFoundError("Requester not found")
    return requester
