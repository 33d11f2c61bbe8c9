from typing import List, Optional

from sqlalchemy.orm import Session

from memberhub.models.organization import Organization
from memberhub.models.profile import Profile
from memberhub.schemas.organization import OrganizationCreate


def get_organization(db: Session, organization_id: int) -> Optional[Organization]:
    return db.get(Organization, organization_id)


def list_organizations(db: Session, *, skip: int = 0, limit: int = 100) -> List[Organization]:
    return (
        db.query(Organization)
        .order_by(Organization.name.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def create_organization(db: Session, payload: OrganizationCreate) -> Organization:
    contact: Optional[Profile] = None
    if payload.contact_person_id is not None:
        contact = db.get(Profile, payload.contact_person_id)
        if contact is None:
            raise ValueError("Contact profile not found")

    org = Organization(
        name=payload.name.strip(),
        membership_status=payload.membership_status,
        contact_person_id=payload.contact_person_id,
    )
    db.add(org)
    if contact is not None:
        contact.organization = org.name
    db.commit()
    db.refresh(org)
    return org
