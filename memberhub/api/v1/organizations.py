# memberhub/api/v1/organizations.py
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from memberhub.core.auth import get_current_user, get_db, require_admin
from memberhub.crud.organization import create_organization, get_organization, list_organizations
from memberhub.crud.profile import get_profile_by_user
from memberhub.models.user import User
from memberhub.schemas.organization import OrganizationCreate, OrganizationOut
from memberhub.schemas.transfer import TransferOut
from memberhub.services.audit import audit_log, ip_from_request
from memberhub.services.transfers import pending_transfer_for_organization

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.post("", response_model=OrganizationOut, status_code=status.HTTP_201_CREATED)
def api_create_organization(
    payload: OrganizationCreate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        org = create_organization(db, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    audit_log(
        db,
        organization_id=org.id,
        user_id=admin.id,
        action="ORGANIZATION_CREATED",
        entity_type="organization",
        entity_id=org.id,
        meta={"name": org.name, "contact_person_id": org.contact_person_id},
        ip=ip_from_request(request),
    )
    return org


@router.get("", response_model=List[OrganizationOut])
def api_list_organizations(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    return list_organizations(db, skip=skip, limit=limit)


@router.get("/{organization_id}", response_model=OrganizationOut)
def api_get_organization(
    organization_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    org = get_organization(db, organization_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    if not current_user.is_admin:
        profile = get_profile_by_user(db, current_user.id)
        if profile is None or org.contact_person_id != profile.id:
            raise HTTPException(status_code=403, detail="Forbidden")
    return org


@router.get("/{organization_id}/transfer")
def api_get_pending_transfer(
    organization_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """The organization's pending transfer, or null when there is none."""
    transfer = pending_transfer_for_organization(
        db, organization_id=organization_id, user=current_user
    )
    return {
        "success": True,
        "transfer": TransferOut.model_validate(transfer).model_dump(mode="json") if transfer else None,
    }
