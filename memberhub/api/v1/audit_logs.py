# memberhub/api/v1/audit_logs.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from memberhub.core.auth import get_db, require_admin
from memberhub.models.audit_log import AuditLog
from memberhub.models.user import User

router = APIRouter(prefix="/audit", tags=["audit"])


def _safe_json_loads(s: Optional[str]) -> Any:
    if s is None:
        return None
    try:
        return json.loads(s)
    except ValueError:
        # legacy rows may hold plain text
        return s


@router.get("/logs")
def list_audit_logs(
    response: Response,
    organization_id: Optional[int] = Query(None, description="Filter by organization_id"),
    user_id: Optional[int] = Query(None, description="Filter by acting user_id"),
    action: Optional[str] = Query(None, description="Exact match, e.g. CONTACT_TRANSFER_APPROVED"),
    entity_type: Optional[str] = Query(None, description="Exact match, e.g. organization"),
    entity_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    order_dir: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$"),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> Dict[str, Any]:
    """
    Admin view of the audit trail with filters and pagination.
    X-Total-Count carries the unpaginated total.
    """
    query = db.query(AuditLog)
    if organization_id is not None:
        query = query.filter(AuditLog.organization_id == organization_id)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)

    total = query.count()
    if order_dir.lower() == "asc":
        query = query.order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    else:
        query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    rows = query.offset(skip).limit(limit).all()

    response.headers["X-Total-Count"] = str(total)

    return {
        "items": [
            {
                "id": r.id,
                "organization_id": r.organization_id,
                "user_id": r.user_id,
                "action": r.action,
                "entity_type": r.entity_type,
                "entity_id": r.entity_id,
                "ip_address": r.ip_address,
                "created_at": r.created_at,
                "meta": _safe_json_loads(r.meta),
            }
            for r in rows
        ],
        "pagination": {"skip": skip, "limit": limit, "total": total},
    }
