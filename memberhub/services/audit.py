# memberhub/services/audit.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memberhub.models.audit_log import AuditLog

log = logging.getLogger("memberhub.audit")


# -----------------------------
# Helpers
# -----------------------------
def ip_from_request(request: Optional[Request]) -> Optional[str]:
    """
    Best-effort client IP extraction compatible with proxies.
    Order:
      - X-Forwarded-For (first in the list)
      - X-Real-IP
      - request.client.host
    """
    if request is None:
        return None

    xff = request.headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    client = getattr(request, "client", None)
    return getattr(client, "host", None)


def _dumps_meta(meta: Optional[Dict[str, Any]]) -> str:
    try:
        return json.dumps(meta or {}, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return json.dumps({"raw": str(meta)}, ensure_ascii=False)


# -----------------------------
# Core API
# -----------------------------
def audit_log(
    db: Session,
    *,
    organization_id: Optional[int],
    user_id: Optional[int],
    action: str,
    entity_type: Optional[str],
    entity_id: Optional[int],
    meta: Optional[Dict[str, Any]],
    ip: Optional[str],
    commit: bool = True,
) -> Optional[AuditLog]:
    """
    Records an audit entry.

    commit=False adds the entry to the caller's open transaction; it is
    persisted (or rolled back) together with the change it describes and
    errors propagate.

    commit=True is the best-effort mode used after the main change has
    already been committed: failures are logged and rolled back, never raised.
    """
    entry = AuditLog(
        organization_id=organization_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta=_dumps_meta(meta),
        ip_address=ip,
    )

    if not commit:
        db.add(entry)
        return entry

    try:
        db.add(entry)
        db.commit()
        return entry
    except SQLAlchemyError:
        db.rollback()
        log.warning(
            "audit write failed action=%s entity=%s:%s", action, entity_type, entity_id,
            exc_info=True,
        )
        return None
