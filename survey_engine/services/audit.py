# survey_engine/services/audit.py
"""
Bitácora de acciones de administración. Los envíos de respuestas no se
auditan: en encuestas anónimas el registro sería un vínculo con la identidad.
"""
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from survey_engine.models.audit import AuditLog

MAX_UA = 512


def client_info(request: Optional[Request]) -> tuple[Optional[str], Optional[str]]:
    if request is None:
        return None, None
    ip = request.headers.get("x-forwarded-for", "").split(",")[0].strip() or (
        request.client.host if request.client else None
    )
    ua = request.headers.get("user-agent")
    return ip, (ua[:MAX_UA] if ua else None)


def audit_log(
    db: Session,
    *,
    actor_id: Optional[UUID],
    action: str,
    payload: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    ip, ua = client_info(request)
    entry = AuditLog(actor_id=actor_id, action=action, payload=payload, ip=ip, ua=ua)
    db.add(entry)
    # sin commit: entra en la transacción del servicio que audita
    return entry
