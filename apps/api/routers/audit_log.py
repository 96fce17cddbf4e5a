import json
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from database import get_db
from deps import get_business_id
from models import AuditLog
from schemas import AuditLogOut

router = APIRouter(prefix="/audit-log", tags=["audit-log"])


def _decode(raw: Optional[str]):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@router.get("", response_model=list[AuditLogOut])
def get_audit_log(
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    limit: int = Query(100, le=1000),
    business_id: str = Depends(get_business_id),
    db: Session = Depends(get_db),
):
    q = select(AuditLog).where(AuditLog.business_id == business_id)
    if entity_type:
        q = q.where(AuditLog.entity_type == entity_type)
    if entity_id:
        q = q.where(AuditLog.entity_id == entity_id)
    logs = db.scalars(q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit)).all()

    return [
        AuditLogOut(
            id=log.id,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            action=log.action,
            old_values=_decode(log.old_values),
            new_values=_decode(log.new_values),
            timestamp=log.timestamp,
        )
        for log in logs
    ]
