import json
from typing import Optional

from sqlalchemy.orm import Session

from models import AuditLog


def record(
    db: Session,
    business_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
) -> None:
    """Queue an audit row on the session; it is committed with the change it describes."""
    db.add(AuditLog(
        business_id=business_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_values=json.dumps(old_values, default=str) if old_values is not None else None,
        new_values=json.dumps(new_values, default=str) if new_values is not None else None,
    ))
