import logging
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from clinicdesk.models.audit_log import AuditLog
from clinicdesk.models.user import User

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def log_audit(
    db: Session,
    user: Optional[User],
    action: str,
    table_name: str,
    record_id: Any = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    request: Optional[Request] = None,
    user_type: Optional[str] = None,
) -> AuditLog:
    """
    Stage an audit entry on the caller's session.

    Nothing is committed here: the entry is written by the same commit as
    the change it describes.
    """
    entry = AuditLog(
        user_id=user.id if user else None,
        user_type=user_type or (user.role.value if user else None),
        action=action,
        table_name=table_name,
        record_id=str(record_id) if record_id is not None else None,
        old_values=_jsonable(old_values) if old_values else None,
        new_values=_jsonable(new_values) if new_values else None,
        ip_address=request.client.host if request and request.client else None,
        user_agent=request.headers.get("user-agent") if request else None,
    )
    db.add(entry)
    logger.info(
        "[AUDIT] %s %s performed %s on %s record %s",
        entry.user_type,
        entry.user_id,
        action,
        table_name,
        entry.record_id,
    )
    return entry
