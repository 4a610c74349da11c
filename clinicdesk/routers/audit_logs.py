from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinicdesk.core.security import require_roles
from clinicdesk.database import get_db
from clinicdesk.models.audit_log import AuditLog
from clinicdesk.models.user import User, UserRole

router = APIRouter(prefix="/api/audit-logs", tags=["audit"])


class AuditLogResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    user_type: Optional[str] = None
    action: str
    table_name: Optional[str] = None
    record_id: Optional[str] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_logs(
    table_name: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    query = db.query(AuditLog)
    if table_name:
        query = query.filter(AuditLog.table_name == table_name)
    return query.order_by(AuditLog.id.desc()).limit(limit).all()
