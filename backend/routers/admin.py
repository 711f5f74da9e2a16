# routers/admin.py — Audit log browsing and on-demand maintenance (admin only)
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from audit import AuditRecorder, get_audit
from auth import require_admin, CurrentUser
from database import get_db_session
from models import AuditLog, AuditAction, User, EntityType
from notification_service import run_overdue_check
from schemas import AuditLogOut, audit_out

logger = logging.getLogger("kanban.admin")

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


class AuditLogPage(BaseModel):
    logs: List[AuditLogOut]
    total: int
    page: int
    limit: int


@router.get("/audit-logs", response_model=AuditLogPage)
async def list_audit_logs(
    action: Optional[AuditAction] = Query(None),
    entity_type: Optional[str] = Query(None, max_length=50),
    user_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    admin: CurrentUser = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Newest-first audit trail with filtering and pagination"""
    filters = []
    if action:
        filters.append(AuditLog.action == action)
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if user_id:
        filters.append(AuditLog.user_id == user_id)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            AuditLog.entity_id.ilike(pattern),
            AuditLog.old_data.ilike(pattern),
            AuditLog.new_data.ilike(pattern),
            AuditLog.extra_data.ilike(pattern),
            AuditLog.ip_address.ilike(pattern),
        ))

    total = (await db.execute(select(func.count(AuditLog.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(AuditLog, User.username)
        .outerjoin(User, User.id == AuditLog.user_id)
        .where(*filters)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    out = AuditLogPage(
        logs=[audit_out(entry, username) for entry, username in result.all()],
        total=total, page=page, limit=limit,
    )

    await audit.viewed(EntityType.AUDIT_LOG, metadata={
        "filters": {
            "action": action.value if action else None,
            "entity_type": entity_type, "user_id": user_id, "search": search,
        },
        "page": page, "limit": limit, "total": total,
    })
    return out


@router.post("/overdue-check")
async def trigger_overdue_check(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Run the deadline scan now instead of waiting for the background task"""
    summary = await run_overdue_check(db)
    logger.info(f"Manual overdue check by {admin.username}: {summary}")
    return summary
