# routers/notifications.py — In-app notification inbox
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import NotFoundError
from models import Notification, EntityType
from schemas import NotificationOut, notification_out

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


def _inbox(user_id: str):
    return (Notification.user_id == user_id, Notification.is_deleted.is_(False))


async def _get_own(db: AsyncSession, user: CurrentUser, notification_id: str) -> Notification:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, *_inbox(user.id))
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


# ============================================================
# LIST
# ============================================================

@router.get("", response_model=List[NotificationOut])
async def list_notifications(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(Notification).where(*_inbox(user.id))
        .order_by(Notification.created_at.desc(), Notification.id)
    )
    return [notification_out(n) for n in result.scalars().all()]


@router.get("/unread-count")
async def unread_count(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    count = (await db.execute(
        select(func.count(Notification.id)).where(*_inbox(user.id), Notification.is_read.is_(False))
    )).scalar() or 0
    return {"count": count}


# ============================================================
# MARK READ
# ============================================================

@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    notification = await _get_own(db, user, notification_id)
    was_read = bool(notification.is_read)
    notification.is_read = True
    await db.commit()

    out = notification_out(notification)
    await audit.updated(EntityType.NOTIFICATION, out.id, {"is_read": was_read}, {"is_read": True})
    return out


@router.post("/read-all")
async def mark_all_read(
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        update(Notification)
        .where(*_inbox(user.id), Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await db.commit()
    marked = result.rowcount or 0
    await audit.updated(
        EntityType.NOTIFICATION, None, None, {"is_read": True}, metadata={"marked": marked},
    )
    return {"marked": marked}


# ============================================================
# DELETE
# ============================================================

@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Soft delete; the row is kept but hidden from the inbox"""
    notification = await _get_own(db, user, notification_id)
    old = notification_out(notification)
    notification.is_deleted = True
    await db.commit()
    await audit.deleted(EntityType.NOTIFICATION, old.id, old)
    return Response(status_code=204)
