# notification_service.py — Automatic notifications and the overdue scan
import logging
from datetime import timedelta
from typing import Dict, Iterable, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audit import system_audit
from models import (
    Board, BoardList, BoardMember, Card, CardMember, Checklist, ChecklistItem,
    ChecklistItemMember, MemberRole, Notification, NotificationType,
    AuditAction, EntityType, as_utc, utcnow,
)

logger = logging.getLogger("kanban.notifications")

DEADLINE_REPEAT_HOURS = 24


def notify(
    db: AsyncSession,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    from_user_id: Optional[str] = None,
    card_id: Optional[str] = None,
    item_id: Optional[str] = None,
    action_url: Optional[str] = None,
) -> Notification:
    """Stage a notification on the session; the caller commits"""
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        from_user_id=from_user_id,
        related_card_id=card_id,
        related_checklist_item_id=item_id,
        action_url=action_url,
    )
    db.add(notification)
    return notification


def card_url(board_id: str, card_id: str) -> str:
    return f"/boards/{board_id}?card={card_id}"


def notify_many(db: AsyncSession, recipients: Iterable[str], actor_id: Optional[str], **kwargs) -> int:
    count = 0
    for user_id in set(recipients):
        if user_id and user_id != actor_id:
            notify(db, user_id, from_user_id=actor_id, **kwargs)
            count += 1
    return count


async def board_owner_ids(db: AsyncSession, board: Board) -> Set[str]:
    result = await db.execute(
        select(BoardMember.user_id).where(
            BoardMember.board_id == board.id, BoardMember.role == MemberRole.OWNER,
        )
    )
    owners = set(result.scalars().all())
    if board.owner_id:
        owners.add(board.owner_id)
    return owners


async def card_member_ids(db: AsyncSession, card_id: str) -> Set[str]:
    result = await db.execute(select(CardMember.user_id).where(CardMember.card_id == card_id))
    return set(result.scalars().all())


async def item_member_ids(db: AsyncSession, item: ChecklistItem) -> Set[str]:
    result = await db.execute(select(ChecklistItemMember.user_id).where(ChecklistItemMember.item_id == item.id))
    members = set(result.scalars().all())
    if item.assignee_id:
        members.add(item.assignee_id)
    return members


# ============================================================
# EVENT NOTIFICATIONS
# ============================================================

async def notify_card_completed(db: AsyncSession, card: Card, board: Board, actor_id: str, actor_name: str) -> int:
    """Tell assignees and board owners that a card was completed (never the actor)"""
    recipients = await card_member_ids(db, card.id) | await board_owner_ids(db, board)
    return notify_many(
        db, recipients, actor_id,
        type=NotificationType.TASK_COMPLETED,
        title="Card completed",
        message=f'{actor_name} completed "{card.title}" on {board.title}',
        card_id=card.id,
        action_url=card_url(board.id, card.id),
    )


async def notify_item_completed(db: AsyncSession, item: ChecklistItem, card: Card, board: Board, actor_id: str, actor_name: str) -> int:
    recipients = await item_member_ids(db, item) | await board_owner_ids(db, board)
    return notify_many(
        db, recipients, actor_id,
        type=NotificationType.TASK_COMPLETED,
        title="Checklist item completed",
        message=f'{actor_name} completed "{item.content}" on card "{card.title}"',
        card_id=card.id,
        item_id=item.id,
        action_url=card_url(board.id, card.id),
    )


def notify_assignment(
    db: AsyncSession,
    user_id: str,
    actor_id: str,
    actor_name: str,
    board_id: str,
    card: Card,
    item: Optional[ChecklistItem] = None,
    assigned: bool = True,
) -> Optional[Notification]:
    if user_id == actor_id:
        return None
    subject = f'checklist item "{item.content}"' if item else f'card "{card.title}"'
    if assigned:
        ntype, title, verb = NotificationType.TASK_ASSIGNED, "New assignment", "assigned you to"
    else:
        ntype, title, verb = NotificationType.TASK_UNASSIGNED, "Assignment removed", "removed you from"
    return notify(
        db, user_id, ntype, title, f"{actor_name} {verb} {subject}",
        from_user_id=actor_id, card_id=card.id, item_id=item.id if item else None,
        action_url=card_url(board_id, card.id),
    )


def notify_invitation(db: AsyncSession, user_id: str, actor_id: str, actor_name: str, board: Board, role: str) -> Optional[Notification]:
    if user_id == actor_id:
        return None
    return notify(
        db, user_id, NotificationType.INVITATION, "Board invitation",
        f'{actor_name} added you to "{board.title}" as {role}',
        from_user_id=actor_id, action_url=f"/boards/{board.id}",
    )


# ============================================================
# OVERDUE SCAN
# ============================================================

async def _recently_notified(db: AsyncSession, user_id: str, card_id: Optional[str], item_id: Optional[str], since) -> bool:
    stmt = select(Notification.id).where(
        Notification.user_id == user_id,
        Notification.type == NotificationType.DEADLINE,
        Notification.created_at >= since,
    )
    if item_id:
        stmt = stmt.where(Notification.related_checklist_item_id == item_id)
    else:
        stmt = stmt.where(
            Notification.related_card_id == card_id,
            Notification.related_checklist_item_id.is_(None),
        )
    return (await db.execute(stmt.limit(1))).first() is not None


async def run_overdue_check(db: AsyncSession) -> Dict[str, int]:
    """Notify members of overdue cards and assignees of overdue checklist items.

    A user is reminded about the same card or item at most once per
    DEADLINE_REPEAT_HOURS. Every reminder is audited as a system event.
    """
    now = utcnow()
    since = now - timedelta(hours=DEADLINE_REPEAT_HOURS)
    staged = []  # (notification, days_overdue)

    cards = (await db.execute(
        select(Card, BoardList.board_id)
        .join(BoardList, BoardList.id == Card.list_id)
        .where(
            Card.due_date.is_not(None),
            Card.due_date < now,
            Card.completed.is_(False),
            Card.archived.is_(False),
        )
    )).all()

    for card, board_id in cards:
        days = max((now - as_utc(card.due_date)).days, 0)
        for user_id in await card_member_ids(db, card.id):
            if await _recently_notified(db, user_id, card.id, None, since):
                continue
            n = notify(
                db, user_id, NotificationType.DEADLINE, "Card overdue",
                f'"{card.title}" is overdue by {days} day(s)',
                card_id=card.id, action_url=card_url(board_id, card.id),
            )
            staged.append((n, days))

    items = (await db.execute(
        select(ChecklistItem, Card, BoardList.board_id)
        .join(Checklist, Checklist.id == ChecklistItem.checklist_id)
        .join(Card, Card.id == Checklist.card_id)
        .join(BoardList, BoardList.id == Card.list_id)
        .where(
            ChecklistItem.due_date.is_not(None),
            ChecklistItem.due_date < now,
            ChecklistItem.completed.is_(False),
            Card.archived.is_(False),
        )
    )).all()

    for item, card, board_id in items:
        days = max((now - as_utc(item.due_date)).days, 0)
        for user_id in await item_member_ids(db, item):
            if await _recently_notified(db, user_id, card.id, item.id, since):
                continue
            n = notify(
                db, user_id, NotificationType.DEADLINE, "Checklist item overdue",
                f'"{item.content}" on card "{card.title}" is overdue by {days} day(s)',
                card_id=card.id, item_id=item.id, action_url=card_url(board_id, card.id),
            )
            staged.append((n, days))

    await db.commit()
    entries = [
        (n.id, {"user_id": n.user_id, "type": NotificationType.DEADLINE.value}, {
            "reason": "deadline",
            "card_id": n.related_card_id,
            "checklist_item_id": n.related_checklist_item_id,
            "days_overdue": days,
        })
        for n, days in staged
    ]

    audit = system_audit(db)
    for notification_id, new, metadata in entries:
        await audit.record(
            AuditAction.CREATE, EntityType.NOTIFICATION, notification_id, new=new, metadata=metadata,
        )

    if staged:
        logger.info(f"Overdue check sent {len(staged)} deadline notification(s)")
    return {
        "overdue_cards": len(cards),
        "overdue_items": len(items),
        "notifications_created": len(staged),
    }
