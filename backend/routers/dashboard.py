# routers/dashboard.py — Per-user aggregates across every accessible board
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from access import accessible_board_ids
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import (
    Board, BoardList, BoardMember, Card, Checklist, ChecklistItem, ChecklistItemMember,
    User, EntityType, utcnow,
)
from schemas import CardOut, ChecklistItemOut, UserSummary, card_out, item_out, user_summary

router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])

DUE_SOON_DAYS = 3
RECENT_CARD_LIMIT = 10


class DashboardStats(BaseModel):
    boards: int
    lists: int
    cards: int
    completed_cards: int
    overdue_cards: int
    due_soon_cards: int


class DashboardCard(CardOut):
    board_id: str
    board_title: str
    list_title: str


class DashboardItem(ChecklistItemOut):
    card_id: str
    card_title: str
    board_id: str


def _scoped(stmt, user: CurrentUser):
    """Restrict a statement that already joins Board to the caller's boards"""
    board_ids = accessible_board_ids(user)
    if board_ids is None:
        return stmt
    return stmt.where(Board.id.in_(board_ids))


def _card_rows():
    return (
        select(Card, BoardList, Board)
        .join(BoardList, BoardList.id == Card.list_id)
        .join(Board, Board.id == BoardList.board_id)
    )


def _dashboard_card(card: Card, board_list: BoardList, board: Board) -> DashboardCard:
    return DashboardCard(
        **card_out(card).model_dump(),
        board_id=board.id, board_title=board.title, list_title=board_list.title,
    )


async def _count(db: AsyncSession, user: CurrentUser, stmt) -> int:
    return (await db.execute(_scoped(stmt, user))).scalar() or 0


# ============================================================
# STATS
# ============================================================

@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    now = utcnow()
    cards = (
        select(func.count(Card.id))
        .join(BoardList, BoardList.id == Card.list_id)
        .join(Board, Board.id == BoardList.board_id)
        .where(Card.archived.is_(False))
    )
    open_cards = cards.where(Card.completed.is_(False), Card.due_date.is_not(None))

    stats = DashboardStats(
        boards=await _count(db, user, select(func.count(Board.id)).where(Board.archived.is_(False))),
        lists=await _count(
            db, user,
            select(func.count(BoardList.id)).join(Board, Board.id == BoardList.board_id)
            .where(Board.archived.is_(False)),
        ),
        cards=await _count(db, user, cards),
        completed_cards=await _count(db, user, cards.where(Card.completed.is_(True))),
        overdue_cards=await _count(db, user, open_cards.where(Card.due_date < now)),
        due_soon_cards=await _count(
            db, user,
            open_cards.where(Card.due_date >= now, Card.due_date <= now + timedelta(days=DUE_SOON_DAYS)),
        ),
    )
    await audit.viewed(EntityType.DASHBOARD, "stats")
    return stats


# ============================================================
# COLLABORATORS
# ============================================================

@router.get("/collaborators", response_model=List[UserSummary])
async def dashboard_collaborators(
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Distinct users who share at least one board with the caller"""
    shared = select(BoardMember.board_id).where(BoardMember.user_id == user.id)
    my_boards = select(Board.id).where(or_(Board.owner_id == user.id, Board.id.in_(shared)))

    members = select(BoardMember.user_id).where(BoardMember.board_id.in_(my_boards))
    owners = select(Board.owner_id).where(Board.id.in_(my_boards), Board.owner_id.is_not(None))

    result = await db.execute(
        select(User)
        .where(User.id != user.id, or_(User.id.in_(members), User.id.in_(owners)))
        .order_by(User.username)
    )
    out = [user_summary(u) for u in result.scalars().all()]
    await audit.viewed(EntityType.DASHBOARD, "collaborators", metadata={"count": len(out)})
    return out


# ============================================================
# CARDS
# ============================================================

@router.get("/recent-cards", response_model=List[DashboardCard])
async def dashboard_recent_cards(
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = _scoped(_card_rows(), user).where(Card.archived.is_(False))
    stmt = stmt.order_by(Card.updated_at.desc(), Card.id).limit(RECENT_CARD_LIMIT)
    out = [_dashboard_card(*row) for row in (await db.execute(stmt)).all()]
    await audit.viewed(EntityType.DASHBOARD, "recent-cards", metadata={"count": len(out)})
    return out


@router.get("/overdue-cards", response_model=List[DashboardCard])
async def dashboard_overdue_cards(
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Incomplete, unarchived cards whose due date has passed"""
    stmt = _scoped(_card_rows(), user).where(
        Card.due_date.is_not(None),
        Card.due_date < utcnow(),
        Card.completed.is_(False),
        Card.archived.is_(False),
    ).order_by(Card.due_date, Card.id)
    out = [_dashboard_card(*row) for row in (await db.execute(stmt)).all()]
    await audit.viewed(EntityType.DASHBOARD, "overdue-cards", metadata={"count": len(out)})
    return out


# ============================================================
# CHECKLIST ITEMS
# ============================================================

@router.get("/checklist-items", response_model=List[DashboardItem])
async def dashboard_checklist_items(
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Incomplete checklist items assigned to the caller, soonest due first"""
    assigned = select(ChecklistItemMember.item_id).where(ChecklistItemMember.user_id == user.id)
    stmt = (
        select(ChecklistItem, Card, BoardList.board_id)
        .join(Checklist, Checklist.id == ChecklistItem.checklist_id)
        .join(Card, Card.id == Checklist.card_id)
        .join(BoardList, BoardList.id == Card.list_id)
        .join(Board, Board.id == BoardList.board_id)
        .where(
            ChecklistItem.completed.is_(False),
            Card.archived.is_(False),
            or_(ChecklistItem.assignee_id == user.id, ChecklistItem.id.in_(assigned)),
        )
        .order_by(ChecklistItem.due_date.is_(None), ChecklistItem.due_date, ChecklistItem.id)
    )
    out: List[DashboardItem] = []
    for item, card, board_id in (await db.execute(_scoped(stmt, user))).all():
        out.append(DashboardItem(
            **item_out(item).model_dump(), card_id=card.id, card_title=card.title, board_id=board_id,
        ))
    await audit.viewed(EntityType.DASHBOARD, "checklist-items", metadata={"count": len(out)})
    return out
