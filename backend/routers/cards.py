# routers/cards.py — Cards: CRUD, completion, details and drag-and-drop moves
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field, ValidationInfo, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from access import Operation, authorize, require_card, require_list, resolve_board_role, load_list_context
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import ValidationError
from models import (
    Card, CardLabel, CardMember, CardPriority, Checklist, ChecklistItem,
    ChecklistItemMember, Comment, Label, Priority, User, EntityType, as_utc,
)
from notification_service import notify_card_completed
from positions import load_siblings, move_between, apply_positions, next_position, reorder
from schemas import (
    CardOut, LabelOut, PriorityOut, UserSummary, ChecklistOut,
    card_out, label_out, priority_out, user_summary, checklist_out, item_out,
)

router = APIRouter(prefix="/api/v1", tags=["Cards"])


# ============================================================
# SCHEMAS
# ============================================================

class CardCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    due_date: Optional[datetime] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("due_date")
    @classmethod
    def normalise_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @field_validator("end_date")
    @classmethod
    def end_after_start(cls, v: Optional[date], info: ValidationInfo) -> Optional[date]:
        start = info.data.get("start_date")
        if v is not None and start is not None and start > v:
            raise ValueError("End date must be on or after the start date")
        return v


class CardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=5000)
    due_date: Optional[datetime] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    completed: Optional[bool] = None
    archived: Optional[bool] = None

    @field_validator("due_date")
    @classmethod
    def normalise_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class CardComplete(BaseModel):
    completed: Optional[bool] = None


class CardMove(BaseModel):
    list_id: Optional[str] = None
    position: Optional[int] = Field(None, ge=0)


class CardDetailOut(CardOut):
    board_id: str
    labels: List[LabelOut] = []
    priority: Optional[PriorityOut] = None
    members: List[UserSummary] = []
    checklists: List[ChecklistOut] = []
    comment_count: int = 0


NULLABLE_FIELDS = {"description", "due_date", "start_date", "end_date"}


# ============================================================
# HELPERS
# ============================================================

async def _card_details(db: AsyncSession, card: Card, board_id: str) -> CardDetailOut:
    labels = (await db.execute(
        select(Label).join(CardLabel, CardLabel.label_id == Label.id)
        .where(CardLabel.card_id == card.id).order_by(Label.name)
    )).scalars().all()
    priority = (await db.execute(
        select(Priority).join(CardPriority, CardPriority.priority_id == Priority.id)
        .where(CardPriority.card_id == card.id)
    )).scalar_one_or_none()
    members = (await db.execute(
        select(User).join(CardMember, CardMember.user_id == User.id)
        .where(CardMember.card_id == card.id).order_by(User.username)
    )).scalars().all()
    comment_count = (await db.execute(
        select(func.count(Comment.id)).where(Comment.card_id == card.id)
    )).scalar() or 0

    checklists = await load_siblings(db, Checklist, Checklist.card_id == card.id)
    checklist_outs = []
    for checklist in checklists:
        items = await load_siblings(db, ChecklistItem, ChecklistItem.checklist_id == checklist.id)
        member_rows = (await db.execute(
            select(ChecklistItemMember).where(
                ChecklistItemMember.item_id.in_([i.id for i in items])
            )
        )).scalars().all() if items else []
        by_item = {}
        for m in member_rows:
            by_item.setdefault(m.item_id, []).append(m.user_id)
        checklist_outs.append(checklist_out(checklist, [item_out(i, by_item.get(i.id)) for i in items]))

    return CardDetailOut(
        **card_out(card).model_dump(),
        board_id=board_id,
        labels=[label_out(l) for l in labels],
        priority=priority_out(priority) if priority else None,
        members=[user_summary(u) for u in members],
        checklists=checklist_outs,
        comment_count=comment_count,
    )


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("/lists/{list_id}/cards", response_model=List[CardOut])
async def list_cards(
    list_id: str,
    archived: Optional[bool] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_list(db, user, list_id, Operation.READ)
    criteria = [Card.list_id == list_id]
    if archived is not None:
        criteria.append(Card.archived.is_(archived))
    cards = await load_siblings(db, Card, *criteria)
    return [card_out(c) for c in cards]


@router.post("/lists/{list_id}/cards", response_model=CardOut, status_code=201)
async def create_card(
    list_id: str,
    data: CardCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Append a card at the bottom of a list"""
    await require_list(db, user, list_id, Operation.EDIT_CONTENT)
    position = await next_position(db, Card.position, Card.list_id == list_id)
    card = Card(list_id=list_id, position=position, **data.model_dump())
    db.add(card)
    await db.commit()
    await db.refresh(card)
    out = card_out(card)
    await audit.created(EntityType.CARD, out.id, out)
    return out


@router.get("/cards/{card_id}", response_model=CardOut)
async def get_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    card, _, _ = await require_card(db, user, card_id, Operation.READ)
    return card_out(card)


@router.get("/cards/{card_id}/details", response_model=CardDetailOut)
async def get_card_details(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Card with labels, priority, members, checklists and comment count"""
    card, _, board = await require_card(db, user, card_id, Operation.READ)
    return await _card_details(db, card, board.id)


@router.patch("/cards/{card_id}", response_model=CardOut)
async def update_card(
    card_id: str,
    data: CardUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    card, _, board = await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    changes = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_FIELDS
    }

    start = changes.get("start_date", card.start_date)
    end = changes.get("end_date", card.end_date)
    if start is not None and end is not None and start > end:
        raise ValidationError.for_field("end_date", "End date must be on or after the start date")

    old = card_out(card)
    newly_completed = changes.get("completed") is True and not card.completed
    for field, value in changes.items():
        setattr(card, field, value)

    if newly_completed:
        await notify_card_completed(db, card, board, user.id, user.display_name)
    await db.commit()
    await db.refresh(card)
    out = card_out(card)
    await audit.updated(EntityType.CARD, card_id, old, out)
    return out


@router.post("/cards/{card_id}/complete", response_model=CardOut)
async def complete_card(
    card_id: str,
    data: Optional[CardComplete] = None,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Set or toggle the completed flag, notifying assignees and owners on completion"""
    card, _, board = await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    old = card_out(card)
    target = data.completed if data and data.completed is not None else not card.completed
    if target and not card.completed:
        await notify_card_completed(db, card, board, user.id, user.display_name)
    card.completed = target
    await db.commit()
    await db.refresh(card)
    out = card_out(card)
    await audit.updated(EntityType.CARD, card_id, old, out, metadata={"completed": target})
    return out


@router.post("/cards/{card_id}/move", response_model=CardOut)
async def move_card(
    card_id: str,
    data: CardMove,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Reorder a card within its list or move it to another list of the same board"""
    card, source_list, board = await require_card(db, user, card_id, Operation.MOVE)
    old = card_out(card)
    target_list_id = data.list_id or source_list.id

    if target_list_id == source_list.id:
        siblings = await load_siblings(db, Card, Card.list_id == source_list.id)
        index = data.position if data.position is not None else len(siblings)
        apply_positions(siblings, reorder(siblings, card_id, index))
    else:
        target_list, target_board = await load_list_context(db, target_list_id)
        if target_board.id != board.id:
            raise ValidationError.for_field("list_id", "Cards can only move between lists of the same board")
        authorize(await resolve_board_role(db, user, target_board), Operation.MOVE)

        source = await load_siblings(db, Card, Card.list_id == source_list.id)
        destination = await load_siblings(db, Card, Card.list_id == target_list.id)
        card.list_id = target_list.id
        mapping = move_between(source, destination, card, data.position)
        apply_positions(source + destination, mapping)

    await db.commit()
    await db.refresh(card)
    out = card_out(card)
    await audit.updated(
        EntityType.CARD, card_id, old, out,
        metadata={"from_list_id": old.list_id, "to_list_id": out.list_id},
    )
    return out


@router.delete("/cards/{card_id}", status_code=204)
async def delete_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a card with its comments, checklists, labels and assignments"""
    card, _, _ = await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    old = card_out(card)
    await db.delete(card)
    await db.commit()
    await audit.deleted(EntityType.CARD, card_id, old)
    return Response(status_code=204)
