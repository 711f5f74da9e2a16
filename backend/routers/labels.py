# routers/labels.py — Board labels and priorities, and their card associations
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access import Operation, require_board, require_card, authorize, resolve_board_role, get_board_or_404
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import NotFoundError, ValidationError
from models import BoardList, Card, CardLabel, CardPriority, Label, Priority, EntityType
from schemas import (
    LabelOut, PriorityOut, CardLabelOut,
    label_out, priority_out, card_label_out,
)

router = APIRouter(prefix="/api/v1", tags=["Labels & Priorities"])


# ============================================================
# SCHEMAS
# ============================================================

class TagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(..., min_length=1, max_length=20)


class TagUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, min_length=1, max_length=20)


class CardLabelCreate(BaseModel):
    label_id: str


class CardPrioritySet(BaseModel):
    priority_id: str


# ============================================================
# HELPERS
# ============================================================

async def _require_tag(db: AsyncSession, user: CurrentUser, model, tag_id: str, operation: Operation):
    tag = (await db.execute(select(model).where(model.id == tag_id))).scalar_one_or_none()
    if not tag:
        raise NotFoundError(f"{'Label' if model is Label else 'Priority'} not found")
    board = await get_board_or_404(db, tag.board_id)
    authorize(await resolve_board_role(db, user, board), operation)
    return tag


async def _tag_on_board(db: AsyncSession, model, tag_id: str, board_id: str, field: str):
    tag = (await db.execute(select(model).where(model.id == tag_id))).scalar_one_or_none()
    if not tag or tag.board_id != board_id:
        raise ValidationError.for_field(field, "Must belong to the card's board")
    return tag


# ============================================================
# LABELS
# ============================================================

@router.get("/boards/{board_id}/labels", response_model=List[LabelOut])
async def list_labels(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_board(db, user, board_id, Operation.READ)
    result = await db.execute(select(Label).where(Label.board_id == board_id).order_by(Label.name))
    return [label_out(l) for l in result.scalars().all()]


@router.post("/boards/{board_id}/labels", response_model=LabelOut, status_code=201)
async def create_label(
    board_id: str,
    data: TagCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    await require_board(db, user, board_id, Operation.EDIT_CONTENT)
    label = Label(board_id=board_id, name=data.name, color=data.color)
    db.add(label)
    await db.commit()
    await db.refresh(label)
    out = label_out(label)
    await audit.created(EntityType.LABEL, out.id, out)
    return out


@router.patch("/labels/{label_id}", response_model=LabelOut)
async def update_label(
    label_id: str,
    data: TagUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    label = await _require_tag(db, user, Label, label_id, Operation.EDIT_CONTENT)
    old = label_out(label)
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(label, field, value)
    await db.commit()
    await db.refresh(label)
    out = label_out(label)
    await audit.updated(EntityType.LABEL, label_id, old, out)
    return out


@router.delete("/labels/{label_id}", status_code=204)
async def delete_label(
    label_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a label and remove it from every card"""
    label = await _require_tag(db, user, Label, label_id, Operation.EDIT_CONTENT)
    old = label_out(label)
    await db.delete(label)
    await db.commit()
    await audit.deleted(EntityType.LABEL, label_id, old)
    return Response(status_code=204)


@router.get("/boards/{board_id}/card-labels", response_model=List[CardLabelOut])
async def list_board_card_labels(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Every card/label association on the board, for rendering the whole board at once"""
    await require_board(db, user, board_id, Operation.READ)
    result = await db.execute(
        select(CardLabel)
        .join(Card, Card.id == CardLabel.card_id)
        .join(BoardList, BoardList.id == Card.list_id)
        .where(BoardList.board_id == board_id)
    )
    return [card_label_out(cl) for cl in result.scalars().all()]


@router.get("/cards/{card_id}/labels", response_model=List[LabelOut])
async def list_card_labels(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.READ)
    result = await db.execute(
        select(Label).join(CardLabel, CardLabel.label_id == Label.id)
        .where(CardLabel.card_id == card_id).order_by(Label.name)
    )
    return [label_out(l) for l in result.scalars().all()]


@router.post("/cards/{card_id}/labels", response_model=CardLabelOut, status_code=201)
async def add_card_label(
    card_id: str,
    data: CardLabelCreate,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Tag a card. Re-adding an existing label returns the existing association (200)."""
    _, _, board = await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    await _tag_on_board(db, Label, data.label_id, board.id, "label_id")

    existing_stmt = select(CardLabel).where(CardLabel.card_id == card_id, CardLabel.label_id == data.label_id)
    existing = (await db.execute(existing_stmt)).scalar_one_or_none()
    if existing:
        response.status_code = 200
        return card_label_out(existing)

    link = CardLabel(card_id=card_id, label_id=data.label_id)
    db.add(link)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with an identical request
        await db.rollback()
        response.status_code = 200
        return card_label_out((await db.execute(existing_stmt)).scalar_one())

    out = card_label_out(link)
    await audit.created(EntityType.CARD_LABEL, out.id, out)
    return out


@router.delete("/cards/{card_id}/labels/{label_id}", status_code=204)
async def remove_card_label(
    card_id: str,
    label_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    link = (await db.execute(
        select(CardLabel).where(CardLabel.card_id == card_id, CardLabel.label_id == label_id)
    )).scalar_one_or_none()
    if not link:
        raise NotFoundError("Label is not on this card")
    old = card_label_out(link)
    await db.delete(link)
    await db.commit()
    await audit.deleted(EntityType.CARD_LABEL, old.id, old)
    return Response(status_code=204)


# ============================================================
# PRIORITIES
# ============================================================

@router.get("/boards/{board_id}/priorities", response_model=List[PriorityOut])
async def list_priorities(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_board(db, user, board_id, Operation.READ)
    result = await db.execute(select(Priority).where(Priority.board_id == board_id).order_by(Priority.name))
    return [priority_out(p) for p in result.scalars().all()]


@router.post("/boards/{board_id}/priorities", response_model=PriorityOut, status_code=201)
async def create_priority(
    board_id: str,
    data: TagCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    await require_board(db, user, board_id, Operation.EDIT_CONTENT)
    priority = Priority(board_id=board_id, name=data.name, color=data.color)
    db.add(priority)
    await db.commit()
    await db.refresh(priority)
    out = priority_out(priority)
    await audit.created(EntityType.PRIORITY, out.id, out)
    return out


@router.patch("/priorities/{priority_id}", response_model=PriorityOut)
async def update_priority(
    priority_id: str,
    data: TagUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    priority = await _require_tag(db, user, Priority, priority_id, Operation.EDIT_CONTENT)
    old = priority_out(priority)
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(priority, field, value)
    await db.commit()
    await db.refresh(priority)
    out = priority_out(priority)
    await audit.updated(EntityType.PRIORITY, priority_id, old, out)
    return out


@router.delete("/priorities/{priority_id}", status_code=204)
async def delete_priority(
    priority_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    priority = await _require_tag(db, user, Priority, priority_id, Operation.EDIT_CONTENT)
    old = priority_out(priority)
    await db.delete(priority)
    await db.commit()
    await audit.deleted(EntityType.PRIORITY, priority_id, old)
    return Response(status_code=204)


@router.get("/cards/{card_id}/priority", response_model=Optional[PriorityOut])
async def get_card_priority(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.READ)
    priority = (await db.execute(
        select(Priority).join(CardPriority, CardPriority.priority_id == Priority.id)
        .where(CardPriority.card_id == card_id)
    )).scalar_one_or_none()
    return priority_out(priority) if priority else None


@router.put("/cards/{card_id}/priority", response_model=PriorityOut)
async def set_card_priority(
    card_id: str,
    data: CardPrioritySet,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Set the card's priority, replacing any previous one"""
    _, _, board = await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    priority = await _tag_on_board(db, Priority, data.priority_id, board.id, "priority_id")

    link = (await db.execute(select(CardPriority).where(CardPriority.card_id == card_id))).scalar_one_or_none()
    old = {"card_id": card_id, "priority_id": link.priority_id} if link else None
    if link:
        link.priority_id = priority.id
    else:
        db.add(CardPriority(card_id=card_id, priority_id=priority.id))
    await db.commit()

    out = priority_out(priority)
    new = {"card_id": card_id, "priority_id": out.id}
    if old:
        await audit.updated(EntityType.CARD_PRIORITY, card_id, old, new)
    else:
        await audit.created(EntityType.CARD_PRIORITY, card_id, new)
    return out


@router.delete("/cards/{card_id}/priority", status_code=204)
async def clear_card_priority(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    link = (await db.execute(select(CardPriority).where(CardPriority.card_id == card_id))).scalar_one_or_none()
    if not link:
        raise NotFoundError("Card has no priority")
    old = {"card_id": card_id, "priority_id": link.priority_id}
    await db.delete(link)
    await db.commit()
    await audit.deleted(EntityType.CARD_PRIORITY, card_id, old)
    return Response(status_code=204)
