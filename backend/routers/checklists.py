# routers/checklists.py — Checklists on cards, their items and item assignees
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access import (
    AccessRole, Operation, require_card, require_checklist, require_item, resolve_user_role,
)
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import ConflictError, NotFoundError, ValidationError
from models import (
    Board, Checklist, ChecklistItem, ChecklistItemMember, Comment, User, EntityType, as_utc,
)
from notification_service import notify_assignment, notify_item_completed
from positions import apply_positions, load_siblings, next_position, reorder
from schemas import (
    ChecklistOut, ChecklistItemOut, UserSummary,
    checklist_out, item_out, user_summary,
)

router = APIRouter(prefix="/api/v1", tags=["Checklists"])


# ============================================================
# SCHEMAS
# ============================================================

class ChecklistCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class ItemCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)
    parent_item_id: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def normalise_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class ItemUpdate(BaseModel):
    content: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)
    completed: Optional[bool] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def normalise_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class PositionMove(BaseModel):
    position: int = Field(..., ge=0)


class ItemMemberAdd(BaseModel):
    user_id: str


# ============================================================
# HELPERS
# ============================================================

async def _item_members(db: AsyncSession, item_ids: List[str]) -> dict:
    if not item_ids:
        return {}
    rows = (await db.execute(
        select(ChecklistItemMember).where(ChecklistItemMember.item_id.in_(item_ids))
    )).scalars().all()
    by_item: dict = {}
    for m in rows:
        by_item.setdefault(m.item_id, []).append(m.user_id)
    return by_item


async def _checklist_with_items(db: AsyncSession, checklist: Checklist) -> ChecklistOut:
    items = await load_siblings(db, ChecklistItem, ChecklistItem.checklist_id == checklist.id)
    members = await _item_members(db, [i.id for i in items])
    return checklist_out(checklist, [item_out(i, members.get(i.id)) for i in items])


async def _board_user(db: AsyncSession, board: Board, user_id: str, field: str) -> User:
    """A user who can at least read the board, for assignment"""
    target = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not target or await resolve_user_role(db, target, board) is AccessRole.NONE:
        raise ValidationError.for_field(field, "User is not a member of this board")
    return target


# ============================================================
# CHECKLISTS
# ============================================================

@router.get("/cards/{card_id}/checklists", response_model=List[ChecklistOut])
async def list_checklists(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.READ)
    checklists = await load_siblings(db, Checklist, Checklist.card_id == card_id)
    return [await _checklist_with_items(db, c) for c in checklists]


@router.post("/cards/{card_id}/checklists", response_model=ChecklistOut, status_code=201)
async def create_checklist(
    card_id: str,
    data: ChecklistCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    position = await next_position(db, Checklist.position, Checklist.card_id == card_id)
    checklist = Checklist(card_id=card_id, title=data.title, position=position)
    db.add(checklist)
    await db.commit()
    await db.refresh(checklist)
    out = checklist_out(checklist)
    await audit.created(EntityType.CHECKLIST, out.id, out)
    return out


@router.get("/checklists/{checklist_id}", response_model=ChecklistOut)
async def get_checklist(
    checklist_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    checklist, _, _ = await require_checklist(db, user, checklist_id, Operation.READ)
    return await _checklist_with_items(db, checklist)


@router.patch("/checklists/{checklist_id}", response_model=ChecklistOut)
async def rename_checklist(
    checklist_id: str,
    data: ChecklistCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    checklist, _, _ = await require_checklist(db, user, checklist_id, Operation.EDIT_CONTENT)
    old = checklist_out(checklist)
    checklist.title = data.title
    await db.commit()
    out = await _checklist_with_items(db, checklist)
    await audit.updated(EntityType.CHECKLIST, checklist_id, old, checklist_out(checklist))
    return out


@router.post("/checklists/{checklist_id}/move", response_model=List[ChecklistOut])
async def move_checklist(
    checklist_id: str,
    data: PositionMove,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    checklist, card, _ = await require_checklist(db, user, checklist_id, Operation.MOVE)
    old = checklist_out(checklist)
    siblings = await load_siblings(db, Checklist, Checklist.card_id == card.id)
    apply_positions(siblings, reorder(siblings, checklist_id, data.position))
    await db.commit()
    result = [checklist_out(c) for c in sorted(siblings, key=lambda c: c.position)]
    await audit.updated(EntityType.CHECKLIST, checklist_id, old, checklist_out(checklist))
    return result


@router.delete("/checklists/{checklist_id}", status_code=204)
async def delete_checklist(
    checklist_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    checklist, _, _ = await require_checklist(db, user, checklist_id, Operation.EDIT_CONTENT)
    old = checklist_out(checklist)
    item_ids = select(ChecklistItem.id).where(ChecklistItem.checklist_id == checklist_id)
    await db.execute(
        update(Comment).where(Comment.checklist_item_id.in_(item_ids)).values(checklist_item_id=None)
    )
    await db.delete(checklist)
    await db.commit()
    await audit.deleted(EntityType.CHECKLIST, checklist_id, old)
    return Response(status_code=204)


# ============================================================
# ITEMS
# ============================================================

@router.get("/checklists/{checklist_id}/items", response_model=List[ChecklistItemOut])
async def list_items(
    checklist_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    checklist, _, _ = await require_checklist(db, user, checklist_id, Operation.READ)
    return (await _checklist_with_items(db, checklist)).items


@router.post("/checklists/{checklist_id}/items", response_model=ChecklistItemOut, status_code=201)
async def create_item(
    checklist_id: str,
    data: ItemCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Add an item (or a sub-item under ``parent_item_id``) at the end"""
    _, card, board = await require_checklist(db, user, checklist_id, Operation.EDIT_CONTENT)

    if data.parent_item_id:
        parent = (await db.execute(
            select(ChecklistItem).where(ChecklistItem.id == data.parent_item_id)
        )).scalar_one_or_none()
        if not parent or parent.checklist_id != checklist_id:
            raise ValidationError.for_field("parent_item_id", "Parent item must belong to the same checklist")
        if parent.parent_item_id is not None:
            raise ValidationError.for_field("parent_item_id", "Sub-items cannot have their own sub-items")
    if data.assignee_id:
        await _board_user(db, board, data.assignee_id, "assignee_id")

    position = await next_position(
        db, ChecklistItem.position,
        ChecklistItem.checklist_id == checklist_id,
        ChecklistItem.parent_item_id.is_(None) if data.parent_item_id is None
        else ChecklistItem.parent_item_id == data.parent_item_id,
    )
    item = ChecklistItem(checklist_id=checklist_id, position=position, **data.model_dump())
    db.add(item)
    await db.flush()
    if data.assignee_id:
        notify_assignment(db, data.assignee_id, user.id, user.display_name, board.id, card, item)
    await db.commit()
    await db.refresh(item)
    out = item_out(item)
    await audit.created(EntityType.CHECKLIST_ITEM, out.id, out)
    return out


@router.patch("/checklist-items/{item_id}", response_model=ChecklistItemOut)
async def update_item(
    item_id: str,
    data: ItemUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    item, _, card, board = await require_item(db, user, item_id, Operation.EDIT_CONTENT)
    changes = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k in ("description", "assignee_id", "due_date")
    }

    previous_assignee = item.assignee_id
    if changes.get("assignee_id"):
        await _board_user(db, board, changes["assignee_id"], "assignee_id")

    old = item_out(item)
    newly_completed = changes.get("completed") is True and not item.completed
    for field, value in changes.items():
        setattr(item, field, value)

    if "assignee_id" in changes and changes["assignee_id"] != previous_assignee:
        if previous_assignee:
            notify_assignment(db, previous_assignee, user.id, user.display_name, board.id, card, item, assigned=False)
        if changes["assignee_id"]:
            notify_assignment(db, changes["assignee_id"], user.id, user.display_name, board.id, card, item)
    if newly_completed:
        await notify_item_completed(db, item, card, board, user.id, user.display_name)

    await db.commit()
    await db.refresh(item)
    out = item_out(item, (await _item_members(db, [item_id])).get(item_id))
    await audit.updated(EntityType.CHECKLIST_ITEM, item_id, old, out)
    return out


@router.post("/checklist-items/{item_id}/move", response_model=ChecklistItemOut)
async def move_item(
    item_id: str,
    data: PositionMove,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Reorder an item among its siblings (same checklist, same parent)"""
    item, checklist, _, _ = await require_item(db, user, item_id, Operation.MOVE)
    old = item_out(item)
    parent_clause = (
        ChecklistItem.parent_item_id.is_(None) if item.parent_item_id is None
        else ChecklistItem.parent_item_id == item.parent_item_id
    )
    siblings = await load_siblings(db, ChecklistItem, ChecklistItem.checklist_id == checklist.id, parent_clause)
    apply_positions(siblings, reorder(siblings, item_id, data.position))
    await db.commit()
    out = item_out(item)
    await audit.updated(EntityType.CHECKLIST_ITEM, item_id, old, out)
    return out


@router.delete("/checklist-items/{item_id}", status_code=204)
async def delete_item(
    item_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete an item with its sub-items; comments about it stay on the card"""
    item, _, _, _ = await require_item(db, user, item_id, Operation.EDIT_CONTENT)
    old = item_out(item)
    affected = select(ChecklistItem.id).where(
        (ChecklistItem.id == item_id) | (ChecklistItem.parent_item_id == item_id)
    )
    await db.execute(
        update(Comment).where(Comment.checklist_item_id.in_(affected)).values(checklist_item_id=None)
    )
    await db.delete(item)
    await db.commit()
    await audit.deleted(EntityType.CHECKLIST_ITEM, item_id, old)
    return Response(status_code=204)


# ============================================================
# ITEM MEMBERS
# ============================================================

@router.get("/checklist-items/{item_id}/members", response_model=List[UserSummary])
async def list_item_members(
    item_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_item(db, user, item_id, Operation.READ)
    result = await db.execute(
        select(User).join(ChecklistItemMember, ChecklistItemMember.user_id == User.id)
        .where(ChecklistItemMember.item_id == item_id).order_by(User.username)
    )
    return [user_summary(u) for u in result.scalars().all()]


@router.post("/checklist-items/{item_id}/members", response_model=UserSummary, status_code=201)
async def add_item_member(
    item_id: str,
    data: ItemMemberAdd,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    item, _, card, board = await require_item(db, user, item_id, Operation.EDIT_CONTENT)
    target = await _board_user(db, board, data.user_id, "user_id")

    existing = (await db.execute(
        select(ChecklistItemMember).where(
            ChecklistItemMember.item_id == item_id, ChecklistItemMember.user_id == data.user_id,
        )
    )).scalar_one_or_none()
    if existing:
        raise ConflictError("User is already assigned to this item")

    db.add(ChecklistItemMember(item_id=item_id, user_id=data.user_id))
    notify_assignment(db, data.user_id, user.id, user.display_name, board.id, card, item)
    out = user_summary(target)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User is already assigned to this item")

    await audit.created(EntityType.CHECKLIST_ITEM_MEMBER, item_id, {"item_id": item_id, "user_id": out.id})
    return out


@router.delete("/checklist-items/{item_id}/members/{user_id}", status_code=204)
async def remove_item_member(
    item_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    item, _, card, board = await require_item(db, user, item_id, Operation.EDIT_CONTENT)
    link = (await db.execute(
        select(ChecklistItemMember).where(
            ChecklistItemMember.item_id == item_id, ChecklistItemMember.user_id == user_id,
        )
    )).scalar_one_or_none()
    if not link:
        raise NotFoundError("User is not assigned to this item")

    await db.delete(link)
    notify_assignment(db, user_id, user.id, user.display_name, board.id, card, item, assigned=False)
    await db.commit()
    await audit.deleted(EntityType.CHECKLIST_ITEM_MEMBER, item_id, {"item_id": item_id, "user_id": user_id})
    return Response(status_code=204)
