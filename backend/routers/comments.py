# routers/comments.py — Card comments
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access import (
    Operation, authorize, load_card_context, permits, require_card, resolve_board_role,
)
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import AuthorizationError, NotFoundError, ValidationError
from models import Checklist, ChecklistItem, Comment, EntityType
from schemas import CommentOut, comment_out

router = APIRouter(prefix="/api/v1", tags=["Comments"])


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    checklist_item_id: Optional[str] = None


@router.get("/cards/{card_id}/comments", response_model=List[CommentOut])
async def list_comments(
    card_id: str,
    checklist_item_id: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Card-level comments, oldest first; or only those about one checklist item"""
    await require_card(db, user, card_id, Operation.READ)
    stmt = select(Comment).where(Comment.card_id == card_id)
    if checklist_item_id:
        stmt = stmt.where(Comment.checklist_item_id == checklist_item_id)
    else:
        stmt = stmt.where(Comment.checklist_item_id.is_(None))
    result = await db.execute(stmt.order_by(Comment.created_at, Comment.id))
    return [comment_out(c) for c in result.scalars().all()]


@router.post("/cards/{card_id}/comments", response_model=CommentOut, status_code=201)
async def create_comment(
    card_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.COMMENT)

    if data.checklist_item_id:
        item_card = (await db.execute(
            select(Checklist.card_id)
            .join(ChecklistItem, ChecklistItem.checklist_id == Checklist.id)
            .where(ChecklistItem.id == data.checklist_item_id)
        )).scalar_one_or_none()
        if item_card != card_id:
            raise ValidationError.for_field("checklist_item_id", "Checklist item does not belong to this card")

    comment = Comment(
        card_id=card_id,
        checklist_item_id=data.checklist_item_id,
        author_id=user.id,
        author_name=user.display_name or user.username,
        content=data.content,
    )
    db.add(comment)
    await db.commit()
    await db.refresh(comment)
    out = comment_out(comment)
    await audit.created(EntityType.COMMENT, out.id, out)
    return out


@router.delete("/comments/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Authors delete their own comments; board owners and admins delete any"""
    comment = (await db.execute(select(Comment).where(Comment.id == comment_id))).scalar_one_or_none()
    if not comment:
        raise NotFoundError("Comment not found")

    _, _, board = await load_card_context(db, comment.card_id)
    role = await resolve_board_role(db, user, board)
    if comment.author_id == user.id:
        authorize(role, Operation.COMMENT)
    elif not permits(role, Operation.DELETE_STRUCTURE):
        raise AuthorizationError()

    old = comment_out(comment)
    await db.delete(comment)
    await db.commit()
    await audit.deleted(EntityType.COMMENT, comment_id, old)
    return Response(status_code=204)
