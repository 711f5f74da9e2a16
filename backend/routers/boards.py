# routers/boards.py — Boards: the unit of sharing and access control
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from access import (
    Operation, accessible_board_ids, authorize, require_board,
    resolve_board_role, get_board_or_404,
)
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Board, BoardList, Card, EntityType
from routers.portfolios import COLOR_PATTERN, get_owned_portfolio
from schemas import BoardOut, board_out

router = APIRouter(prefix="/api/v1/boards", tags=["Boards"])


# ============================================================
# SCHEMAS
# ============================================================

class BoardCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    color: str = Field("#22C55E", pattern=COLOR_PATTERN)
    portfolio_id: Optional[str] = None


class BoardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)
    archived: Optional[bool] = None
    portfolio_id: Optional[str] = None


class BoardDetailOut(BoardOut):
    role: str
    list_count: int = 0
    card_count: int = 0


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("", response_model=List[BoardOut])
async def list_boards(
    archived: Optional[bool] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Boards the caller owns or is a member of (every board for admins)"""
    stmt = select(Board).order_by(Board.created_at)
    visible = accessible_board_ids(user)
    if visible is not None:
        stmt = stmt.where(Board.id.in_(visible))
    if archived is not None:
        stmt = stmt.where(Board.archived.is_(archived))
    result = await db.execute(stmt)
    return [board_out(b) for b in result.scalars().all()]


@router.post("", response_model=BoardOut, status_code=201)
async def create_board(
    data: BoardCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a board; the creator owns it"""
    if data.portfolio_id:
        await get_owned_portfolio(db, user, data.portfolio_id)

    board = Board(owner_id=user.id, **data.model_dump())
    db.add(board)
    await db.commit()
    await db.refresh(board)
    out = board_out(board)
    await audit.created(EntityType.BOARD, out.id, out)
    return out


@router.get("/{board_id}", response_model=BoardDetailOut)
async def get_board(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    board = await get_board_or_404(db, board_id)
    role = await resolve_board_role(db, user, board)
    authorize(role, Operation.READ)

    list_count = (await db.execute(
        select(func.count(BoardList.id)).where(BoardList.board_id == board_id)
    )).scalar() or 0
    card_count = (await db.execute(
        select(func.count(Card.id)).join(BoardList, BoardList.id == Card.list_id)
        .where(BoardList.board_id == board_id)
    )).scalar() or 0

    return BoardDetailOut(
        **board_out(board).model_dump(), role=role.value,
        list_count=list_count, card_count=card_count,
    )


@router.get("/{board_id}/role")
async def get_my_role(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """The caller's resolved role on the board ("none" when they have no access)"""
    role = await resolve_board_role(db, user, await get_board_or_404(db, board_id))
    return {"board_id": board_id, "role": role.value}


@router.patch("/{board_id}", response_model=BoardOut)
async def update_board(
    board_id: str,
    data: BoardUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Rename, recolor, archive/unarchive or move a board between portfolios"""
    board = await require_board(db, user, board_id, Operation.EDIT_CONTENT)
    changes = data.model_dump(exclude_unset=True)
    if changes.get("portfolio_id"):
        await get_owned_portfolio(db, user, changes["portfolio_id"])

    old = board_out(board)
    for field, value in changes.items():
        if value is None and field not in ("description", "portfolio_id"):
            continue
        setattr(board, field, value)

    await db.commit()
    await db.refresh(board)
    out = board_out(board)
    await audit.updated(EntityType.BOARD, board_id, old, out)
    return out


@router.delete("/{board_id}", status_code=204)
async def delete_board(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Hard-delete a board with its lists, cards, labels, priorities and members"""
    board = await require_board(db, user, board_id, Operation.DELETE_STRUCTURE)
    old = board_out(board)
    await db.delete(board)
    await db.commit()
    await audit.deleted(EntityType.BOARD, board_id, old)
    return Response(status_code=204)
