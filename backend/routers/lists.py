# routers/lists.py — Lists inside a board and their ordering
from typing import List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access import Operation, require_board, require_list
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import BoardList, EntityType
from positions import apply_positions, load_siblings, next_position, reorder
from schemas import ListOut, list_out

router = APIRouter(prefix="/api/v1", tags=["Lists"])


class ListCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class ListUpdate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class PositionMove(BaseModel):
    position: int = Field(..., ge=0)


@router.get("/boards/{board_id}/lists", response_model=List[ListOut])
async def list_lists(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_board(db, user, board_id, Operation.READ)
    siblings = await load_siblings(db, BoardList, BoardList.board_id == board_id)
    return [list_out(bl) for bl in siblings]


@router.post("/boards/{board_id}/lists", response_model=ListOut, status_code=201)
async def create_list(
    board_id: str,
    data: ListCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Append a list at the end of the board"""
    await require_board(db, user, board_id, Operation.EDIT_CONTENT)
    position = await next_position(db, BoardList.position, BoardList.board_id == board_id)
    board_list = BoardList(board_id=board_id, title=data.title, position=position)
    db.add(board_list)
    await db.commit()
    await db.refresh(board_list)
    out = list_out(board_list)
    await audit.created(EntityType.LIST, out.id, out)
    return out


@router.patch("/lists/{list_id}", response_model=ListOut)
async def update_list(
    list_id: str,
    data: ListUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    board_list, _ = await require_list(db, user, list_id, Operation.EDIT_CONTENT)
    old = list_out(board_list)
    board_list.title = data.title
    await db.commit()
    await db.refresh(board_list)
    out = list_out(board_list)
    await audit.updated(EntityType.LIST, list_id, old, out)
    return out


@router.post("/lists/{list_id}/move", response_model=List[ListOut])
async def move_list(
    list_id: str,
    data: PositionMove,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Move a list to a new index; returns the board's lists in their new order"""
    board_list, board = await require_list(db, user, list_id, Operation.MOVE)
    old = list_out(board_list)
    siblings = await load_siblings(db, BoardList, BoardList.board_id == board.id)
    apply_positions(siblings, reorder(siblings, list_id, data.position))
    await db.commit()

    ordered = sorted(siblings, key=lambda s: s.position)
    result = [list_out(s) for s in ordered]
    new = next(r for r in result if r.id == list_id)
    await audit.updated(EntityType.LIST, list_id, old, new, metadata={"moved_to": data.position})
    return result


@router.delete("/lists/{list_id}", status_code=204)
async def delete_list(
    list_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a list together with its cards"""
    board_list, _ = await require_list(db, user, list_id, Operation.DELETE_STRUCTURE)
    old = list_out(board_list)
    await db.delete(board_list)
    await db.commit()
    await audit.deleted(EntityType.LIST, list_id, old)
    return Response(status_code=204)
