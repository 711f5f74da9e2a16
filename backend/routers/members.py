# routers/members.py — Board memberships (access) and card assignments (responsibility)
from typing import List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access import (
    AccessRole, Operation, authorize, get_board_or_404, require_board, require_card,
    resolve_board_role, resolve_user_role,
)
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import ConflictError, NotFoundError, ValidationError
from models import BoardMember, CardMember, MemberRole, User, AuditAction, EntityType
from notification_service import notify_assignment, notify_invitation
from schemas import MemberOut, UserSummary, user_summary

router = APIRouter(prefix="/api/v1", tags=["Members"])


class MemberAdd(BaseModel):
    user_id: str
    role: MemberRole = MemberRole.VIEWER


class MemberRoleUpdate(BaseModel):
    role: MemberRole


class CardMemberAdd(BaseModel):
    user_id: str


def _member_out(u: User, board_id: str, role: str, is_owner: bool = False) -> MemberOut:
    return MemberOut(**user_summary(u).model_dump(), board_id=board_id, role=role, is_owner=is_owner)


async def _get_user(db: AsyncSession, user_id: str) -> User:
    target = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not target:
        raise NotFoundError("User not found")
    return target


async def _get_membership(db: AsyncSession, board_id: str, user_id: str) -> BoardMember:
    membership = (await db.execute(
        select(BoardMember).where(BoardMember.board_id == board_id, BoardMember.user_id == user_id)
    )).scalar_one_or_none()
    if not membership:
        raise NotFoundError("Membership not found")
    return membership


# ============================================================
# BOARD MEMBERS
# ============================================================

@router.get("/boards/{board_id}/members", response_model=List[MemberOut])
async def list_board_members(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """The board's creator (as owner) followed by every explicit member"""
    board = await require_board(db, user, board_id, Operation.READ)
    out = []
    if board.owner_id:
        owner = (await db.execute(select(User).where(User.id == board.owner_id))).scalar_one_or_none()
        if owner:
            out.append(_member_out(owner, board_id, MemberRole.OWNER.value, is_owner=True))

    result = await db.execute(
        select(BoardMember, User).join(User, User.id == BoardMember.user_id)
        .where(BoardMember.board_id == board_id).order_by(User.username)
    )
    for membership, member in result.all():
        if member.id == board.owner_id:
            continue
        role = membership.role.value if isinstance(membership.role, MemberRole) else membership.role
        out.append(_member_out(member, board_id, role))
    return out


@router.post("/boards/{board_id}/members", response_model=MemberOut, status_code=201)
async def add_board_member(
    board_id: str,
    data: MemberAdd,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Invite a user to the board with a role"""
    board = await require_board(db, user, board_id, Operation.MANAGE_MEMBERS)
    target = await _get_user(db, data.user_id)
    if target.id == board.owner_id:
        raise ConflictError("User already owns this board")

    existing = (await db.execute(
        select(BoardMember).where(BoardMember.board_id == board_id, BoardMember.user_id == target.id)
    )).scalar_one_or_none()
    if existing:
        raise ConflictError("User is already a member of this board")

    db.add(BoardMember(board_id=board_id, user_id=target.id, role=data.role))
    notify_invitation(db, target.id, user.id, user.display_name, board, data.role.value)
    out = _member_out(target, board_id, data.role.value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User is already a member of this board")

    await audit.created(EntityType.BOARD_MEMBER, f"{board_id}:{out.id}", out)
    return out


@router.patch("/boards/{board_id}/members/{user_id}", response_model=MemberOut)
async def update_board_member(
    board_id: str,
    user_id: str,
    data: MemberRoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    await require_board(db, user, board_id, Operation.MANAGE_MEMBERS)
    membership = await _get_membership(db, board_id, user_id)
    target = await _get_user(db, user_id)

    old_role = membership.role.value if isinstance(membership.role, MemberRole) else membership.role
    membership.role = data.role
    await db.commit()

    out = _member_out(target, board_id, data.role.value)
    await audit.record(
        AuditAction.PERMISSION_CHANGE, EntityType.BOARD_MEMBER, f"{board_id}:{user_id}",
        old={"role": old_role}, new={"role": out.role},
    )
    return out


@router.delete("/boards/{board_id}/members/{user_id}", status_code=204)
async def remove_board_member(
    board_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Remove a member; members may always leave a board themselves"""
    board = await get_board_or_404(db, board_id)
    if user.id != user_id:
        authorize(await resolve_board_role(db, user, board), Operation.MANAGE_MEMBERS)

    membership = await _get_membership(db, board_id, user_id)
    old_role = membership.role.value if isinstance(membership.role, MemberRole) else membership.role
    await db.delete(membership)
    await db.commit()
    await audit.deleted(
        EntityType.BOARD_MEMBER, f"{board_id}:{user_id}",
        {"board_id": board_id, "user_id": user_id, "role": old_role},
    )
    return Response(status_code=204)


# ============================================================
# CARD MEMBERS
# ============================================================

@router.get("/cards/{card_id}/members", response_model=List[UserSummary])
async def list_card_members(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_card(db, user, card_id, Operation.READ)
    result = await db.execute(
        select(User).join(CardMember, CardMember.user_id == User.id)
        .where(CardMember.card_id == card_id).order_by(User.username)
    )
    return [user_summary(u) for u in result.scalars().all()]


@router.post("/cards/{card_id}/members", response_model=UserSummary, status_code=201)
async def add_card_member(
    card_id: str,
    data: CardMemberAdd,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Assign a board member to a card"""
    card, _, board = await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    target = await _get_user(db, data.user_id)
    if await resolve_user_role(db, target, board) is AccessRole.NONE:
        raise ValidationError.for_field("user_id", "User is not a member of this board")

    existing = (await db.execute(
        select(CardMember).where(CardMember.card_id == card_id, CardMember.user_id == target.id)
    )).scalar_one_or_none()
    if existing:
        raise ConflictError("User is already assigned to this card")

    db.add(CardMember(card_id=card_id, user_id=target.id))
    notify_assignment(db, target.id, user.id, user.display_name, board.id, card)
    out = user_summary(target)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User is already assigned to this card")

    await audit.created(EntityType.CARD_MEMBER, f"{card_id}:{out.id}", {"card_id": card_id, "user_id": out.id})
    return out


@router.delete("/cards/{card_id}/members/{user_id}", status_code=204)
async def remove_card_member(
    card_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    card, _, board = await require_card(db, user, card_id, Operation.EDIT_CONTENT)
    link = (await db.execute(
        select(CardMember).where(CardMember.card_id == card_id, CardMember.user_id == user_id)
    )).scalar_one_or_none()
    if not link:
        raise NotFoundError("User is not assigned to this card")

    await db.delete(link)
    notify_assignment(db, user_id, user.id, user.display_name, board.id, card, assigned=False)
    await db.commit()
    await audit.deleted(EntityType.CARD_MEMBER, f"{card_id}:{user_id}", {"card_id": card_id, "user_id": user_id})
    return Response(status_code=204)
