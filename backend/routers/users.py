# routers/users.py — User directory, profile updates, roles and deletion
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from audit import AuditRecorder, get_audit
from auth import (
    get_current_user, require_admin, validate_password_strength,
    AuthService, CurrentUser,
)
from database import get_db_session
from errors import AuthorizationError, NotFoundError, ValidationError
from models import (
    User, UserRole, Board, Portfolio, Comment, BoardMember, CardMember,
    ChecklistItem, ChecklistItemMember, Notification, RevokedToken,
    AuditAction, EntityType,
)
from schemas import UserOut, user_out, user_summary

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class UserUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    avatar_url: Optional[str] = Field(None, max_length=500)


class RoleUpdate(BaseModel):
    role: UserRole


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return validate_password_strength(v)


# --- Helpers ---

async def _get_user(db: AsyncSession, user_id: str) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    return user


# ============================================================
# DIRECTORY
# ============================================================

@router.get("")
async def list_users(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """All users; full records for admins, public summaries otherwise"""
    result = await db.execute(select(User).order_by(User.username))
    users = result.scalars().all()
    if user.is_admin:
        return [user_out(u) for u in users]
    return [user_summary(u) for u in users]


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_user(db, user_id)
    if user.is_admin or user.id == user_id:
        return user_out(target)
    return user_summary(target)


# ============================================================
# PROFILE & ROLE
# ============================================================

@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: str,
    data: UserUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Update a profile (self, or any user for admins)"""
    if user.id != user_id and not user.is_admin:
        raise AuthorizationError()

    target = await _get_user(db, user_id)
    old = user_out(target)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(target, field, value)

    await db.commit()
    await db.refresh(target)
    out = user_out(target)
    await audit.updated(EntityType.USER, user_id, old, out)
    return out


@router.patch("/{user_id}/role", response_model=UserOut)
async def change_role(
    user_id: str,
    data: RoleUpdate,
    admin: CurrentUser = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Change a user's system role (admin only)"""
    if admin.id == user_id:
        raise ValidationError.for_field("role", "Administrators cannot change their own role")

    target = await _get_user(db, user_id)
    old = user_out(target)
    target.role = data.role
    await db.commit()
    await db.refresh(target)
    out = user_out(target)
    await audit.record(
        AuditAction.PERMISSION_CHANGE, EntityType.USER, user_id, old=old, new=out,
        metadata={"old_role": old.role, "new_role": out.role},
    )
    return out


@router.post("/{user_id}/change-password")
async def change_password(
    user_id: str,
    data: PasswordChange,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Change a password. The current one is required unless an admin resets someone else's."""
    if user.id != user_id and not user.is_admin:
        raise AuthorizationError()

    target = await _get_user(db, user_id)
    admin_reset = user.is_admin and user.id != user_id
    if not admin_reset:
        if not data.current_password or not AuthService.verify_password(data.current_password, target.password_hash):
            raise ValidationError.for_field("current_password", "Current password is incorrect")

    target.password_hash = AuthService.hash_password(data.new_password)
    await db.commit()
    await audit.record(
        AuditAction.PASSWORD_CHANGE, EntityType.USER, user_id,
        metadata={"admin_reset": admin_reset},
    )
    return {"status": "password_changed"}


# ============================================================
# DELETE
# ============================================================

@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Hard-delete a user. Authored comments keep their author name snapshot."""
    if admin.id == user_id:
        raise ValidationError.for_field("user_id", "You cannot delete your own account")

    target = await _get_user(db, user_id)
    old = user_out(target)

    await db.execute(update(Comment).where(Comment.author_id == user_id).values(author_id=None))
    await db.execute(update(Board).where(Board.owner_id == user_id).values(owner_id=None))
    await db.execute(update(Portfolio).where(Portfolio.owner_id == user_id).values(owner_id=None))
    await db.execute(update(ChecklistItem).where(ChecklistItem.assignee_id == user_id).values(assignee_id=None))
    await db.execute(update(Notification).where(Notification.from_user_id == user_id).values(from_user_id=None))
    for model in (BoardMember, CardMember, ChecklistItemMember, Notification, RevokedToken):
        await db.execute(delete(model).where(model.user_id == user_id))
    await db.delete(target)
    await db.commit()

    await audit.deleted(EntityType.USER, user_id, old)
    return Response(status_code=204)
