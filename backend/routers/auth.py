# routers/auth.py — Registration, login and logout with session cookies
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audit import AuditRecorder, RequestContext, get_audit
from auth import (
    AuthService, UserRegister, UserLogin, CurrentUser,
    get_current_user, get_optional_user,
    SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE, SESSION_EXPIRE_HOURS,
)
from database import get_db_session
from errors import AuthenticationError, AuthorizationError, NotFoundError
from models import User, AuditAction, EntityType
from schemas import user_out, _ts

logger = logging.getLogger("kanban.auth")

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _start_session(response: Response, user: User) -> dict:
    """Mint a session token, set the cookie and return the login payload"""
    token, session_id, expires_at = AuthService.create_session_token(user)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=SESSION_EXPIRE_HOURS * 3600,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    return {
        "user": user_out(user).model_dump(),
        "access_token": token,
        "token_type": "bearer",
        "session_id": session_id,
        "expires_at": _ts(expires_at),
    }


@router.post("/register", status_code=201)
async def register(
    data: UserRegister,
    request: Request,
    response: Response,
    current: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create an account. Open for the very first user, admin-only afterwards."""
    if await AuthService.count_users(db) > 0:
        if current is None:
            raise AuthenticationError()
        if not current.is_admin:
            raise AuthorizationError("Only administrators can register new users")

    user = await AuthService.register_user(data, db)
    out = user_out(user)

    if current is None:
        payload = _start_session(response, user)
        audit = AuditRecorder(db, user.id, payload["session_id"], RequestContext.from_request(request))
    else:
        payload = {"user": out.model_dump()}
        audit = AuditRecorder(db, current.id, current.session_id, RequestContext.from_request(request))

    await audit.created(EntityType.USER, out.id, out, metadata={"first_user": current is None})
    return payload


@router.post("/login")
async def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and start a session"""
    user = await AuthService.authenticate_user(credentials.username, credentials.password, db)
    if not user:
        raise AuthenticationError("Invalid username or password")

    payload = _start_session(response, user)
    audit = AuditRecorder(db, user.id, payload["session_id"], RequestContext.from_request(request))
    await audit.record(AuditAction.LOGIN, EntityType.SESSION, payload["session_id"])
    return payload


@router.post("/logout")
async def logout(
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Revoke the current session and clear the cookie"""
    if user.session_id and user.session_expires_at:
        await AuthService.revoke_token(user.session_id, user.id, user.session_expires_at, db)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    await audit.record(AuditAction.LOGOUT, EntityType.SESSION, user.session_id)
    return {"status": "logged_out"}


@router.get("/me")
async def me(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get the authenticated user's profile"""
    row = (await db.execute(select(User).where(User.id == user.id))).scalar_one_or_none()
    if not row:
        raise NotFoundError("User not found")
    return user_out(row)
