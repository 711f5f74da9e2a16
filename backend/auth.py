# auth.py — Session authentication for the Kanban service
# Features:
# - bcrypt password hashing
# - Signed session tokens (JWT) with JTI used as the session id
# - Session carried in an HttpOnly cookie, Bearer header accepted too
# - Token revocation on logout
# - Brute force protection

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import AuthenticationError, AuthorizationError, ConflictError
from models import User, UserRole, RevokedToken, utcnow

logger = logging.getLogger("kanban.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key; sessions will not "
        "survive a restart. Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
SESSION_EXPIRE_HOURS = int(os.getenv("SESSION_EXPIRE_HOURS", "24"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "kanban_session")
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 128
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

COMMON_PASSWORDS = {
    "123456", "password", "12345678", "qwerty", "123456789", "12345",
    "1234567", "111111", "abc123", "password1", "iloveyou", "admin",
    "welcome", "monkey", "letmein", "dragon", "senha123", "000000",
}

security = HTTPBearer(auto_error=False)

# In-memory brute force tracker, per process
_login_attempts: Dict[str, list] = defaultdict(list)


def validate_password_strength(v: str) -> str:
    if len(v) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(v) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")
    if v.lower() in COMMON_PASSWORDS:
        raise ValueError("Password is too common")
    return v


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str
    display_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class UserLogin(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class CurrentUser(BaseModel):
    id: str
    username: str
    email: str
    display_name: str
    role: str
    session_id: Optional[str] = None
    session_expires_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password, session token and account helpers"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_session_token(user: User, expires_delta: Optional[timedelta] = None) -> Tuple[str, str, datetime]:
        """Return (token, session_id, expires_at) for a user"""
        now = datetime.now(timezone.utc)
        expires_at = now + (expires_delta or timedelta(hours=SESSION_EXPIRE_HOURS))
        session_id = str(uuid.uuid4())
        payload = {
            "sub": user.id,
            "role": user.role.value if isinstance(user.role, UserRole) else user.role,
            "exp": expires_at,
            "iat": now,
            "type": "access",
            "jti": session_id,
        }
        return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM), session_id, expires_at

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise AuthenticationError("Session expired")
        except JWTError:
            raise AuthenticationError("Invalid session")

    @staticmethod
    def _check_brute_force(username: str) -> None:
        """Check if login attempts exceed threshold"""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        _login_attempts[username] = [t for t in _login_attempts[username] if t > cutoff]
        if len(_login_attempts[username]) >= MAX_LOGIN_ATTEMPTS:
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes.",
            )

    @staticmethod
    def _record_failed_attempt(username: str) -> None:
        _login_attempts[username].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(username: str) -> None:
        _login_attempts.pop(username, None)

    @staticmethod
    async def count_users(db: AsyncSession) -> int:
        return (await db.execute(select(func.count(User.id)))).scalar() or 0

    @staticmethod
    async def register_user(data: UserRegister, db: AsyncSession) -> User:
        """Create an account; the first account ever created becomes admin"""
        existing = await db.execute(
            select(User).where((User.username == data.username) | (User.email == data.email))
        )
        if existing.scalars().first():
            raise ConflictError("Username or email already in use")

        is_first = await AuthService.count_users(db) == 0
        user = User(
            username=data.username,
            email=data.email,
            display_name=data.display_name,
            password_hash=AuthService.hash_password(data.password),
            role=UserRole.ADMIN if is_first else UserRole.USER,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        if is_first:
            logger.info(f"First user {user.username} registered and promoted to admin")
        return user

    @staticmethod
    async def authenticate_user(username: str, password: str, db: AsyncSession) -> Optional[User]:
        AuthService._check_brute_force(username)

        result = await db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            AuthService._record_failed_attempt(username)
            return None

        AuthService._clear_attempts(username)
        user.last_login_at = utcnow()
        await db.commit()
        return user

    @staticmethod
    async def is_token_revoked(jti: str, db: AsyncSession) -> bool:
        result = await db.execute(select(RevokedToken).where(RevokedToken.jti == jti))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def revoke_token(jti: str, user_id: str, expires_at: datetime, db: AsyncSession) -> None:
        db.add(RevokedToken(jti=jti, user_id=user_id, expires_at=expires_at))
        await db.commit()


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE_NAME)


async def _resolve_session(token: str, db: AsyncSession) -> CurrentUser:
    payload = AuthService.verify_token(token)

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid session")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise AuthenticationError("Session has been revoked")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid session")

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise AuthenticationError("User not found")

    exp = payload.get("exp")
    return CurrentUser(
        id=user.id,
        username=user.username,
        email=user.email,
        display_name=user.display_name,
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
        session_id=jti,
        session_expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    token = _extract_token(request, credentials)
    if not token:
        raise AuthenticationError()
    return await _resolve_session(token, db)


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[CurrentUser]:
    token = _extract_token(request, credentials)
    if not token:
        return None
    return await _resolve_session(token, db)


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise AuthorizationError()
    return user
