# audit.py — Audit trail recorder
#
# record() is called by handlers after their mutation has committed. It writes
# one append-only AuditLog row and never raises: a failure is rolled back and
# logged on the "kanban.audit" logger so the user-facing response still goes out.

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, get_current_user
from database import get_db_session
from models import AuditAction, AuditLog, EntityType

logger = logging.getLogger("kanban.audit")

REDACTED_KEYS = {"password", "password_hash", "current_password", "new_password"}


@dataclass
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[Request]) -> "RequestContext":
        if request is None:
            return cls()
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else (
            request.client.host if request.client else None
        )
        return cls(
            ip_address=ip,
            user_agent=request.headers.get("user-agent"),
            request_id=getattr(request.state, "request_id", None),
        )


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if k in REDACTED_KEYS else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def serialize_state(state: Any) -> Optional[str]:
    if state is None:
        return None
    if isinstance(state, BaseModel):
        state = state.model_dump(mode="json")
    return json.dumps(_redact(state), default=str)


async def record(
    db: AsyncSession,
    actor_id: Optional[str],
    session_id: Optional[str],
    action: AuditAction,
    entity_type: EntityType,
    entity_id: Optional[str],
    old_state: Any = None,
    new_state: Any = None,
    metadata: Optional[Dict[str, Any]] = None,
    context: Optional[RequestContext] = None,
) -> None:
    context = context or RequestContext()
    try:
        entry = AuditLog(
            user_id=actor_id,
            session_id=session_id,
            action=action,
            entity_type=entity_type.value if isinstance(entity_type, EntityType) else str(entity_type),
            entity_id=str(entity_id) if entity_id is not None else None,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            request_id=context.request_id,
            old_data=serialize_state(old_state),
            new_data=serialize_state(new_state),
            extra_data=serialize_state(metadata),
        )
        db.add(entry)
        await db.commit()
    except Exception:
        logger.exception(
            f"Failed to record audit entry {action} {entity_type}:{entity_id} (actor={actor_id})"
        )
        try:
            await db.rollback()
        except Exception:
            logger.exception("Rollback after audit failure also failed")


class AuditRecorder:
    """Audit recorder bound to the current request's actor and session"""

    def __init__(
        self,
        db: AsyncSession,
        actor_id: Optional[str] = None,
        session_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ):
        self.db = db
        self.actor_id = actor_id
        self.session_id = session_id
        self.context = context or RequestContext()

    async def record(
        self,
        action: AuditAction,
        entity_type: EntityType,
        entity_id: Optional[str] = None,
        old: Any = None,
        new: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await record(
            self.db, self.actor_id, self.session_id, action, entity_type, entity_id,
            old_state=old, new_state=new, metadata=metadata, context=self.context,
        )

    # Convenience wrappers
    async def created(self, entity_type: EntityType, entity_id: str, new: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.record(AuditAction.CREATE, entity_type, entity_id, new=new, metadata=metadata)

    async def updated(self, entity_type: EntityType, entity_id: str, old: Any, new: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.record(AuditAction.UPDATE, entity_type, entity_id, old=old, new=new, metadata=metadata)

    async def deleted(self, entity_type: EntityType, entity_id: str, old: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.record(AuditAction.DELETE, entity_type, entity_id, old=old, metadata=metadata)

    async def viewed(self, entity_type: EntityType, entity_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.record(AuditAction.READ, entity_type, entity_id, metadata=metadata)


async def get_audit(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> AuditRecorder:
    """FastAPI dependency: recorder for the authenticated caller"""
    return AuditRecorder(db, user.id, user.session_id, RequestContext.from_request(request))


def system_audit(db: AsyncSession) -> AuditRecorder:
    """Recorder for system-initiated events (actor is null)"""
    return AuditRecorder(db)
