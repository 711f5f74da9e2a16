# schemas.py — Response models shared across routers
import json
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel

from models import (
    User, Portfolio, Board, BoardList, Card, Label, CardLabel, Priority,
    Comment, Checklist, ChecklistItem, Notification, AuditLog,
)


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, (datetime, date)) else str(dt)


def _val(v: Any) -> Any:
    return v.value if hasattr(v, "value") else v


# ============================================================
# USERS
# ============================================================

class UserOut(BaseModel):
    id: str
    username: str
    email: str
    display_name: str
    avatar_url: Optional[str] = None
    role: str
    created_at: Optional[str] = None


class UserSummary(BaseModel):
    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None


def user_out(u: User) -> UserOut:
    return UserOut(
        id=u.id, username=u.username, email=u.email,
        display_name=u.display_name, avatar_url=u.avatar_url,
        role=_val(u.role), created_at=_ts(u.created_at),
    )


def user_summary(u: User) -> UserSummary:
    return UserSummary(id=u.id, username=u.username, display_name=u.display_name, avatar_url=u.avatar_url)


# ============================================================
# PORTFOLIOS & BOARDS
# ============================================================

class PortfolioOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    color: str
    owner_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def portfolio_out(p: Portfolio) -> PortfolioOut:
    return PortfolioOut(
        id=p.id, name=p.name, description=p.description, color=p.color,
        owner_id=p.owner_id, created_at=_ts(p.created_at), updated_at=_ts(p.updated_at),
    )


class BoardOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    color: str
    archived: bool
    owner_id: Optional[str] = None
    portfolio_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def board_out(b: Board) -> BoardOut:
    return BoardOut(
        id=b.id, title=b.title, description=b.description, color=b.color,
        archived=bool(b.archived), owner_id=b.owner_id, portfolio_id=b.portfolio_id,
        created_at=_ts(b.created_at), updated_at=_ts(b.updated_at),
    )


class MemberOut(UserSummary):
    board_id: str
    role: str
    is_owner: bool = False


# ============================================================
# LISTS & CARDS
# ============================================================

class ListOut(BaseModel):
    id: str
    board_id: str
    title: str
    position: int
    created_at: Optional[str] = None


def list_out(bl: BoardList) -> ListOut:
    return ListOut(id=bl.id, board_id=bl.board_id, title=bl.title, position=bl.position, created_at=_ts(bl.created_at))


class CardOut(BaseModel):
    id: str
    list_id: str
    title: str
    description: Optional[str] = None
    position: int
    due_date: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    completed: bool
    archived: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def card_out(c: Card) -> CardOut:
    return CardOut(
        id=c.id, list_id=c.list_id, title=c.title, description=c.description,
        position=c.position, due_date=_ts(c.due_date),
        start_date=_ts(c.start_date), end_date=_ts(c.end_date),
        completed=bool(c.completed), archived=bool(c.archived),
        created_at=_ts(c.created_at), updated_at=_ts(c.updated_at),
    )


# ============================================================
# LABELS & PRIORITIES
# ============================================================

class LabelOut(BaseModel):
    id: str
    board_id: str
    name: str
    color: str


def label_out(l: Label) -> LabelOut:
    return LabelOut(id=l.id, board_id=l.board_id, name=l.name, color=l.color)


class CardLabelOut(BaseModel):
    id: str
    card_id: str
    label_id: str


def card_label_out(cl: CardLabel) -> CardLabelOut:
    return CardLabelOut(id=cl.id, card_id=cl.card_id, label_id=cl.label_id)


class PriorityOut(BaseModel):
    id: str
    board_id: str
    name: str
    color: str


def priority_out(p: Priority) -> PriorityOut:
    return PriorityOut(id=p.id, board_id=p.board_id, name=p.name, color=p.color)


# ============================================================
# COMMENTS & CHECKLISTS
# ============================================================

class CommentOut(BaseModel):
    id: str
    card_id: str
    checklist_item_id: Optional[str] = None
    author_id: Optional[str] = None
    author_name: str
    content: str
    created_at: Optional[str] = None


def comment_out(c: Comment) -> CommentOut:
    return CommentOut(
        id=c.id, card_id=c.card_id, checklist_item_id=c.checklist_item_id,
        author_id=c.author_id, author_name=c.author_name, content=c.content,
        created_at=_ts(c.created_at),
    )


class ChecklistItemOut(BaseModel):
    id: str
    checklist_id: str
    parent_item_id: Optional[str] = None
    content: str
    description: Optional[str] = None
    position: int
    completed: bool
    assignee_id: Optional[str] = None
    due_date: Optional[str] = None
    member_ids: List[str] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def item_out(i: ChecklistItem, member_ids: Optional[List[str]] = None) -> ChecklistItemOut:
    return ChecklistItemOut(
        id=i.id, checklist_id=i.checklist_id, parent_item_id=i.parent_item_id,
        content=i.content, description=i.description, position=i.position,
        completed=bool(i.completed), assignee_id=i.assignee_id, due_date=_ts(i.due_date),
        member_ids=member_ids or [],
        created_at=_ts(i.created_at), updated_at=_ts(i.updated_at),
    )


class ChecklistOut(BaseModel):
    id: str
    card_id: str
    title: str
    position: int
    items: List[ChecklistItemOut] = []
    created_at: Optional[str] = None


def checklist_out(c: Checklist, items: Optional[List[ChecklistItemOut]] = None) -> ChecklistOut:
    return ChecklistOut(
        id=c.id, card_id=c.card_id, title=c.title, position=c.position,
        items=items or [], created_at=_ts(c.created_at),
    )


# ============================================================
# NOTIFICATIONS & AUDIT
# ============================================================

class NotificationOut(BaseModel):
    id: str
    type: str
    title: str
    message: str
    is_read: bool
    action_url: Optional[str] = None
    related_card_id: Optional[str] = None
    related_checklist_item_id: Optional[str] = None
    from_user_id: Optional[str] = None
    created_at: Optional[str] = None


def notification_out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id, type=_val(n.type), title=n.title, message=n.message,
        is_read=bool(n.is_read), action_url=n.action_url,
        related_card_id=n.related_card_id,
        related_checklist_item_id=n.related_checklist_item_id,
        from_user_id=n.from_user_id, created_at=_ts(n.created_at),
    )


class AuditLogOut(BaseModel):
    id: str
    timestamp: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    session_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    old_data: Optional[Any] = None
    new_data: Optional[Any] = None
    metadata: Optional[Any] = None


def audit_out(a: AuditLog, username: Optional[str] = None) -> AuditLogOut:
    def _load(raw):
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    return AuditLogOut(
        id=a.id, timestamp=_ts(a.timestamp), user_id=a.user_id, username=username,
        session_id=a.session_id, action=_val(a.action), entity_type=a.entity_type,
        entity_id=a.entity_id, ip_address=a.ip_address, user_agent=a.user_agent,
        old_data=_load(a.old_data), new_data=_load(a.new_data), metadata=_load(a.extra_data),
    )
