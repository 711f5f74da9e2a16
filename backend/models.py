# models.py — Relational entity store for the Kanban service
# - UUID string primary keys everywhere
# - Two system roles (admin, user) plus per-board membership roles
# - Sibling collections ordered by an integer `position`
# - Append-only audit log

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Date, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, backref

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(dt):
    """Treat naive datetimes as UTC; convert aware ones to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    USER = "user"


class MemberRole(str, PyEnum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class NotificationType(str, PyEnum):
    TASK_ASSIGNED = "task_assigned"
    TASK_UNASSIGNED = "task_unassigned"
    MENTION = "mention"
    INVITATION = "invitation"
    DEADLINE = "deadline"
    TASK_COMPLETED = "task_completed"
    COMMENT = "comment"


class AuditAction(str, PyEnum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    PERMISSION_CHANGE = "PERMISSION_CHANGE"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"


class EntityType(str, PyEnum):
    USER = "user"
    PORTFOLIO = "portfolio"
    BOARD = "board"
    BOARD_MEMBER = "board_member"
    LIST = "list"
    CARD = "card"
    CARD_MEMBER = "card_member"
    CARD_LABEL = "card_label"
    CARD_PRIORITY = "card_priority"
    COMMENT = "comment"
    LABEL = "label"
    PRIORITY = "priority"
    CHECKLIST = "checklist"
    CHECKLIST_ITEM = "checklist_item"
    CHECKLIST_ITEM_MEMBER = "checklist_item_member"
    NOTIFICATION = "notification"
    SESSION = "session"
    DASHBOARD = "dashboard"
    AUDIT_LOG = "audit_log"


# ============================================================
# USERS & SESSIONS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    display_name = Column(String(100), nullable=False)
    avatar_url = Column(String, nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.USER)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_login_at = Column(DateTime(timezone=True), nullable=True)


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    jti = Column(String, unique=True, nullable=False, index=True)  # session id
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)


# ============================================================
# PORTFOLIOS & BOARDS
# ============================================================

class Portfolio(Base):
    """Named grouping of boards owned by one user"""
    __tablename__ = "portfolios"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(20), nullable=False, default="#3B82F6")
    owner_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Board(Base):
    """Workspace containing lists and cards"""
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(20), nullable=False, default="#22C55E")
    archived = Column(Boolean, nullable=False, default=False)
    owner_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    portfolio_id = Column(String, ForeignKey("portfolios.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    lists = relationship(
        "BoardList", back_populates="board", order_by="BoardList.position",
        cascade="save-update, merge, delete",
    )
    labels = relationship("Label", back_populates="board", cascade="save-update, merge, delete")
    priorities = relationship("Priority", back_populates="board", cascade="save-update, merge, delete")
    members = relationship("BoardMember", back_populates="board", cascade="save-update, merge, delete")


class BoardMember(Base):
    __tablename__ = "board_members"

    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    role = Column(SQLEnum(MemberRole), nullable=False, default=MemberRole.VIEWER)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="members")
    user = relationship("User")


# ============================================================
# LISTS & CARDS
# ============================================================

class BoardList(Base):
    """Column of cards inside a board"""
    __tablename__ = "lists"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="lists")
    cards = relationship(
        "Card", back_populates="list", order_by="Card.position",
        cascade="save-update, merge, delete",
    )

    __table_args__ = (
        Index("idx_list_board_pos", "board_id", "position"),
    )


class Card(Base):
    __tablename__ = "cards"

    id = Column(String, primary_key=True, default=new_uuid)
    list_id = Column(String, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    completed = Column(Boolean, nullable=False, default=False)
    archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    list = relationship("BoardList", back_populates="cards")
    comments = relationship(
        "Comment", back_populates="card", order_by="Comment.created_at",
        cascade="save-update, merge, delete",
    )
    checklists = relationship(
        "Checklist", back_populates="card", order_by="Checklist.position",
        cascade="save-update, merge, delete",
    )
    label_links = relationship("CardLabel", back_populates="card", cascade="save-update, merge, delete")
    member_links = relationship("CardMember", back_populates="card", cascade="save-update, merge, delete")
    priority_link = relationship(
        "CardPriority", back_populates="card", uselist=False, cascade="save-update, merge, delete",
    )

    __table_args__ = (
        Index("idx_card_list_pos", "list_id", "position"),
    )


# ============================================================
# LABELS & PRIORITIES
# ============================================================

class Label(Base):
    __tablename__ = "labels"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="labels")
    card_links = relationship("CardLabel", back_populates="label", cascade="save-update, merge, delete")


class CardLabel(Base):
    __tablename__ = "card_labels"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    label_id = Column(String, ForeignKey("labels.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    card = relationship("Card", back_populates="label_links")
    label = relationship("Label", back_populates="card_links")

    __table_args__ = (
        UniqueConstraint("card_id", "label_id", name="uq_card_label"),
    )


class Priority(Base):
    __tablename__ = "priorities"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="priorities")
    card_links = relationship("CardPriority", back_populates="priority", cascade="save-update, merge, delete")


class CardPriority(Base):
    __tablename__ = "card_priorities"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, unique=True)
    priority_id = Column(String, ForeignKey("priorities.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    card = relationship("Card", back_populates="priority_link")
    priority = relationship("Priority", back_populates="card_links")


# ============================================================
# ASSIGNMENTS
# ============================================================

class CardMember(Base):
    """Assignment of a user to a card (responsibility, not access)"""
    __tablename__ = "card_members"

    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    card = relationship("Card", back_populates="member_links")
    user = relationship("User")


class ChecklistItemMember(Base):
    __tablename__ = "checklist_item_members"

    item_id = Column(String, ForeignKey("checklist_items.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    item = relationship("ChecklistItem", back_populates="member_links")
    user = relationship("User")


# ============================================================
# CHECKLISTS
# ============================================================

class Checklist(Base):
    __tablename__ = "checklists"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    card = relationship("Card", back_populates="checklists")
    items = relationship(
        "ChecklistItem", back_populates="checklist", order_by="ChecklistItem.position",
        cascade="save-update, merge, delete",
    )


class ChecklistItem(Base):
    __tablename__ = "checklist_items"

    id = Column(String, primary_key=True, default=new_uuid)
    checklist_id = Column(String, ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_item_id = Column(String, ForeignKey("checklist_items.id", ondelete="CASCADE"), nullable=True, index=True)
    content = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    assignee_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    checklist = relationship("Checklist", back_populates="items")
    sub_items = relationship(
        "ChecklistItem", cascade="save-update, merge, delete", order_by="ChecklistItem.position",
        backref=backref("parent", remote_side=[id]),
    )
    member_links = relationship("ChecklistItemMember", back_populates="item", cascade="save-update, merge, delete")


# ============================================================
# COMMENTS
# ============================================================

class Comment(Base):
    """Comment on a card, optionally about one checklist item.

    ``author_name`` is a snapshot of the author's display name taken at
    creation. It is never refreshed and survives deletion of the author.
    """
    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    checklist_item_id = Column(String, ForeignKey("checklist_items.id", ondelete="SET NULL"), nullable=True, index=True)
    author_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    author_name = Column(String(100), nullable=False, default="Anonymous")
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    card = relationship("Card", back_populates="comments")


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    action_url = Column(String, nullable=True)
    related_card_id = Column(String, ForeignKey("cards.id", ondelete="SET NULL"), nullable=True)
    related_checklist_item_id = Column(String, ForeignKey("checklist_items.id", ondelete="SET NULL"), nullable=True)
    from_user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_notification_user_created", "user_id", "created_at"),
    )


# ============================================================
# AUDIT LOG (append-only)
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    user_id = Column(String, nullable=True, index=True)  # no FK: rows outlive their actor
    session_id = Column(String, nullable=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_id = Column(String, nullable=True, index=True)
    old_data = Column(Text, nullable=True)  # JSON snapshot
    new_data = Column(Text, nullable=True)  # JSON snapshot
    extra_data = Column("metadata", Text, nullable=True)  # JSON

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_user_timestamp", "user_id", "timestamp"),
    )
