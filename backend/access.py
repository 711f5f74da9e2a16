# access.py — Board membership resolution and the access-control gate
#
# Every board-scoped handler goes through the same two steps:
#   1. resolve_board_role() classifies the caller against a board
#   2. authorize() permits or denies the intended operation
# The require_* helpers below load the target row, walk up to its board and
# run both steps, so routers never compare roles themselves.

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from errors import AuthorizationError, NotFoundError
from models import (
    Board, BoardMember, BoardList, Card, Checklist, ChecklistItem, MemberRole, User, UserRole,
)


class AccessRole(str, Enum):
    """Effective role of a user against one board"""
    ADMIN = "admin"
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"
    NONE = "none"


class Operation(str, Enum):
    READ = "read"
    COMMENT = "comment"
    EDIT_CONTENT = "edit-content"
    MOVE = "move"
    MANAGE_MEMBERS = "manage-members"
    DELETE_STRUCTURE = "delete-structure"


POLICY: Dict[AccessRole, FrozenSet[Operation]] = {
    AccessRole.OWNER: frozenset(Operation),
    AccessRole.EDITOR: frozenset({
        Operation.READ, Operation.COMMENT, Operation.EDIT_CONTENT, Operation.MOVE,
    }),
    AccessRole.VIEWER: frozenset({Operation.READ, Operation.COMMENT}),
    AccessRole.NONE: frozenset(),
}


# ============================================================
# MEMBERSHIP RESOLVER
# ============================================================

def classify(
    system_role: str,
    user_id: str,
    board_owner_id: Optional[str],
    membership_role: Optional[str],
) -> AccessRole:
    """Pure role classification from ownership and membership facts"""
    if system_role == UserRole.ADMIN.value:
        return AccessRole.ADMIN
    if board_owner_id is not None and board_owner_id == user_id:
        return AccessRole.OWNER
    if membership_role is None:
        return AccessRole.NONE
    return AccessRole(MemberRole(membership_role).value)


async def _membership_role(db: AsyncSession, board_id: str, user_id: str) -> Optional[str]:
    result = await db.execute(
        select(BoardMember.role).where(
            BoardMember.board_id == board_id, BoardMember.user_id == user_id,
        )
    )
    role = result.scalar_one_or_none()
    if role is None:
        return None
    return role.value if isinstance(role, MemberRole) else role


async def resolve_board_role(db: AsyncSession, user: CurrentUser, board: Board) -> AccessRole:
    membership = None
    if not user.is_admin and board.owner_id != user.id:
        membership = await _membership_role(db, board.id, user.id)
    return classify(user.role, user.id, board.owner_id, membership)


async def resolve_user_role(db: AsyncSession, user: User, board: Board) -> AccessRole:
    """Role of an arbitrary user row (assignee, invitee) on a board"""
    role = user.role.value if isinstance(user.role, UserRole) else user.role
    return classify(role, user.id, board.owner_id, await _membership_role(db, board.id, user.id))


async def resolve_card_access(db: AsyncSession, user: CurrentUser, card_id: str) -> bool:
    """True when the user may read the card.

    Card assignment is informational; visibility follows the board role only.
    """
    card, _, board = await load_card_context(db, card_id)
    role = await resolve_board_role(db, user, board)
    return permits(role, Operation.READ)


# ============================================================
# ACCESS-CONTROL GATE
# ============================================================

def permits(role: AccessRole, operation: Operation) -> bool:
    if role is AccessRole.ADMIN:
        return True
    return operation in POLICY.get(role, frozenset())


def authorize(role: AccessRole, operation: Operation) -> None:
    if not permits(role, operation):
        raise AuthorizationError()


# ============================================================
# LOADERS
# ============================================================

async def get_board_or_404(db: AsyncSession, board_id: str) -> Board:
    board = (await db.execute(select(Board).where(Board.id == board_id))).scalar_one_or_none()
    if not board:
        raise NotFoundError("Board not found")
    return board


async def load_list_context(db: AsyncSession, list_id: str) -> Tuple[BoardList, Board]:
    result = await db.execute(
        select(BoardList, Board)
        .join(Board, Board.id == BoardList.board_id)
        .where(BoardList.id == list_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("List not found")
    return row[0], row[1]


async def load_card_context(db: AsyncSession, card_id: str) -> Tuple[Card, BoardList, Board]:
    result = await db.execute(
        select(Card, BoardList, Board)
        .join(BoardList, BoardList.id == Card.list_id)
        .join(Board, Board.id == BoardList.board_id)
        .where(Card.id == card_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Card not found")
    return row[0], row[1], row[2]


async def load_checklist_context(db: AsyncSession, checklist_id: str) -> Tuple[Checklist, Card, Board]:
    result = await db.execute(
        select(Checklist, Card, Board)
        .join(Card, Card.id == Checklist.card_id)
        .join(BoardList, BoardList.id == Card.list_id)
        .join(Board, Board.id == BoardList.board_id)
        .where(Checklist.id == checklist_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Checklist not found")
    return row[0], row[1], row[2]


async def load_item_context(db: AsyncSession, item_id: str) -> Tuple[ChecklistItem, Checklist, Card, Board]:
    result = await db.execute(
        select(ChecklistItem, Checklist, Card, Board)
        .join(Checklist, Checklist.id == ChecklistItem.checklist_id)
        .join(Card, Card.id == Checklist.card_id)
        .join(BoardList, BoardList.id == Card.list_id)
        .join(Board, Board.id == BoardList.board_id)
        .where(ChecklistItem.id == item_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Checklist item not found")
    return row[0], row[1], row[2], row[3]


# ============================================================
# HANDLER HELPERS (load + resolve + authorize)
# ============================================================

async def require_board(db: AsyncSession, user: CurrentUser, board_id: str, operation: Operation) -> Board:
    board = await get_board_or_404(db, board_id)
    authorize(await resolve_board_role(db, user, board), operation)
    return board


async def require_list(db: AsyncSession, user: CurrentUser, list_id: str, operation: Operation) -> Tuple[BoardList, Board]:
    board_list, board = await load_list_context(db, list_id)
    authorize(await resolve_board_role(db, user, board), operation)
    return board_list, board


async def require_card(db: AsyncSession, user: CurrentUser, card_id: str, operation: Operation) -> Tuple[Card, BoardList, Board]:
    card, board_list, board = await load_card_context(db, card_id)
    authorize(await resolve_board_role(db, user, board), operation)
    return card, board_list, board


async def require_checklist(db: AsyncSession, user: CurrentUser, checklist_id: str, operation: Operation) -> Tuple[Checklist, Card, Board]:
    checklist, card, board = await load_checklist_context(db, checklist_id)
    authorize(await resolve_board_role(db, user, board), operation)
    return checklist, card, board


async def require_item(db: AsyncSession, user: CurrentUser, item_id: str, operation: Operation):
    item, checklist, card, board = await load_item_context(db, item_id)
    authorize(await resolve_board_role(db, user, board), operation)
    return item, checklist, card, board


def accessible_board_ids(user: CurrentUser):
    """Select of board ids the user can read, or None for admins (all boards)"""
    if user.is_admin:
        return None
    member_boards = select(BoardMember.board_id).where(BoardMember.user_id == user.id)
    return select(Board.id).where((Board.owner_id == user.id) | (Board.id.in_(member_boards)))
