# positions.py — Integer ordering for sibling collections
#
# Lists in a board, cards in a list, checklists in a card and items in a
# checklist each carry a non-negative integer `position`. New rows append at
# max + 1; a reorder rewrites the whole sibling set as 0..n-1.

from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError


def _sorted(siblings: Iterable[Any]) -> List[Any]:
    return sorted(siblings, key=lambda s: (s.position, str(s.id)))


def append_position(siblings: Iterable[Any]) -> int:
    positions = [s.position for s in siblings]
    return max(positions) + 1 if positions else 0


def reorder(siblings: Sequence[Any], moved_id: str, new_index: int) -> Dict[str, int]:
    """Move one sibling to ``new_index`` and renumber the whole set.

    ``new_index`` past the end places the item last. Raises NotFoundError if
    ``moved_id`` is not among the siblings.
    """
    ordered = _sorted(siblings)
    ids = [s.id for s in ordered]
    if moved_id not in ids:
        raise NotFoundError("Item not found among siblings")
    ids.remove(moved_id)
    index = max(0, min(new_index, len(ids)))
    ids.insert(index, moved_id)
    return {sid: i for i, sid in enumerate(ids)}


def compact(siblings: Sequence[Any]) -> Dict[str, int]:
    """Renumber siblings 0..n-1 keeping their relative order"""
    return {s.id: i for i, s in enumerate(_sorted(siblings))}


def apply_positions(siblings: Iterable[Any], mapping: Dict[str, int]) -> int:
    """Write new positions onto rows; returns how many changed"""
    changed = 0
    for s in siblings:
        new = mapping.get(s.id)
        if new is not None and s.position != new:
            s.position = new
            changed += 1
    return changed


def move_between(
    source: Sequence[Any],
    destination: Sequence[Any],
    moved: Any,
    new_index: Optional[int] = None,
) -> Dict[str, int]:
    """Positions after moving ``moved`` from ``source`` into ``destination``.

    ``moved`` must already be re-parented by the caller. Without an index it
    appends to the destination; the source is compacted either way.
    """
    remaining = [s for s in source if s.id != moved.id]
    others = [s for s in destination if s.id != moved.id]
    mapping = compact(remaining)
    if new_index is None:
        mapping[moved.id] = append_position(others)
        mapping.update({s.id: s.position for s in others})
    else:
        mapping.update(reorder(others + [moved], moved.id, new_index))
    return mapping


# ============================================================
# DB HELPERS
# ============================================================

async def next_position(db: AsyncSession, column, *criteria) -> int:
    """max(position) + 1 among rows matching ``criteria``, or 0"""
    result = await db.execute(select(func.max(column)).where(*criteria))
    current = result.scalar()
    return 0 if current is None else current + 1


async def load_siblings(db: AsyncSession, model, *criteria) -> List[Any]:
    result = await db.execute(select(model).where(*criteria).order_by(model.position, model.id))
    return list(result.scalars().all())
