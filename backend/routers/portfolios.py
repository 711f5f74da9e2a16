# routers/portfolios.py — Portfolios group boards for their owner
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from access import accessible_board_ids
from audit import AuditRecorder, get_audit
from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import AuthorizationError, NotFoundError
from models import Portfolio, Board, EntityType
from schemas import PortfolioOut, BoardOut, portfolio_out, board_out

router = APIRouter(prefix="/api/v1/portfolios", tags=["Portfolios"])

COLOR_PATTERN = r"^#[0-9A-Fa-f]{3,8}$"


class PortfolioCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    color: str = Field("#3B82F6", pattern=COLOR_PATTERN)


class PortfolioUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)


async def get_owned_portfolio(db: AsyncSession, user: CurrentUser, portfolio_id: str) -> Portfolio:
    """Load a portfolio the caller owns (admins may load any)"""
    portfolio = (await db.execute(
        select(Portfolio).where(Portfolio.id == portfolio_id)
    )).scalar_one_or_none()
    if not portfolio:
        raise NotFoundError("Portfolio not found")
    if not user.is_admin and portfolio.owner_id != user.id:
        raise AuthorizationError()
    return portfolio


@router.get("", response_model=List[PortfolioOut])
async def list_portfolios(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = select(Portfolio).order_by(Portfolio.created_at)
    if not user.is_admin:
        stmt = stmt.where(Portfolio.owner_id == user.id)
    result = await db.execute(stmt)
    return [portfolio_out(p) for p in result.scalars().all()]


@router.post("", response_model=PortfolioOut, status_code=201)
async def create_portfolio(
    data: PortfolioCreate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    portfolio = Portfolio(owner_id=user.id, **data.model_dump())
    db.add(portfolio)
    await db.commit()
    await db.refresh(portfolio)
    out = portfolio_out(portfolio)
    await audit.created(EntityType.PORTFOLIO, out.id, out)
    return out


@router.get("/{portfolio_id}", response_model=PortfolioOut)
async def get_portfolio(
    portfolio_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return portfolio_out(await get_owned_portfolio(db, user, portfolio_id))


@router.get("/{portfolio_id}/boards", response_model=List[BoardOut])
async def list_portfolio_boards(
    portfolio_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Boards in the portfolio that the caller can read"""
    await get_owned_portfolio(db, user, portfolio_id)
    stmt = select(Board).where(Board.portfolio_id == portfolio_id).order_by(Board.created_at)
    visible = accessible_board_ids(user)
    if visible is not None:
        stmt = stmt.where(Board.id.in_(visible))
    result = await db.execute(stmt)
    return [board_out(b) for b in result.scalars().all()]


@router.patch("/{portfolio_id}", response_model=PortfolioOut)
async def update_portfolio(
    portfolio_id: str,
    data: PortfolioUpdate,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    portfolio = await get_owned_portfolio(db, user, portfolio_id)
    old = portfolio_out(portfolio)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None or field == "description":
            setattr(portfolio, field, value)
    await db.commit()
    await db.refresh(portfolio)
    out = portfolio_out(portfolio)
    await audit.updated(EntityType.PORTFOLIO, portfolio_id, old, out)
    return out


@router.delete("/{portfolio_id}", status_code=204)
async def delete_portfolio(
    portfolio_id: str,
    user: CurrentUser = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a portfolio; its boards are detached, not deleted"""
    portfolio = await get_owned_portfolio(db, user, portfolio_id)
    old = portfolio_out(portfolio)
    result = await db.execute(
        update(Board).where(Board.portfolio_id == portfolio_id).values(portfolio_id=None)
    )
    await db.delete(portfolio)
    await db.commit()
    await audit.deleted(EntityType.PORTFOLIO, portfolio_id, old, metadata={"boards_detached": result.rowcount})
    return Response(status_code=204)
