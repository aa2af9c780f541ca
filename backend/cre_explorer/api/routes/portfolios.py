"""
User portfolios: named sets of BBLs with per-lot notes.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cre_explorer.api.deps import get_current_user_id
from cre_explorer.core.database import get_db
from cre_explorer.models.portfolio import Portfolio, PortfolioProperty
from cre_explorer.services import repository
from cre_explorer.services.records import PropertyRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["portfolios"])


class PortfolioRequest(BaseModel):
    name: str = Field("My Portfolio", min_length=1, max_length=255)
    description: Optional[str] = None


class PortfolioUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class PortfolioPropertyRequest(BaseModel):
    bbl: str = Field(..., min_length=1, max_length=10)
    notes: Optional[str] = None


class NotesUpdate(BaseModel):
    notes: Optional[str] = None


class PortfolioEntry(BaseModel):
    bbl: str
    notes: Optional[str] = None
    added_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PortfolioSummaryResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    property_count: int = 0
    entries: list[PortfolioEntry] = []


class PortfolioListResponse(BaseModel):
    portfolios: list[PortfolioSummaryResponse]


class PortfolioLot(PropertyRecord):
    portfolio_notes: Optional[str] = None
    added_at: Optional[datetime] = None


class PortfolioDetailResponse(PortfolioSummaryResponse):
    properties: list[PortfolioLot] = []


def _summary(portfolio: Portfolio) -> PortfolioSummaryResponse:
    entries = [PortfolioEntry.model_validate(pp) for pp in portfolio.properties]
    return PortfolioSummaryResponse(
        id=portfolio.id,
        name=portfolio.name,
        description=portfolio.description,
        created_at=portfolio.created_at,
        updated_at=portfolio.updated_at,
        property_count=len(entries),
        entries=entries,
    )


def _get_owned_portfolio(db: Session, portfolio_id: int, user_id: str) -> Portfolio:
    with repository.storage_errors("get portfolio"):
        portfolio = db.query(Portfolio).filter(
            Portfolio.id == portfolio_id,
            Portfolio.user_id == user_id,
        ).first()
    if not portfolio:
        raise HTTPException(status_code=404, detail="Portfolio not found")
    return portfolio


@router.get("", response_model=PortfolioListResponse)
async def list_portfolios(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    with repository.storage_errors("list portfolios"):
        portfolios = (
            db.query(Portfolio)
            .filter(Portfolio.user_id == user_id)
            .order_by(Portfolio.created_at.desc(), Portfolio.id.desc())
            .all()
        )
        return PortfolioListResponse(portfolios=[_summary(p) for p in portfolios])


@router.post("", response_model=PortfolioSummaryResponse, status_code=201)
async def create_portfolio(
    request: PortfolioRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    portfolio = Portfolio(user_id=user_id, name=request.name, description=request.description)
    db.add(portfolio)
    repository.commit(db, "create portfolio")
    db.refresh(portfolio)
    logger.info(f"Created portfolio {portfolio.id} for user {user_id}")
    return _summary(portfolio)


@router.get("/{portfolio_id}", response_model=PortfolioDetailResponse)
async def get_portfolio(
    portfolio_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Portfolio with full property records merged with the per-lot notes."""
    portfolio = _get_owned_portfolio(db, portfolio_id, user_id)
    summary = _summary(portfolio)
    entries = {e.bbl: e for e in summary.entries}
    records = repository.fetch_properties_by_bbl(db, entries.keys())
    properties = [
        PortfolioLot(
            **record.model_dump(),
            portfolio_notes=entries[record.bbl].notes,
            added_at=entries[record.bbl].added_at,
        )
        for record in records
    ]
    return PortfolioDetailResponse(**summary.model_dump(), properties=properties)


@router.put("/{portfolio_id}", response_model=PortfolioSummaryResponse)
async def update_portfolio(
    portfolio_id: int,
    request: PortfolioUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    portfolio = _get_owned_portfolio(db, portfolio_id, user_id)
    if request.name is not None:
        portfolio.name = request.name
    if request.description is not None:
        portfolio.description = request.description
    repository.commit(db, "update portfolio")
    db.refresh(portfolio)
    return _summary(portfolio)


@router.delete("/{portfolio_id}")
async def delete_portfolio(
    portfolio_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    portfolio = _get_owned_portfolio(db, portfolio_id, user_id)
    db.delete(portfolio)
    repository.commit(db, "delete portfolio")
    return {"success": True}


@router.post("/{portfolio_id}/properties", response_model=PortfolioEntry)
async def add_property(
    portfolio_id: int,
    request: PortfolioPropertyRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Add a lot to the portfolio; adding it again replaces its notes."""
    portfolio = _get_owned_portfolio(db, portfolio_id, user_id)
    entry = next((pp for pp in portfolio.properties if pp.bbl == request.bbl), None)
    if entry is None:
        entry = PortfolioProperty(bbl=request.bbl, notes=request.notes)
        portfolio.properties.append(entry)
    else:
        entry.notes = request.notes
    repository.commit(db, "add portfolio property")
    db.refresh(entry)
    return PortfolioEntry.model_validate(entry)


@router.put("/{portfolio_id}/properties/{bbl}", response_model=PortfolioEntry)
async def update_property_notes(
    portfolio_id: int,
    bbl: str,
    request: NotesUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    portfolio = _get_owned_portfolio(db, portfolio_id, user_id)
    entry = next((pp for pp in portfolio.properties if pp.bbl == bbl), None)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"{bbl} is not in portfolio {portfolio_id}")
    entry.notes = request.notes
    repository.commit(db, "update portfolio notes")
    db.refresh(entry)
    return PortfolioEntry.model_validate(entry)


@router.delete("/{portfolio_id}/properties/{bbl}")
async def remove_property(
    portfolio_id: int,
    bbl: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    portfolio = _get_owned_portfolio(db, portfolio_id, user_id)
    entry = next((pp for pp in portfolio.properties if pp.bbl == bbl), None)
    if entry is not None:
        portfolio.properties.remove(entry)
        repository.commit(db, "remove portfolio property")
    return {"success": True}
