"""Dashboard widgets: market pulse, portfolio summary, suggested opportunities."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cre_explorer.core.database import get_db
from cre_explorer.services import analytics
from cre_explorer.services.market import MarketPulse, PortfolioSummary
from cre_explorer.services.records import PropertyRecord

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class BblList(BaseModel):
    bbls: list[str] = []


class DashboardOpportunities(BaseModel):
    opportunities: list[PropertyRecord]


@router.get("/market-pulse", response_model=MarketPulse)
async def market_pulse(days: int = Query(30, ge=1, le=365), db: Session = Depends(get_db)):
    return analytics.get_market_pulse(db, days=days)


@router.post("/summary", response_model=PortfolioSummary)
async def portfolio_summary(request: BblList = BblList(), db: Session = Depends(get_db)):
    """Totals for the posted BBLs; new violations = open ones issued in the last 30 days."""
    return analytics.get_portfolio_summary(db, request.bbls)


@router.post("/opportunities", response_model=DashboardOpportunities)
async def dashboard_opportunities(request: BblList = BblList(), db: Session = Depends(get_db)):
    """Top FAR gap lots (gap >= 2) that are not already in the posted BBL list."""
    return DashboardOpportunities(
        opportunities=analytics.get_dashboard_opportunities(db, exclude_bbls=request.bbls)
    )
