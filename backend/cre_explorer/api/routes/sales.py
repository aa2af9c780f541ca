"""Recent sales table."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cre_explorer.core.database import get_db
from cre_explorer.services import analytics
from cre_explorer.services.market import SalesListing, SummaryStats

router = APIRouter(tags=["sales"])


@router.get("/sales", response_model=SalesListing)
async def list_sales(
    bldgclass: Optional[str] = Query(None, description="Building class prefix, e.g. O or K4"),
    minPrice: Optional[float] = Query(None),
    maxPrice: Optional[float] = Query(None),
    days: int = Query(365, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return analytics.get_sales(
        db,
        bldgclass=bldgclass,
        min_price=minPrice,
        max_price=maxPrice,
        days=days,
        limit=limit,
    )


@router.get("/stats", response_model=SummaryStats)
async def get_stats(db: Session = Depends(get_db)):
    """Database-wide counts by class, assessed value and high FAR gap lots."""
    return analytics.get_summary_stats(db)
