"""Property list, detail and comparable sales."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from cre_explorer.core.database import get_db
from cre_explorer.services import analytics
from cre_explorer.services.analytics import PropertyListing
from cre_explorer.services.comps import CompsResult
from cre_explorer.services.market import PropertyDetail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/properties", tags=["properties"])


@router.get("", response_model=PropertyListing)
async def list_properties(request: Request, db: Session = Depends(get_db)):
    """Same filters as /data plus offset; default limit 50."""
    return analytics.list_properties(db, dict(request.query_params))


@router.get("/{bbl}", response_model=PropertyDetail)
async def get_property(bbl: str, db: Session = Depends(get_db)):
    """Property with live distress score, open violations and sales history."""
    return analytics.get_property_detail(db, bbl)


@router.get("/{bbl}/comps", response_model=CompsResult)
async def get_comps(
    bbl: str,
    radius: float = Query(0.5, gt=0, description="Search radius in miles"),
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
):
    return analytics.get_comps(db, bbl, radius_miles=radius, limit=limit)
