"""
Under-built lot ranking.

Candidates are the lots with the largest FAR gap (twice the requested
count), re-ranked by the composite opportunity score.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cre_explorer.core.database import get_db
from cre_explorer.services import analytics
from cre_explorer.services.analytics import OpportunityListing

router = APIRouter(prefix="/opportunities", tags=["opportunities"])


@router.get("", response_model=OpportunityListing)
async def list_opportunities(
    limit: int = Query(25, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return analytics.get_opportunities(db, limit=limit)
