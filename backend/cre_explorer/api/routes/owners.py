"""Owner portfolio search and distressed-owner ranking."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cre_explorer.core.database import get_db
from cre_explorer.services import analytics
from cre_explorer.services.owners import DistressedOwnerRanking, OwnerSearchResult

router = APIRouter(prefix="/owners", tags=["owners"])


# Declared before /{name} so "distressed" is not taken as an owner name
@router.get("/distressed", response_model=DistressedOwnerRanking)
async def distressed_owners(
    limit: int = Query(50, ge=1),
    minScore: int = Query(20, ge=0),
    minProperties: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    return analytics.get_distressed_owners(
        db, limit=limit, min_score=minScore, min_properties=minProperties
    )


@router.get("/{name}", response_model=OwnerSearchResult)
async def search_owner(name: str, db: Session = Depends(get_db)):
    """All lots whose owner contains `name`, grouped by exact owner string."""
    return analytics.search_owner(db, name)
