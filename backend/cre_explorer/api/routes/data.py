"""
Unified map/table endpoint.

GET /data takes the whole filter vocabulary as query parameters and returns
everything the frontend renders: scored properties, recent sales of the same
building classes, summary stats and the filter options.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cre_explorer.core.database import get_db
from cre_explorer.services import analytics
from cre_explorer.services.analytics import DataResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["data"])


@router.get("/data", response_model=DataResult)
async def get_data(request: Request, db: Session = Depends(get_db)):
    """
    Query params: bldgclass, minFarGap, maxFarGap, minYear, maxYear,
    minAssessed, maxAssessed, owner, address, zipcode, minDistress, sort,
    order, limit, salesDays, salesLimit.

    Unparseable numbers are ignored rather than rejected.
    """
    raw = dict(request.query_params)
    logger.info(f"[/data] {raw}")
    return analytics.query_data(db, raw)
