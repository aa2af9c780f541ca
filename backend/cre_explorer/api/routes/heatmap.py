"""Grid heat layer for the map."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cre_explorer.core.config import settings
from cre_explorer.core.database import get_db
from cre_explorer.services import analytics
from cre_explorer.services.heatmap import Heatmap

router = APIRouter(tags=["heatmap"])


@router.get("/heatmap", response_model=Heatmap)
async def get_heatmap(
    metric: str = Query("opportunity", description="opportunity | price | distress"),
    resolution: float = Query(settings.HEATMAP_CELL_SIZE, gt=0, description="Cell size in degrees"),
    db: Session = Depends(get_db),
):
    return analytics.get_heatmap(db, metric, cell_size=resolution)
