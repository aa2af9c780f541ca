"""
Saved searches.

A saved search is a named bag of /data query parameters. Running one pushes
the bag back through the filter pipeline, so distress scores are always
recomputed from current violations.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cre_explorer.api.deps import get_current_user_id
from cre_explorer.core.database import get_db
from cre_explorer.models.portfolio import SavedSearch
from cre_explorer.services import analytics, repository
from cre_explorer.services.filters import FilterResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/searches", tags=["searches"])


class SavedSearchRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    filters: dict[str, Any] = {}


class SavedSearchUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    filters: Optional[dict[str, Any]] = None


class SavedSearchResponse(BaseModel):
    id: int
    name: str
    filters: dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SavedSearchList(BaseModel):
    searches: list[SavedSearchResponse]


class SearchRunResponse(FilterResult):
    search: SavedSearchResponse


def _get_owned_search(db: Session, search_id: int, user_id: str) -> SavedSearch:
    with repository.storage_errors("get saved search"):
        search = db.query(SavedSearch).filter(
            SavedSearch.id == search_id,
            SavedSearch.user_id == user_id,
        ).first()
    if not search:
        raise HTTPException(status_code=404, detail=f"Saved search {search_id} not found")
    return search


@router.get("", response_model=SavedSearchList)
async def list_searches(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    with repository.storage_errors("list saved searches"):
        searches = (
            db.query(SavedSearch)
            .filter(SavedSearch.user_id == user_id)
            .order_by(SavedSearch.created_at.desc(), SavedSearch.id.desc())
            .all()
        )
    return SavedSearchList(searches=[SavedSearchResponse.model_validate(s) for s in searches])


@router.post("", response_model=SavedSearchResponse, status_code=201)
async def create_search(
    request: SavedSearchRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    search = SavedSearch(user_id=user_id, name=request.name, filters=request.filters)
    db.add(search)
    repository.commit(db, "create saved search")
    db.refresh(search)
    logger.info(f"Saved search {search.id} '{search.name}' for user {user_id}")
    return SavedSearchResponse.model_validate(search)


@router.put("/{search_id}", response_model=SavedSearchResponse)
async def update_search(
    search_id: int,
    request: SavedSearchUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    search = _get_owned_search(db, search_id, user_id)
    if request.name is not None:
        search.name = request.name
    if request.filters is not None:
        search.filters = request.filters
    repository.commit(db, "update saved search")
    db.refresh(search)
    return SavedSearchResponse.model_validate(search)


@router.delete("/{search_id}")
async def delete_search(
    search_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    search = _get_owned_search(db, search_id, user_id)
    db.delete(search)
    repository.commit(db, "delete saved search")
    return {"success": True}


@router.get("/{search_id}/run", response_model=SearchRunResponse)
async def run_search(
    search_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    search = _get_owned_search(db, search_id, user_id)
    result = analytics.run_saved_filters(db, search.filters or {})
    return SearchRunResponse(**dict(result), search=SavedSearchResponse.model_validate(search))
