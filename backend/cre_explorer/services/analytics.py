"""
Analytics operations used by the API routes.

Each function pulls a snapshot through the repository and hands it to the
pure engine modules (filters, distress, opportunity, comps, owners, heatmap,
market). Nothing here keeps state between calls.
"""

import logging
from datetime import date, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from cre_explorer.core.config import settings
from cre_explorer.core.filter_config import FILTER_CONFIG, describe_building_classes
from cre_explorer.services import repository
from cre_explorer.services.comps import CompsResult, find_comps
from cre_explorer.services.filters import (
    FilterResult,
    PropertyFilter,
    PropertyQueryParams,
    ScoredProperty,
    filter_properties,
    resolve_sort,
)
from cre_explorer.services.heatmap import Heatmap, build_heatmap, validate_metric
from cre_explorer.services.market import (
    MarketPulse,
    PortfolioSummary,
    PropertyDetail,
    SalesListing,
    SummaryStats,
    dashboard_opportunities,
    list_sales,
    market_pulse,
    portfolio_summary,
    property_detail,
    summary_stats,
)
from cre_explorer.services.opportunity import OpportunityProperty, rank_opportunities
from cre_explorer.services.owners import (
    DistressedOwnerRanking,
    OwnerSearchResult,
    aggregate_owners,
    rank_distressed_owners,
)
from cre_explorer.services.records import PropertyRecord, ResultModel, violations_by_bbl
from cre_explorer.utils.numbers import parse_int

logger = logging.getLogger(__name__)

DEFAULT_SALES_DAYS = 365
DEFAULT_SALES_LIMIT = 100
DEFAULT_PROPERTIES_LIMIT = 50


class DataResult(FilterResult):
    meta: dict[str, Any] = {}


class PropertyListing(ResultModel):
    count: int
    offset: int
    properties: list[ScoredProperty]


class OpportunityListing(ResultModel):
    count: int
    properties: list[OpportunityProperty]


def comps_cutoff() -> date:
    return date.fromisoformat(settings.COMPS_SALES_CUTOFF)


def _scored_query(db: Session, params: PropertyQueryParams, recent_sales=None) -> FilterResult:
    prop_filter = PropertyFilter.from_params(params, FILTER_CONFIG)
    sort_field, ascending = resolve_sort(params.sort, params.order, FILTER_CONFIG)

    candidates = repository.fetch_properties(
        db,
        prop_filter=prop_filter,
        limit=settings.PROPERTY_FETCH_LIMIT,
        order_by=sort_field,
        descending=not ascending,
    )
    open_violations = repository.fetch_violations(db, bbls=[p.bbl for p in candidates], open_only=True)

    return filter_properties(
        params,
        candidates,
        violations_by_bbl(open_violations),
        recent_sales=recent_sales,
        total_in_database=repository.count_properties(db),
        storage_match_count=repository.count_properties(db, prop_filter),
        default_limit=settings.DEFAULT_PROPERTY_LIMIT,
    )


def query_data(db: Session, raw_params: dict[str, Any], as_of: Optional[date] = None) -> DataResult:
    """
    The unified map/table query: filtered, scored properties plus recent
    sales of the same building classes and summary stats.
    """
    as_of = as_of or date.today()
    params = PropertyQueryParams.from_mapping(raw_params)

    sales_days = parse_int(raw_params.get("salesDays"))
    sales_limit = parse_int(raw_params.get("salesLimit"))
    sales_days = sales_days if sales_days is not None else DEFAULT_SALES_DAYS
    sales_limit = sales_limit if sales_limit is not None else DEFAULT_SALES_LIMIT

    recent_sales = repository.fetch_sales_with_properties(
        db,
        since=as_of - timedelta(days=sales_days),
        limit=sales_limit,
    )
    result = _scored_query(db, params, recent_sales=recent_sales)
    return DataResult(
        **dict(result),
        meta={"filterConfig": describe_building_classes(FILTER_CONFIG)},
    )


def list_properties(db: Session, raw_params: dict[str, Any]) -> PropertyListing:
    """Paged property list; same filters as query_data without the sales block."""
    params = PropertyQueryParams.from_mapping(raw_params)
    offset = max(parse_int(raw_params.get("offset")) or 0, 0)
    limit = params.limit if params.limit is not None and params.limit >= 0 else DEFAULT_PROPERTIES_LIMIT

    window = params.model_copy(update={"limit": offset + limit})
    result = _scored_query(db, window)
    page = result.properties[offset:]
    return PropertyListing(count=len(page), offset=offset, properties=page)


def run_saved_filters(db: Session, filters: dict[str, Any]) -> FilterResult:
    """Re-run a stored parameter bag. Distress is recomputed from violations."""
    return _scored_query(db, PropertyQueryParams.from_mapping(filters))


def get_property_detail(db: Session, bbl: str) -> PropertyDetail:
    prop = repository.get_property(db, bbl)
    violations = repository.fetch_violations(db, bbls=[prop.bbl])
    sales = repository.fetch_sales(db, [prop.bbl])
    return property_detail(prop, violations, sales)


def get_comps(db: Session, bbl: str, radius_miles: float = 0.5, limit: int = 5) -> CompsResult:
    subject = repository.get_property(db, bbl)
    if not subject.has_coordinates:
        return find_comps(subject, [], radius_miles=radius_miles, limit=limit)

    candidates = repository.fetch_sales_with_properties(
        db,
        since=comps_cutoff(),
        min_price=settings.COMPS_MIN_SALE_PRICE,
        exclude_bbl=subject.bbl,
        limit=settings.COMPS_CANDIDATE_POOL,
    )
    return find_comps(subject, candidates, radius_miles=radius_miles, limit=limit)


def get_sales(
    db: Session,
    bldgclass: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    days: int = 365,
    limit: int = 50,
    as_of: Optional[date] = None,
) -> SalesListing:
    as_of = as_of or date.today()
    # The class filter is evaluated on the joined property, so fetch wide when it is set
    joined = repository.fetch_sales_with_properties(
        db,
        since=as_of - timedelta(days=days),
        limit=settings.PROPERTY_FETCH_LIMIT if bldgclass else limit,
    )
    return list_sales(joined, class_prefix=bldgclass, min_price=min_price, max_price=max_price, limit=limit)


def get_summary_stats(db: Session) -> SummaryStats:
    return summary_stats(repository.fetch_properties(db), repository.count_sales(db))


def get_opportunities(db: Session, limit: int = 25, as_of: Optional[date] = None) -> OpportunityListing:
    threshold = settings.OPPORTUNITY_FAR_GAP_THRESHOLD
    candidates = repository.fetch_properties(
        db,
        min_far_gap=threshold,
        order_by="far_gap",
        limit=limit * 2,
    )
    sales = repository.fetch_sales(db, [p.bbl for p in candidates])
    ranked = rank_opportunities(candidates, sales, limit=limit, as_of=as_of, threshold=threshold)
    return OpportunityListing(count=len(ranked), properties=ranked)


def search_owner(db: Session, name: str, as_of: Optional[date] = None) -> OwnerSearchResult:
    properties = repository.fetch_properties(db, owner_contains=name, order_by="assesstot")
    if not properties:
        return OwnerSearchResult(search_term=name, match_count=0, owners=[])
    bbls = [p.bbl for p in properties]
    return aggregate_owners(
        properties,
        repository.fetch_violations(db, bbls=bbls),
        repository.fetch_sales(db, bbls),
        search_term=name,
        as_of=as_of,
    )


def get_distressed_owners(
    db: Session,
    limit: int = 50,
    min_score: int = 20,
    min_properties: int = 1,
    as_of: Optional[date] = None,
) -> DistressedOwnerRanking:
    return rank_distressed_owners(
        repository.fetch_properties(db),
        repository.fetch_violations(db, open_only=True),
        limit=limit,
        min_score=min_score,
        min_properties=min_properties,
        as_of=as_of,
    )


def get_heatmap(db: Session, metric: str, cell_size: Optional[float] = None) -> Heatmap:
    validate_metric(metric)
    if metric == "opportunity":
        return build_heatmap(
            metric,
            properties=repository.fetch_properties(db, min_far_gap=0, with_coordinates=True),
            cell_size=cell_size,
        )
    if metric == "price":
        return build_heatmap(
            metric,
            sales=repository.fetch_sales_with_properties(
                db, since=comps_cutoff(), min_price=settings.COMPS_MIN_SALE_PRICE
            ),
            cell_size=cell_size,
        )
    return build_heatmap(
        metric,
        properties=repository.fetch_properties(db, with_coordinates=True),
        violations=repository.fetch_violations(db, open_only=True),
        cell_size=cell_size,
    )


def get_market_pulse(db: Session, days: int = 30, as_of: Optional[date] = None) -> MarketPulse:
    as_of = as_of or date.today()
    recent = repository.fetch_sales_with_properties(db, since=as_of - timedelta(days=days))
    return market_pulse(recent, days=days)


def get_portfolio_summary(db: Session, bbls: Iterable[str], as_of: Optional[date] = None) -> PortfolioSummary:
    bbl_list = [b for b in (bbls or []) if b]
    if not bbl_list:
        return PortfolioSummary(property_count=0, total_assessed=0, avg_far_gap=0, new_violations=0)
    properties = repository.fetch_properties_by_bbl(db, bbl_list)
    violations = repository.fetch_violations(db, bbls=bbl_list, open_only=True)
    return portfolio_summary(properties, violations, as_of=as_of)


def get_dashboard_opportunities(db: Session, exclude_bbls: Iterable[str] = ()) -> list[PropertyRecord]:
    candidates = repository.fetch_properties(db, min_far_gap=0, order_by="far_gap")
    return dashboard_opportunities(candidates, exclude_bbls)
