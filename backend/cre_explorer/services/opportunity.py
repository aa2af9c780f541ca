"""
Investment opportunity score for under-built lots.

Four independently capped components, summed and rounded:

    FAR gap          min(far_gap * 10, 40)      1.0 gap = 10pts, 4.0+ = 40pts
    Tenure           min(years held, 20)        long holds -> motivated seller
    Assessment       min(assessed / sale * 20, 20)   only for sales > $1,000
    Size / class     min(lotarea / 2000, 10) + 10 for elevator apartments (D)

NYC class 4 assessed value runs ~45% of market, so an assessed/sale ratio of
0.45 (10pts) means the lot last traded near market; 0.9 (20pts) means it
traded cheap.

Lots with no recorded sale get a fallback tenure (10 years by default). That
fallback is a heuristic, so results carry tenure_imputed=True when it was
used.
"""

import logging
from datetime import date
from typing import Optional

from pydantic import BaseModel

from cre_explorer.core.config import settings
from cre_explorer.services.records import PropertyRecord, SaleRecord, latest_sales_by_bbl
from cre_explorer.utils.numbers import round_half_up, safe_divide

logger = logging.getLogger(__name__)

FAR_GAP_WEIGHT = 10
FAR_GAP_CAP = 40
TENURE_CAP = 20
NOMINAL_SALE_PRICE = 1000
ASSESSMENT_WEIGHT = 20
ASSESSMENT_CAP = 20
LOT_AREA_DIVISOR = 2000
LOT_AREA_CAP = 10
ELEVATOR_APARTMENT_PREFIX = "D"
ELEVATOR_APARTMENT_BONUS = 10


class OpportunityBreakdown(BaseModel):
    far_gap_points: float
    tenure_points: float
    assessment_points: float
    size_class_points: float
    tenure: float                    # Years, one decimal
    tenure_imputed: bool
    assessment_ratio: float
    opportunity_score: int


class OpportunityProperty(PropertyRecord):
    tenure: float
    tenure_imputed: bool
    last_sale_date: Optional[date] = None
    last_sale_price: Optional[float] = None
    assessment_ratio: float
    opportunity_score: int


def years_between(start: date, end: date) -> float:
    return (end - start).days / 365


def evaluate_opportunity(
    property: PropertyRecord,
    most_recent_sale: Optional[SaleRecord],
    as_of: Optional[date] = None,
    default_tenure_years: Optional[float] = None,
) -> OpportunityBreakdown:
    as_of = as_of or date.today()
    if default_tenure_years is None:
        default_tenure_years = settings.OPPORTUNITY_DEFAULT_TENURE_YEARS

    far_gap_points = max(min((property.far_gap or 0) * FAR_GAP_WEIGHT, FAR_GAP_CAP), 0)

    if most_recent_sale and most_recent_sale.sale_date:
        tenure_years = max(years_between(most_recent_sale.sale_date, as_of), 0)
        tenure_imputed = False
    else:
        tenure_years = default_tenure_years
        tenure_imputed = True
    tenure_points = min(tenure_years, TENURE_CAP)

    ratio = 0.0
    assessment_points = 0.0
    if most_recent_sale and (most_recent_sale.sale_price or 0) > NOMINAL_SALE_PRICE:
        ratio = safe_divide(property.assesstot or 0, most_recent_sale.sale_price, default=0.0)
        assessment_points = min(ratio * ASSESSMENT_WEIGHT, ASSESSMENT_CAP)

    size_class_points = max(min((property.lotarea or 0) / LOT_AREA_DIVISOR, LOT_AREA_CAP), 0)
    if property.class_prefix == ELEVATOR_APARTMENT_PREFIX:
        size_class_points += ELEVATOR_APARTMENT_BONUS

    total = far_gap_points + tenure_points + assessment_points + size_class_points
    return OpportunityBreakdown(
        far_gap_points=far_gap_points,
        tenure_points=tenure_points,
        assessment_points=assessment_points,
        size_class_points=size_class_points,
        tenure=round_half_up(tenure_years, 1),
        tenure_imputed=tenure_imputed,
        assessment_ratio=ratio,
        opportunity_score=round_half_up(total),
    )


def score_opportunity(
    property: PropertyRecord,
    most_recent_sale: Optional[SaleRecord],
    as_of: Optional[date] = None,
) -> int:
    """Opportunity score for one property, 0..100."""
    return evaluate_opportunity(property, most_recent_sale, as_of=as_of).opportunity_score


def is_eligible(property: PropertyRecord, threshold: Optional[float] = None) -> bool:
    if threshold is None:
        threshold = settings.OPPORTUNITY_FAR_GAP_THRESHOLD
    return (property.far_gap or 0) > threshold


def rank_opportunities(
    properties: list[PropertyRecord],
    sales: list[SaleRecord],
    limit: int = 25,
    as_of: Optional[date] = None,
    threshold: Optional[float] = None,
) -> list[OpportunityProperty]:
    """Score eligible properties against their latest sale and return the top `limit`."""
    latest = latest_sales_by_bbl(sales)
    scored = []
    for prop in properties:
        if not is_eligible(prop, threshold):
            continue
        sale = latest.get(prop.bbl)
        breakdown = evaluate_opportunity(prop, sale, as_of=as_of)
        scored.append(OpportunityProperty(
            **prop.model_dump(exclude={"last_sale_date", "last_sale_price"}),
            tenure=breakdown.tenure,
            tenure_imputed=breakdown.tenure_imputed,
            last_sale_date=sale.sale_date if sale else None,
            last_sale_price=sale.sale_price if sale else None,
            assessment_ratio=breakdown.assessment_ratio,
            opportunity_score=breakdown.opportunity_score,
        ))

    scored.sort(key=lambda p: p.opportunity_score, reverse=True)
    imputed = sum(1 for p in scored if p.tenure_imputed)
    if imputed:
        logger.info(f"[Opportunity] {imputed}/{len(scored)} properties scored with imputed tenure")
    return scored[:limit]
