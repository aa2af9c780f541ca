"""
Market-wide and dashboard statistics.

Small rollups over already-fetched records: the /stats summary, the 30-day
market pulse, a user's portfolio summary and property detail assembly.
"""

import logging
from datetime import date, timedelta
from typing import Iterable, Optional

from pydantic import Field

from cre_explorer.services.distress import evaluate_distress
from cre_explorer.services.filters import HIGH_FAR_GAP, SaleSummary, ScoredProperty
from cre_explorer.services.records import (
    PropertyRecord,
    ResultModel,
    SaleRecord,
    SaleWithProperty,
    ViolationRecord,
)
from cre_explorer.utils.numbers import mean, round_half_up

logger = logging.getLogger(__name__)

PULSE_DAYS = 30
NEW_VIOLATION_DAYS = 30
DASHBOARD_OPPORTUNITY_MIN_GAP = 2.0
DASHBOARD_OPPORTUNITY_LIMIT = 5


class SummaryStats(ResultModel):
    properties: int
    sales: int
    by_building_class: dict[str, int]
    total_assessed_value: float
    high_far_gap_count: int


class MarketPulse(ResultModel):
    days: int
    sales_count: int
    avg_price_sf: float = Field(alias="avgPriceSF")
    avg_by_class: dict[str, float]
    total_volume: float


class PortfolioSummary(ResultModel):
    property_count: int
    total_assessed: float
    avg_far_gap: float
    new_violations: int


class PropertyDetail(ScoredProperty):
    violations: list[ViolationRecord] = []
    sales: list[SaleRecord] = []


class SalesListing(ResultModel):
    count: int
    sales: list[SaleSummary]


def class_letter(bldgclass: Optional[str]) -> str:
    return (bldgclass or "X")[:1].upper() or "X"


def summary_stats(properties: Iterable[PropertyRecord], sales_count: int) -> SummaryStats:
    by_class: dict[str, int] = {}
    total_assessed = 0.0
    high_gap = 0
    count = 0
    for prop in properties:
        count += 1
        letter = class_letter(prop.bldgclass)
        by_class[letter] = by_class.get(letter, 0) + 1
        total_assessed += prop.assesstot or 0
        if (prop.far_gap or 0) > HIGH_FAR_GAP:
            high_gap += 1
    return SummaryStats(
        properties=count,
        sales=sales_count,
        by_building_class=by_class,
        total_assessed_value=total_assessed,
        high_far_gap_count=high_gap,
    )


def market_pulse(recent_sales: list[SaleWithProperty], days: int = PULSE_DAYS) -> MarketPulse:
    """
    Activity over the trailing window. The class letter comes from the
    joined property, falling back to the class recorded on the sale.
    """
    by_class: dict[str, list[float]] = {}
    all_psf = []
    for joined in recent_sales:
        sale = joined.sale
        psf = sale.effective_price_per_sf(fallback_area=joined.property.bldgarea)
        if not psf:
            continue
        all_psf.append(psf)
        letter = class_letter(joined.property.bldgclass or sale.building_class)
        by_class.setdefault(letter, []).append(psf)

    return MarketPulse(
        days=days,
        sales_count=len(recent_sales),
        avg_price_sf=round_half_up(mean(all_psf)),
        avg_by_class={letter: round_half_up(mean(values)) for letter, values in sorted(by_class.items())},
        total_volume=sum(j.sale.sale_price or 0 for j in recent_sales),
    )


def portfolio_summary(
    properties: list[PropertyRecord],
    violations: Iterable[ViolationRecord],
    as_of: Optional[date] = None,
    days: int = NEW_VIOLATION_DAYS,
) -> PortfolioSummary:
    """Headline numbers for a set of BBLs; new violations are open ones issued in the window."""
    as_of = as_of or date.today()
    cutoff = as_of - timedelta(days=days)
    bbls = {p.bbl for p in properties}
    new_violations = sum(
        1 for v in violations
        if v.is_open and v.bbl in bbls and v.issue_date and v.issue_date >= cutoff
    )
    return PortfolioSummary(
        property_count=len(properties),
        total_assessed=sum(p.assesstot or 0 for p in properties),
        avg_far_gap=round_half_up(mean([p.far_gap or 0 for p in properties]), 2),
        new_violations=new_violations,
    )


def dashboard_opportunities(
    properties: Iterable[PropertyRecord],
    exclude_bbls: Iterable[str] = (),
    limit: int = DASHBOARD_OPPORTUNITY_LIMIT,
    min_far_gap: float = DASHBOARD_OPPORTUNITY_MIN_GAP,
) -> list[PropertyRecord]:
    excluded = set(exclude_bbls or ())
    candidates = [
        p for p in properties
        if p.bbl not in excluded and (p.far_gap or 0) >= min_far_gap
    ]
    candidates.sort(key=lambda p: p.far_gap or 0, reverse=True)
    return candidates[:limit]


def property_detail(
    prop: PropertyRecord,
    violations: list[ViolationRecord],
    sales: list[SaleRecord],
) -> PropertyDetail:
    """Property with live distress, its open violations and its sales newest first."""
    result = evaluate_distress(violations)
    ordered_sales = sorted(sales, key=lambda s: s.sale_date or date.min, reverse=True)
    return PropertyDetail(
        **prop.model_dump(),
        distress_score=result.distress_score,
        violation_count=result.violation_count,
        max_far=prop.max_allowed_far,
        violations=[v for v in violations if v.is_open],
        sales=ordered_sales,
    )


def list_sales(
    sales: list[SaleWithProperty],
    class_prefix: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    limit: int = 50,
) -> SalesListing:
    """
    Recent sales table. The class filter is a raw prefix ("O", "K4") matched
    against the joined property's building class.
    """
    rows = []
    prefix = class_prefix.upper() if class_prefix else None
    for joined in sales:
        price = joined.sale.sale_price or 0
        if min_price is not None and price < min_price:
            continue
        if max_price is not None and price > max_price:
            continue
        if prefix and not (joined.property.bldgclass or "").upper().startswith(prefix):
            continue
        rows.append(SaleSummary.from_joined(joined))
        if len(rows) >= limit:
            break
    return SalesListing(count=len(rows), sales=rows)
