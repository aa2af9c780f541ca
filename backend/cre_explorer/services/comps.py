"""
Comparable Sales Matcher

Given a subject lot, picks recent arm's-length sales of similar buildings
nearby and summarizes their $/sf.

Matching rules (in order):
1. Bounding box of +/- radius around the subject (69 mi per degree of
   latitude, 53 mi per degree of longitude at NYC's latitude)
2. Building class group, based on NYC Dept of Finance classes
3. Never the subject itself
4. Building area within 0.25x - 2.5x of the subject, only when the subject
   has more than 1,000 sf (smaller areas are too unreliable to compare)
5. Newest sale first, truncated to the limit

The candidate pool (recency cutoff, price floor, pool size) is chosen by the
caller; this module is pure and deterministic for a given pool.
"""

import logging
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from cre_explorer.services.records import PropertyRecord, ResultModel, SaleWithProperty
from cre_explorer.utils.geo import GeoBounds, bounding_box, planar_distance_miles
from cre_explorer.utils.numbers import mean, median, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_MILES = 0.5
DEFAULT_LIMIT = 5
MIN_SIZE_RATIO = 0.25
MAX_SIZE_RATIO = 2.5
MIN_RELIABLE_AREA = 1000
NO_COORDINATES_NOTE = "No coordinates for subject"

# Building class groups that trade as substitutes for each other
CLASS_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"A", "B"}),             # 1-2 family dwellings
    frozenset({"C", "D", "S", "R"}),   # Walk-ups, elevator apts, mixed use, condos
    frozenset({"O"}),                  # Office
    frozenset({"K"}),                  # Retail
    frozenset({"L"}),                  # Lofts
    frozenset({"E", "F", "G"}),        # Warehouse, factory, garage
)


class CompSubject(BaseModel):
    bbl: str
    address: Optional[str] = None
    bldgarea: Optional[float] = None
    bldgclass: Optional[str] = None


class Comp(BaseModel):
    bbl: str
    address: Optional[str] = None
    bldgclass: Optional[str] = None
    sale_date: Optional[date] = None
    sale_price: Optional[float] = None
    bldgarea: Optional[float] = None
    price_per_sf: Optional[float] = None
    dist_miles: float
    lat: float
    lng: float


class MarketStats(ResultModel):
    avg_price_per_sf: float = Field(alias="avgPricePerSF")
    median_price_per_sf: float = Field(alias="medianPricePerSF")
    count: int


class CompsResult(ResultModel):
    subject: CompSubject
    comps: list[Comp]
    market_stats: Optional[MarketStats] = None
    note: Optional[str] = None
    bounds: Optional[dict] = None


def allowed_class_prefixes(bldgclass: Optional[str]) -> frozenset[str]:
    """The comparable class group for a subject; unknown classes only match themselves."""
    prefix = (bldgclass or "")[:1].upper()
    for group in CLASS_GROUPS:
        if prefix in group:
            return group
    return frozenset({prefix})


def size_window(subject_area: Optional[float]) -> Optional[tuple[float, float]]:
    if not subject_area or subject_area <= MIN_RELIABLE_AREA:
        return None
    return subject_area * MIN_SIZE_RATIO, subject_area * MAX_SIZE_RATIO


def is_comparable(
    candidate: SaleWithProperty,
    subject: PropertyRecord,
    allowed: frozenset[str],
    bounds: GeoBounds,
    area_window: Optional[tuple[float, float]],
) -> bool:
    prop = candidate.property
    if candidate.sale.bbl == subject.bbl or prop.bbl == subject.bbl:
        return False
    if prop.class_prefix not in allowed:
        return False
    if area_window is not None:
        area = prop.bldgarea
        if area is None or area < area_window[0] or area > area_window[1]:
            return False
    return bounds.contains(prop.lat, prop.lng)


def compute_market_stats(comps: list[Comp]) -> MarketStats:
    """Mean (rounded) and median $/sf over comps with a positive $/sf."""
    prices = [c.price_per_sf for c in comps if c.price_per_sf and c.price_per_sf > 0]
    if not prices:
        return MarketStats(avg_price_per_sf=0, median_price_per_sf=0, count=len(comps))
    return MarketStats(
        avg_price_per_sf=round_half_up(mean(prices)),
        median_price_per_sf=median(prices),
        count=len(comps),
    )


def find_comps(
    subject: PropertyRecord,
    candidates: list[SaleWithProperty],
    radius_miles: float = DEFAULT_RADIUS_MILES,
    limit: int = DEFAULT_LIMIT,
) -> CompsResult:
    """
    Rank comparable sales for a subject from a candidate pool.

    A subject without coordinates yields an empty result with a note rather
    than an error. Fewer than `limit` matches are returned as-is.
    """
    subject_summary = CompSubject(
        bbl=subject.bbl,
        address=subject.address,
        bldgarea=subject.bldgarea,
        bldgclass=subject.bldgclass,
    )

    if not subject.has_coordinates:
        logger.info(f"[Comps] Subject {subject.bbl} has no coordinates")
        return CompsResult(subject=subject_summary, comps=[], market_stats=None, note=NO_COORDINATES_NOTE)

    bounds = bounding_box(subject.lat, subject.lng, radius_miles)
    allowed = allowed_class_prefixes(subject.bldgclass)
    area_window = size_window(subject.bldgarea)

    matches = [c for c in candidates if is_comparable(c, subject, allowed, bounds, area_window)]
    matches.sort(key=lambda c: c.sale.sale_date or date.min, reverse=True)
    matches = matches[:max(limit, 0)]

    comps = []
    for match in matches:
        sale, prop = match.sale, match.property
        comps.append(Comp(
            bbl=sale.bbl,
            address=prop.address,
            bldgclass=prop.bldgclass,
            sale_date=sale.sale_date,
            sale_price=sale.sale_price,
            bldgarea=prop.bldgarea,
            price_per_sf=sale.effective_price_per_sf(fallback_area=prop.bldgarea),
            dist_miles=round_half_up(planar_distance_miles(subject.lat, subject.lng, prop.lat, prop.lng), 2),
            lat=prop.lat,
            lng=prop.lng,
        ))

    logger.info(
        f"[Comps] {subject.bbl}: {len(candidates)} candidates -> {len(comps)} comps "
        f"(group={sorted(allowed)}, radius={radius_miles}mi)"
    )
    return CompsResult(
        subject=subject_summary,
        comps=comps,
        market_stats=compute_market_stats(comps),
        bounds={
            "minLat": bounds.min_lat,
            "maxLat": bounds.max_lat,
            "minLng": bounds.min_lng,
            "maxLng": bounds.max_lng,
        },
    )
