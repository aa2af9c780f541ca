"""
Owner Portfolio Aggregator

Groups tax lots by their recorded owner string and rolls up holdings,
violations and holding periods. Owners are never persisted; every call
rebuilds the grouping from the records it is given.
"""

import logging
from datetime import date
from typing import Iterable, Optional

from pydantic import ConfigDict, Field

from cre_explorer.services.records import (
    PropertyRecord,
    ResultModel,
    SaleRecord,
    ViolationRecord,
    latest_sales_by_bbl,
    violations_by_bbl,
)
from cre_explorer.utils.numbers import mean, round_half_up, safe_divide

logger = logging.getLogger(__name__)

UNKNOWN_OWNER = "Unknown"
UNKNOWN_DISTRESSED_OWNER = "Unknown Owner"
DAYS_PER_YEAR = 365.25

# (substrings, entity type); first match wins
ENTITY_PATTERNS: tuple[tuple[tuple[str, ...], str], ...] = (
    ((" LLC", " L.L.C"), "LLC"),
    ((" LP", " L.P"), "LP"),
    ((" INC", " CORP"), "Corporation"),
    ((" TRUST", " TRUSTEES"), "Trust"),
    ((" PARTNERS", " PARTNERSHIP"), "Partnership"),
    ((" ASSOC",), "Association"),
    (("CITY OF", "STATE OF", "USA "), "Government"),
    ((" CO ", " COMPANY"), "Company"),
)


def detect_entity_type(name: Optional[str]) -> str:
    """
    Classify an owner name by legal-entity markers.

    Names without a marker that have at most three words and no comma are
    assumed to be individuals ("SMITH JOHN").
    """
    if not name or not name.strip():
        return "Unknown"
    upper = name.upper()
    for needles, entity_type in ENTITY_PATTERNS:
        if any(needle in upper for needle in needles):
            return entity_type
    if len(name.split()) <= 3 and "," not in upper:
        return "Individual"
    return "Unknown"


class OwnedProperty(PropertyRecord):
    model_config = ConfigDict(populate_by_name=True)

    open_violations: int = Field(default=0, alias="openViolations")
    total_violations: int = Field(default=0, alias="totalViolations")


class OwnerPortfolio(ResultModel):
    name: str
    entity_type: str
    property_count: int
    properties: list[OwnedProperty]
    total_assessed: float
    total_sf: float = Field(alias="totalSF")
    total_lot_area: float
    avg_holding_period: Optional[float] = None
    total_open_violations: int
    total_violations: int
    concentration_score: float
    blocks: list[str]


class OwnerSearchResult(ResultModel):
    search_term: str
    match_count: int
    owners: list[OwnerPortfolio]


def concentration_score(property_count: int, block_count: int) -> float:
    """1.0 = every lot on one block, 0.0 = one lot per block (or a single lot)."""
    if property_count <= 1:
        return 0
    return round_half_up(1 - min(block_count / property_count, 1), 2)


def aggregate_owners(
    properties: list[PropertyRecord],
    violations: Iterable[ViolationRecord],
    sales: list[SaleRecord],
    search_term: str,
    as_of: Optional[date] = None,
) -> OwnerSearchResult:
    """
    Roll up the properties matched by an owner search, one entry per exact
    owner string, ordered by total assessed value.

    `properties` should already be the substring matches; their order is kept
    within each owner.
    """
    as_of = as_of or date.today()
    by_bbl = violations_by_bbl(list(violations))
    latest = latest_sales_by_bbl(sales)

    groups: dict[str, dict] = {}
    for prop in properties:
        owner = prop.ownername or UNKNOWN_OWNER
        group = groups.setdefault(owner, {
            "properties": [],
            "blocks": [],
            "holding_periods": [],
            "open": 0,
            "total": 0,
        })

        prop_violations = by_bbl.get(prop.bbl, [])
        open_count = sum(1 for v in prop_violations if v.is_open)
        group["properties"].append(OwnedProperty(
            **prop.model_dump(),
            open_violations=open_count,
            total_violations=len(prop_violations),
        ))
        group["open"] += open_count
        group["total"] += len(prop_violations)

        block = prop.block_key
        if block and block not in group["blocks"]:
            group["blocks"].append(block)

        sale = latest.get(prop.bbl)
        if sale and sale.sale_date:
            group["holding_periods"].append((as_of - sale.sale_date).days / DAYS_PER_YEAR)

    owners = []
    for name, group in groups.items():
        owned = group["properties"]
        holding = group["holding_periods"]
        owners.append(OwnerPortfolio(
            name=name,
            entity_type=detect_entity_type(name),
            property_count=len(owned),
            properties=owned,
            total_assessed=sum(p.assesstot or 0 for p in owned),
            total_sf=sum(p.bldgarea or 0 for p in owned),
            total_lot_area=sum(p.lotarea or 0 for p in owned),
            avg_holding_period=round_half_up(mean(holding), 1) if holding else None,
            total_open_violations=group["open"],
            total_violations=group["total"],
            concentration_score=concentration_score(len(owned), len(group["blocks"])),
            blocks=group["blocks"],
        ))

    owners.sort(key=lambda o: o.total_assessed, reverse=True)
    logger.info(f"[Owners] '{search_term}': {len(properties)} lots across {len(owners)} owners")
    return OwnerSearchResult(search_term=search_term, match_count=len(properties), owners=owners)


# Distressed-owner ranking

VIOLATIONS_PER_PROPERTY_WEIGHT = 10
VIOLATIONS_PER_PROPERTY_CAP = 40
SPREAD_THRESHOLD = 0.5
SPREAD_BONUS = 20
CHRONIC_WEIGHT = 10
CHRONIC_CAP = 20
SINGLE_ASSET_BONUS = 5
OVERWHELMED_MULTIPLE = 5
OVERWHELMED_BONUS = 15


class DistressedOwner(ResultModel):
    name: str
    property_count: int
    total_assessed: float
    open_violations: int
    pct_with_violations: int
    avg_violation_age_days: int
    distress_score: int
    entity_type: str
    top_issues: list[str]


class DistressedOwnerRanking(ResultModel):
    count: int
    owners: list[DistressedOwner]


def determine_issues(violation_count: int, avg_age_days: float, pct_with_violations: float) -> list[str]:
    issues = []
    if violation_count > 10:
        issues.append("Many Violations")
    if avg_age_days > 365:
        issues.append("Chronic Issues")
    if pct_with_violations > SPREAD_THRESHOLD:
        issues.append("Portfolio Contamination")
    if not issues and violation_count > 0:
        issues.append("Minor Violations")
    return issues


def owner_distress_score(
    property_count: int,
    violation_count: int,
    properties_with_violations: int,
    avg_age_days: float,
) -> float:
    score = min(violation_count / property_count * VIOLATIONS_PER_PROPERTY_WEIGHT, VIOLATIONS_PER_PROPERTY_CAP)
    if properties_with_violations / property_count > SPREAD_THRESHOLD:
        score += SPREAD_BONUS
    score += min(avg_age_days / 365 * CHRONIC_WEIGHT, CHRONIC_CAP)
    if property_count == 1 and violation_count > 0:
        score += SINGLE_ASSET_BONUS
    if violation_count > property_count * OVERWHELMED_MULTIPLE:
        score += OVERWHELMED_BONUS
    return score


def rank_distressed_owners(
    properties: list[PropertyRecord],
    open_violations: Iterable[ViolationRecord],
    limit: int = 50,
    min_score: int = 20,
    min_properties: int = 1,
    as_of: Optional[date] = None,
) -> DistressedOwnerRanking:
    """
    Score every owner by how troubled their holdings look.

    Only open violations should be passed in; closed ones are skipped anyway.
    `count` is the number of owners at or above `min_score` before the limit.
    """
    as_of = as_of or date.today()
    by_bbl = violations_by_bbl([v for v in open_violations if v.is_open])

    groups: dict[str, list[PropertyRecord]] = {}
    for prop in properties:
        groups.setdefault(prop.ownername or UNKNOWN_DISTRESSED_OWNER, []).append(prop)

    ranked = []
    for name, owned in groups.items():
        if len(owned) < min_properties:
            continue
        violation_count = 0
        with_violations = 0
        ages = []
        for prop in owned:
            prop_violations = by_bbl.get(prop.bbl, [])
            if not prop_violations:
                continue
            violation_count += len(prop_violations)
            with_violations += 1
            ages.extend((as_of - v.issue_date).days for v in prop_violations if v.issue_date)

        avg_age = mean(ages)
        pct = safe_divide(with_violations, len(owned), default=0)
        score = round_half_up(owner_distress_score(len(owned), violation_count, with_violations, avg_age))
        if score < min_score:
            continue
        ranked.append(DistressedOwner(
            name=name,
            property_count=len(owned),
            total_assessed=sum(p.assesstot or 0 for p in owned),
            open_violations=violation_count,
            pct_with_violations=round_half_up(pct * 100),
            avg_violation_age_days=round_half_up(avg_age),
            distress_score=score,
            entity_type=detect_entity_type(name),
            top_issues=determine_issues(violation_count, avg_age, pct),
        ))

    ranked.sort(key=lambda o: o.distress_score, reverse=True)
    logger.info(f"[Owners] {len(ranked)} distressed owners (min_score={min_score})")
    return DistressedOwnerRanking(count=len(ranked), owners=ranked[:max(limit, 0)])
