"""
Property Filter Pipeline

Turns the /data query vocabulary (bldgclass, minFarGap, owner, minDistress,
sort, ...) into a PropertyFilter that can be:

- pushed down to a SQLAlchemy query (everything except minDistress), and
- evaluated in memory against PropertyRecord / ScoredProperty objects.

Both paths share one definition of each criterion, so a saved search re-run
in memory returns the same rows the database would.

Parameters may arrive as query strings or typed values. A numeric value that
fails to parse is dropped (treated as absent), never coerced to zero.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import and_, or_

from cre_explorer.core.filter_config import FILTER_CONFIG, FilterConfig
from cre_explorer.services.distress import evaluate_distress
from cre_explorer.services.records import (
    PropertyRecord,
    ResultModel,
    SaleWithProperty,
    ViolationRecord,
)
from cre_explorer.utils.numbers import mean, parse_float, parse_int

logger = logging.getLogger(__name__)

HIGH_FAR_GAP = 2.0


# =============================================================================
# Parameters
# =============================================================================

class PropertyQueryParams(BaseModel):
    """Raw filter parameters, validated leniently."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    bldgclass: Optional[str] = "all"
    min_far_gap: Optional[float] = None
    max_far_gap: Optional[float] = None
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    min_assessed: Optional[float] = None
    max_assessed: Optional[float] = None
    owner: Optional[str] = None
    address: Optional[str] = None
    zipcode: Optional[str] = None
    min_distress: Optional[int] = None
    sort: Optional[str] = None
    order: Optional[str] = None
    limit: Optional[int] = None

    @field_validator("min_far_gap", "max_far_gap", "min_assessed", "max_assessed", mode="before")
    @classmethod
    def _lenient_float(cls, value, info):
        parsed = parse_float(value)
        if parsed is None and value not in (None, ""):
            logger.debug(f"[Filters] Ignoring unparseable {info.field_name}={value!r}")
        return parsed

    @field_validator("min_year", "max_year", "min_distress", "limit", mode="before")
    @classmethod
    def _lenient_int(cls, value, info):
        parsed = parse_int(value)
        if parsed is None and value not in (None, ""):
            logger.debug(f"[Filters] Ignoring unparseable {info.field_name}={value!r}")
        return parsed

    @field_validator("bldgclass", "owner", "address", "zipcode", "sort", "order", mode="before")
    @classmethod
    def _blank_is_absent(cls, value):
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "PropertyQueryParams":
        """Build from a query-string dict or a saved search's filter bag."""
        return cls.model_validate(dict(raw or {}))

    def active_filters(self) -> dict[str, Any]:
        """Echo of the parameters for UI state sync, camelCase keys."""
        return self.model_dump(by_alias=True, exclude={"limit"})


# =============================================================================
# Composable filter
# =============================================================================

@dataclass(frozen=True)
class RangeCriterion:
    field: str
    operator: str  # gte | lte
    value: float

    def matches(self, record: Any) -> bool:
        actual = getattr(record, self.field, None)
        if actual is None:
            return False
        return actual >= self.value if self.operator == "gte" else actual <= self.value

    def clause(self, model):
        column = getattr(model, self.field)
        return column >= self.value if self.operator == "gte" else column <= self.value


@dataclass(frozen=True)
class TextCriterion:
    field: str
    mode: str  # ilike | eq
    value: str

    def matches(self, record: Any) -> bool:
        actual = getattr(record, self.field, None)
        if actual is None:
            return False
        if self.mode == "eq":
            return str(actual) == self.value
        return self.value.lower() in str(actual).lower()

    def clause(self, model):
        column = getattr(model, self.field)
        if self.mode == "eq":
            return column == self.value
        return column.icontains(self.value, autoescape=True)


@dataclass(frozen=True)
class PropertyFilter:
    """
    Immutable conjunction of property criteria.

    class_prefixes is None when no building-class constraint applies.
    min_distress is only evaluated against scored properties.
    """
    class_prefixes: Optional[tuple[str, ...]] = None
    ranges: tuple[RangeCriterion, ...] = ()
    text: tuple[TextCriterion, ...] = ()
    min_distress: Optional[int] = None
    config: FilterConfig = field(default=FILTER_CONFIG, repr=False, compare=False)

    @classmethod
    def from_params(cls, params: PropertyQueryParams, config: FilterConfig = FILTER_CONFIG) -> "PropertyFilter":
        prefixes = building_class_prefixes(params.bldgclass, config)

        ranges = []
        for param_name, rule in config.ranges.items():
            value = getattr(params, _snake(param_name))
            if value is not None:
                ranges.append(RangeCriterion(rule.field, rule.operator, value))

        text = []
        for param_name, rule in config.search.items():
            value = getattr(params, _snake(param_name))
            if value is not None:
                text.append(TextCriterion(rule.field, rule.mode, value))

        return cls(
            class_prefixes=prefixes,
            ranges=tuple(ranges),
            text=tuple(text),
            min_distress=params.min_distress,
            config=config,
        )

    def matches_class(self, bldgclass: Optional[str]) -> bool:
        if self.class_prefixes is None:
            return True
        return (bldgclass or "")[:1].upper() in self.class_prefixes

    def matches(self, record: PropertyRecord) -> bool:
        """Storage-level criteria only (no distress threshold)."""
        if not self.matches_class(record.bldgclass):
            return False
        return all(c.matches(record) for c in self.ranges) and all(c.matches(record) for c in self.text)

    def matches_scored(self, record: "ScoredProperty") -> bool:
        if not self.matches(record):
            return False
        return self.min_distress is None or record.distress_score >= self.min_distress

    def apply(self, query, model):
        """Push every storage-level criterion down into a SQLAlchemy query."""
        clauses = []
        if self.class_prefixes is not None:
            clauses.append(or_(*[
                model.bldgclass.istartswith(prefix, autoescape=True)
                for prefix in self.class_prefixes
            ]))
        clauses.extend(c.clause(model) for c in self.ranges)
        clauses.extend(c.clause(model) for c in self.text)
        if clauses:
            query = query.filter(and_(*clauses))
        return query


def _snake(camel: str) -> str:
    return "".join(f"_{ch.lower()}" if ch.isupper() else ch for ch in camel)


def building_class_prefixes(name: Optional[str], config: FilterConfig = FILTER_CONFIG) -> Optional[tuple[str, ...]]:
    """Allowed first letters for a semantic class name; None means unconstrained."""
    if not name or name.lower() == "all":
        return None
    group = config.bldgclass.get(name.lower())
    if group is None:
        logger.warning(f"[Filters] Unknown bldgclass filter '{name}', ignoring")
        return None
    return group.prefixes


# =============================================================================
# Scoring + sorting
# =============================================================================

class ScoredProperty(PropertyRecord):
    distress_score: int = 0
    violation_count: int = 0
    max_far: float = 0


def score_properties(
    properties: Iterable[PropertyRecord],
    violations_index: dict[str, list[ViolationRecord]],
) -> list[ScoredProperty]:
    """Attach live distress score, open-violation count and max FAR to each property."""
    scored = []
    for prop in properties:
        result = evaluate_distress(violations_index.get(prop.bbl, []))
        scored.append(ScoredProperty(
            **prop.model_dump(),
            distress_score=result.distress_score,
            violation_count=result.violation_count,
            max_far=prop.max_allowed_far,
        ))
    return scored


def resolve_sort(sort: Optional[str], order: Optional[str], config: FilterConfig = FILTER_CONFIG) -> tuple[str, bool]:
    """(field, ascending). Unknown sort fields fall back to the default."""
    field_name = sort if sort in config.sort.options else config.sort.default
    return field_name, (order or config.sort.default_order) == "asc"


def sort_properties(
    properties: list[ScoredProperty],
    sort: Optional[str] = None,
    order: Optional[str] = None,
    config: FilterConfig = FILTER_CONFIG,
) -> list[ScoredProperty]:
    """Stable sort; missing values sort as zero."""
    field_name, ascending = resolve_sort(sort, order, config)
    return sorted(
        properties,
        key=lambda p: getattr(p, field_name, None) or 0,
        reverse=not ascending,
    )


# =============================================================================
# filterProperties
# =============================================================================

class SaleSummary(BaseModel):
    """A recent sale plus the joined property context shown in the sales table."""
    id: Optional[int] = None
    bbl: str
    sale_price: Optional[float] = None
    sale_date: Optional[str] = None
    gross_sf: Optional[float] = None
    price_per_sf: Optional[float] = None
    address: Optional[str] = None
    bldgclass: Optional[str] = None
    ownername: Optional[str] = None
    zonedist1: Optional[str] = None
    far_gap: Optional[float] = None

    @classmethod
    def from_joined(cls, joined: SaleWithProperty) -> "SaleSummary":
        sale, prop = joined.sale, joined.property
        return cls(
            id=sale.id,
            bbl=sale.bbl,
            sale_price=sale.sale_price,
            sale_date=sale.sale_date.isoformat() if sale.sale_date else None,
            gross_sf=sale.gross_sf,
            price_per_sf=sale.price_per_sf,
            address=prop.address,
            bldgclass=prop.bldgclass,
            ownername=prop.ownername,
            zonedist1=prop.zonedist1,
            far_gap=prop.far_gap,
        )


class FilterStats(ResultModel):
    property_count: int
    total_count: int
    total_in_database: int
    sales_count: int
    by_class: dict[str, int]
    total_assessed: float
    total_sf: float = Field(alias="totalSF")
    high_far_gap_count: int
    avg_far_gap: float
    avg_sale_price: float
    avg_price_per_sf: float = Field(alias="avgPricePerSF")
    active_filters: dict[str, Any]


class FilterResult(ResultModel):
    properties: list[ScoredProperty]
    sales: list[SaleSummary] = []
    total_count: int
    stats: FilterStats


def compute_filter_stats(
    properties: list[ScoredProperty],
    sales: list[SaleSummary],
    total_count: int,
    total_in_database: int,
    active_filters: dict[str, Any],
) -> FilterStats:
    by_class: dict[str, int] = {}
    for prop in properties:
        prefix = prop.class_prefix or "X"
        by_class[prefix] = by_class.get(prefix, 0) + 1

    priced = [s.price_per_sf for s in sales if s.price_per_sf]
    return FilterStats(
        property_count=len(properties),
        total_count=total_count,
        total_in_database=total_in_database,
        sales_count=len(sales),
        by_class=by_class,
        total_assessed=sum(p.assesstot or 0 for p in properties),
        total_sf=sum(p.bldgarea or 0 for p in properties),
        high_far_gap_count=sum(1 for p in properties if (p.far_gap or 0) > HIGH_FAR_GAP),
        avg_far_gap=mean([p.far_gap or 0 for p in properties]),
        avg_sale_price=mean([s.sale_price or 0 for s in sales]),
        avg_price_per_sf=mean(priced),
        active_filters=active_filters,
    )


def filter_properties(
    params: PropertyQueryParams,
    properties: list[PropertyRecord],
    violations_index: dict[str, list[ViolationRecord]],
    recent_sales: Optional[list[SaleWithProperty]] = None,
    total_in_database: Optional[int] = None,
    storage_match_count: Optional[int] = None,
    default_limit: int = 500,
    config: FilterConfig = FILTER_CONFIG,
) -> FilterResult:
    """
    Score, filter, sort and limit a candidate property set.

    properties may already have been narrowed by PropertyFilter.apply at the
    storage level; the in-memory pass re-checks the same criteria so the
    result is identical either way. The distress threshold is applied after
    scoring, and when it is set every match is returned (no limit).
    """
    prop_filter = PropertyFilter.from_params(params, config)

    scored = score_properties(
        (p for p in properties if prop_filter.matches(p)),
        violations_index,
    )
    matched = [p for p in scored if prop_filter.matches_scored(p)]
    ordered = sort_properties(matched, params.sort, params.order, config)

    limit = params.limit if params.limit is not None and params.limit >= 0 else default_limit
    returned = ordered if prop_filter.min_distress is not None else ordered[:limit]

    sales = [
        SaleSummary.from_joined(joined)
        for joined in (recent_sales or [])
        if prop_filter.matches_class(joined.property.bldgclass)
    ]

    # A derived-value filter means only the in-memory count is meaningful
    if prop_filter.min_distress is not None or storage_match_count is None:
        total_count = len(matched)
    else:
        total_count = storage_match_count

    sort_field, ascending = resolve_sort(params.sort, params.order, config)
    active = params.active_filters()
    active.update({"sort": sort_field, "order": "asc" if ascending else "desc"})

    stats = compute_filter_stats(
        returned,
        sales,
        total_count=total_count,
        total_in_database=total_in_database if total_in_database is not None else len(properties),
        active_filters=active,
    )
    logger.info(
        f"[Filters] {len(properties)} candidates -> {len(matched)} matched, returning {len(returned)}"
    )
    return FilterResult(properties=returned, sales=sales, total_count=total_count, stats=stats)
