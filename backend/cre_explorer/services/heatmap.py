"""
Spatial Grid Aggregator

Buckets points into a square lat/lng grid for the map heat layer. Each point
snaps to the nearest multiple of the cell size on both axes; cells are keyed
by their integer indices so floating point noise never splits a cell.

Metrics:
    opportunity  mean FAR gap x 10 per cell (lots with a positive gap)
    price        mean sale price / building sf per cell
    distress     open violation count per cell, count = distinct lots
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from pydantic import BaseModel

from cre_explorer.core.config import settings
from cre_explorer.core.exceptions import InvalidParameter
from cre_explorer.services.records import PropertyRecord, SaleWithProperty, ViolationRecord
from cre_explorer.utils.geo import grid_center, grid_index
from cre_explorer.utils.numbers import round_half_up, safe_divide

logger = logging.getLogger(__name__)

METRICS = ("opportunity", "price", "distress")

OPPORTUNITY_SCALE = 10
OPPORTUNITY_MAX_FLOOR = 100
PRICE_PSF_CEILING = 10000
PRICE_MAX_FLOOR = 1000
DISTRESS_MAX_FLOOR = 10


class HeatCell(BaseModel):
    lat: float
    lng: float
    value: float
    count: int


class Heatmap(BaseModel):
    metric: str
    cells: list[HeatCell]
    min: float
    max: float


@dataclass
class _Bucket:
    total: float = 0.0
    points: int = 0
    bbls: set = field(default_factory=set)


class GridAccumulator:
    """
    Incremental grid aggregation.

    Call add() once per point (from a list or a cursor) and cells() at the end.
    """

    def __init__(self, cell_size: float):
        if not cell_size or cell_size <= 0:
            raise InvalidParameter("resolution", cell_size, "Cell size must be positive")
        self.cell_size = cell_size
        self._buckets: dict[tuple[int, int], _Bucket] = {}

    def add(self, lat: float, lng: float, value: float = 1.0, bbl: Optional[str] = None) -> None:
        key = (grid_index(lat, self.cell_size), grid_index(lng, self.cell_size))
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket()
        bucket.total += value
        bucket.points += 1
        if bbl is not None:
            bucket.bbls.add(bbl)

    def __len__(self) -> int:
        return len(self._buckets)

    def cells(self, reducer: str = "mean", scale: float = 1, count_distinct: bool = False) -> list[HeatCell]:
        """
        Materialize the grid.

        reducer "mean" averages the added values, "sum" totals them. Values
        are multiplied by scale and rounded half-up.
        """
        result = []
        for (lat_idx, lng_idx), bucket in self._buckets.items():
            if reducer == "sum":
                raw = bucket.total
            else:
                raw = safe_divide(bucket.total, bucket.points, default=0)
            result.append(HeatCell(
                lat=round(grid_center(lat_idx, self.cell_size), 6),
                lng=round(grid_center(lng_idx, self.cell_size), 6),
                value=round_half_up(raw * scale),
                count=len(bucket.bbls) if count_distinct else bucket.points,
            ))
        return result


def validate_metric(metric: str) -> str:
    if metric not in METRICS:
        raise InvalidParameter("metric", metric, f"Invalid metric. Use: {', '.join(METRICS)}")
    return metric


def opportunity_grid(properties: Iterable[PropertyRecord], cell_size: float) -> list[HeatCell]:
    grid = GridAccumulator(cell_size)
    for prop in properties:
        if not prop.has_coordinates or not prop.far_gap or prop.far_gap <= 0:
            continue
        grid.add(prop.lat, prop.lng, prop.far_gap, prop.bbl)
    return grid.cells("mean", scale=OPPORTUNITY_SCALE)


def price_grid(sales: Iterable[SaleWithProperty], cell_size: float) -> list[HeatCell]:
    grid = GridAccumulator(cell_size)
    for joined in sales:
        prop = joined.property
        if not prop.has_coordinates or not prop.bldgarea:
            continue
        psf = (joined.sale.sale_price or 0) / prop.bldgarea
        if psf <= 0 or psf > PRICE_PSF_CEILING:
            continue
        grid.add(prop.lat, prop.lng, psf, prop.bbl)
    return grid.cells("mean")


def distress_grid(
    violations: Iterable[ViolationRecord],
    properties_by_bbl: dict[str, PropertyRecord],
    cell_size: float,
) -> list[HeatCell]:
    grid = GridAccumulator(cell_size)
    for violation in violations:
        if not violation.is_open:
            continue
        prop = properties_by_bbl.get(violation.bbl)
        if prop is None or not prop.has_coordinates:
            continue
        grid.add(prop.lat, prop.lng, 1, violation.bbl)
    return grid.cells("sum", count_distinct=True)


def build_heatmap(
    metric: str,
    properties: Iterable[PropertyRecord] = (),
    sales: Iterable[SaleWithProperty] = (),
    violations: Iterable[ViolationRecord] = (),
    cell_size: Optional[float] = None,
) -> Heatmap:
    """
    Grid one metric. Only the inputs the metric needs are read: properties
    for opportunity, joined sales for price, violations plus properties (for
    coordinates) for distress.
    """
    validate_metric(metric)
    cell_size = cell_size if cell_size is not None else settings.HEATMAP_CELL_SIZE

    if metric == "opportunity":
        cells = opportunity_grid(properties, cell_size)
        low, high = 0, max([c.value for c in cells] + [OPPORTUNITY_MAX_FLOOR])
    elif metric == "price":
        cells = price_grid(sales, cell_size)
        values = [c.value for c in cells]
        low, high = min(values + [0]), max(values + [PRICE_MAX_FLOOR])
    else:
        index = {p.bbl: p for p in properties}
        cells = distress_grid(violations, index, cell_size)
        low, high = 0, max([c.value for c in cells] + [DISTRESS_MAX_FLOOR])

    logger.info(f"[Heatmap] {metric}: {len(cells)} cells at {cell_size} deg")
    return Heatmap(metric=metric, cells=cells, min=low, max=high)
