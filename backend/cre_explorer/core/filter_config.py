"""
Filter vocabulary shared by the /data, /properties and saved-search
endpoints.

Maps the semantic query parameters onto record fields and operators. Loaded
once at import time and passed into the filter pipeline; everything here is
frozen.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class BuildingClassGroup:
    """A named set of building-class first letters."""
    prefixes: tuple[str, ...]
    label: str
    description: str


@dataclass(frozen=True)
class RangeFilter:
    """Inclusive numeric bound on a property field."""
    field: str
    operator: str  # gte | lte
    integer: bool = False


@dataclass(frozen=True)
class TextFilter:
    """String match on a property field."""
    field: str
    mode: str  # ilike (substring, case-insensitive) | eq


@dataclass(frozen=True)
class SortConfig:
    options: tuple[str, ...]
    default: str
    default_order: str


@dataclass(frozen=True)
class FilterConfig:
    bldgclass: Mapping[str, BuildingClassGroup]
    ranges: Mapping[str, RangeFilter]
    search: Mapping[str, TextFilter]
    sort: SortConfig
    # Derived-value threshold; cannot be pushed down to storage
    distress_param: str = "minDistress"


FILTER_CONFIG = FilterConfig(
    bldgclass=MappingProxyType({
        "office": BuildingClassGroup(("O",), "Office", "Office buildings (O1-O9)"),
        "retail": BuildingClassGroup(("K",), "Retail", "Store buildings (K1-K9)"),
        "multifam": BuildingClassGroup(
            ("C", "D", "S", "R"), "Multifamily", "Walk-ups, Elevator Apts, Mixed-Use, Condos"
        ),
        "industrial": BuildingClassGroup(
            ("E", "F", "G", "L"), "Industrial", "Warehouses, Factories, Garages, Lofts"
        ),
    }),
    ranges=MappingProxyType({
        "minFarGap": RangeFilter("far_gap", "gte"),
        "maxFarGap": RangeFilter("far_gap", "lte"),
        "minYear": RangeFilter("yearbuilt", "gte", integer=True),
        "maxYear": RangeFilter("yearbuilt", "lte", integer=True),
        "minAssessed": RangeFilter("assesstot", "gte"),
        "maxAssessed": RangeFilter("assesstot", "lte"),
    }),
    search=MappingProxyType({
        "owner": TextFilter("ownername", "ilike"),
        "address": TextFilter("address", "ilike"),
        "zipcode": TextFilter("zipcode", "eq"),
    }),
    sort=SortConfig(
        options=("far_gap", "assesstot", "yearbuilt", "bldgarea", "lotarea", "distress_score"),
        default="far_gap",
        default_order="desc",
    ),
)


def describe_building_classes(config: FilterConfig = FILTER_CONFIG) -> dict:
    """Filter options in the shape the UI renders."""
    return {
        name: {
            "prefixes": list(group.prefixes),
            "label": group.label,
            "description": group.description,
        }
        for name, group in config.bldgclass.items()
    }
