"""
Typed records the analytics services operate on.

Storage rows are converted into these at the repository boundary so that the
scoring, comps, owner and heatmap code never touches a Session. Field names
follow the PLUTO / DOF column names the frontend already consumes.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from cre_explorer.models.violation import ViolationStatus
from cre_explorer.utils.numbers import safe_divide, round_half_up

BOROUGH_CODES = {"MN": 1, "BX": 2, "BK": 3, "QN": 4, "SI": 5}
VALID_BOROUGHS = "12345"
BBL_LENGTH = 10


def normalize_bbl(value) -> Optional[str]:
    """
    Canonical 10-digit BBL string; strips the ".00000000" suffix Socrata adds.
    Anything that is not a 1-5 borough digit, 5-digit block and 4-digit lot
    comes back as None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if "." in text:
        text = text.split(".")[0]
    if len(text) != BBL_LENGTH or not text.isdigit() or text[0] not in VALID_BOROUGHS:
        return None
    return text


def make_bbl(borough, block, lot) -> Optional[str]:
    """Build a BBL from its parts, e.g. ("MN", "847", "12") -> "1008470012"."""
    try:
        if isinstance(borough, str) and borough.strip().upper() in BOROUGH_CODES:
            boro = BOROUGH_CODES[borough.strip().upper()]
        else:
            boro = int(borough)
        return normalize_bbl(f"{boro}{int(float(block)):05d}{int(float(lot)):04d}")
    except (TypeError, ValueError):
        return None


class ResultModel(BaseModel):
    """Envelope for engine results; serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PropertyRecord(BaseModel):
    """A tax lot as read from storage."""
    model_config = ConfigDict(from_attributes=True)

    bbl: str
    address: Optional[str] = None
    ownername: Optional[str] = None
    bldgclass: Optional[str] = None
    zipcode: Optional[str] = None
    zonedist1: Optional[str] = None
    lotarea: Optional[float] = None
    bldgarea: Optional[float] = None
    numfloors: Optional[float] = None
    yearbuilt: Optional[int] = None
    residfar: Optional[float] = None
    commfar: Optional[float] = None
    facilfar: Optional[float] = None
    builtfar: Optional[float] = None
    far_gap: Optional[float] = None
    assesstot: Optional[float] = None
    last_sale_date: Optional[date] = None
    last_sale_price: Optional[float] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    @field_validator("bbl", mode="before")
    @classmethod
    def _normalize_bbl(cls, value):
        return normalize_bbl(value)

    @field_validator("ownername")
    @classmethod
    def _trim_owner(cls, value):
        return value.strip() if value else value

    @model_validator(mode="after")
    def _fill_far_gap(self):
        if self.far_gap is None and self.builtfar is not None:
            self.far_gap = self.max_allowed_far - self.builtfar
        return self

    @property
    def max_allowed_far(self) -> float:
        return max(self.residfar or 0, self.commfar or 0, self.facilfar or 0)

    @property
    def class_prefix(self) -> str:
        return (self.bldgclass or "")[:1].upper()

    @property
    def block_key(self) -> Optional[str]:
        """Block portion of the BBL (borough digit excluded)."""
        if self.bbl and len(self.bbl) >= 6:
            return self.bbl[1:6]
        return None

    @property
    def has_coordinates(self) -> bool:
        return bool(self.lat) and bool(self.lng)


class SaleRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    bbl: str
    sale_price: Optional[float] = None
    sale_date: Optional[date] = None
    gross_sf: Optional[float] = None
    price_per_sf: Optional[float] = None
    building_class: Optional[str] = None

    @field_validator("bbl", mode="before")
    @classmethod
    def _normalize_bbl(cls, value):
        return normalize_bbl(value)

    def effective_price_per_sf(self, fallback_area: Optional[float] = None) -> Optional[float]:
        """Stored $/sf, else sale price over gross sf (or the lot's building area)."""
        if self.price_per_sf and self.price_per_sf > 0:
            return self.price_per_sf
        area = self.gross_sf if self.gross_sf and self.gross_sf > 0 else fallback_area
        psf = safe_divide(self.sale_price, area)
        if psf is None or psf <= 0:
            return None
        return round_half_up(psf)


class ViolationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bbl: str
    violation_id: str
    violation_type: str
    status: str
    issue_date: Optional[date] = None
    description: Optional[str] = None

    @field_validator("bbl", mode="before")
    @classmethod
    def _normalize_bbl(cls, value):
        return normalize_bbl(value)

    @property
    def is_open(self) -> bool:
        return self.status == ViolationStatus.OPEN


class SaleWithProperty(BaseModel):
    """A sale joined to its (resolved) property. Orphan sales never become one of these."""
    sale: SaleRecord
    property: PropertyRecord


def latest_sales_by_bbl(sales: list[SaleRecord]) -> dict[str, SaleRecord]:
    """
    Most recent sale per BBL.

    Ties on sale_date keep whichever record came first in the input.
    """
    ordered = sorted(sales, key=lambda s: s.sale_date or date.min, reverse=True)
    latest: dict[str, SaleRecord] = {}
    for sale in ordered:
        if sale.bbl not in latest:
            latest[sale.bbl] = sale
    return latest


def violations_by_bbl(violations: list[ViolationRecord]) -> dict[str, list[ViolationRecord]]:
    index: dict[str, list[ViolationRecord]] = {}
    for violation in violations:
        index.setdefault(violation.bbl, []).append(violation)
    return index
