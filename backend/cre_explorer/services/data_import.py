"""
NYC Open Data import job.

Pulls PLUTO lots for the configured bounding box, then the sales and open
violations on those lots' blocks, transforms the raw Socrata rows into table
rows and upserts them:

    properties   ON CONFLICT (bbl) DO UPDATE
    sales        ON CONFLICT (bbl, sale_date, sale_price) DO NOTHING
    violations   ON CONFLICT (bbl, violation_id) DO UPDATE

Sales and violations for lots that are not in the properties table are
dropped before the write. Re-running the import is safe. Upstream only
serves open violations, so a stored open violation that a complete pull of
its block no longer lists is marked closed.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from cre_explorer.core.config import settings
from cre_explorer.models import Property, Sale, Violation, ViolationStatus, ViolationType
from cre_explorer.services import repository
from cre_explorer.services.nyc_open_data import BoundingBox, NYCOpenDataClient
from cre_explorer.services.records import make_bbl, normalize_bbl
from cre_explorer.utils.numbers import parse_float, parse_int, round_half_up, safe_divide

logger = logging.getLogger(__name__)

BLDGCLASS_DESCRIPTIONS = {
    "O": "Office",
    "K": "Retail/Store",
    "D": "Elevator Apartment",
    "E": "Warehouse",
    "R": "Condo",
}


@dataclass
class ImportStats:
    """Statistics from a data import run."""
    properties_fetched: int = 0
    properties_upserted: int = 0
    properties_failed: int = 0
    sales_fetched: int = 0
    sales_matched: int = 0
    sales_upserted: int = 0
    sales_failed: int = 0
    violations_fetched: int = 0
    violations_matched: int = 0
    violations_upserted: int = 0
    violations_failed: int = 0
    violations_closed: int = 0
    skipped_records: int = 0
    failed_fetch_chunks: list[str] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def elapsed_seconds(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def total_failed(self) -> int:
        return self.properties_failed + self.sales_failed + self.violations_failed


# =============================================================================
# Field helpers
# =============================================================================

def _nonzero_int(value: Any) -> Optional[int]:
    """Integer, with 0 and unparseable values treated as missing."""
    return parse_int(value) or None


def _nonzero_float(value: Any) -> Optional[float]:
    return parse_float(value) or None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_date(value: Any) -> Optional[date]:
    """Date from an ISO timestamp ("2023-01-15T00:00:00.000") or compact "20230115"."""
    text = _text(value)
    if not text:
        return None
    try:
        if len(text) >= 10 and text[4] == "-":
            return date.fromisoformat(text[:10])
        if len(text) >= 8 and text[:8].isdigit():
            return datetime.strptime(text[:8], "%Y%m%d").date()
    except ValueError:
        pass
    logger.debug(f"[Import] Unparseable date {value!r}")
    return None


def bldgclass_description(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    return BLDGCLASS_DESCRIPTIONS.get(code[:1].upper(), "Other")


def _bbl_from(raw: dict, *borough_keys: str) -> Optional[str]:
    bbl = normalize_bbl(raw.get("bbl"))
    if bbl:
        return bbl
    borough = next((raw.get(k) for k in borough_keys if raw.get(k)), None)
    return make_bbl(borough, raw.get("block"), raw.get("lot"))


# =============================================================================
# Transforms
# =============================================================================

def transform_property(raw: dict) -> Optional[dict]:
    """PLUTO row -> properties row. None when no BBL can be built."""
    bbl = _bbl_from(raw, "borocode", "borough")
    if not bbl:
        return None

    residfar = _nonzero_float(raw.get("residfar"))
    commfar = _nonzero_float(raw.get("commfar"))
    facilfar = _nonzero_float(raw.get("facilfar"))
    builtfar = _nonzero_float(raw.get("builtfar"))
    far_gap = None
    if builtfar is not None:
        far_gap = max(residfar or 0, commfar or 0, facilfar or 0) - builtfar

    return {
        "bbl": bbl,
        "borough": int(bbl[0]),
        "block": _nonzero_int(raw.get("block")),
        "lot": _nonzero_int(raw.get("lot")),
        "address": _text(raw.get("address")),
        "zipcode": _text(raw.get("zipcode")),
        "lat": _nonzero_float(raw.get("latitude")),
        "lng": _nonzero_float(raw.get("longitude")),
        "bldgclass": _text(raw.get("bldgclass")),
        "bldgclass_desc": bldgclass_description(_text(raw.get("bldgclass"))),
        "zonedist1": _text(raw.get("zonedist1")),
        "landmark": _text(raw.get("landmark")),
        "ownername": _text(raw.get("ownername")),
        "lotarea": _nonzero_int(raw.get("lotarea")),
        "bldgarea": _nonzero_int(raw.get("bldgarea")),
        "numfloors": _nonzero_float(raw.get("numfloors")),
        "lot_front": _nonzero_float(raw.get("lotfront")),
        "lot_depth": _nonzero_float(raw.get("lotdepth")),
        "yearbuilt": _nonzero_int(raw.get("yearbuilt")),
        "year_altered": _nonzero_int(raw.get("yearalter1") or raw.get("yearaltered1")),
        "builtfar": builtfar,
        "residfar": residfar,
        "commfar": commfar,
        "facilfar": facilfar,
        "far_gap": far_gap,
        "assesstot": _nonzero_float(raw.get("assesstot")),
        "last_sale_date": parse_date(raw.get("lastsaledate")),
        "last_sale_price": _nonzero_float(raw.get("lastsaleprice")),
    }


def transform_sale(raw: dict) -> Optional[dict]:
    """Rolling sales row -> sales row; price_per_sf only when both operands are positive."""
    bbl = _bbl_from(raw, "borough")
    if not bbl:
        return None
    sale_price = _nonzero_int(raw.get("sale_price"))
    gross_sf = _nonzero_int(raw.get("gross_square_feet"))
    psf = safe_divide(sale_price, gross_sf) if sale_price and sale_price > 0 else None
    return {
        "bbl": bbl,
        "sale_price": sale_price,
        "sale_date": parse_date(raw.get("sale_date")),
        "gross_sf": gross_sf,
        "price_per_sf": round_half_up(psf) if psf is not None else None,
        "building_class": _text(raw.get("building_class_category")),
        "buyer": None,
        "seller": None,
    }


def transform_hpd_violation(raw: dict) -> Optional[dict]:
    bbl = make_bbl(raw.get("boroid") or raw.get("borough"), raw.get("block"), raw.get("lot"))
    violation_id = _text(raw.get("violationid"))
    if not bbl or not violation_id:
        return None
    return {
        "bbl": bbl,
        "violation_id": violation_id,
        "violation_type": ViolationType.HPD,
        "status": _text(raw.get("violationstatus")) or ViolationStatus.OPEN,
        "issue_date": parse_date(raw.get("approveddate")),
        "description": _text(raw.get("novdescription")),
    }


def transform_dob_violation(raw: dict) -> Optional[dict]:
    """DOB rows carry no status; a disposition date means the violation is closed."""
    bbl = make_bbl(raw.get("boro") or raw.get("borocode") or raw.get("borough"), raw.get("block"), raw.get("lot"))
    violation_id = _text(raw.get("isn_dob_bis_viol"))
    if not bbl or not violation_id:
        return None
    return {
        "bbl": bbl,
        "violation_id": violation_id,
        "violation_type": ViolationType.DOB,
        "status": ViolationStatus.CLOSED if _text(raw.get("disposition_date")) else ViolationStatus.OPEN,
        "issue_date": parse_date(raw.get("issue_date")),
        "description": _text(raw.get("description")),
    }


def _dedupe(rows: Iterable[dict], key_fields: tuple[str, ...]) -> list[dict]:
    """Last row wins per key; a single INSERT cannot touch the same row twice."""
    unique: dict[tuple, dict] = {}
    for row in rows:
        unique[tuple(row[k] for k in key_fields)] = row
    return list(unique.values())


def transform_all(raw_rows: Iterable[dict], transform, stats: ImportStats) -> list[dict]:
    rows = []
    for raw in raw_rows:
        row = transform(raw)
        if row is None:
            stats.skipped_records += 1
            continue
        rows.append(row)
    return rows


def unique_blocks(raw_properties: list[dict]) -> list[str]:
    blocks = []
    for raw in raw_properties:
        block = parse_int(raw.get("block"))
        if block and str(block) not in blocks:
            blocks.append(str(block))
    return blocks


def years_before(as_of: date, years: int) -> date:
    try:
        return as_of.replace(year=as_of.year - years)
    except ValueError:
        # Feb 29
        return as_of.replace(year=as_of.year - years, day=28)


def close_stale_violations(
    db: Session,
    client: NYCOpenDataClient,
    properties: list[dict],
    known: set[str],
    violations: list[dict],
    stats: ImportStats,
) -> None:
    """Close stored open violations on completely fetched blocks that upstream no longer lists."""
    for violation_type in (ViolationType.HPD, ViolationType.DOB):
        blocks = client.report.complete_blocks.get(violation_type)
        if not blocks:
            continue
        lots = [p["bbl"] for p in properties if p["bbl"] in known and int(p["bbl"][1:6]) in blocks]
        seen = {(v["bbl"], v["violation_id"]) for v in violations if v["violation_type"] == violation_type}
        result = repository.close_missing_violations(db, violation_type, lots, seen)
        stats.violations_closed += result.processed
        stats.violations_failed += result.failed


# =============================================================================
# Job
# =============================================================================

def run_import(
    db: Session,
    client: NYCOpenDataClient,
    bbox: Optional[BoundingBox] = None,
    as_of: Optional[date] = None,
) -> ImportStats:
    """
    Fetch, transform and upsert one bounding box.

    Upstream failures on PLUTO or sales abort the run (UpstreamFailure);
    failed violation chunks and failed write batches are counted in the
    returned stats.
    """
    stats = ImportStats(start_time=datetime.now())
    bbox = bbox or BoundingBox.from_settings()
    as_of = as_of or date.today()

    raw_properties = client.fetch_pluto(bbox)
    blocks = unique_blocks(raw_properties)
    logger.info(f"[Import] {len(raw_properties)} lots on {len(blocks)} blocks")

    raw_sales = client.fetch_sales(blocks, since=years_before(as_of, settings.INGEST_SALES_YEARS)) if blocks else []
    raw_hpd = client.fetch_hpd_violations(blocks)
    raw_dob = client.fetch_dob_violations(blocks)
    stats.failed_fetch_chunks = list(client.report.failed_chunks)

    properties = _dedupe(transform_all(raw_properties, transform_property, stats), ("bbl",))
    sales = _dedupe(transform_all(raw_sales, transform_sale, stats), ("bbl", "sale_date", "sale_price"))
    violations = _dedupe(
        transform_all(raw_hpd, transform_hpd_violation, stats)
        + transform_all(raw_dob, transform_dob_violation, stats),
        ("bbl", "violation_id"),
    )
    stats.properties_fetched = len(properties)
    stats.sales_fetched = len(sales)
    stats.violations_fetched = len(violations)

    if properties:
        result = repository.upsert_rows(db, Property, properties, ["bbl"], update_on_conflict=True)
        stats.properties_upserted, stats.properties_failed = result.processed, result.failed

    known = repository.existing_bbls(db)
    matched_sales = [s for s in sales if s["bbl"] in known]
    matched_violations = [v for v in violations if v["bbl"] in known]
    stats.sales_matched = len(matched_sales)
    stats.violations_matched = len(matched_violations)
    logger.info(
        f"[Import] Sales matching lots: {len(matched_sales)}/{len(sales)}, "
        f"violations matching lots: {len(matched_violations)}/{len(violations)}"
    )

    if matched_sales:
        result = repository.upsert_rows(
            db, Sale, matched_sales, ["bbl", "sale_date", "sale_price"], update_on_conflict=False
        )
        stats.sales_upserted, stats.sales_failed = result.processed, result.failed

    if matched_violations:
        result = repository.upsert_rows(
            db, Violation, matched_violations, ["bbl", "violation_id"], update_on_conflict=True
        )
        stats.violations_upserted, stats.violations_failed = result.processed, result.failed

    close_stale_violations(db, client, properties, known, violations, stats)

    stats.end_time = datetime.now()
    logger.info(f"[Import] Complete in {stats.elapsed_seconds:.1f}s: {stats}")
    return stats
