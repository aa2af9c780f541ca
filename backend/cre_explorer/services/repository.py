"""
Storage access for the analytics layer.

Every read returns typed records (PropertyRecord, SaleRecord, ...) so the
scoring code never sees ORM objects or a Session. SQLAlchemy errors are
re-raised as UpstreamFailure; an unreachable database is never reported as an
empty result.

Writes are bulk upserts in fixed-size batches. A batch that fails is rolled
back and counted, and the remaining batches still run.
"""

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cre_explorer.core.config import settings
from cre_explorer.core.exceptions import PropertyNotFound, UpstreamFailure
from cre_explorer.models import Property, Sale, Violation, ViolationStatus
from cre_explorer.services.filters import PropertyFilter
from cre_explorer.services.records import (
    PropertyRecord,
    SaleRecord,
    SaleWithProperty,
    ViolationRecord,
)

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under driver parameter limits
IN_CLAUSE_CHUNK = 500


@contextmanager
def storage_errors(operation: str):
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"[Repository] {operation} failed: {e}")
        raise UpstreamFailure("database", f"{operation}: {e}") from e


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


# =============================================================================
# Properties
# =============================================================================

def count_properties(db: Session, prop_filter: Optional[PropertyFilter] = None) -> int:
    with storage_errors("count properties"):
        query = db.query(func.count(Property.bbl))
        if prop_filter is not None:
            query = prop_filter.apply(query, Property)
        return query.scalar() or 0


def fetch_properties(
    db: Session,
    prop_filter: Optional[PropertyFilter] = None,
    limit: Optional[int] = None,
    order_by: Optional[str] = None,
    descending: bool = True,
    min_far_gap: Optional[float] = None,
    owner_contains: Optional[str] = None,
    with_coordinates: bool = False,
) -> list[PropertyRecord]:
    """
    Properties matching the storage-level criteria.

    order_by names a Property column; anything else leaves the order to the
    database.
    """
    with storage_errors("fetch properties"):
        query = db.query(Property)
        if prop_filter is not None:
            query = prop_filter.apply(query, Property)
        if min_far_gap is not None:
            query = query.filter(Property.far_gap > min_far_gap)
        if owner_contains:
            query = query.filter(Property.ownername.icontains(owner_contains, autoescape=True))
        if with_coordinates:
            query = query.filter(Property.lat.isnot(None), Property.lng.isnot(None))
        column = getattr(Property, order_by, None) if order_by else None
        if column is not None:
            query = query.order_by(column.desc() if descending else column.asc(), Property.bbl)
        if limit is not None:
            query = query.limit(limit)
        return [PropertyRecord.model_validate(row) for row in query.all()]


def fetch_properties_by_bbl(db: Session, bbls: Iterable[str]) -> list[PropertyRecord]:
    bbl_list = list(dict.fromkeys(bbls))
    records = []
    with storage_errors("fetch properties by bbl"):
        for chunk in _chunks(bbl_list, IN_CLAUSE_CHUNK):
            rows = db.query(Property).filter(Property.bbl.in_(chunk)).all()
            records.extend(PropertyRecord.model_validate(row) for row in rows)
    return records


def get_property(db: Session, bbl: str) -> PropertyRecord:
    with storage_errors("get property"):
        row = db.query(Property).filter(Property.bbl == bbl).first()
    if row is None:
        raise PropertyNotFound(bbl)
    return PropertyRecord.model_validate(row)


# =============================================================================
# Violations
# =============================================================================

def fetch_violations(
    db: Session,
    bbls: Optional[Iterable[str]] = None,
    open_only: bool = False,
    issued_since: Optional[date] = None,
) -> list[ViolationRecord]:
    """Violations, optionally restricted to a set of BBLs."""

    def base_query():
        query = db.query(Violation)
        if open_only:
            query = query.filter(Violation.status == ViolationStatus.OPEN)
        if issued_since is not None:
            query = query.filter(Violation.issue_date >= issued_since)
        return query

    with storage_errors("fetch violations"):
        if bbls is None:
            rows = base_query().all()
        else:
            rows = []
            for chunk in _chunks(list(dict.fromkeys(bbls)), IN_CLAUSE_CHUNK):
                rows.extend(base_query().filter(Violation.bbl.in_(chunk)).all())
        return [ViolationRecord.model_validate(row) for row in rows]


# =============================================================================
# Sales
# =============================================================================

def count_sales(db: Session) -> int:
    with storage_errors("count sales"):
        return db.query(func.count(Sale.id)).scalar() or 0


def fetch_sales(db: Session, bbls: Iterable[str]) -> list[SaleRecord]:
    """Sales for the given lots, newest first."""
    rows = []
    with storage_errors("fetch sales"):
        for chunk in _chunks(list(dict.fromkeys(bbls)), IN_CLAUSE_CHUNK):
            rows.extend(db.query(Sale).filter(Sale.bbl.in_(chunk)).all())
    records = [SaleRecord.model_validate(row) for row in rows]
    records.sort(key=lambda s: s.sale_date or date.min, reverse=True)
    return records


def fetch_sales_with_properties(
    db: Session,
    since: Optional[date] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    exclude_bbl: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[SaleWithProperty]:
    """
    Sales inner-joined to their property, newest first. Orphan sales (no
    matching property) never come back from here.

    min_price is exclusive, max_price inclusive.
    """
    with storage_errors("fetch sales with properties"):
        query = db.query(Sale, Property).join(Property, Property.bbl == Sale.bbl)
        if since is not None:
            query = query.filter(Sale.sale_date >= since)
        if min_price is not None:
            query = query.filter(Sale.sale_price > min_price)
        if max_price is not None:
            query = query.filter(Sale.sale_price <= max_price)
        if exclude_bbl:
            query = query.filter(Sale.bbl != exclude_bbl)
        query = query.order_by(Sale.sale_date.desc(), Sale.id)
        if limit is not None:
            query = query.limit(limit)
        return [
            SaleWithProperty(
                sale=SaleRecord.model_validate(sale),
                property=PropertyRecord.model_validate(prop),
            )
            for sale, prop in query.all()
        ]


# =============================================================================
# Bulk upsert
# =============================================================================

@dataclass
class UpsertResult:
    processed: int = 0
    failed: int = 0
    failed_batches: list[int] = field(default_factory=list)


def _insert_for(db: Session, model):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise UpstreamFailure("database", f"Upsert not supported for dialect '{dialect}'")


def upsert_rows(
    db: Session,
    model,
    rows: list[dict],
    conflict_columns: list[str],
    update_on_conflict: bool = True,
    batch_size: Optional[int] = None,
) -> UpsertResult:
    """
    INSERT ... ON CONFLICT in batches.

    With update_on_conflict the non-key columns present in the rows are
    overwritten; otherwise conflicting rows are left untouched.
    """
    batch_size = batch_size or settings.INGEST_BATCH_SIZE
    result = UpsertResult()
    table = model.__tablename__

    for number, batch in enumerate(_chunks(rows, batch_size), start=1):
        stmt = _insert_for(db, model).values(batch)
        if update_on_conflict:
            update_columns = {
                key: stmt.excluded[key]
                for key in batch[0].keys()
                if key not in conflict_columns
            }
            stmt = stmt.on_conflict_do_update(index_elements=conflict_columns, set_=update_columns)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)

        try:
            db.execute(stmt)
            db.commit()
            result.processed += len(batch)
        except SQLAlchemyError as e:
            db.rollback()
            result.failed += len(batch)
            result.failed_batches.append(number)
            logger.error(f"[Repository] {table} batch {number} ({len(batch)} rows) failed: {e}")

    logger.info(f"[Repository] Upserted {result.processed} {table} rows ({result.failed} failed)")
    return result


def close_missing_violations(
    db: Session,
    violation_type: str,
    bbls: Iterable[str],
    seen: set[tuple[str, str]],
) -> UpsertResult:
    """
    Close stored open violations of one source that a complete open-only
    pull of their lots no longer returns. `seen` holds the (bbl, violation_id)
    keys from that pull. A failed write is rolled back and counted.
    """
    result = UpsertResult()
    stale: dict[str, list[str]] = defaultdict(list)
    with storage_errors("list open violations"):
        for chunk in _chunks(sorted(set(bbls)), IN_CLAUSE_CHUNK):
            rows = (
                db.query(Violation.bbl, Violation.violation_id)
                .filter(
                    Violation.violation_type == violation_type,
                    Violation.status == ViolationStatus.OPEN,
                    Violation.bbl.in_(chunk),
                )
                .all()
            )
            for bbl, violation_id in rows:
                if (bbl, violation_id) not in seen:
                    stale[bbl].append(violation_id)

    count = sum(len(ids) for ids in stale.values())
    if not count:
        return result
    try:
        for bbl, violation_ids in stale.items():
            (
                db.query(Violation)
                .filter(Violation.bbl == bbl, Violation.violation_id.in_(violation_ids))
                .update({Violation.status: ViolationStatus.CLOSED}, synchronize_session=False)
            )
        db.commit()
        result.processed = count
    except SQLAlchemyError as e:
        db.rollback()
        result.failed = count
        logger.error(f"[Repository] Closing {count} {violation_type} violations failed: {e}")

    logger.info(f"[Repository] Closed {result.processed} {violation_type} violations no longer open upstream")
    return result


def existing_bbls(db: Session) -> set[str]:
    with storage_errors("list property bbls"):
        return {bbl for (bbl,) in db.query(Property.bbl).all()}


def commit(db: Session, operation: str) -> None:
    """Commit the session, rolling back and raising UpstreamFailure on error."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[Repository] {operation} failed: {e}")
        raise UpstreamFailure("database", f"{operation}: {e}") from e
