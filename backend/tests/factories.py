"""Record builders shared by the engine tests."""

from datetime import date

from cre_explorer.services.records import (
    PropertyRecord,
    SaleRecord,
    SaleWithProperty,
    ViolationRecord,
)

_violation_seq = 0


def make_property(bbl="1008470012", **fields) -> PropertyRecord:
    return PropertyRecord(bbl=bbl, **fields)


def make_sale(bbl="1008470012", sale_date=date(2024, 1, 15), sale_price=1_000_000, **fields) -> SaleRecord:
    return SaleRecord(bbl=bbl, sale_date=sale_date, sale_price=sale_price, **fields)


def make_violation(bbl="1008470012", violation_type="HPD", status="Open", issue_date=None, violation_id=None):
    global _violation_seq
    _violation_seq += 1
    return ViolationRecord(
        bbl=bbl,
        violation_id=violation_id or f"V{_violation_seq}",
        violation_type=violation_type,
        status=status,
        issue_date=issue_date,
    )


def joined(sale: SaleRecord, prop: PropertyRecord) -> SaleWithProperty:
    return SaleWithProperty(sale=sale, property=prop)
