from datetime import date

import httpx
import pytest

from cre_explorer.core.exceptions import UpstreamFailure
from cre_explorer.models import Property, Sale, Violation
from cre_explorer.services.data_import import (
    bldgclass_description,
    parse_date,
    run_import,
    transform_dob_violation,
    transform_hpd_violation,
    transform_property,
    transform_sale,
    unique_blocks,
    years_before,
)
from cre_explorer.services.nyc_open_data import BoundingBox, NYCOpenDataClient, chunk_blocks
from cre_explorer.services.records import make_bbl, normalize_bbl

PLUTO_ROWS = [
    {
        "bbl": "1008470012.00000000", "borough": "MN", "block": "847", "lot": "12",
        "address": "100 TEST AVENUE", "ownername": "ACME LLC ", "bldgclass": "O4",
        "residfar": "6.02", "commfar": "10.0", "facilfar": "10.0", "builtfar": "7.5",
        "lotarea": "5000", "bldgarea": "37500", "assesstot": "123450", "yearbuilt": "1925",
        "latitude": "40.75", "longitude": "-73.99", "lastsaledate": "2019-05-01T00:00:00.000",
    },
    {
        "bbl": "1008470013", "block": "847", "lot": "13", "bldgclass": "D4",
        "residfar": "6.02", "builtfar": "0", "latitude": "40.7501", "longitude": "-73.9901",
    },
    {"bbl": "1009000001", "block": "900", "lot": "1", "bldgclass": "A1"},
]

SALES_ROWS = [
    {"borough": "1", "block": "847", "lot": "12", "sale_price": "2500000",
     "sale_date": "2024-03-01T00:00:00.000", "gross_square_feet": "10000",
     "building_class_category": "21 OFFICE BUILDINGS"},
    {"borough": "1", "block": "847", "lot": "99", "sale_price": "900000",
     "sale_date": "2024-04-01T00:00:00.000", "gross_square_feet": "0"},
]

HPD_ROWS = [
    {"boroid": "1", "block": "847", "lot": "13", "violationid": "H1",
     "violationstatus": "Open", "approveddate": "2025-01-15T00:00:00.000", "novdescription": "Heat"},
]

DOB_ROWS = [
    {"boro": "1", "block": "00847", "lot": "00012", "isn_dob_bis_viol": "D1",
     "issue_date": "20230115", "disposition_date": "20230301"},
    {"boro": "1", "block": "00847", "lot": "00012", "isn_dob_bis_viol": "D2", "issue_date": "20240601"},
]


def open_data_transport(fail_dob=False):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if "64uk-42ks" in path:
            return httpx.Response(200, json=PLUTO_ROWS)
        if "usep-8jbt" in path:
            return httpx.Response(200, json=SALES_ROWS)
        if "wvxf-dwi5" in path:
            return httpx.Response(200, json=HPD_ROWS)
        if "3h2n-5cm9" in path:
            if fail_dob:
                return httpx.Response(503, json={"error": "unavailable"})
            return httpx.Response(200, json=DOB_ROWS)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class TestTransforms:
    def test_property(self):
        row = transform_property(PLUTO_ROWS[0])
        assert row["bbl"] == "1008470012"
        assert row["borough"] == 1
        assert row["far_gap"] == pytest.approx(2.5)
        assert row["ownername"] == "ACME LLC"
        assert row["bldgclass_desc"] == "Office"
        assert row["last_sale_date"] == date(2019, 5, 1)
        assert row["lat"] == 40.75

    def test_property_zero_built_far_has_no_gap(self):
        # builtfar "0" is treated as missing
        assert transform_property(PLUTO_ROWS[1])["far_gap"] is None

    def test_property_bbl_from_parts(self):
        row = transform_property({"borough": "MN", "block": "847", "lot": "12"})
        assert row["bbl"] == "1008470012"

    @pytest.mark.parametrize("raw,expected", [
        ("1006980037.00000000", "1006980037"),
        (1006980037, "1006980037"),
        ("100698003", None),
        ("10069800370", None),
        ("6006980037", None),
        ("10069A0037", None),
        ("", None),
    ])
    def test_normalize_bbl(self, raw, expected):
        assert normalize_bbl(raw) == expected

    def test_make_bbl_pads_and_checks_ranges(self):
        assert make_bbl("1", "7", "5") == "1000070005"
        assert make_bbl("BK", "847", "12") == "3008470012"
        assert make_bbl("1", "123456", "1") is None
        assert make_bbl("7", "847", "12") is None

    def test_malformed_bbl_falls_back_to_parts(self):
        row = transform_property({"bbl": "8470012", "borough": "MN", "block": "847", "lot": "12"})
        assert row["bbl"] == "1008470012"

    def test_property_without_bbl(self):
        assert transform_property({"address": "nowhere"}) is None

    def test_sale_price_per_sf(self):
        row = transform_sale(SALES_ROWS[0])
        assert row["bbl"] == "1008470012"
        assert row["price_per_sf"] == 250
        assert row["sale_date"] == date(2024, 3, 1)
        assert transform_sale(SALES_ROWS[1])["price_per_sf"] is None

    def test_hpd(self):
        row = transform_hpd_violation(HPD_ROWS[0])
        assert row["bbl"] == "1008470013"
        assert row["violation_type"] == "HPD"
        assert row["status"] == "Open"
        assert row["issue_date"] == date(2025, 1, 15)

    def test_dob_status_from_disposition(self):
        closed, open_ = (transform_dob_violation(r) for r in DOB_ROWS)
        assert closed["bbl"] == "1008470012"
        assert closed["status"] == "Closed"
        assert closed["issue_date"] == date(2023, 1, 15)
        assert open_["status"] == "Open"

    @pytest.mark.parametrize("raw,expected", [
        ("2023-01-15T00:00:00.000", date(2023, 1, 15)),
        ("2023-01-15", date(2023, 1, 15)),
        ("20230115", date(2023, 1, 15)),
        ("01/15/2023", None),
        ("", None),
        (None, None),
    ])
    def test_parse_date(self, raw, expected):
        assert parse_date(raw) == expected

    def test_bldgclass_description(self):
        assert bldgclass_description("K4") == "Retail/Store"
        assert bldgclass_description("Z9") == "Other"
        assert bldgclass_description(None) is None

    def test_helpers(self):
        assert unique_blocks(PLUTO_ROWS) == ["847", "900"]
        assert chunk_blocks(["1", "2", "3"], 2) == [["1", "2"], ["3"]]
        assert years_before(date(2024, 2, 29), 3) == date(2021, 2, 28)


class TestOpenDataClient:
    def test_pluto_keeps_target_classes(self):
        with NYCOpenDataClient(transport=open_data_transport()) as client:
            rows = client.fetch_pluto(BoundingBox.from_settings())
        assert [r["bldgclass"] for r in rows] == ["O4", "D4"]

    def test_http_error_is_upstream_failure(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        with NYCOpenDataClient(transport=transport) as client:
            with pytest.raises(UpstreamFailure):
                client.fetch_pluto(BoundingBox.from_settings())

    def test_failed_violation_chunk_is_skipped(self):
        with NYCOpenDataClient(transport=open_data_transport(fail_dob=True)) as client:
            assert client.fetch_dob_violations(["847"]) == []
            assert client.fetch_hpd_violations(["847"]) == HPD_ROWS
        assert client.report.failed_chunks == ["DOB:0"]
        assert client.report.complete_blocks == {"HPD": {847}}


class TestRunImport:
    def run(self, db_session, **transport_kwargs):
        with NYCOpenDataClient(transport=open_data_transport(**transport_kwargs)) as client:
            return run_import(db_session, client, as_of=date(2025, 6, 1))

    def test_imports_and_drops_orphans(self, db_session):
        stats = self.run(db_session)

        assert stats.properties_upserted == 2
        assert stats.sales_fetched == 2
        assert stats.sales_matched == 1
        assert stats.violations_matched == 3
        assert stats.total_failed == 0

        assert {p.bbl for p in db_session.query(Property).all()} == {"1008470012", "1008470013"}
        sales = db_session.query(Sale).all()
        assert [s.bbl for s in sales] == ["1008470012"]
        assert db_session.query(Violation).count() == 3

    def test_rerun_is_idempotent(self, db_session):
        self.run(db_session)
        self.run(db_session)
        assert db_session.query(Property).count() == 2
        assert db_session.query(Sale).count() == 1
        assert db_session.query(Violation).count() == 3

    def test_rerun_updates_properties(self, db_session):
        self.run(db_session)
        PLUTO_ROWS[0]["ownername"] = "NEW OWNER LLC"
        try:
            self.run(db_session)
        finally:
            PLUTO_ROWS[0]["ownername"] = "ACME LLC "
        db_session.expire_all()
        assert db_session.get(Property, "1008470012").ownername == "NEW OWNER LLC"

    def test_violation_outage_is_reported(self, db_session):
        stats = self.run(db_session, fail_dob=True)
        assert stats.failed_fetch_chunks == ["DOB:0"]
        assert stats.violations_matched == 1

    def test_rerun_refreshes_violation_status(self, db_session):
        self.run(db_session)
        assert db_session.get(Violation, ("1008470012", "D2")).status == "Open"

        DOB_ROWS[1]["disposition_date"] = "20250501"
        try:
            self.run(db_session)
        finally:
            del DOB_ROWS[1]["disposition_date"]
        db_session.expire_all()
        assert db_session.get(Violation, ("1008470012", "D2")).status == "Closed"

    def test_violation_dropped_from_open_pull_is_closed(self, db_session):
        self.run(db_session)
        saved = list(HPD_ROWS)
        HPD_ROWS.clear()
        try:
            stats = self.run(db_session)
        finally:
            HPD_ROWS.extend(saved)
        db_session.expire_all()
        assert stats.violations_closed == 1
        assert db_session.get(Violation, ("1008470013", "H1")).status == "Closed"
        assert db_session.get(Violation, ("1008470012", "D2")).status == "Open"

    def test_failed_chunk_leaves_stored_violations_open(self, db_session):
        self.run(db_session)
        stats = self.run(db_session, fail_dob=True)
        db_session.expire_all()
        assert stats.violations_closed == 0
        assert db_session.get(Violation, ("1008470012", "D2")).status == "Open"
