from datetime import date, timedelta

import pytest

from cre_explorer.models import Property, Sale, Violation

OFFICE = "1008470012"
ELEVATOR = "1008470013"
RETAIL = "1009000001"
OFFICE_COMP = "1008470020"

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


@pytest.fixture
def seeded(db_session):
    today = date.today()
    db_session.add_all([
        Property(bbl=OFFICE, bldgclass="O4", address="100 TEST AVENUE", ownername="ACME HOLDINGS LLC",
                 commfar=10.0, builtfar=7.0, far_gap=3.0, assesstot=1_000_000, bldgarea=10000,
                 lotarea=5000, yearbuilt=1920, zipcode="10001", lat=40.75, lng=-73.99),
        Property(bbl=ELEVATOR, bldgclass="D4", address="102 TEST AVENUE", ownername="ACME HOLDINGS LLC",
                 residfar=6.0, builtfar=5.0, far_gap=1.0, assesstot=500_000, bldgarea=20000,
                 lotarea=4000, yearbuilt=1960, zipcode="10001", lat=40.7501, lng=-73.9901),
        Property(bbl=RETAIL, bldgclass="K1", address="5 MARKET STREET", ownername="SMITH JOHN",
                 commfar=2.0, builtfar=1.8, far_gap=0.2, assesstot=200_000, bldgarea=3000,
                 zipcode="10011", lat=40.74, lng=-74.0),
        Property(bbl=OFFICE_COMP, bldgclass="O5", address="120 TEST AVENUE", ownername="OTHER CO LLC",
                 commfar=10.0, builtfar=10.0, far_gap=0.0, assesstot=3_000_000, bldgarea=8000,
                 zipcode="10001", lat=40.751, lng=-73.99),
        Sale(bbl=OFFICE, sale_price=12_000_000, sale_date=today - timedelta(days=20),
             gross_sf=10000, price_per_sf=1200),
        Sale(bbl=OFFICE_COMP, sale_price=5_000_000, sale_date=date(2024, 5, 1)),
        Sale(bbl="1000000999", sale_price=7_000_000, sale_date=today - timedelta(days=10)),
        Violation(bbl=ELEVATOR, violation_id="H1", violation_type="HPD", status="Open",
                  issue_date=today - timedelta(days=5)),
        Violation(bbl=ELEVATOR, violation_id="H2", violation_type="HPD", status="Open",
                  issue_date=today - timedelta(days=400)),
        Violation(bbl=ELEVATOR, violation_id="H3", violation_type="HPD", status="Open",
                  issue_date=today - timedelta(days=400)),
        Violation(bbl=ELEVATOR, violation_id="H4", violation_type="HPD", status="Open",
                  issue_date=today - timedelta(days=400)),
        Violation(bbl=ELEVATOR, violation_id="D1", violation_type="DOB", status="Open",
                  issue_date=today - timedelta(days=400)),
        Violation(bbl=ELEVATOR, violation_id="D2", violation_type="DOB", status="Closed",
                  issue_date=today - timedelta(days=900)),
    ])
    db_session.commit()
    return db_session


class TestDataEndpoint:
    def test_office_filter(self, client, seeded):
        response = client.get("/api/data", params={"bldgclass": "office"})
        assert response.status_code == 200
        body = response.json()
        assert [p["bbl"] for p in body["properties"]] == [OFFICE, OFFICE_COMP]
        assert body["totalCount"] == 2
        assert body["stats"]["totalInDatabase"] == 4
        assert body["stats"]["byClass"] == {"O": 2}
        assert "office" in body["meta"]["filterConfig"]
        # Orphan sale is dropped by the join, the 2024 sale is outside 365 days
        assert [s["bbl"] for s in body["sales"]] == [OFFICE]

    def test_min_distress_uses_live_violations(self, client, seeded):
        body = client.get("/api/data", params={"minDistress": "5"}).json()
        assert [p["bbl"] for p in body["properties"]] == [ELEVATOR]
        assert body["properties"][0]["distress_score"] == 9
        assert body["properties"][0]["violation_count"] == 5
        assert body["totalCount"] == 1

    def test_bad_numbers_are_ignored(self, client, seeded):
        body = client.get("/api/data", params={"minFarGap": "abc"}).json()
        assert body["totalCount"] == 4


class TestProperties:
    def test_detail(self, client, seeded):
        body = client.get(f"/api/properties/{ELEVATOR}").json()
        assert body["distress_score"] == 9
        assert len(body["violations"]) == 5
        assert all(v["status"] == "Open" for v in body["violations"])

    def test_missing_property_is_404(self, client, seeded):
        response = client.get("/api/properties/9999999999")
        assert response.status_code == 404
        assert response.json() == {"error": "Property not found: 9999999999"}

    def test_list_with_offset(self, client, seeded):
        body = client.get("/api/properties", params={"offset": "1", "limit": "2"}).json()
        assert body["offset"] == 1
        assert [p["bbl"] for p in body["properties"]] == [ELEVATOR, RETAIL]

    def test_comps(self, client, seeded):
        body = client.get(f"/api/properties/{OFFICE}/comps").json()
        assert [c["bbl"] for c in body["comps"]] == [OFFICE_COMP]
        assert body["comps"][0]["dist_miles"] == 0.07
        assert body["marketStats"]["avgPricePerSF"] == 625
        assert body["subject"]["bbl"] == OFFICE

    def test_comps_for_missing_property(self, client, seeded):
        assert client.get("/api/properties/9999999999/comps").status_code == 404


class TestMarket:
    def test_sales_class_prefix(self, client, seeded):
        body = client.get("/api/sales", params={"bldgclass": "O"}).json()
        assert [s["bbl"] for s in body["sales"]] == [OFFICE]
        assert body["sales"][0]["price_per_sf"] == 1200

    def test_stats(self, client, seeded):
        body = client.get("/api/stats").json()
        assert body["properties"] == 4
        assert body["sales"] == 3
        assert body["byBuildingClass"] == {"O": 2, "D": 1, "K": 1}
        assert body["highFarGapCount"] == 1

    def test_opportunities(self, client, seeded):
        body = client.get("/api/opportunities").json()
        assert body["count"] == 2
        assert [p["bbl"] for p in body["properties"]] == [OFFICE, ELEVATOR]
        assert body["properties"][1]["tenure_imputed"] is True

    def test_heatmap_rejects_unknown_metric(self, client, seeded):
        response = client.get("/api/heatmap", params={"metric": "traffic"})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_heatmap_distress(self, client, seeded):
        body = client.get("/api/heatmap", params={"metric": "distress"}).json()
        assert body["metric"] == "distress"
        assert sum(c["value"] for c in body["cells"]) == 5


class TestOwners:
    def test_search(self, client, seeded):
        body = client.get("/api/owners/acme").json()
        assert body["matchCount"] == 2
        owner = body["owners"][0]
        assert owner["name"] == "ACME HOLDINGS LLC"
        assert owner["entityType"] == "LLC"
        assert owner["concentrationScore"] == 0.5
        assert owner["totalOpenViolations"] == 5

    def test_no_match(self, client, seeded):
        body = client.get("/api/owners/nobody").json()
        assert body == {"searchTerm": "nobody", "matchCount": 0, "owners": []}

    def test_distressed_is_not_an_owner_name(self, client, seeded):
        body = client.get("/api/owners/distressed", params={"minScore": "0"}).json()
        assert "count" in body
        assert body["owners"][0]["name"] == "ACME HOLDINGS LLC"


class TestDashboard:
    def test_summary(self, client, seeded):
        body = client.post("/api/dashboard/summary", json={"bbls": [OFFICE, ELEVATOR]}).json()
        assert body == {
            "propertyCount": 2,
            "totalAssessed": 1_500_000,
            "avgFarGap": 2.0,
            "newViolations": 1,
        }

    def test_empty_summary(self, client, seeded):
        body = client.post("/api/dashboard/summary", json={"bbls": []}).json()
        assert body["propertyCount"] == 0

    def test_opportunities_exclude_owned(self, client, seeded):
        body = client.post("/api/dashboard/opportunities", json={"bbls": []}).json()
        assert [p["bbl"] for p in body["opportunities"]] == [OFFICE]
        body = client.post("/api/dashboard/opportunities", json={"bbls": [OFFICE]}).json()
        assert body["opportunities"] == []

    def test_market_pulse(self, client, seeded):
        body = client.get("/api/dashboard/market-pulse").json()
        assert body["salesCount"] == 1
        assert body["avgPriceSF"] == 1200
        assert body["avgByClass"] == {"O": 1200}


class TestSavedSearches:
    def test_requires_user(self, client, seeded):
        assert client.get("/api/searches").status_code == 401

    def test_create_and_run(self, client, seeded):
        created = client.post(
            "/api/searches",
            json={"name": "Big offices", "filters": {"bldgclass": "office", "minFarGap": "1"}},
            headers=USER,
        )
        assert created.status_code == 201
        search_id = created.json()["id"]

        run = client.get(f"/api/searches/{search_id}/run", headers=USER).json()
        assert [p["bbl"] for p in run["properties"]] == [OFFICE]
        assert run["search"]["name"] == "Big offices"

        listing = client.get("/api/searches", headers=USER).json()
        assert [s["id"] for s in listing["searches"]] == [search_id]

    def test_other_users_cannot_see_it(self, client, seeded):
        search_id = client.post("/api/searches", json={"name": "Mine"}, headers=USER).json()["id"]
        assert client.get(f"/api/searches/{search_id}/run", headers=OTHER_USER).status_code == 404
        assert client.delete(f"/api/searches/{search_id}", headers=OTHER_USER).status_code == 404
        assert client.delete(f"/api/searches/{search_id}", headers=USER).status_code == 200


class TestPortfolios:
    def test_lifecycle(self, client, seeded):
        created = client.post("/api/portfolios", json={"name": "Watchlist"}, headers=USER)
        assert created.status_code == 201
        portfolio_id = created.json()["id"]

        added = client.post(
            f"/api/portfolios/{portfolio_id}/properties",
            json={"bbl": OFFICE, "notes": "call owner"},
            headers=USER,
        )
        assert added.status_code == 200

        detail = client.get(f"/api/portfolios/{portfolio_id}", headers=USER).json()
        assert detail["property_count"] == 1
        assert detail["properties"][0]["bbl"] == OFFICE
        assert detail["properties"][0]["portfolio_notes"] == "call owner"

        client.delete(f"/api/portfolios/{portfolio_id}/properties/{OFFICE}", headers=USER)
        detail = client.get(f"/api/portfolios/{portfolio_id}", headers=USER).json()
        assert detail["property_count"] == 0

    def test_requires_user(self, client, seeded):
        assert client.post("/api/portfolios", json={"name": "x"}).status_code == 401


def test_health(client):
    assert client.get("/api/health").status_code == 200


def test_root_serves_app_info_with_cors(client):
    response = client.get("/", headers={"Origin": "http://localhost:5173"})
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "access-control-allow-origin" in response.headers
