import pytest

from cre_explorer.core.exceptions import InvalidParameter
from cre_explorer.services.heatmap import GridAccumulator, build_heatmap, validate_metric
from tests.factories import joined, make_property, make_sale, make_violation

CELL = 0.002


class TestGridAccumulator:
    def test_nearby_points_share_a_cell(self):
        grid = GridAccumulator(CELL)
        grid.add(40.7501, -73.9899, 2.0)
        grid.add(40.7504, -73.9901, 4.0)
        cells = grid.cells("mean")
        assert len(cells) == 1
        cell = cells[0]
        assert (cell.lat, cell.lng) == (40.75, -73.99)
        assert cell.value == 3
        assert cell.count == 2

    def test_sum_and_distinct_count(self):
        grid = GridAccumulator(CELL)
        grid.add(40.75, -73.99, 1, "A")
        grid.add(40.75, -73.99, 1, "A")
        grid.add(40.7502, -73.99, 1, "B")
        cell = grid.cells("sum", count_distinct=True)[0]
        assert cell.value == 3
        assert cell.count == 2

    def test_far_points_split(self):
        grid = GridAccumulator(CELL)
        grid.add(40.75, -73.99)
        grid.add(40.76, -73.99)
        assert len(grid) == 2

    @pytest.mark.parametrize("size", [0, -0.01])
    def test_rejects_non_positive_cell_size(self, size):
        with pytest.raises(InvalidParameter):
            GridAccumulator(size)


class TestBuildHeatmap:
    def test_unknown_metric(self):
        with pytest.raises(InvalidParameter):
            validate_metric("traffic")
        with pytest.raises(InvalidParameter):
            build_heatmap("traffic")

    def test_opportunity(self):
        properties = [
            make_property("1000010001", far_gap=2.0, lat=40.75, lng=-73.99),
            make_property("1000010002", far_gap=3.0, lat=40.7502, lng=-73.9902),
            make_property("1000010003", far_gap=-1.0, lat=40.75, lng=-73.99),
            make_property("1000010004", far_gap=5.0),
        ]
        heatmap = build_heatmap("opportunity", properties=properties, cell_size=CELL)
        assert len(heatmap.cells) == 1
        assert heatmap.cells[0].value == 25
        assert heatmap.cells[0].count == 2
        assert (heatmap.min, heatmap.max) == (0, 100)

    def test_price_rejects_outliers(self):
        prop = make_property("1000010001", bldgarea=1000, lat=40.75, lng=-73.99)
        tiny = make_property("1000010002", bldgarea=10, lat=40.75, lng=-73.99)
        sales = [
            joined(make_sale("1000010001", sale_price=1_500_000), prop),
            joined(make_sale("1000010002", sale_price=1_000_000), tiny),
        ]
        heatmap = build_heatmap("price", sales=sales, cell_size=CELL)
        assert [c.value for c in heatmap.cells] == [1500]
        assert heatmap.max == 1500
        assert heatmap.min == 0

    def test_price_max_floor(self):
        prop = make_property("1000010001", bldgarea=1000, lat=40.75, lng=-73.99)
        heatmap = build_heatmap("price", sales=[joined(make_sale(sale_price=300_000), prop)], cell_size=CELL)
        assert heatmap.max == 1000

    def test_distress_counts_open_violations_per_cell(self):
        properties = [
            make_property("1000010001", lat=40.75, lng=-73.99),
            make_property("1000010002", lat=40.7502, lng=-73.99),
            make_property("1000010003"),
        ]
        violations = [
            make_violation("1000010001"),
            make_violation("1000010001", "DOB"),
            make_violation("1000010002"),
            make_violation("1000010002", status="Closed"),
            make_violation("1000010003"),
            make_violation("1000099999"),
        ]
        heatmap = build_heatmap("distress", properties=properties, violations=violations, cell_size=CELL)
        assert len(heatmap.cells) == 1
        assert heatmap.cells[0].value == 3
        assert heatmap.cells[0].count == 2
        assert heatmap.max == 10

    def test_empty(self):
        heatmap = build_heatmap("distress", cell_size=CELL)
        assert heatmap.cells == []
        assert (heatmap.min, heatmap.max) == (0, 10)
