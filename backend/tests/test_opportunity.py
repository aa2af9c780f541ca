from datetime import date

import pytest

from cre_explorer.services.opportunity import (
    evaluate_opportunity,
    is_eligible,
    rank_opportunities,
    score_opportunity,
)
from tests.factories import make_property, make_sale

AS_OF = date(2026, 10, 18)


class TestOpportunityScore:
    def test_worked_example(self):
        # 30 (gap) + ~6.0 (tenure) + 10 (ratio 0.5) + 2.5 (lot) + 10 (D class) = 58.5 -> 59
        prop = make_property(far_gap=3.0, bldgclass="D4", lotarea=5000, assesstot=500_000)
        sale = make_sale(sale_price=1_000_000, sale_date=date(2020, 10, 18))

        breakdown = evaluate_opportunity(prop, sale, as_of=AS_OF)

        assert breakdown.far_gap_points == 30
        assert breakdown.assessment_points == pytest.approx(10)
        assert breakdown.size_class_points == pytest.approx(12.5)
        assert breakdown.tenure == 6.0
        assert breakdown.tenure_imputed is False
        assert breakdown.opportunity_score == 59

    def test_missing_sale_imputes_tenure(self):
        prop = make_property(far_gap=1.0)
        breakdown = evaluate_opportunity(prop, None, as_of=AS_OF, default_tenure_years=10)
        assert breakdown.tenure_imputed is True
        assert breakdown.tenure == 10
        assert breakdown.assessment_ratio == 0
        assert breakdown.opportunity_score == 20

    def test_nominal_sale_scores_no_assessment_points(self):
        prop = make_property(far_gap=1.0, assesstot=900_000)
        sale = make_sale(sale_price=10, sale_date=date(2016, 10, 18))
        breakdown = evaluate_opportunity(prop, sale, as_of=AS_OF)
        assert breakdown.assessment_points == 0
        assert breakdown.tenure_imputed is False

    def test_every_component_is_capped(self):
        prop = make_property(far_gap=10, bldgclass="D1", lotarea=100_000, assesstot=5_000_000)
        sale = make_sale(sale_price=1_000_000, sale_date=date(1980, 1, 1))
        assert score_opportunity(prop, sale, as_of=AS_OF) == 100

    def test_negative_gap_scores_zero_gap_points(self):
        prop = make_property(far_gap=-2.0)
        breakdown = evaluate_opportunity(prop, None, as_of=AS_OF, default_tenure_years=0)
        assert breakdown.far_gap_points == 0
        assert breakdown.opportunity_score == 0


class TestEligibility:
    def test_threshold_is_exclusive(self):
        assert not is_eligible(make_property(far_gap=0.5), threshold=0.5)
        assert is_eligible(make_property(far_gap=0.51), threshold=0.5)
        assert not is_eligible(make_property(), threshold=0.5)

    def test_rank_filters_sorts_and_limits(self):
        props = [
            make_property("1000010001", far_gap=0.4),
            make_property("1000010002", far_gap=1.0),
            make_property("1000010003", far_gap=4.0),
            make_property("1000010004", far_gap=2.0),
        ]
        sales = [
            make_sale("1000010003", sale_date=date(2025, 1, 1)),
            make_sale("1000010003", sale_date=date(2010, 1, 1)),
        ]

        ranked = rank_opportunities(props, sales, limit=2, as_of=AS_OF, threshold=0.5)

        assert [p.bbl for p in ranked] == ["1000010003", "1000010004"]
        top = ranked[0]
        # Latest sale is the one scored
        assert top.last_sale_date == date(2025, 1, 1)
        assert top.tenure_imputed is False
        assert ranked[1].tenure_imputed is True
