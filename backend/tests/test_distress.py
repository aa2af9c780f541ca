from cre_explorer.services.distress import (
    MAX_DISTRESS_SCORE,
    distress_from_counts,
    evaluate_distress,
    score_distress,
)
from tests.factories import make_property, make_violation


def violations(hpd=0, dob=0, ecb=0, closed_hpd=0):
    rows = []
    rows += [make_violation(violation_type="HPD") for _ in range(hpd)]
    rows += [make_violation(violation_type="DOB") for _ in range(dob)]
    rows += [make_violation(violation_type="ECB") for _ in range(ecb)]
    rows += [make_violation(violation_type="HPD", status="Closed") for _ in range(closed_hpd)]
    return rows


class TestDistressScore:
    def test_hpd_counts_one_point_each(self):
        assert score_distress(make_property(), violations(hpd=3)) == 3

    def test_dob_counts_five_points_each(self):
        assert score_distress(make_property(), violations(dob=2)) == 10

    def test_closed_violations_are_ignored(self):
        result = evaluate_distress(violations(hpd=3, dob=2, ecb=1, closed_hpd=4))
        assert result.distress_score == 13
        assert result.open_hpd == 3
        assert result.open_dob == 2
        # Every open violation counts toward the total, scored or not
        assert result.violation_count == 6

    def test_components_are_capped(self):
        assert distress_from_counts(25, 0) == 20
        assert distress_from_counts(0, 10) == 30
        assert score_distress(make_property(), violations(hpd=40, dob=12)) == MAX_DISTRESS_SCORE

    def test_no_violations(self):
        result = evaluate_distress([])
        assert result.distress_score == 0
        assert result.violation_count == 0

    def test_adding_a_violation_never_lowers_the_score(self):
        for hpd in range(0, 30):
            for dob in range(0, 10):
                score = distress_from_counts(hpd, dob)
                assert score >= distress_from_counts(max(hpd - 1, 0), dob)
                assert score >= distress_from_counts(hpd, max(dob - 1, 0))
