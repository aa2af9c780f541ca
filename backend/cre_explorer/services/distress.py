"""
Property distress score from open code violations.

The score is always derived from the violation rows themselves. Any
distress_score column a database may carry is stale as soon as a violation
is closed, so nothing here reads one.

    score = min(open HPD, 20) + min(open DOB * 5, 30)      -> 0..50
"""

import logging
from typing import Iterable

from pydantic import BaseModel

from cre_explorer.models.violation import ViolationType
from cre_explorer.services.records import PropertyRecord, ViolationRecord

logger = logging.getLogger(__name__)

HPD_CAP = 20
DOB_WEIGHT = 5
DOB_CAP = 30
MAX_DISTRESS_SCORE = HPD_CAP + DOB_CAP


class DistressResult(BaseModel):
    distress_score: int
    violation_count: int      # Open violations of every type
    open_hpd: int
    open_dob: int


def distress_from_counts(open_hpd: int, open_dob: int) -> int:
    return min(open_hpd, HPD_CAP) + min(open_dob * DOB_WEIGHT, DOB_CAP)


def evaluate_distress(violations: Iterable[ViolationRecord]) -> DistressResult:
    """Score plus the counts behind it. Closed violations are ignored."""
    open_violations = [v for v in violations if v.is_open]
    open_hpd = sum(1 for v in open_violations if v.violation_type == ViolationType.HPD)
    open_dob = sum(1 for v in open_violations if v.violation_type == ViolationType.DOB)
    return DistressResult(
        distress_score=distress_from_counts(open_hpd, open_dob),
        violation_count=len(open_violations),
        open_hpd=open_hpd,
        open_dob=open_dob,
    )


def score_distress(property: PropertyRecord, open_violations: Iterable[ViolationRecord]) -> int:
    """Distress score for one property, 0..50."""
    result = evaluate_distress(open_violations)
    logger.debug(
        f"[Distress] {property.bbl}: HPD={result.open_hpd} DOB={result.open_dob} -> {result.distress_score}"
    )
    return result.distress_score
