"""
Anonymity gate (k-anonymity).

Every segment of a result carries the number of responses backing it. A
segment backed by fewer responses than its threshold is suppressed: numbers
are zeroed (money fields become None), the segment is flagged confidential
and coloured red, and everything derived from it (priority entries, alerts,
financial metrics) is suppressed or removed with it.

Sensitive segments (health module, sensitive dimensions) are held to
max(general, sensitive). The gate returns a new result and never mutates its
input; applying it twice gives the same result as applying it once.
"""
from __future__ import annotations

import copy
from typing import Optional, Set

from survey_analytics.app.logging import get_logger

from .models import AnonymityThresholds, CalculationResult, HealthResult

logger = get_logger(__name__)

SUPPRESSED_COLOUR = "red"


def apply_anonymity_filter(result: CalculationResult, general_threshold: int = 15,
                           sensitive_threshold: int = 30) -> CalculationResult:
    thresholds = AnonymityThresholds(general=general_threshold, sensitive=sensitive_threshold)
    general = thresholds.general
    sensitive = thresholds.effective_sensitive

    out = copy.deepcopy(result)
    confidential: Set[str] = set()

    for dim_id, ds in out.dimensions.items():
        required = sensitive if ds.sensitive else general
        if ds.is_confidential or ds.respondent_count < required:
            ds.score = 0.0
            ds.is_confidential = True
            ds.color = SUPPRESSED_COLOUR
            out.scores[dim_id] = 0.0
            confidential.add(dim_id)

    for entry in out.priority_matrix:
        if entry.dimension_id in confidential:
            entry.score = 0.0
            entry.priority_rate = 0.0
            entry.criticality_index = 0.0
            entry.is_confidential = True

    confidential |= _filter_health(out.health, sensitive)

    for dept in out.departments:
        if dept.is_confidential or dept.response_count < general:
            dept.is_confidential = True
            dept.scores = {k: 0.0 for k in dept.scores}
            confidential.add(f"department:{dept.code}")
            continue
        # Each score is judged on its own backing count (affected subsets, formulas).
        for k in dept.scores:
            required = sensitive if k in dept.sensitive else general
            if dept.respondent_counts.get(k, 0) < required:
                dept.scores[k] = 0.0
                confidential.add(f"department:{dept.code}:{k}")

    removed_alerts = [k for k, a in out.critical_indicators.items() if confidential.intersection(a.sources)]
    for k in removed_alerts:
        del out.critical_indicators[k]

    if out.financial_metrics is not None:
        removed = [k for k in out.financial_metrics if confidential.intersection(out.financial_sources.get(k, ()))]
        for k in removed:
            del out.financial_metrics[k]
            out.financial_sources.pop(k, None)

    if out.qualitative_insights is not None and out.response_count < general:
        out.qualitative_insights = None
        confidential.add("qualitative")

    if confidential:
        out.narrative = ""
        logger.info(
            "Anonymity gate suppressed segments",
            extra={"suppressed": sorted(confidential), "removed_alerts": removed_alerts},
        )
    return out


def _filter_health(health: Optional[HealthResult], threshold: int) -> Set[str]:
    suppressed: Set[str] = set()
    if health is None:
        return suppressed

    p = health.presenteeism
    if p is not None and (p.is_confidential or p.respondent_count < threshold):
        p.prevalence_rate = 0.0
        p.avg_efficiency = 0.0
        p.productivity_loss_coeff = 0.0
        p.presenteeism_days = 0.0
        # Money fields are withheld (None), never zeroed.
        p.annual_cost = None
        p.cost_per_employee = None
        p.cost_as_payroll_pct = None
        p.roi_estimate = None
        p.method_b = None
        p.is_confidential = True
        suppressed.add("presenteeism")

    t = health.tms
    if t is not None and (t.is_confidential or t.respondent_count < threshold):
        t.prevalence = 0.0
        t.top_zones = []
        t.impact_score = 0.0
        t.is_confidential = True
        suppressed.add("tms")

    d = health.distress
    if d is not None and (d.is_confidential or d.respondent_count < threshold):
        d.rate = 0.0
        d.avg_stress_level = 0.0
        d.color = SUPPRESSED_COLOUR
        d.is_confidential = True
        suppressed.add("distress")

    return suppressed
