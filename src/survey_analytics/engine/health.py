"""
Health module: presenteeism costing, musculoskeletal disorders (TMS) and
psychological distress.

All three segments are sensitive; the anonymity gate holds them to the
sensitive threshold. Values here are computed unfiltered.
"""
from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional

import pandas as pd

from survey_analytics.tools.stats import (
    as_number,
    is_missing,
    mean,
    round_half_up,
    safe_div,
    share_percent,
)

from .models import (
    CompanyParams,
    Color,
    DistressResult,
    HealthModuleDef,
    HealthResult,
    PresenteeismResult,
    TmsResult,
    ZoneRate,
)
from .presenteeism import calculate_method_b, survey_aggregate
from .responses import column

# Distress rate bands (%): green < 15 <= yellow < 25 <= orange < 40 <= red
DISTRESS_BANDS = ((15, "green"), (25, "yellow"), (40, "orange"))

TOP_ZONES = 5

# Health tokens visible to indicator conditions and financial formulas, by segment.
TOKEN_SEGMENTS: Dict[str, str] = {
    "presenteeism_prevalence": "presenteeism",
    "productivity_loss_coeff": "presenteeism",
    "presenteeism_days": "presenteeism",
    "presenteeism_annual_cost": "presenteeism",
    "presenteeism_cost_b": "presenteeism",
    "tms_prevalence": "tms",
    "tms_impact": "tms",
    "distress_rate": "distress",
    "avg_stress_level": "distress",
}


def distress_colour(rate: float) -> Color:
    for upper, name in DISTRESS_BANDS:
        if rate < upper:
            return name
    return "red"


def _frequency(value: Any, frequency_map: Dict[str, float]) -> Optional[float]:
    if is_missing(value) or isinstance(value, list):
        return None
    n = as_number(value)
    if n is not None:
        return n
    # Unknown frequency codes count as "never".
    return float(frequency_map.get(str(value), 0))


def compute_presenteeism(frame: pd.DataFrame, module: HealthModuleDef,
                         company: Optional[CompanyParams] = None) -> PresenteeismResult:
    freq_map = dict(module.frequency_map)
    frequencies: List[float] = [
        f for f in (_frequency(v, freq_map) for v in column(frame, module.frequency_question)) if f is not None
    ]
    efficiencies: List[float] = [
        n for n in (as_number(v) for v in column(frame, module.efficiency_question)) if n is not None
    ]
    respondent_count = min(len(frequencies), len(efficiencies))

    prevalence = safe_div(sum(1 for f in frequencies if f > 0), len(frequencies)) * 100
    avg_efficiency = mean(efficiencies)
    loss = 1 - safe_div(avg_efficiency, module.efficiency_scale_max) if efficiencies else 0.0
    days = mean(frequencies) * 12 * loss

    annual_cost = cost_per_employee = cost_pct = roi = method_b = None
    if company is not None and company.headcount:
        total_salary = company.avg_total_salary
        cost = company.headcount * (prevalence / 100) * total_salary * loss
        payroll = company.headcount * total_salary
        annual_cost = round_half_up(cost, 0)
        cost_per_employee = round_half_up(safe_div(cost, company.headcount), 0)
        cost_pct = round_half_up(safe_div(cost, payroll) * 100, 1)
        roi = round_half_up(cost * module.roi_reduction, 0)
        method_b = calculate_method_b(company, survey_aggregate(frame, module))

    return PresenteeismResult(
        prevalence_rate=round_half_up(prevalence, 1),
        avg_efficiency=round_half_up(safe_div(avg_efficiency, module.efficiency_scale_max) * 100, 1),
        productivity_loss_coeff=round_half_up(loss, 2),
        presenteeism_days=round_half_up(days, 1),
        annual_cost=annual_cost,
        cost_per_employee=cost_per_employee,
        cost_as_payroll_pct=cost_pct,
        roi_estimate=roi,
        respondent_count=respondent_count,
        method_b=method_b,
    )


def compute_tms(frame: pd.DataFrame, module: HealthModuleDef) -> TmsResult:
    total = len(frame)
    zones: Counter = Counter()
    affected = 0
    for value in column(frame, module.pain_zones_question):
        if isinstance(value, (list, tuple)) and value:
            affected += 1
            zones.update(str(z) for z in value)

    top = sorted(zones.items(), key=lambda kv: (-kv[1], kv[0]))[:TOP_ZONES]
    impacts = [n for n in (as_number(v) for v in column(frame, module.pain_impact_question)) if n is not None]
    # Impact answers are on a 1-5 scale.
    impact = ((mean(impacts) - 1) / 4) * 100 if impacts else 0.0

    return TmsResult(
        prevalence=share_percent(affected, total),
        top_zones=[ZoneRate(zone=z, rate=share_percent(c, total)) for z, c in top],
        impact_score=round_half_up(impact, 1),
        respondent_count=total,
    )


def compute_distress(frame: pd.DataFrame, module: HealthModuleDef) -> DistressResult:
    total = len(frame)
    stress = column(frame, module.stress_question).map(as_number)
    signs = column(frame, module.distress_question).map(as_number)

    distressed = 0
    for s, d in zip(stress, signs):
        if (not is_missing(s) and s >= module.stress_threshold) or \
                (not is_missing(d) and d >= module.distress_threshold):
            distressed += 1

    rate = safe_div(distressed, total) * 100
    return DistressResult(
        rate=round_half_up(rate, 1),
        avg_stress_level=round_half_up(mean(stress), 1),
        color=distress_colour(rate),
        respondent_count=total,
    )


def compute_health(frame: pd.DataFrame, module: HealthModuleDef,
                   company: Optional[CompanyParams] = None) -> HealthResult:
    return HealthResult(
        presenteeism=compute_presenteeism(frame, module, company),
        tms=compute_tms(frame, module),
        distress=compute_distress(frame, module),
    )


def health_tokens(health: Optional[HealthResult]) -> Dict[str, float]:
    if health is None:
        return {}
    tokens: Dict[str, float] = {}
    p = health.presenteeism
    if p is not None:
        tokens["presenteeism_prevalence"] = p.prevalence_rate
        tokens["productivity_loss_coeff"] = p.productivity_loss_coeff
        tokens["presenteeism_days"] = p.presenteeism_days
        if p.annual_cost is not None:
            tokens["presenteeism_annual_cost"] = p.annual_cost
        if p.method_b is not None:
            tokens["presenteeism_cost_b"] = p.method_b.pres_cost
    if health.tms is not None:
        tokens["tms_prevalence"] = health.tms.prevalence
        tokens["tms_impact"] = health.tms.impact_score
    if health.distress is not None:
        tokens["distress_rate"] = health.distress.rate
        tokens["avg_stress_level"] = health.distress.avg_stress_level
    return tokens
