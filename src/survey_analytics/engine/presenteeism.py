"""
Presenteeism costing.

Method A (macro) estimates presenteeism from the company absenteeism rate and
sector ratios; it needs no survey. Method B (micro) costs the hours degraded
by presenteeism as reported in the survey:

    L   = 1 - average efficiency of affected respondents
    N_c = headcount * prevalence
    H_d = N_c * hours_per_year * L
    V_h = annual value added / (headcount * hours_per_year), or loaded salary / hours_per_year
    cost = H_d * V_h * c_e
"""
from __future__ import annotations

from typing import Any, List, Optional, Tuple

import pandas as pd

from survey_analytics.tools.stats import as_number, is_missing, round_half_up, safe_div

from .models import (
    CompanyParams,
    HealthModuleDef,
    MethodAResult,
    MethodBResult,
    QualityFlag,
    SignalColor,
    SurveyAggregate,
    Trend,
)
from .qualitative import count_percentage
from .responses import column

PRES_ABS_COEFFICIENT = 1.3
PRODUCTIVITY_LOSS_COEFF = 0.33
ERROR_CORRECTION_COEFF = 1.1
DEFAULT_WORKING_DAYS = 220

MIN_RESPONDENTS_METHOD_B = 10
HIGH_QUALITY_RESPONSE_RATE = 0.30
MEDIUM_QUALITY_RESPONSE_RATE = 0.15

# (green max, orange max) in percent
PRES_COST_SIGNAL = (5.0, 8.0)
ABSENTEEISM_SIGNAL = (4.0, 6.0)

# Relative changes below this (in %) are reported as stable.
TREND_STABLE_PCT = 1.0

MONEY_DIGITS = 2


def signal_colour(value: float, green_max: float, orange_max: float, inverse: bool = False) -> SignalColor:
    """Traffic-light signal. inverse=True is for metrics where higher is better."""
    if inverse:
        if value >= orange_max:
            return "green"
        if value >= green_max:
            return "orange"
        return "red"
    if value <= green_max:
        return "green"
    if value <= orange_max:
        return "orange"
    return "red"


def calculate_trend(current: float, previous: float) -> Trend:
    if not previous:
        return Trend(direction="stable", percentage=0.0)
    change = (current - previous) / previous * 100
    if abs(change) < TREND_STABLE_PCT:
        return Trend(direction="stable", percentage=0.0)
    return Trend(direction="up" if change > 0 else "down", percentage=round_half_up(abs(change), 1))


def calculate_method_a(company: CompanyParams, absenteeism_rate: Optional[float] = None,
                       pres_abs_coefficient: float = PRES_ABS_COEFFICIENT,
                       productivity_loss_coeff: float = PRODUCTIVITY_LOSS_COEFF,
                       working_days_per_year: int = DEFAULT_WORKING_DAYS) -> Optional[MethodAResult]:
    """None when no absenteeism rate is known (argument or company parameter)."""
    rate = absenteeism_rate if absenteeism_rate is not None else company.absenteeism_rate
    if rate is None:
        return None

    days_per_year = company.working_days_per_year or working_days_per_year
    total_salary = company.avg_total_salary
    payroll = total_salary * company.headcount
    daily_salary = safe_div(total_salary, days_per_year)

    pres_rate = float(rate) * pres_abs_coefficient
    pres_days = pres_rate / 100 * company.headcount * days_per_year
    loss_days = pres_days * productivity_loss_coeff
    cost = loss_days * daily_salary
    cost_pct = safe_div(cost, payroll) * 100

    return MethodAResult(
        pres_rate=round_half_up(pres_rate, 2),
        pres_days=round_half_up(pres_days, 2),
        productivity_loss_days=round_half_up(loss_days, 2),
        pres_cost=round_half_up(cost, MONEY_DIGITS),
        pres_cost_per_employee=round_half_up(safe_div(cost, company.headcount), MONEY_DIGITS),
        pres_cost_pct_payroll=round_half_up(cost_pct, 2),
        avg_total_salary=round_half_up(total_salary, MONEY_DIGITS),
        payroll=round_half_up(payroll, MONEY_DIGITS),
        daily_salary=round_half_up(daily_salary, MONEY_DIGITS),
        signal=signal_colour(cost_pct, *PRES_COST_SIGNAL),
        absenteeism_signal=signal_colour(float(rate), *ABSENTEEISM_SIGNAL),
        pres_abs_coefficient=pres_abs_coefficient,
        productivity_loss_coeff=productivity_loss_coeff,
        working_days_per_year=days_per_year,
    )


def _affected(value: Any, module: HealthModuleDef) -> Optional[bool]:
    # None when the respondent skipped the frequency question.
    if is_missing(value) or isinstance(value, list) or value == "":
        return None
    n = as_number(value)
    if n is None:
        n = float(module.frequency_map.get(str(value), 0))
    return n > 0


def _distribution(frame: pd.DataFrame, question: Optional[str]) -> dict:
    if not question:
        return {}
    return count_percentage(column(frame, question))


def survey_aggregate(frame: pd.DataFrame, module: HealthModuleDef) -> SurveyAggregate:
    """
    Prevalence and efficiency of the presenteeism questions. Efficiency answers
    are on 0..efficiency_scale_max and averaged over affected respondents only;
    with nobody affected the average efficiency is 1.
    """
    pairs: List[Tuple[bool, Any]] = []
    for freq, eff in zip(column(frame, module.frequency_question), column(frame, module.efficiency_question)):
        affected = _affected(freq, module)
        if affected is not None:
            pairs.append((affected, eff))

    scores = [as_number(eff) for affected, eff in pairs if affected]
    efficiencies = [
        min(max(safe_div(n, module.efficiency_scale_max), 0.0), 1.0) for n in scores if n is not None
    ]
    affected_count = sum(1 for affected, _ in pairs if affected)

    return SurveyAggregate(
        respondents_count=len(pairs),
        prevalence=round_half_up(safe_div(affected_count, len(pairs)), 4),
        avg_efficiency_score=round_half_up(sum(efficiencies) / len(efficiencies), 4) if efficiencies else 1.0,
        factor_distribution=_distribution(frame, module.factors_question),
        impact_distribution=_distribution(frame, module.impact_question),
        working_hours_distribution=_distribution(frame, module.working_hours_question),
    )


def quality_flag(respondents: int, headcount: int) -> QualityFlag:
    rate = safe_div(respondents, headcount)
    if rate >= HIGH_QUALITY_RESPONSE_RATE:
        return "HIGH"
    if rate >= MEDIUM_QUALITY_RESPONSE_RATE:
        return "MEDIUM"
    return "LOW"


def value_per_hour(company: CompanyParams) -> Tuple[float, bool]:
    """Hourly value of work: from the annual value added when known, else the loaded salary."""
    hours = float(company.hours_per_year)
    if company.annual_value_added and company.annual_value_added > 0:
        return safe_div(company.annual_value_added, company.headcount * hours), True
    return safe_div(company.avg_total_salary, hours), False


def calculate_method_b(company: CompanyParams, aggregate: SurveyAggregate,
                       error_correction_coeff: float = ERROR_CORRECTION_COEFF) -> MethodBResult:
    total_salary = company.avg_total_salary
    payroll = total_salary * company.headcount

    loss = 1 - aggregate.avg_efficiency_score
    affected_employees = company.headcount * aggregate.prevalence
    degraded_hours = affected_employees * float(company.hours_per_year) * loss
    hourly_value, uses_value_added = value_per_hour(company)
    cost = degraded_hours * hourly_value * error_correction_coeff
    cost_pct = safe_div(cost, payroll) * 100

    return MethodBResult(
        pres_cost=round_half_up(cost, MONEY_DIGITS),
        pres_cost_pct_payroll=round_half_up(cost_pct, 2),
        pres_cost_per_employee=round_half_up(safe_div(cost, company.headcount), MONEY_DIGITS),
        productivity_loss=round_half_up(loss * 100, 2),
        affected_employees=round_half_up(affected_employees, 2),
        degraded_hours=round_half_up(degraded_hours, 2),
        value_per_hour=round_half_up(hourly_value, MONEY_DIGITS),
        uses_value_added=uses_value_added,
        avg_total_salary=round_half_up(total_salary, MONEY_DIGITS),
        payroll=round_half_up(payroll, MONEY_DIGITS),
        is_valid=aggregate.respondents_count >= MIN_RESPONDENTS_METHOD_B,
        quality_flag=quality_flag(aggregate.respondents_count, company.headcount),
        signal=signal_colour(cost_pct, *PRES_COST_SIGNAL),
        error_correction_coeff=error_correction_coeff,
        aggregate=aggregate,
    )
