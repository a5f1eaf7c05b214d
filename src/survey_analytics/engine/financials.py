"""
Financial metrics (presenteeism cost, ROI) from company parameters and scores.

Built-in metrics are added after the declared formulas unless a formula
already uses the id: hidden_cost, cost_pct and roi_estimate from the survey
presenteeism, method_b_cost and method_b_cost_pct from the degraded-hours
costing, method_a_cost and method_a_cost_pct from the company absenteeism
rate.

Formulas run in declaration order. Each result is added to the namespace, so
a formula may use the metrics declared before it but not after it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from survey_analytics.app.errors import ExpressionError
from survey_analytics.app.logging import get_logger
from survey_analytics.execution.expressions import evaluate_number, referenced_names
from survey_analytics.tools.stats import round_half_up, safe_div

from .health import TOKEN_SEGMENTS
from .models import CompanyParams, FinancialFormula, HealthResult
from .presenteeism import (
    DEFAULT_WORKING_DAYS,
    ERROR_CORRECTION_COEFF,
    MONEY_DIGITS,
    calculate_method_a,
    value_per_hour,
)

logger = get_logger(__name__)


@dataclass
class FinancialOutcome:
    metrics: Dict[str, float] = field(default_factory=dict)
    sources: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


def base_variables(company: CompanyParams, working_days_per_year: int = DEFAULT_WORKING_DAYS) -> Dict[str, float]:
    days = company.working_days_per_year or working_days_per_year
    total_salary = company.avg_total_salary
    return {
        "headcount": float(company.headcount),
        "avg_gross_salary": float(company.avg_gross_salary),
        "avg_total_salary": total_salary,
        "daily_cost": safe_div(total_salary, days),
        "hours_per_year": float(company.hours_per_year),
        "payroll": total_salary * company.headcount,
        "error_correction_coeff": ERROR_CORRECTION_COEFF,
        "annual_value_added": float(company.annual_value_added or 0),
        "value_per_hour": value_per_hour(company)[0],
    }


def _sources(expression: str, scores: Mapping[str, float],
             earlier: Mapping[str, Tuple[str, ...]]) -> Tuple[str, ...]:
    out: List[str] = []
    for name in sorted(referenced_names(expression)):
        if name in earlier:
            out.extend(earlier[name])
        elif name in scores:
            out.append(name)
        elif name in TOKEN_SEGMENTS:
            out.append(TOKEN_SEGMENTS[name])
    return tuple(dict.fromkeys(out))


def compute_financials(scores: Mapping[str, float], company: Optional[CompanyParams],
                       formulas: Iterable[FinancialFormula],
                       health: Optional[HealthResult] = None,
                       health_tokens: Optional[Mapping[str, float]] = None,
                       working_days_per_year: int = DEFAULT_WORKING_DAYS) -> Optional[FinancialOutcome]:
    """
    Returns None without company parameters. A formula that fails (malformed,
    unknown or later-declared token) yields 0 for that metric only.
    """
    if company is None:
        return None

    namespace: Dict[str, float] = {}
    namespace.update(scores)
    namespace.update(health_tokens or {})
    namespace.update(base_variables(company, working_days_per_year))

    outcome = FinancialOutcome()
    for formula in formulas:
        try:
            value = round_half_up(evaluate_number(formula.formula, namespace), MONEY_DIGITS)
        except ExpressionError as e:
            logger.warning(
                "Financial formula failed; metric set to 0",
                extra={"metric_id": formula.id, "error": str(e)},
            )
            value = 0.0
        outcome.metrics[formula.id] = value
        outcome.sources[formula.id] = _sources(formula.formula, scores, outcome.sources)
        namespace[formula.id] = value

    _add_presenteeism_metrics(outcome, health)
    _add_method_a_metrics(outcome, company, working_days_per_year)
    return outcome


def _add_presenteeism_metrics(outcome: FinancialOutcome, health: Optional[HealthResult]) -> None:
    p = health.presenteeism if health is not None else None
    if p is None or p.annual_cost is None:
        return
    derived = {
        "hidden_cost": p.annual_cost,
        "cost_pct": p.cost_as_payroll_pct,
        "roi_estimate": p.roi_estimate,
    }
    if p.method_b is not None:
        derived["method_b_cost"] = p.method_b.pres_cost
        derived["method_b_cost_pct"] = p.method_b.pres_cost_pct_payroll
    for metric_id, value in derived.items():
        if metric_id in outcome.metrics or value is None:
            continue
        outcome.metrics[metric_id] = value
        outcome.sources[metric_id] = ("presenteeism",)


def _add_method_a_metrics(outcome: FinancialOutcome, company: CompanyParams, working_days_per_year: int) -> None:
    # Company-level figures only; nothing here is derived from answers.
    result = calculate_method_a(company, working_days_per_year=working_days_per_year)
    if result is None:
        return
    for metric_id, value in (("method_a_cost", result.pres_cost), ("method_a_cost_pct", result.pres_cost_pct_payroll)):
        if metric_id in outcome.metrics:
            continue
        outcome.metrics[metric_id] = value
        outcome.sources[metric_id] = ()
