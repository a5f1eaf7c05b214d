"""
Narrative text rendered from the survey definition's templates.

Templates (all optional, rendered in this order and joined with spaces):
  opening, insight, global_insight, financial_impact, recommendation

The narrative must be rendered from an already filtered result: confidential
dimensions are never named and suppressed metrics are simply absent.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from survey_analytics.tools.stats import round_half_up

from .indicators import fill_template
from .models import CalculationResult, SurveyDefinition

TEMPLATE_ORDER = ("opening", "insight", "global_insight", "financial_impact", "recommendation")

DEFAULT_COMPANY_NAME = "votre organisation"
DEFAULT_RECOMMENDATION = "maintenir les bonnes pratiques actuelles"


def format_number(value: Any) -> str:
    v = float(value)
    if abs(v) >= 1_000_000:
        return f"{v / 1_000_000:.1f}M"
    if abs(v) >= 1000:
        return f"{int(round_half_up(v, 0)):,}".replace(",", " ")
    r = round_half_up(v, 2)
    return str(int(r)) if r.is_integer() else str(r)


def interpret_global(score: float) -> str:
    # Global scores on a 0-10 scale.
    if score >= 8:
        return "excellent"
    if score >= 7:
        return "satisfaisant"
    if score < 6:
        return "préoccupant"
    return "modéré"


class NarrativeGenerator:
    def __init__(self, definition: SurveyDefinition):
        self.definition = definition
        self.templates: Mapping[str, str] = definition.narrative_templates or {}

    def render(self, result: CalculationResult, company_name: Optional[str] = None) -> str:
        if not self.templates:
            return ""

        values = self._values(result, company_name)
        parts: List[str] = []
        for key in TEMPLATE_ORDER:
            template = self.templates.get(key)
            if not template:
                continue
            if key == "insight" and "lowest_dimension" not in values:
                continue
            if key == "global_insight" and "global_score" not in values:
                continue
            if key == "financial_impact" and not result.financial_metrics:
                continue
            parts.append(fill_template(template, values))
        return " ".join(parts)

    def _values(self, result: CalculationResult, company_name: Optional[str]) -> Dict[str, str]:
        values: Dict[str, str] = {
            "response_count": str(result.response_count),
            "participation_rate": "N/A" if result.participation_rate is None else format_number(result.participation_rate),
            "company_name": company_name or DEFAULT_COMPANY_NAME,
        }

        for metric_id, v in (result.financial_metrics or {}).items():
            values[metric_id] = format_number(v)

        lowest = self._lowest_dimension(result)
        if lowest is not None:
            values["lowest_dimension"], values["lowest_score"] = lowest

        global_id = self.definition.global_score.id if self.definition.global_score else None
        g = result.dimensions.get(global_id) if global_id else None
        if g is not None and not g.is_confidential and g.score:
            values["global_score"] = format_number(g.score)
            values["global_interpretation"] = interpret_global(g.score)

        top = next((a.recommendation for a in result.critical_indicators.values() if a.recommendation), None)
        values["top_recommendation"] = top or DEFAULT_RECOMMENDATION
        return values

    def _lowest_dimension(self, result: CalculationResult) -> Optional[Tuple[str, str]]:
        candidates = []
        for dim in self.definition.dimensions:
            if dim.strategy != "questions":
                continue
            ds = result.dimensions.get(dim.id)
            if ds is None or ds.is_confidential:
                continue
            candidates.append((ds.score, dim.label))
        if not candidates:
            return None
        # First declared dimension wins ties.
        score, label = min(candidates, key=lambda c: c[0])
        return label, format_number(score)
