from __future__ import annotations

import time
from typing import Iterable, Optional

from survey_analytics.app.logging import get_logger
from survey_analytics.tools.stats import share_percent

from .financials import DEFAULT_WORKING_DAYS, compute_financials
from .health import compute_health, health_tokens
from .indicators import evaluate_indicators
from .models import CalculationConfig, CalculationResult, CompanyParams, Response, SurveyDefinition
from .narrative import NarrativeGenerator
from .qualitative import aggregate_qualitative
from .responses import responses_frame, select_responses
from .scoring import build_priority_matrix, department_breakdown, score_dimensions

logger = get_logger(__name__)


class SurveyCalculationEngine:
    """
    Runs a survey definition over a batch of responses.

    The result is unfiltered: it still holds segments below the anonymity
    thresholds and must go through apply_anonymity_filter before it is shown
    to anyone.
    """

    def __init__(self, definition: SurveyDefinition, working_days_per_year: int = DEFAULT_WORKING_DAYS):
        self.definition = definition
        self.working_days_per_year = working_days_per_year
        self.narrative = NarrativeGenerator(definition)

    def calculate(self, responses: Iterable[Response], company: Optional[CompanyParams] = None,
                  config: Optional[CalculationConfig] = None) -> CalculationResult:
        started = time.perf_counter()
        config = config or CalculationConfig()
        definition = self.definition

        candidates = [
            r for r in responses
            if not r.is_archived and not (config.exclude_synthetic and r.is_synthetic)
        ]
        selected = select_responses(candidates, exclude_synthetic=config.exclude_synthetic)
        response_count = len(selected)
        respondents = len({r.respondent_hash for r in candidates})

        participation = None
        if config.target_population:
            participation = share_percent(response_count, config.target_population)

        frame = responses_frame(selected)
        dimensions = score_dimensions(frame, definition, config)
        scores = {k: v.score for k, v in dimensions.items()}

        health = None
        if definition.health is not None and config.module_active(definition.health.module):
            health = compute_health(frame, definition.health, company)
        tokens = health_tokens(health)

        priority = []
        if definition.priority_matrix is not None:
            priority = build_priority_matrix(frame, definition.priority_matrix, dimensions, definition)

        alerts = evaluate_indicators(scores, response_count, definition.indicators, tokens)

        formulas = [f for f in definition.financial_formulas if config.module_active(f.module)]
        financials = compute_financials(
            scores, company, formulas,
            health=health,
            health_tokens=tokens,
            working_days_per_year=self.working_days_per_year,
        )

        result = CalculationResult(
            response_count=response_count,
            participation_rate=participation,
            completion_rate=share_percent(response_count, respondents),
            scores=scores,
            dimensions=dimensions,
            critical_indicators=alerts,
            financial_metrics=financials.metrics if financials is not None else None,
            financial_sources=financials.sources if financials is not None else {},
            priority_matrix=priority,
            health=health,
            departments=department_breakdown(frame, definition, config),
            qualitative_insights=aggregate_qualitative(frame, definition.qualitative) if definition.qualitative else None,
        )
        result.narrative = self.narrative.render(result)

        logger.info(
            "Calculation finished",
            extra={
                "survey_type_id": definition.survey_type_id,
                "responses": response_count,
                "dimensions": len(dimensions),
                "alerts": len(alerts),
                "elapsed_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return result
