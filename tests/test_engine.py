import json

import pytest

from survey_analytics.engine.anonymity import apply_anonymity_filter
from survey_analytics.engine.calculator import SurveyCalculationEngine
from survey_analytics.engine.models import CalculationConfig, Response
from survey_analytics.engine.narrative import format_number, interpret_global
from survey_analytics.engine.schema import load_definition


@pytest.fixture
def stress_definition():
    return load_definition({
        "survey_type_id": "E2E",
        "calculation_engine": {
            "scoring_dimensions": [{"id": "STRESS", "source": "Q_STRESS", "aggregation": "mean"}],
        },
    })


@pytest.fixture
def stress_responses(build_responses):
    values = [2, 4, 6, 8, 10, 12, 14, 16, 18, 20] + [None] * 10
    return build_responses([{"Q_STRESS": v} for v in values])


class TestEndToEnd:
    def test_stress_scenario(self, stress_definition, stress_responses):
        result = SurveyCalculationEngine(stress_definition).calculate(stress_responses)
        assert result.response_count == 20
        assert result.scores["STRESS"] == 11.0

        visible = apply_anonymity_filter(result, general_threshold=15)
        assert visible.dimensions["STRESS"].is_confidential is False
        assert visible.scores["STRESS"] == 11.0

        hidden = apply_anonymity_filter(result, general_threshold=25)
        assert hidden.dimensions["STRESS"].is_confidential is True
        assert hidden.scores["STRESS"] == 0.0

    def test_determinism(self, qvct_definition, qvct_rows, build_responses, company):
        engine = SurveyCalculationEngine(qvct_definition)
        responses = build_responses(qvct_rows)
        first = engine.calculate(responses, company).to_dict()
        second = engine.calculate(responses, company).to_dict()
        assert first == second

    def test_full_result(self, qvct_definition, qvct_rows, build_responses, company):
        result = SurveyCalculationEngine(qvct_definition).calculate(
            build_responses(qvct_rows), company, CalculationConfig(target_population=40),
        )
        assert result.participation_rate == 50.0
        assert result.completion_rate == 100.0
        assert result.scores["GLOBAL"] == 6.33
        assert result.scores["ABSENCE_RATE"] == 0.4
        assert set(result.critical_indicators) == {"LOW_RECOGNITION"}
        assert result.critical_indicators["LOW_RECOGNITION"].message == "Reconnaissance faible (5/10)"
        assert result.financial_metrics["absence_cost"] == 31636.36
        assert result.financial_metrics["corrected_cost"] == 34800.0

    def test_narrative(self, qvct_definition, qvct_rows, build_responses, company):
        result = SurveyCalculationEngine(qvct_definition).calculate(build_responses(qvct_rows), company)
        assert result.narrative == (
            "20 salariés de votre organisation ont répondu. "
            "Point de vigilance : reconnaissance (5/10). "
            "Score global 6.33/10, niveau modéré. "
            "Coût estimé des absences : 34 800 €. "
            "Priorité : Renforcer la reconnaissance."
        )

    def test_no_participation_without_target(self, stress_definition, stress_responses):
        assert SurveyCalculationEngine(stress_definition).calculate(stress_responses).participation_rate is None

    def test_completion_and_deduplication(self, stress_definition):
        responses = [
            Response(respondent_hash="a", answers={"Q_STRESS": 2}),
            Response(respondent_hash="a", answers={"Q_STRESS": 10}),
            Response(respondent_hash="b", answers={"Q_STRESS": 4}),
            Response(respondent_hash="c", answers={"Q_STRESS": 9}, is_complete=False),
            Response(respondent_hash="d", answers={"Q_STRESS": 9}, is_archived=True),
        ]
        result = SurveyCalculationEngine(stress_definition).calculate(responses)
        assert result.response_count == 2
        assert result.scores["STRESS"] == 3.0
        assert result.completion_rate == 66.7

    def test_empty_batch_is_safe(self, qvct_definition, company):
        result = SurveyCalculationEngine(qvct_definition).calculate([], company)
        assert result.response_count == 0
        assert all(v == 0.0 for v in result.scores.values())
        assert result.completion_rate == 0.0

    def test_json_serializable(self, bnq_definition, bnq_rows, build_responses, company):
        result = SurveyCalculationEngine(bnq_definition).calculate(build_responses(bnq_rows), company)
        payload = json.loads(result.to_json())
        assert payload["health"]["tms"]["top_zones"][0] == {"zone": "dos", "rate": 45.0}
        assert payload["critical_indicators"]["HIGH_DISTRESS"]["sources"] == ["distress"]


class TestNarrativeFormatting:
    @pytest.mark.parametrize("value, expected", [
        (2_500_000, "2.5M"),
        (34800, "34 800"),
        (6.333, "6.33"),
        (7.0, "7"),
    ])
    def test_format_number(self, value, expected):
        assert format_number(value) == expected

    @pytest.mark.parametrize("score, expected", [
        (8.2, "excellent"), (7.0, "satisfaisant"), (6.5, "modéré"), (5.9, "préoccupant"),
    ])
    def test_interpretation(self, score, expected):
        assert interpret_global(score) == expected
