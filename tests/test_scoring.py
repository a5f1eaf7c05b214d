import pytest

from survey_analytics.engine.models import CalculationConfig, GlobalScoreDef, ScoringDimension
from survey_analytics.engine.responses import responses_frame
from survey_analytics.engine.schema import load_definition
from survey_analytics.engine.scoring import (
    build_priority_matrix,
    colour,
    compute_scores,
    score_dimensions,
)
from survey_analytics.tools.stats import round_half_up


class TestWeightedGlobal:
    def test_weighted_mean(self, build_responses):
        responses = build_responses([{"QA": 8, "QB": 5}])
        dims = [
            ScoringDimension(id="A", source="QA", weight=2),
            ScoringDimension(id="B", source="QB", weight=1),
        ]
        scores = compute_scores(responses, dims, GlobalScoreDef(dimensions=("A", "B")))
        assert scores["GLOBAL"] == 7.0

    def test_explicit_zero_weight_is_honoured(self, build_responses):
        responses = build_responses([{"QA": 8, "QB": 5}])
        dims = [
            ScoringDimension(id="A", source="QA", weight=0),
            ScoringDimension(id="B", source="QB"),
        ]
        scores = compute_scores(responses, dims, GlobalScoreDef(dimensions=("A", "B")))
        assert scores["GLOBAL"] == 5.0

    def test_zero_total_weight_gives_zero(self, build_responses):
        responses = build_responses([{"QA": 8}])
        dims = [ScoringDimension(id="A", source="QA", weight=0)]
        scores = compute_scores(responses, dims, GlobalScoreDef(dimensions=("A",), id="OVERALL"))
        assert scores["OVERALL"] == 0.0


class TestSourceAggregations:
    def test_percentage_affected(self, build_responses):
        rows = [{"Q4": "OFTEN"}] * 4 + [{"Q4": "NEVER"}] * 6
        dims = [ScoringDimension(id="AFFECTED", source="Q4", aggregation="percentage_affected")]
        assert compute_scores(build_responses(rows), dims)["AFFECTED"] == 0.4

    def test_empty_selection_and_null_are_unaffected(self, build_responses):
        rows = [{"Q4": ["dos"]}, {"Q4": []}, {"Q4": None}, {}]
        dims = [ScoringDimension(id="AFFECTED", source="Q4", aggregation="percentage_affected")]
        assert compute_scores(build_responses(rows), dims)["AFFECTED"] == 0.25

    def test_mean_among_affected(self, build_responses):
        rows = [
            {"Q14": "1-2", "Q15": 2},
            {"Q14": "3-4", "Q15": 4},
            {"Q14": "NEVER", "Q15": 10},
        ]
        dims = [ScoringDimension(id="DAYS", source="Q15", aggregation="mean_among_affected",
                                 affected_filter="Q14 != NEVER")]
        assert compute_scores(build_responses(rows), dims)["DAYS"] == 3.0

    def test_mean_among_affected_with_nobody_affected(self, build_responses):
        rows = [{"Q14": "NEVER", "Q15": 10}]
        dims = [ScoringDimension(id="DAYS", source="Q15", aggregation="mean_among_affected",
                                 affected_filter="Q14")]
        assert compute_scores(build_responses(rows), dims)["DAYS"] == 0.0

    def test_mean_ignores_nulls_and_wrong_types(self, build_responses):
        rows = [{"Q1": 4}, {"Q1": None}, {"Q1": "n/a"}, {"Q1": True}, {"Q1": 6}]
        dims = [ScoringDimension(id="D", source="Q1")]
        assert compute_scores(build_responses(rows), dims)["D"] == 5.0

    def test_no_numeric_values_gives_zero(self, build_responses):
        dims = [ScoringDimension(id="D", source="Q1")]
        assert compute_scores(build_responses([{"Q1": None}]), dims)["D"] == 0.0
        assert compute_scores([], dims)["D"] == 0.0


class TestQuestionAggregations:
    def test_pooled_mean(self, build_responses):
        rows = [{"Q1": 1, "Q2": 2}, {"Q1": 3}]
        dims = [ScoringDimension(id="D", questions=("Q1", "Q2"))]
        assert compute_scores(build_responses(rows), dims)["D"] == 2.0

    def test_sum(self, build_responses):
        rows = [{"Q1": 1, "Q2": 2}, {"Q1": 3}]
        dims = [ScoringDimension(id="D", questions=("Q1", "Q2"), aggregation="sum")]
        assert compute_scores(build_responses(rows), dims)["D"] == 6.0

    def test_rounding_two_decimals(self, build_responses):
        rows = [{"Q1": 1}, {"Q1": 1}, {"Q1": 2}]
        dims = [ScoringDimension(id="D", questions=("Q1",))]
        assert compute_scores(build_responses(rows), dims)["D"] == 1.33

    def test_normalized_with_reverse_items(self, build_responses):
        rows = [{"Q1": 5, "Q2": 1}, {"Q1": 3, "Q2": 3}]
        dims = [ScoringDimension(id="D", questions=("Q1", "Q2"), normalize=True,
                                 scale_min=1, scale_max=5, reverse_questions=("Q2",))]
        # Q1: 100, 50; Q2 reversed: 100, 50
        assert compute_scores(build_responses(rows), dims)["D"] == 75.0


class TestFormulaDimensions:
    def test_formula_over_earlier_scores(self, build_responses):
        dims = [
            ScoringDimension(id="RATIO", formula="A / B"),
            ScoringDimension(id="A", source="QA"),
            ScoringDimension(id="B", source="QB"),
        ]
        scores = compute_scores(build_responses([{"QA": 6, "QB": 4}]), dims)
        assert scores["RATIO"] == 1.5

    def test_division_by_zero(self, build_responses):
        dims = [
            ScoringDimension(id="A", source="QA"),
            ScoringDimension(id="ZERO", source="QZ"),
            ScoringDimension(id="RATIO", formula="A / ZERO"),
        ]
        assert compute_scores(build_responses([{"QA": 6}]), dims)["RATIO"] == 0.0

    def test_unresolved_token_gives_zero(self, build_responses):
        dims = [ScoringDimension(id="F", formula="MISSING * 2")]
        assert compute_scores(build_responses([{}]), dims)["F"] == 0.0

    def test_later_formula_is_not_visible(self, build_responses):
        dims = [
            ScoringDimension(id="F1", formula="F2 + 1"),
            ScoringDimension(id="F2", formula="1"),
        ]
        scores = compute_scores(build_responses([{}]), dims)
        assert scores == {"F1": 0.0, "F2": 1.0}

    def test_malformed_formula_gives_zero(self, build_responses):
        dims = [ScoringDimension(id="F", formula="open('x')")]
        assert compute_scores(build_responses([{}]), dims)["F"] == 0.0


class TestDimensionSegments:
    def test_counts_units_and_colours(self, qvct_definition, qvct_rows, build_responses):
        frame = responses_frame(build_responses(qvct_rows))
        dims = score_dimensions(frame, qvct_definition)

        assert dims["WORKLOAD"].score == 7.0
        assert dims["WORKLOAD"].respondent_count == 20
        assert dims["WORKLOAD"].color == "green"
        assert dims["RECOGNITION"].color == "orange"
        assert dims["ABSENCE_RATE"].unit == "ratio"
        assert dims["ABSENCE_DAYS"].respondent_count == 8
        assert dims["BALANCE"].score == 2.0
        assert dims["BALANCE"].respondent_count == 20
        assert dims["GLOBAL"].score == 6.33

    def test_inactive_module_is_skipped(self, build_responses):
        definition = load_definition({
            "calculation_engine": {
                "scoring_dimensions": [
                    {"id": "CORE", "source": "Q1", "module": 1},
                    {"id": "HEALTH", "source": "Q2", "module": 3},
                ]
            }
        })
        frame = responses_frame(build_responses([{"Q1": 1, "Q2": 2}]))
        dims = score_dimensions(frame, definition, CalculationConfig(active_modules=frozenset({0, 1})))
        assert set(dims) == {"CORE"}

    def test_sensitive_module_propagates_to_formulas(self, build_responses):
        definition = load_definition({
            "data_governance": {"sensitive_modules": [3]},
            "calculation_engine": {
                "scoring_dimensions": [
                    {"id": "CORE", "source": "Q1"},
                    {"id": "HEALTH", "source": "Q2", "module": 3},
                    {"id": "MIX", "formula": "CORE + HEALTH"},
                ]
            },
        })
        frame = responses_frame(build_responses([{"Q1": 1, "Q2": 2}]))
        dims = score_dimensions(frame, definition)
        assert dims["CORE"].sensitive is False
        assert dims["HEALTH"].sensitive is True
        assert dims["MIX"].sensitive is True


class TestColour:
    @pytest.mark.parametrize("score, expected", [(3.9, "red"), (4.0, "orange"), (7.0, "green"), (9.0, "gold")])
    def test_bands_on_scale(self, score, expected):
        dim = ScoringDimension(id="D", source="Q1", scale_min=0, scale_max=10)
        assert colour(dim, score) == expected

    def test_alert_threshold(self):
        dim = ScoringDimension(id="D", source="Q1", alert_threshold=6)
        assert colour(dim, 5.9) == "red"
        assert colour(dim, 6) == "green"

    def test_alert_threshold_lower_is_better(self):
        dim = ScoringDimension(id="D", source="Q1", alert_threshold=0.3,
                               aggregation="percentage_affected", higher_is_better=False)
        assert colour(dim, 0.4) == "red"

    def test_no_scale_no_colour(self):
        assert colour(ScoringDimension(id="D", source="Q1"), 3) is None


class TestPriorityMatrix:
    def test_criticality_ranking(self, build_responses):
        definition = load_definition({
            "calculation_engine": {
                "scoring_dimensions": [
                    {"id": "WORKLOAD", "questions": ["Q1"], "scale": {"min": 0, "max": 10}},
                    {"id": "RECOGNITION", "questions": ["Q3"], "scale": {"min": 0, "max": 10}},
                ],
                "priority_matrix": {
                    "question": "Q9",
                    "entries": [
                        {"dimension": "WORKLOAD", "values": ["1"]},
                        {"dimension": "RECOGNITION", "values": ["2"]},
                    ],
                },
            }
        })
        rows = [{"Q1": 7, "Q3": 5, "Q9": 1}] * 6 + [{"Q1": 7, "Q3": 5, "Q9": "2"}] * 4
        frame = responses_frame(build_responses(rows))
        dims = score_dimensions(frame, definition)
        matrix = build_priority_matrix(frame, definition.priority_matrix, dims, definition)

        assert [e.dimension_id for e in matrix] == ["RECOGNITION", "WORKLOAD"]
        recognition, workload = matrix
        assert recognition.priority_rate == 40.0
        assert recognition.criticality_index == 20.0
        assert recognition.rank == 1
        assert workload.priority_rate == 60.0
        assert workload.criticality_index == 18.0


class TestRounding:
    def test_half_away_from_zero(self):
        assert round_half_up(2.675) == 2.68
        assert round_half_up(0.125) == 0.13
        assert round_half_up(-2.5, 0) == -3.0
