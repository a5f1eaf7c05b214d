from survey_analytics.engine.indicators import evaluate_indicators, fill_template
from survey_analytics.engine.models import CriticalIndicator


class TestEvaluateIndicators:
    def test_only_true_conditions_are_present(self):
        indicators = [
            CriticalIndicator(id="LOW", condition="A < 6", severity="high", message="A = {A}"),
            CriticalIndicator(id="HIGH", condition="A > 6", severity="info", message="fine"),
        ]
        alerts = evaluate_indicators({"A": 5.0}, 20, indicators)
        assert set(alerts) == {"LOW"}
        assert alerts["LOW"].triggered is True
        assert alerts["LOW"].severity == "high"
        assert alerts["LOW"].message == "A = 5"
        assert alerts["LOW"].sources == ("A",)

    def test_failures_are_not_triggered(self):
        indicators = [
            CriticalIndicator(id="UNKNOWN", condition="MISSING < 6"),
            CriticalIndicator(id="MALFORMED", condition="A <<< 6"),
            CriticalIndicator(id="CALL", condition="print(A)"),
            CriticalIndicator(id="TYPE", condition="A < 'x'"),
        ]
        assert evaluate_indicators({"A": 1.0}, 20, indicators) == {}

    def test_non_boolean_condition_is_not_triggered(self):
        indicators = [CriticalIndicator(id="NUM", condition="A + 1")]
        assert evaluate_indicators({"A": 1.0}, 20, indicators) == {}

    def test_response_count_and_health_tokens(self):
        indicators = [
            CriticalIndicator(id="DISTRESS", condition="distress_rate > 25 && response_count >= 10",
                              severity="critical", message="{distress_rate}%", recommendation="Cellule d'écoute"),
        ]
        alerts = evaluate_indicators({}, 20, indicators, {"distress_rate": 35.0})
        assert alerts["DISTRESS"].message == "35%"
        assert alerts["DISTRESS"].recommendation == "Cellule d'écoute"
        assert alerts["DISTRESS"].sources == ("distress",)

    def test_explicit_segment_is_a_source(self):
        indicators = [CriticalIndicator(id="X", condition="A < B", segment="presenteeism")]
        alerts = evaluate_indicators({"A": 1.0, "B": 2.0}, 20, indicators)
        assert alerts["X"].sources == ("presenteeism", "A", "B")

    def test_placeholders_are_sources(self):
        indicators = [
            CriticalIndicator(id="X", condition="A < 6", message="B is {B}",
                              recommendation="watch {distress_rate} and {UNKNOWN}"),
        ]
        alerts = evaluate_indicators({"A": 1.0, "B": 9.0}, 20, indicators, {"distress_rate": 40.0})
        assert alerts["X"].message == "B is 9"
        assert alerts["X"].sources == ("A", "B", "distress")


class TestFillTemplate:
    def test_unknown_placeholders_are_kept(self):
        assert fill_template("{A} and {B}", {"A": 1.5}) == "1.5 and {B}"
