import copy
import json

import pytest

from survey_analytics.app.errors import EngineError, SchemaValidationError
from survey_analytics.engine.schema import load_definition


class TestLoadDefinition:
    def test_builds_typed_definition(self, qvct_document):
        definition = load_definition(qvct_document)

        assert definition.survey_type_id == "QVCT_TEST"
        assert definition.name == "QVCT test"
        assert [d.id for d in definition.dimensions] == [
            "WORKLOAD", "RECOGNITION", "ABSENCE_RATE", "ABSENCE_DAYS", "BALANCE",
        ]
        workload = definition.dimension("WORKLOAD")
        assert workload.strategy == "questions"
        assert workload.weight == 2
        assert (workload.scale_min, workload.scale_max) == (0, 10)
        assert definition.dimension("BALANCE").strategy == "formula"
        assert definition.dimension("BALANCE").aggregation == "formula"
        assert definition.global_score.dimensions == ("WORKLOAD", "RECOGNITION")
        assert definition.indicators[0].severity == "high"
        assert definition.qualitative[0].type == "count_percentage"
        assert definition.narrative_templates["opening"].startswith("{response_count}")

    def test_accepts_json_text(self, qvct_document):
        definition = load_definition(json.dumps(qvct_document))
        assert definition.survey_type_id == "QVCT_TEST"

    def test_governance_aliases(self, bnq_document):
        definition = load_definition(bnq_document)
        assert definition.governance.anonymity_threshold == 15
        assert definition.governance.sensitive_anonymity_threshold == 30
        assert definition.governance.sensitive_modules == (3,)

    def test_health_module_defaults(self, bnq_document):
        health = load_definition(bnq_document).health
        assert health.frequency_question == "Q60"
        assert health.frequency_map[">6"] == 8
        assert health.roi_reduction == 0.5

    def test_minimal_definition(self):
        definition = load_definition({"calculation_engine": {"scoring_dimensions": []}})
        assert definition.dimensions == ()
        assert definition.health is None
        assert definition.global_score is None


class TestValidationErrors:
    def _with_dimension(self, document, dimension):
        doc = copy.deepcopy(document)
        doc["calculation_engine"]["scoring_dimensions"].append(dimension)
        return doc

    def test_two_strategies_rejected(self, qvct_document):
        doc = self._with_dimension(qvct_document, {"id": "BAD", "source": "Q1", "formula": "A + 1"})
        with pytest.raises(SchemaValidationError):
            load_definition(doc)

    def test_no_strategy_rejected(self, qvct_document):
        doc = self._with_dimension(qvct_document, {"id": "BAD"})
        with pytest.raises(SchemaValidationError):
            load_definition(doc)

    def test_identifier_pattern(self, qvct_document):
        doc = self._with_dimension(qvct_document, {"id": "BAD-ID", "source": "Q1"})
        with pytest.raises(SchemaValidationError):
            load_definition(doc)

    def test_duplicate_dimension_id(self, qvct_document):
        doc = self._with_dimension(qvct_document, {"id": "WORKLOAD", "source": "Q1"})
        with pytest.raises(SchemaValidationError, match="Duplicate"):
            load_definition(doc)

    def test_unknown_severity(self, qvct_document):
        doc = copy.deepcopy(qvct_document)
        doc["calculation_engine"]["critical_indicators"][0]["severity"] = "urgent"
        with pytest.raises(SchemaValidationError):
            load_definition(doc)

    def test_missing_engine_section(self):
        with pytest.raises(SchemaValidationError):
            load_definition({"survey_type_id": "X"})

    def test_invalid_json(self):
        with pytest.raises(SchemaValidationError):
            load_definition("{not json")

    def test_errors_share_a_base(self):
        with pytest.raises(EngineError):
            load_definition([])
