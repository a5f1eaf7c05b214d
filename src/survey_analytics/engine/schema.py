"""
Survey definition loading.

Definitions are JSON documents persisted with the survey type. The layout
follows the survey type documents already in use:

    {
      "survey_type_id": "...",
      "survey_metadata": {"name": "...", "version": "..."},
      "data_governance": {"anonymity_threshold": 15, ...},
      "calculation_engine": {
        "scoring_dimensions": [...],
        "critical_indicators": [...],
        "financial_formulas": [...],
        "qualitative_aggregations": [...],
        "global_score": {"id": "GLOBAL", "dimensions": [...]},
        "priority_matrix": {"question": "Q38", "entries": [...]},
        "health_module": {...}
      },
      "output_engine": {"narrative_templates": {...}}
    }

Structural problems raise SchemaValidationError here, at load time. Problems
inside expression text are not structural: they are tolerated and resolved to
safe defaults during calculation.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Union

import jsonschema

from survey_analytics.app.errors import SchemaValidationError

from .models import (
    DEFAULT_FREQUENCY_MAP,
    CriticalIndicator,
    DataGovernance,
    FinancialFormula,
    GlobalScoreDef,
    HealthModuleDef,
    PriorityEntryDef,
    PriorityMatrixDef,
    QualitativeAggregation,
    ScoringDimension,
    SurveyDefinition,
)


IDENTIFIER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

_IDENTIFIER = {"type": "string", "pattern": IDENTIFIER_PATTERN}
_QUESTION_ID = {"type": "string", "minLength": 1}

_DIMENSION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": _IDENTIFIER,
        "name": {"type": "string"},
        "aggregation": {"enum": ["mean", "sum", "percentage_affected", "mean_among_affected", "formula"]},
        "source": _QUESTION_ID,
        "questions": {"type": "array", "items": _QUESTION_ID, "minItems": 1},
        "formula": {"type": "string", "minLength": 1},
        "weight": {"type": "number", "minimum": 0},
        "alert_threshold": {"type": "number"},
        "affected_filter": {"type": "string"},
        "affected_condition": {"type": "string"},
        "unaffected_value": {"type": "string"},
        "scale": {
            "type": "object",
            "required": ["min", "max"],
            "properties": {"min": {"type": "number"}, "max": {"type": "number"}},
        },
        "scale_max": {"type": "number"},
        "normalize": {"type": "boolean"},
        "reverse_questions": {"type": "array", "items": _QUESTION_ID},
        "module": {"type": "integer"},
        "sensitive": {"type": "boolean"},
        "higher_is_better": {"type": "boolean"},
    },
    # Exactly one aggregation strategy per dimension.
    "oneOf": [
        {"required": ["source"]},
        {"required": ["questions"]},
        {"required": ["formula"]},
    ],
}

_INDICATOR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "condition"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "condition": {"type": "string"},
        "severity": {"enum": ["info", "warning", "high", "critical"]},
        "message": {"type": "string"},
        "recommendation": {"type": "string"},
        "segment": {"type": "string"},
    },
}

_FORMULA_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "formula"],
    "properties": {
        "id": _IDENTIFIER,
        "formula": {"type": "string"},
        "name": {"type": "string"},
        "unit": {"type": "string"},
        "description": {"type": "string"},
        "module": {"type": "integer"},
    },
}

_QUALITATIVE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "type", "source"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "type": {"enum": ["count_percentage", "rank_aggregation", "text_collection"]},
        "source": _QUESTION_ID,
    },
}

DEFINITION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["calculation_engine"],
    "properties": {
        "survey_type_id": {"type": "string"},
        "survey_metadata": {"type": "object"},
        "data_governance": {
            "type": "object",
            "properties": {
                "anonymity_threshold": {"type": "integer", "minimum": 1},
                "anonymity_threshold_sensitive": {"type": "integer", "minimum": 1},
                "anonymity_threshold_module3": {"type": "integer", "minimum": 1},
                "sensitive_modules": {"type": "array", "items": {"type": "integer"}},
                "department_question": _QUESTION_ID,
            },
        },
        "calculation_engine": {
            "type": "object",
            "required": ["scoring_dimensions"],
            "properties": {
                "scoring_dimensions": {"type": "array", "items": _DIMENSION_SCHEMA},
                "critical_indicators": {"type": "array", "items": _INDICATOR_SCHEMA},
                "financial_formulas": {"type": "array", "items": _FORMULA_SCHEMA},
                "qualitative_aggregations": {"type": "array", "items": _QUALITATIVE_SCHEMA},
                "global_score": {
                    "type": "object",
                    "required": ["dimensions"],
                    "properties": {
                        "id": _IDENTIFIER,
                        "dimensions": {"type": "array", "items": {"type": "string"}},
                    },
                },
                "priority_matrix": {
                    "type": "object",
                    "required": ["question", "entries"],
                    "properties": {
                        "question": _QUESTION_ID,
                        "entries": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "required": ["dimension", "values"],
                                "properties": {
                                    "dimension": {"type": "string"},
                                    "values": {"type": "array", "items": {"type": ["string", "number"]}},
                                },
                            },
                        },
                    },
                },
                "health_module": {
                    "type": "object",
                    "properties": {
                        "module": {"type": "integer"},
                        "frequency_map": {"type": "object", "additionalProperties": {"type": "number"}},
                        "efficiency_scale_max": {"type": "number", "exclusiveMinimum": 0},
                        "stress_threshold": {"type": "number"},
                        "distress_threshold": {"type": "number"},
                        "roi_reduction": {"type": "number", "minimum": 0, "maximum": 1},
                    },
                },
            },
        },
        "output_engine": {
            "type": "object",
            "properties": {
                "narrative_templates": {"type": "object", "additionalProperties": {"type": "string"}},
            },
        },
    },
}

_HEALTH_QUESTION_KEYS = (
    "frequency_question",
    "efficiency_question",
    "pain_zones_question",
    "pain_impact_question",
    "stress_question",
    "distress_question",
    "factors_question",
    "impact_question",
    "working_hours_question",
)


def validate_definition(document: Mapping[str, Any]) -> None:
    try:
        jsonschema.validate(instance=document, schema=DEFINITION_SCHEMA)
    except jsonschema.ValidationError as e:
        path = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise SchemaValidationError(f"Invalid survey definition at {path}: {e.message}") from e

    engine = document["calculation_engine"]
    _check_unique([d["id"] for d in engine.get("scoring_dimensions", [])], "scoring dimension")
    _check_unique([f["id"] for f in engine.get("financial_formulas", [])], "financial formula")
    _check_unique([i["id"] for i in engine.get("critical_indicators", [])], "critical indicator")


def _check_unique(ids: List[str], kind: str) -> None:
    seen = set()
    for i in ids:
        if i in seen:
            raise SchemaValidationError(f"Duplicate {kind} id: {i}")
        seen.add(i)


def load_definition(document: Union[str, bytes, Mapping[str, Any]]) -> SurveyDefinition:
    """
    Validates a survey definition document (dict or JSON text) and builds the
    typed SurveyDefinition used by the calculator.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as e:
            raise SchemaValidationError(f"Survey definition is not valid JSON: {e}") from e
    if not isinstance(document, Mapping):
        raise SchemaValidationError("Survey definition must be a JSON object.")

    validate_definition(document)

    engine = document["calculation_engine"]
    metadata = document.get("survey_metadata") or {}

    return SurveyDefinition(
        survey_type_id=str(document.get("survey_type_id") or "custom"),
        name=metadata.get("name"),
        version=metadata.get("version"),
        governance=_governance(document.get("data_governance") or {}),
        dimensions=tuple(_dimension(d) for d in engine.get("scoring_dimensions", [])),
        indicators=tuple(_indicator(i) for i in engine.get("critical_indicators", [])),
        financial_formulas=tuple(_formula(f) for f in engine.get("financial_formulas", [])),
        global_score=_global_score(engine.get("global_score")),
        qualitative=tuple(
            QualitativeAggregation(id=q["id"], type=q["type"], source=q["source"])
            for q in engine.get("qualitative_aggregations", [])
        ),
        priority_matrix=_priority_matrix(engine.get("priority_matrix")),
        health=_health(engine.get("health_module")),
        narrative_templates=dict((document.get("output_engine") or {}).get("narrative_templates") or {}),
    )


def _governance(raw: Mapping[str, Any]) -> DataGovernance:
    defaults = DataGovernance()
    general = raw.get("anonymity_threshold")
    sensitive = raw.get("anonymity_threshold_sensitive", raw.get("anonymity_threshold_module3"))
    return DataGovernance(
        anonymity_threshold=int(general) if general is not None else None,
        sensitive_anonymity_threshold=int(sensitive) if sensitive is not None else None,
        sensitive_modules=tuple(raw.get("sensitive_modules", defaults.sensitive_modules)),
        department_question=raw.get("department_question"),
    )


def _dimension(raw: Mapping[str, Any]) -> ScoringDimension:
    scale = raw.get("scale") or {}
    scale_min = scale.get("min")
    scale_max = scale.get("max", raw.get("scale_max"))
    if scale_max is not None and scale_min is None:
        scale_min = 0

    aggregation = raw.get("aggregation")
    if aggregation is None:
        aggregation = "formula" if "formula" in raw else "mean"

    return ScoringDimension(
        id=raw["id"],
        aggregation=aggregation,
        name=raw.get("name"),
        source=raw.get("source"),
        questions=tuple(raw.get("questions") or ()),
        formula=raw.get("formula"),
        weight=raw.get("weight"),
        alert_threshold=raw.get("alert_threshold"),
        affected_filter=raw.get("affected_filter"),
        unaffected_value=str(raw.get("unaffected_value", "NEVER")),
        scale_min=scale_min,
        scale_max=scale_max,
        normalize=bool(raw.get("normalize", False)),
        reverse_questions=tuple(raw.get("reverse_questions") or ()),
        module=raw.get("module"),
        sensitive=bool(raw.get("sensitive", False)),
        higher_is_better=bool(raw.get("higher_is_better", True)),
    )


def _indicator(raw: Mapping[str, Any]) -> CriticalIndicator:
    return CriticalIndicator(
        id=raw["id"],
        condition=raw["condition"],
        severity=raw.get("severity", "info"),
        message=raw.get("message", ""),
        recommendation=raw.get("recommendation"),
        segment=raw.get("segment"),
    )


def _formula(raw: Mapping[str, Any]) -> FinancialFormula:
    return FinancialFormula(
        id=raw["id"],
        formula=raw["formula"],
        name=raw.get("name"),
        unit=raw.get("unit"),
        description=raw.get("description"),
        module=raw.get("module"),
    )


def _global_score(raw: Any) -> Any:
    if not raw:
        return None
    return GlobalScoreDef(
        id=raw.get("id") or "GLOBAL",
        dimensions=tuple(raw.get("dimensions") or ()),
    )


def _priority_matrix(raw: Any) -> Any:
    if not raw:
        return None
    return PriorityMatrixDef(
        question=raw["question"],
        entries=tuple(
            PriorityEntryDef(dimension=e["dimension"], values=tuple(str(v) for v in e["values"]))
            for e in raw["entries"]
        ),
    )


def _health(raw: Any) -> Any:
    if raw is None:
        return None
    defaults = HealthModuleDef()
    questions = {k: str(raw[k]) for k in _HEALTH_QUESTION_KEYS if raw.get(k)}
    return HealthModuleDef(
        module=int(raw.get("module", defaults.module)),
        frequency_map=dict(raw.get("frequency_map") or DEFAULT_FREQUENCY_MAP),
        efficiency_scale_max=float(raw.get("efficiency_scale_max", defaults.efficiency_scale_max)),
        stress_threshold=float(raw.get("stress_threshold", defaults.stress_threshold)),
        distress_threshold=float(raw.get("distress_threshold", defaults.distress_threshold)),
        roi_reduction=float(raw.get("roi_reduction", defaults.roi_reduction)),
        **questions,
    )
