from __future__ import annotations

from typing import Any, Dict, List

import pytest

from survey_analytics.engine.models import CompanyParams, Response
from survey_analytics.engine.schema import load_definition


def make_responses(rows: List[Dict[str, Any]], prefix: str = "resp") -> List[Response]:
    return [Response(respondent_hash=f"{prefix}-{i}", answers=dict(row)) for i, row in enumerate(rows)]


@pytest.fixture
def build_responses():
    return make_responses


@pytest.fixture
def company() -> CompanyParams:
    return CompanyParams(headcount=100, avg_gross_salary=40000, employer_contribution_rate=0.45)


# -------------------------
# QVCT-style definition: 20 respondents
#   WORKLOAD 7.0, RECOGNITION 5.0, ABSENCE_RATE 0.4, ABSENCE_DAYS 3.0 (8 affected)
# -------------------------

@pytest.fixture
def qvct_document() -> Dict[str, Any]:
    return {
        "survey_type_id": "QVCT_TEST",
        "survey_metadata": {"name": "QVCT test", "version": "1.0"},
        "data_governance": {"anonymity_threshold": 15, "anonymity_threshold_sensitive": 30},
        "calculation_engine": {
            "scoring_dimensions": [
                {"id": "WORKLOAD", "name": "charge de travail", "questions": ["Q1", "Q2"],
                 "aggregation": "mean", "weight": 2, "scale": {"min": 0, "max": 10}},
                {"id": "RECOGNITION", "name": "reconnaissance", "questions": ["Q3"],
                 "aggregation": "mean", "weight": 1, "scale": {"min": 0, "max": 10}},
                {"id": "ABSENCE_RATE", "source": "Q4", "aggregation": "percentage_affected",
                 "unaffected_value": "NEVER"},
                {"id": "ABSENCE_DAYS", "source": "Q5", "aggregation": "mean_among_affected",
                 "affected_filter": "Q4 != NEVER"},
                {"id": "BALANCE", "formula": "WORKLOAD - RECOGNITION"},
            ],
            "global_score": {"id": "GLOBAL", "dimensions": ["WORKLOAD", "RECOGNITION"]},
            "critical_indicators": [
                {"id": "LOW_RECOGNITION", "condition": "RECOGNITION < 6", "severity": "high",
                 "message": "Reconnaissance faible ({RECOGNITION}/10)",
                 "recommendation": "Renforcer la reconnaissance"},
                {"id": "HIGH_ABSENCE", "condition": "ABSENCE_RATE >= 0.5", "severity": "warning",
                 "message": "Absences fréquentes"},
            ],
            "financial_formulas": [
                {"id": "absence_cost", "formula": "headcount × ABSENCE_RATE × ABSENCE_DAYS × daily_cost",
                 "unit": "EUR"},
                {"id": "corrected_cost", "formula": "absence_cost * error_correction_coeff", "unit": "EUR"},
            ],
            "qualitative_aggregations": [
                {"id": "irritants", "type": "count_percentage", "source": "Q6"},
            ],
        },
        "output_engine": {
            "narrative_templates": {
                "opening": "{response_count} salariés de {company_name} ont répondu.",
                "insight": "Point de vigilance : {lowest_dimension} ({lowest_score}/10).",
                "global_insight": "Score global {global_score}/10, niveau {global_interpretation}.",
                "financial_impact": "Coût estimé des absences : {corrected_cost} €.",
                "recommendation": "Priorité : {top_recommendation}.",
            }
        },
    }


@pytest.fixture
def qvct_definition(qvct_document):
    return load_definition(qvct_document)


@pytest.fixture
def qvct_rows() -> List[Dict[str, Any]]:
    rows = []
    for i in range(20):
        affected = i < 8
        rows.append({
            "Q1": 8,
            "Q2": 6,
            "Q3": 5,
            "Q4": "1-2" if affected else "NEVER",
            "Q5": 3 if affected else None,
            "Q6": ["bruit", "open space"] if i % 2 == 0 else ["bruit"],
            "Q7": "A" if i < 16 else "B",
            "_started_at": "2024-01-01T10:00:00Z",
        })
    return rows


# -------------------------
# BNQ-style definition with the health module: 20 respondents
#   presenteeism prevalence 50%, loss 0.4; TMS prevalence 45%; distress 35%
# -------------------------

@pytest.fixture
def bnq_document() -> Dict[str, Any]:
    return {
        "survey_type_id": "BNQ_TEST",
        "data_governance": {
            "anonymity_threshold": 15,
            "anonymity_threshold_module3": 30,
            "sensitive_modules": [3],
        },
        "calculation_engine": {
            "scoring_dimensions": [
                {"id": "SATISFACTION", "source": "Q10", "scale": {"min": 0, "max": 10}},
                {"id": "STRESS", "source": "Q66", "module": 3},
            ],
            "critical_indicators": [
                {"id": "HIGH_DISTRESS", "condition": "distress_rate > 25", "severity": "critical",
                 "message": "Détresse élevée ({distress_rate}%)", "segment": "distress"},
                {"id": "LOW_SATISFACTION", "condition": "SATISFACTION < 5", "severity": "warning",
                 "message": "Satisfaction faible"},
            ],
            "financial_formulas": [
                {"id": "presenteeism_check", "formula": "presenteeism_annual_cost * 1", "module": 3},
            ],
            "health_module": {},
        },
    }


@pytest.fixture
def bnq_definition(bnq_document):
    return load_definition(bnq_document)


@pytest.fixture
def bnq_rows() -> List[Dict[str, Any]]:
    rows = []
    for i in range(20):
        if i < 6:
            zones = ["dos", "nuque"]
        elif i < 9:
            zones = ["dos"]
        else:
            zones = []
        rows.append({
            "Q10": 4,
            "Q60": "3-4" if i < 10 else "NEVER",
            "Q62": 6,
            "Q64": zones,
            "Q65": 3,
            "Q66": 8 if i < 5 else 3,
            "Q67": 4 if i in (5, 6) else 1,
        })
    return rows
