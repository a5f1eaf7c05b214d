# models.py
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, NewType, Optional, Tuple

import numpy as np


Aggregation = Literal["mean", "sum", "percentage_affected", "mean_among_affected", "formula"]
Severity = Literal["info", "warning", "high", "critical"]
Color = Literal["red", "orange", "yellow", "green", "gold"]
ScoreUnit = Literal["score", "ratio", "percent"]
QualitativeType = Literal["count_percentage", "rank_aggregation", "text_collection"]
SignalColor = Literal["green", "orange", "red"]
QualityFlag = Literal["LOW", "MEDIUM", "HIGH"]
TrendDirection = Literal["up", "down", "stable"]

# Unit aliases: a Ratio is 0..1, a Percent is 0..100, Money is in base currency units.
Ratio = NewType("Ratio", float)
Percent = NewType("Percent", float)
Money = NewType("Money", float)

AnswerValue = Any  # number | str | list[str] | None, as submitted

DEFAULT_GLOBAL_SCORE_ID = "GLOBAL"
DEFAULT_UNAFFECTED_VALUE = "NEVER"


# -------------------------
# Responses
# -------------------------

@dataclass(frozen=True)
class AnsweredItem:
    question_id: str
    value: AnswerValue
    skipped: bool


@dataclass(frozen=True)
class Response:
    respondent_hash: str
    answers: Mapping[str, AnswerValue]
    is_complete: bool = True
    submitted_at: Optional[datetime] = None
    is_synthetic: bool = False
    is_archived: bool = False


@dataclass(frozen=True)
class CompanyParams:
    headcount: int
    avg_gross_salary: float
    employer_contribution_rate: float
    working_days_per_year: Optional[int] = None
    hours_per_year: float = 1600
    annual_value_added: Optional[float] = None
    # Company absenteeism rate in percent (5 means 5%), used by the sector-ratio costing.
    absenteeism_rate: Optional[float] = None

    @property
    def contribution_fraction(self) -> float:
        # Rates above 1 are percentages (45 -> 0.45).
        rate = float(self.employer_contribution_rate or 0)
        return rate / 100 if rate > 1 else rate

    @property
    def avg_total_salary(self) -> float:
        return float(self.avg_gross_salary) * (1 + self.contribution_fraction)


@dataclass(frozen=True)
class Department:
    code: str
    name: str


@dataclass(frozen=True)
class AnonymityThresholds:
    general: int = 15
    sensitive: int = 30

    @property
    def effective_sensitive(self) -> int:
        # Sensitive data is never held to a weaker bar than general data.
        return max(self.general, self.sensitive)


@dataclass(frozen=True)
class CalculationConfig:
    target_population: Optional[int] = None
    active_modules: Optional[FrozenSet[int]] = None
    departments: Tuple[Department, ...] = ()
    department_question: Optional[str] = None
    exclude_synthetic: bool = False

    def module_active(self, module: Optional[int]) -> bool:
        if module is None or self.active_modules is None:
            return True
        return module in self.active_modules


# -------------------------
# Survey definition (schema entities)
# -------------------------

@dataclass(frozen=True)
class ScoringDimension:
    id: str
    aggregation: Aggregation = "mean"
    name: Optional[str] = None
    source: Optional[str] = None
    questions: Tuple[str, ...] = ()
    formula: Optional[str] = None
    weight: Optional[float] = None
    alert_threshold: Optional[float] = None
    affected_filter: Optional[str] = None
    unaffected_value: str = DEFAULT_UNAFFECTED_VALUE
    scale_min: Optional[float] = None
    scale_max: Optional[float] = None
    normalize: bool = False
    reverse_questions: Tuple[str, ...] = ()
    module: Optional[int] = None
    sensitive: bool = False
    higher_is_better: bool = True

    @property
    def strategy(self) -> str:
        if self.formula is not None:
            return "formula"
        if self.source is not None:
            return "source"
        return "questions"

    @property
    def unit(self) -> ScoreUnit:
        if self.aggregation == "percentage_affected":
            return "ratio"
        if self.normalize:
            return "percent"
        return "score"

    @property
    def label(self) -> str:
        return self.name or self.id.replace("_", " ").lower()


@dataclass(frozen=True)
class CriticalIndicator:
    id: str
    condition: str
    severity: Severity = "info"
    message: str = ""
    recommendation: Optional[str] = None
    segment: Optional[str] = None


@dataclass(frozen=True)
class FinancialFormula:
    id: str
    formula: str
    name: Optional[str] = None
    unit: Optional[str] = None
    description: Optional[str] = None
    module: Optional[int] = None


@dataclass(frozen=True)
class GlobalScoreDef:
    dimensions: Tuple[str, ...]
    id: str = DEFAULT_GLOBAL_SCORE_ID


@dataclass(frozen=True)
class QualitativeAggregation:
    id: str
    type: QualitativeType
    source: str


@dataclass(frozen=True)
class PriorityEntryDef:
    dimension: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class PriorityMatrixDef:
    question: str
    entries: Tuple[PriorityEntryDef, ...]


DEFAULT_FREQUENCY_MAP: Dict[str, float] = {
    "NEVER": 0,
    "1-2": 1.5,
    "3-4": 3.5,
    "5-6": 5.5,
    ">6": 8,
}


@dataclass(frozen=True)
class HealthModuleDef:
    module: int = 3
    frequency_question: str = "Q60"
    efficiency_question: str = "Q62"
    pain_zones_question: str = "Q64"
    pain_impact_question: str = "Q65"
    stress_question: str = "Q66"
    distress_question: str = "Q67"
    factors_question: Optional[str] = None
    impact_question: Optional[str] = None
    working_hours_question: Optional[str] = None
    frequency_map: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_FREQUENCY_MAP))
    efficiency_scale_max: float = 10
    stress_threshold: float = 7
    distress_threshold: float = 4
    roi_reduction: float = 0.5


@dataclass(frozen=True)
class DataGovernance:
    # Unset thresholds fall back to the process settings.
    anonymity_threshold: Optional[int] = None
    sensitive_anonymity_threshold: Optional[int] = None
    sensitive_modules: Tuple[int, ...] = (3,)
    department_question: Optional[str] = None


@dataclass(frozen=True)
class SurveyDefinition:
    survey_type_id: str
    name: Optional[str] = None
    version: Optional[str] = None
    governance: DataGovernance = field(default_factory=DataGovernance)
    dimensions: Tuple[ScoringDimension, ...] = ()
    indicators: Tuple[CriticalIndicator, ...] = ()
    financial_formulas: Tuple[FinancialFormula, ...] = ()
    global_score: Optional[GlobalScoreDef] = None
    qualitative: Tuple[QualitativeAggregation, ...] = ()
    priority_matrix: Optional[PriorityMatrixDef] = None
    health: Optional[HealthModuleDef] = None
    narrative_templates: Mapping[str, str] = field(default_factory=dict)

    def dimension(self, dimension_id: str) -> Optional[ScoringDimension]:
        for d in self.dimensions:
            if d.id == dimension_id:
                return d
        return None


# -------------------------
# Results
# -------------------------

@dataclass
class DimensionScore:
    dimension_id: str
    name: str
    score: float
    unit: ScoreUnit
    respondent_count: int
    sensitive: bool = False
    is_confidential: bool = False
    color: Optional[Color] = None
    module: Optional[int] = None


@dataclass
class PriorityMatrixEntry:
    dimension_id: str
    name: str
    score: float
    priority_rate: Percent
    criticality_index: Percent
    rank: int
    respondent_count: int
    is_confidential: bool = False


@dataclass
class MethodAResult:
    # Sector-ratio costing from the company absenteeism rate.
    pres_rate: Percent
    pres_days: float
    productivity_loss_days: float
    pres_cost: Money
    pres_cost_per_employee: Money
    pres_cost_pct_payroll: Percent
    avg_total_salary: Money
    payroll: Money
    daily_salary: Money
    signal: SignalColor
    absenteeism_signal: SignalColor
    pres_abs_coefficient: float
    productivity_loss_coeff: float
    working_days_per_year: int


@dataclass
class SurveyAggregate:
    respondents_count: int
    prevalence: Ratio
    avg_efficiency_score: Ratio
    factor_distribution: Dict[str, int] = field(default_factory=dict)
    impact_distribution: Dict[str, int] = field(default_factory=dict)
    working_hours_distribution: Dict[str, int] = field(default_factory=dict)


@dataclass
class MethodBResult:
    # Degraded-hours costing from the survey aggregate.
    pres_cost: Money
    pres_cost_pct_payroll: Percent
    pres_cost_per_employee: Money
    productivity_loss: Percent
    affected_employees: float
    degraded_hours: float
    value_per_hour: Money
    uses_value_added: bool
    avg_total_salary: Money
    payroll: Money
    is_valid: bool
    quality_flag: QualityFlag
    signal: SignalColor
    error_correction_coeff: float
    aggregate: SurveyAggregate


@dataclass
class Trend:
    direction: TrendDirection
    percentage: Percent


@dataclass
class PresenteeismResult:
    prevalence_rate: Percent
    avg_efficiency: Percent
    productivity_loss_coeff: Ratio
    presenteeism_days: float
    annual_cost: Optional[Money]
    cost_per_employee: Optional[Money]
    cost_as_payroll_pct: Optional[Percent]
    roi_estimate: Optional[Money]
    respondent_count: int
    is_confidential: bool = False
    method_b: Optional[MethodBResult] = None


@dataclass
class ZoneRate:
    zone: str
    rate: Percent


@dataclass
class TmsResult:
    prevalence: Percent
    top_zones: List[ZoneRate]
    impact_score: Percent
    respondent_count: int
    is_confidential: bool = False


@dataclass
class DistressResult:
    rate: Percent
    avg_stress_level: float
    color: Color
    respondent_count: int
    is_confidential: bool = False


@dataclass
class HealthResult:
    presenteeism: Optional[PresenteeismResult] = None
    tms: Optional[TmsResult] = None
    distress: Optional[DistressResult] = None


@dataclass
class DepartmentBreakdown:
    code: str
    name: str
    response_count: int
    scores: Dict[str, float] = field(default_factory=dict)
    # Responses backing each score, and the ids held to the sensitive threshold.
    respondent_counts: Dict[str, int] = field(default_factory=dict)
    sensitive: Tuple[str, ...] = ()
    is_confidential: bool = False


@dataclass
class IndicatorAlert:
    severity: Severity
    message: str
    recommendation: Optional[str] = None
    triggered: bool = True
    sources: Tuple[str, ...] = ()


@dataclass
class CalculationResult:
    response_count: int
    participation_rate: Optional[Percent]
    completion_rate: Percent
    scores: Dict[str, float]
    dimensions: Dict[str, DimensionScore]
    critical_indicators: Dict[str, IndicatorAlert]
    financial_metrics: Optional[Dict[str, float]]
    financial_sources: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    priority_matrix: List[PriorityMatrixEntry] = field(default_factory=list)
    health: Optional[HealthResult] = None
    departments: List[DepartmentBreakdown] = field(default_factory=list)
    qualitative_insights: Optional[Dict[str, Any]] = None
    narrative: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return json_sanitize(asdict(self))

    def to_json(self, ensure_ascii: bool = False, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=ensure_ascii, indent=indent)


def json_sanitize(obj: Any) -> Any:
    if obj is None: return None
    if isinstance(obj, (str, int, float, bool)): return obj
    if isinstance(obj, np.generic): return obj.item()
    if isinstance(obj, datetime): return obj.replace(microsecond=0).isoformat()
    if is_dataclass(obj): return json_sanitize(asdict(obj))
    if isinstance(obj, dict): return {str(k): json_sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (set, frozenset)): return [json_sanitize(v) for v in sorted(obj, key=str)]
    if isinstance(obj, (list, tuple)): return [json_sanitize(v) for v in obj]
    try:
        json.dumps(obj)
        return obj
    except TypeError:
        return str(obj)
