"""
Schema-driven dimension scoring.

Scores are computed in two passes over a wide response frame:

  1. dimensions backed by questions (`source` or `questions`)
  2. formula dimensions, in declaration order, over the scores computed so far

followed by the weighted global composite. Every dimension also carries the
number of responses backing it; the anonymity gate decides on that count.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from survey_analytics.app.errors import ExpressionError
from survey_analytics.app.logging import get_logger
from survey_analytics.execution.expressions import evaluate_number, referenced_names
from survey_analytics.tools.stats import (
    as_number,
    finite_or_zero,
    is_missing,
    numeric_series,
    rescale,
    round_half_up,
    safe_div,
    series_mean,
    share_percent,
    weighted_mean,
)

from .models import (
    CalculationConfig,
    Color,
    DepartmentBreakdown,
    DimensionScore,
    GlobalScoreDef,
    PriorityMatrixDef,
    PriorityMatrixEntry,
    ScoringDimension,
    SurveyDefinition,
)
from .responses import as_frame, column, department_code, distinct_answers

logger = get_logger(__name__)

# 0-100 colour bands: red < 40 <= orange < 65 <= green < 80 <= gold
SCORE_BANDS: Tuple[Tuple[float, Color], ...] = ((40, "red"), (65, "orange"), (80, "green"))

RATIO_DIGITS = 4
SCORE_DIGITS = 2


@dataclass
class _Computed:
    score: float
    count: int
    sensitive: bool


# -------------------------
# Helpers
# -------------------------

def is_affected(value: Any, unaffected_value: str) -> bool:
    # Affected: answered and not the "unaffected" sentinel. An empty selection counts as unaffected.
    if is_missing(value):
        return False
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return str(value) != unaffected_value


def filter_question(affected_filter: Optional[str]) -> Optional[str]:
    # "Q14 != NEVER" and "Q14" both name Q14 as the filter question.
    if not affected_filter or not affected_filter.strip():
        return None
    return affected_filter.split()[0]


def score_percent(dim: ScoringDimension, score: float) -> Optional[float]:
    """The score on a 0-100 scale, or None when the dimension has no known scale."""
    if dim.unit == "ratio":
        return score * 100
    if dim.unit == "percent":
        return score
    if dim.scale_min is not None and dim.scale_max is not None and dim.scale_max > dim.scale_min:
        return rescale(score, dim.scale_min, dim.scale_max)
    return None


def colour(dim: ScoringDimension, score: float) -> Optional[Color]:
    if dim.alert_threshold is not None:
        if dim.higher_is_better:
            breached = score < dim.alert_threshold
        else:
            breached = score > dim.alert_threshold
        return "red" if breached else "green"

    pct = score_percent(dim, score)
    if pct is None:
        return None
    if not dim.higher_is_better:
        pct = 100 - pct
    return band_colour(pct)


def band_colour(pct: float) -> Color:
    for upper, name in SCORE_BANDS:
        if pct < upper:
            return name
    return "gold"


def is_sensitive(dim: ScoringDimension, definition: Optional[SurveyDefinition]) -> bool:
    if dim.sensitive:
        return True
    if definition is None or dim.module is None:
        return False
    return dim.module in definition.governance.sensitive_modules


def _values(dim: ScoringDimension, question_id: str, frame: pd.DataFrame) -> pd.Series:
    values = numeric_series(column(frame, question_id))
    if dim.normalize and dim.scale_min is not None and dim.scale_max is not None:
        reverse = question_id in dim.reverse_questions
        values = values.map(lambda v: rescale(v, dim.scale_min, dim.scale_max, reverse=reverse))
    return values


# -------------------------
# Pass 1
# -------------------------

def _source_score(dim: ScoringDimension, frame: pd.DataFrame) -> Tuple[float, int]:
    source = column(frame, dim.source)

    if dim.aggregation == "percentage_affected":
        total = len(frame)
        affected = sum(1 for v in source if is_affected(v, dim.unaffected_value))
        return round_half_up(safe_div(affected, total), RATIO_DIGITS), total

    if dim.aggregation == "mean_among_affected":
        fq = filter_question(dim.affected_filter) or dim.source
        mask = column(frame, fq).map(lambda v: is_affected(v, dim.unaffected_value)).astype(bool)
        values = _values(dim, dim.source, frame[mask]) if len(frame) else pd.Series([], dtype=float)
        return round_half_up(series_mean(values), SCORE_DIGITS), int(mask.sum())

    values = _values(dim, dim.source, frame)
    if dim.aggregation == "sum":
        return round_half_up(values.sum() if len(values) else 0.0, SCORE_DIGITS), len(frame)
    return round_half_up(series_mean(values), SCORE_DIGITS), len(frame)


def _questions_score(dim: ScoringDimension, frame: pd.DataFrame) -> Tuple[float, int]:
    pooled: List[float] = []
    for q in dim.questions:
        pooled.extend(_values(dim, q, frame).tolist())

    count = len(frame)
    if dim.aggregation == "sum":
        return round_half_up(sum(pooled), SCORE_DIGITS), count
    return round_half_up(series_mean(pd.Series(pooled, dtype=float)), SCORE_DIGITS), count


# -------------------------
# Pass 2 and composite
# -------------------------

def _formula_score(dim: ScoringDimension, computed: Dict[str, _Computed]) -> Tuple[float, int, bool]:
    refs = [computed[n] for n in referenced_names(dim.formula or "") if n in computed]
    count = min((c.count for c in refs), default=0)
    sensitive = any(c.sensitive for c in refs)

    namespace = {k: v.score for k, v in computed.items()}
    try:
        score = evaluate_number(dim.formula or "", namespace)
    except ExpressionError as e:
        logger.warning(
            "Formula dimension failed; scored 0",
            extra={"dimension_id": dim.id, "error": str(e)},
        )
        score = 0.0
    return round_half_up(score, SCORE_DIGITS), count, sensitive


def _global_score(global_def: GlobalScoreDef, definition_dims: Dict[str, ScoringDimension],
                  computed: Dict[str, _Computed]) -> _Computed:
    pairs: List[Tuple[float, float]] = []
    members: List[_Computed] = []
    for dim_id in global_def.dimensions:
        c = computed.get(dim_id)
        if c is None:
            continue
        dim = definition_dims.get(dim_id)
        weight = 1.0 if dim is None or dim.weight is None else float(dim.weight)
        pairs.append((c.score, weight))
        members.append(c)

    return _Computed(
        score=round_half_up(weighted_mean(pairs), SCORE_DIGITS),
        count=min((c.count for c in members), default=0),
        sensitive=any(c.sensitive for c in members),
    )


def _compute(frame: pd.DataFrame, dimensions: Sequence[ScoringDimension],
             global_def: Optional[GlobalScoreDef], definition: Optional[SurveyDefinition],
             config: Optional[CalculationConfig]) -> Dict[str, _Computed]:
    config = config or CalculationConfig()
    active = [d for d in dimensions if config.module_active(d.module)]
    computed: Dict[str, _Computed] = {}

    for dim in active:
        if dim.strategy == "formula":
            continue
        if dim.strategy == "source":
            score, count = _source_score(dim, frame)
        else:
            score, count = _questions_score(dim, frame)
        computed[dim.id] = _Computed(score=finite_or_zero(score), count=count, sensitive=is_sensitive(dim, definition))

    for dim in active:
        if dim.strategy != "formula":
            continue
        score, count, sensitive = _formula_score(dim, computed)
        computed[dim.id] = _Computed(
            score=score, count=count, sensitive=sensitive or is_sensitive(dim, definition),
        )

    if global_def is not None and global_def.dimensions:
        by_id = {d.id: d for d in dimensions}
        computed[global_def.id] = _global_score(global_def, by_id, computed)

    return computed


# -------------------------
# Public API
# -------------------------

def compute_scores(responses: Any, dimensions: Sequence[ScoringDimension],
                   global_score: Optional[GlobalScoreDef] = None) -> Dict[str, float]:
    """Dimension id -> score for a batch of responses (list of Response or a response frame)."""
    computed = _compute(as_frame(responses), dimensions, global_score, None, None)
    return {k: v.score for k, v in computed.items()}


def score_dimensions(frame: pd.DataFrame, definition: SurveyDefinition,
                     config: Optional[CalculationConfig] = None) -> Dict[str, DimensionScore]:
    computed = _compute(frame, definition.dimensions, definition.global_score, definition, config)
    by_id = {d.id: d for d in definition.dimensions}

    out: Dict[str, DimensionScore] = {}
    for dim_id, c in computed.items():
        dim = by_id.get(dim_id)
        if dim is None:
            # Global composite: same unit as its members when they agree.
            units = {by_id[m].unit for m in definition.global_score.dimensions if m in by_id}
            unit = units.pop() if len(units) == 1 else "score"
            out[dim_id] = DimensionScore(
                dimension_id=dim_id, name="score global", score=c.score, unit=unit,
                respondent_count=c.count, sensitive=c.sensitive,
                color=band_colour(c.score) if unit == "percent" else None,
            )
            continue
        out[dim_id] = DimensionScore(
            dimension_id=dim_id,
            name=dim.label,
            score=c.score,
            unit=dim.unit,
            respondent_count=c.count,
            sensitive=c.sensitive,
            color=colour(dim, c.score),
            module=dim.module,
        )
    return out


def build_priority_matrix(frame: pd.DataFrame, matrix: PriorityMatrixDef,
                          dimensions: Dict[str, DimensionScore],
                          definition: SurveyDefinition) -> List[PriorityMatrixEntry]:
    """
    Crosses each dimension's score with how often respondents picked it as a
    priority: criticality = (100 - score%) * priority_rate / 100.
    """
    answers = [v for v in column(frame, matrix.question) if not is_missing(v)]
    total = len(answers)

    entries: List[PriorityMatrixEntry] = []
    for entry in matrix.entries:
        ds = dimensions.get(entry.dimension)
        dim = definition.dimension(entry.dimension)
        if ds is None or dim is None:
            continue
        codes = set(entry.values)
        selected = sum(1 for a in answers if _selects(a, codes))
        rate = share_percent(selected, total)
        pct = score_percent(dim, ds.score)
        pct = ds.score if pct is None else pct
        pct = min(max(pct, 0.0), 100.0)
        criticality = round_half_up((100 - pct) * rate / 100, 1)
        entries.append(PriorityMatrixEntry(
            dimension_id=ds.dimension_id,
            name=ds.name,
            score=ds.score,
            priority_rate=rate,
            criticality_index=criticality,
            rank=0,
            respondent_count=ds.respondent_count,
        ))

    ordered = sorted(entries, key=lambda e: -e.criticality_index)
    for i, e in enumerate(ordered, start=1):
        e.rank = i
    return ordered


def _selects(answer: Any, codes: set) -> bool:
    if isinstance(answer, (list, tuple)):
        return any(str(a) in codes for a in answer)
    n = as_number(answer)
    if n is not None and n.is_integer():
        return str(int(n)) in codes or str(answer) in codes
    return str(answer) in codes


def department_breakdown(frame: pd.DataFrame, definition: SurveyDefinition,
                         config: Optional[CalculationConfig] = None) -> List[DepartmentBreakdown]:
    config = config or CalculationConfig()
    question = config.department_question or definition.governance.department_question
    if not question or question not in frame.columns:
        return []

    codes = column(frame, question).map(department_code)
    if config.departments:
        departments: Iterable[Tuple[str, str]] = [(d.code, d.name) for d in config.departments]
    else:
        departments = [(c, c) for c in sorted(str(v) for v in distinct_answers(codes))]

    out: List[DepartmentBreakdown] = []
    for code, name in departments:
        subset = frame[(codes == code).astype(bool)]
        computed = _compute(subset, definition.dimensions, definition.global_score, definition, config)
        out.append(DepartmentBreakdown(
            code=code,
            name=name,
            response_count=int(len(subset)),
            scores={k: v.score for k, v in computed.items()},
            respondent_counts={k: v.count for k, v in computed.items()},
            sensitive=tuple(k for k, v in computed.items() if v.sensitive),
        ))
    return out
