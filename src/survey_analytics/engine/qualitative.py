from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List

import pandas as pd

from survey_analytics.tools.stats import is_missing, round_half_up, safe_div

from .models import QualitativeAggregation
from .responses import column


def _ordered(counter: Counter) -> Dict[str, Any]:
    # Highest count first, then key.
    return {k: v for k, v in sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))}


def count_percentage(series: pd.Series) -> Dict[str, int]:
    """Share of respondents (whole %) choosing each option; multi-choice answers count once per option."""
    total = len(series)
    counts: Counter = Counter()
    for value in series:
        if isinstance(value, (list, tuple)):
            counts.update(str(v) for v in value)
        elif not is_missing(value) and value != "":
            counts[str(value)] += 1
    return {k: int(round_half_up(safe_div(v, total) * 100, 0)) for k, v in _ordered(counts).items()}


def rank_aggregation(series: pd.Series) -> Dict[str, int]:
    # Borda count: in a ranking of n items, the first gets n points and the last gets 1.
    points: Counter = Counter()
    for value in series:
        if not isinstance(value, (list, tuple)):
            continue
        n = len(value)
        for i, item in enumerate(value):
            points[str(item)] += n - i
    return _ordered(points)


def text_collection(series: pd.Series) -> List[str]:
    return [v for v in series if isinstance(v, str) and v.strip()]


_AGGREGATORS = {
    "count_percentage": count_percentage,
    "rank_aggregation": rank_aggregation,
    "text_collection": text_collection,
}


def aggregate_qualitative(frame: pd.DataFrame, aggregations: Iterable[QualitativeAggregation]) -> Dict[str, Any]:
    return {agg.id: _AGGREGATORS[agg.type](column(frame, agg.source)) for agg in aggregations}
