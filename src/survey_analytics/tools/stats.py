from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd


def is_missing(value: Any) -> bool:
    """True for null answers, including the NaN pandas uses for absent cells."""
    if value is None:
        return True
    if isinstance(value, (float, np.floating)):
        return math.isnan(float(value))
    return False


def as_number(value: Any) -> Optional[float]:
    """
    Returns the value as a finite float, or None when it is not a numeric answer.
    Booleans and numeric-looking strings are not numeric answers.
    """
    if isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        f = float(value)
        return f if math.isfinite(f) else None
    return None


def numeric_series(series: pd.Series) -> pd.Series:
    """Numeric answers of a column as a float Series (wrong-typed values dropped)."""
    if series.empty:
        return pd.Series([], dtype=float)
    return series.map(as_number).dropna().astype(float)


def finite_or_zero(value: Any) -> float:
    # Ints too large for a float overflow; they count as non-finite.
    try:
        f = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return f if math.isfinite(f) else 0.0


def round_half_up(value: Any, digits: int = 2) -> float:
    """
    Rounds half away from zero on the decimal representation, so 2.675 -> 2.68
    (binary float rounding would give 2.67).
    """
    f = finite_or_zero(value)
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(f)).quantize(quantum, rounding=ROUND_HALF_UP))


def safe_div(numerator: Any, denominator: Any) -> float:
    d = finite_or_zero(denominator)
    if d == 0:
        return 0.0
    return finite_or_zero(finite_or_zero(numerator) / d)


def mean(values: Iterable[Any]) -> float:
    nums: List[float] = [v for v in (as_number(x) for x in values) if v is not None]
    if not nums:
        return 0.0
    return finite_or_zero(np.mean(nums))


def series_mean(series: pd.Series) -> float:
    if series.empty:
        return 0.0
    return finite_or_zero(series.mean())


def weighted_mean(pairs: Iterable[Tuple[float, float]]) -> float:
    """Sum(score * weight) / Sum(weight); 0 when the total weight is 0."""
    total = 0.0
    total_weight = 0.0
    for score, weight in pairs:
        total += finite_or_zero(score) * finite_or_zero(weight)
        total_weight += finite_or_zero(weight)
    return safe_div(total, total_weight)


def share_percent(count: Any, total: Any, digits: int = 1) -> float:
    return round_half_up(safe_div(count, total) * 100, digits)


def rescale(value: float, low: float, high: float, reverse: bool = False) -> float:
    """Maps value from [low, high] onto 0-100; reverse inverts negative-valence items."""
    if reverse:
        value = high + low - value
    return safe_div(value - low, high - low) * 100
