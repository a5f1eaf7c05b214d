from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from survey_analytics.app.errors import ExpressionError, UnresolvedNameError
from survey_analytics.app.logging import get_logger
from survey_analytics.execution.expressions import evaluate_condition, referenced_names

from .health import TOKEN_SEGMENTS
from .models import CriticalIndicator, IndicatorAlert

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def indicator_namespace(scores: Mapping[str, float], response_count: int,
                        health_tokens: Optional[Mapping[str, float]] = None) -> Dict[str, Any]:
    namespace: Dict[str, Any] = {"response_count": response_count}
    namespace.update(health_tokens or {})
    namespace.update(scores)
    return namespace


def fill_template(template: str, values: Mapping[str, Any]) -> str:
    """Replaces {token} placeholders; unknown tokens are left as written."""
    def repl(m: "re.Match[str]") -> str:
        key = m.group(1)
        if key not in values:
            return m.group(0)
        v = values[key]
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)
    return _PLACEHOLDER.sub(repl, template or "")


def indicator_sources(indicator: CriticalIndicator, scores: Mapping[str, float]) -> Tuple[str, ...]:
    # Segments the alert is about or prints: explicit segment, then names in the
    # condition and in the message and recommendation placeholders.
    sources = []
    if indicator.segment:
        sources.append(indicator.segment)
    names = set(referenced_names(indicator.condition))
    for text in (indicator.message, indicator.recommendation):
        names.update(_PLACEHOLDER.findall(text or ""))
    for name in sorted(names):
        if name in scores:
            sources.append(name)
        elif name in TOKEN_SEGMENTS:
            sources.append(TOKEN_SEGMENTS[name])
    return tuple(dict.fromkeys(sources))


def evaluate_indicators(scores: Mapping[str, float], response_count: int,
                        indicators: Iterable[CriticalIndicator],
                        health_tokens: Optional[Mapping[str, float]] = None) -> Dict[str, IndicatorAlert]:
    """
    Evaluates every indicator condition against the scores; only indicators
    whose condition is exactly True appear in the result. A condition that
    cannot be parsed or evaluated is treated as not triggered.
    """
    namespace = indicator_namespace(scores, response_count, health_tokens)
    alerts: Dict[str, IndicatorAlert] = {}

    for indicator in indicators:
        try:
            triggered = evaluate_condition(indicator.condition, namespace)
        except UnresolvedNameError as e:
            logger.debug(
                "Indicator references an unknown token; not triggered",
                extra={"indicator_id": indicator.id, "token": e.name},
            )
            continue
        except ExpressionError as e:
            logger.warning(
                "Indicator condition failed; not triggered",
                extra={"indicator_id": indicator.id, "error": str(e)},
            )
            continue
        if not triggered:
            continue

        alerts[indicator.id] = IndicatorAlert(
            severity=indicator.severity,
            message=fill_template(indicator.message, namespace),
            recommendation=fill_template(indicator.recommendation, namespace) if indicator.recommendation else None,
            sources=indicator_sources(indicator, scores),
        )
    return alerts
