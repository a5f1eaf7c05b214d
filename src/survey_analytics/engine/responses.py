from __future__ import annotations

import hashlib
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from survey_analytics.app.logging import get_logger
from survey_analytics.tools.stats import is_missing

from .models import AnsweredItem, Response

logger = get_logger(__name__)

METADATA_PREFIX = "_"
METADATA_KEYS = frozenset({"fingerprint"})


def is_metadata_key(key: str) -> bool:
    return key.startswith(METADATA_PREFIX) or key in METADATA_KEYS


def hash_respondent_id(raw_id: str, salt: str) -> str:
    # Respondents are only ever identified by a salted hash.
    h = hashlib.sha256()
    h.update((salt + "::" + raw_id).encode("utf-8"))
    return h.hexdigest()


def normalize_answers(raw: Mapping[str, Any]) -> List[AnsweredItem]:
    """
    Flattens a raw answer map into answered items, dropping metadata keys.

    Values are not type-checked here; an answer of the wrong type is simply
    ignored by the aggregation that reads it.
    """
    items: List[AnsweredItem] = []
    for question_id, value in (raw or {}).items():
        if is_metadata_key(str(question_id)):
            continue
        items.append(AnsweredItem(question_id=str(question_id), value=value, skipped=is_missing(value)))
    return items


def answer_map(response: Response) -> Dict[str, Any]:
    return {item.question_id: item.value for item in normalize_answers(response.answers)}


def select_responses(responses: Iterable[Response], exclude_synthetic: bool = False) -> List[Response]:
    """
    Keeps the responses a calculation may use: complete, not archived, one per
    respondent hash (first submission wins), optionally non-synthetic.
    """
    selected: List[Response] = []
    seen = set()
    dropped = 0
    for r in responses:
        if not r.is_complete or r.is_archived:
            continue
        if exclude_synthetic and r.is_synthetic:
            continue
        if r.respondent_hash in seen:
            dropped += 1
            continue
        seen.add(r.respondent_hash)
        selected.append(r)

    if dropped:
        logger.warning("Dropped duplicate responses", extra={"duplicates": dropped})
    return selected


def responses_frame(responses: Sequence[Response]) -> pd.DataFrame:
    # Wide frame: one row per respondent, one column per question.
    rows = [answer_map(r) for r in responses]
    return pd.DataFrame(rows, index=pd.RangeIndex(len(rows)), dtype=object)


def column(frame: pd.DataFrame, question_id: str) -> pd.Series:
    """Answers to one question; an unanswered question gives an all-null column."""
    if question_id in frame.columns:
        return frame[question_id]
    return pd.Series([None] * len(frame), index=frame.index, dtype=object)


def as_frame(responses: Any) -> pd.DataFrame:
    if isinstance(responses, pd.DataFrame):
        return responses
    return responses_frame(list(responses))


def distinct_answers(series: pd.Series) -> List[Any]:
    values: List[Any] = []
    for v in series:
        if is_missing(v) or isinstance(v, list):
            continue
        if v not in values:
            values.append(v)
    return values


def department_code(value: Any) -> Optional[str]:
    if is_missing(value) or isinstance(value, list):
        return None
    return str(value)
