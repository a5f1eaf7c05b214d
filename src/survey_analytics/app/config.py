from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    v = _env_str(key)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Anonymity (k-anonymity thresholds used when a campaign does not set its own)
    anonymity_threshold: int = 15
    sensitive_anonymity_threshold: int = 30

    # Result cache
    cache_ttl_seconds: int = 300

    # Financial defaults
    working_days_per_year: int = 220

    # Respondent hashing
    respondent_hash_salt: str = "CHANGE_ME_SALT"

    @staticmethod
    def from_env(env_file: Optional[str] = None) -> "Settings":
        # Read configuration from environment variables (and a .env file; variables already set win).
        load_dotenv(env_file)

        return Settings(
            log_level=_env_str("SURVEY_LOG_LEVEL", "INFO") or "INFO",
            log_json=_env_bool("SURVEY_LOG_JSON", True),

            anonymity_threshold=_env_int("SURVEY_ANONYMITY_THRESHOLD", 15),
            sensitive_anonymity_threshold=_env_int("SURVEY_SENSITIVE_ANONYMITY_THRESHOLD", 30),

            cache_ttl_seconds=_env_int("SURVEY_CACHE_TTL_SECONDS", 300),
            working_days_per_year=_env_int("SURVEY_WORKING_DAYS_PER_YEAR", 220),

            respondent_hash_salt=_env_str("SURVEY_RESPONDENT_HASH_SALT", "CHANGE_ME_SALT") or "CHANGE_ME_SALT",
        )
