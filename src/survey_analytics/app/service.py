"""
Boundary service: the only way results leave the engine.

Every payload goes through the anonymity gate, whether the result came from
the cache or from a fresh calculation, and the narrative is re-rendered from
the filtered values.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from survey_analytics.app.config import Settings
from survey_analytics.app.errors import DefinitionNotFound
from survey_analytics.app.logging import campaign_context, get_logger, setup_logging
from survey_analytics.cache.result_cache import ResultCache, compute_fingerprint
from survey_analytics.cache.storage import CacheStorage
from survey_analytics.engine.anonymity import apply_anonymity_filter
from survey_analytics.engine.calculator import SurveyCalculationEngine
from survey_analytics.engine.models import (
    AnonymityThresholds,
    CalculationConfig,
    CompanyParams,
    Department,
    Response,
    SurveyDefinition,
    json_sanitize,
)
from survey_analytics.engine.narrative import NarrativeGenerator
from survey_analytics.engine.presenteeism import calculate_trend

logger = get_logger(__name__)

NO_RESPONSES_MESSAGE = "Aucune réponse reçue"


@dataclass(frozen=True)
class CampaignSnapshot:
    campaign_id: str
    definition: Optional[SurveyDefinition]
    responses: Sequence[Response] = ()
    company: Optional[CompanyParams] = None
    target_population: Optional[int] = None
    active_modules: Optional[FrozenSet[int]] = None
    anonymity_threshold: Optional[int] = None
    sensitive_threshold: Optional[int] = None
    departments: Tuple[Department, ...] = ()
    campaign_name: Optional[str] = None
    company_name: Optional[str] = None
    # Filtered scores of the previous campaign, for trends.
    previous_scores: Optional[Mapping[str, float]] = None


class AnalyticsService:
    def __init__(self, settings: Optional[Settings] = None, cache_storage: Optional[CacheStorage] = None):
        self.settings = settings or Settings()
        self.cache = ResultCache(storage=cache_storage, ttl_seconds=self.settings.cache_ttl_seconds)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, cache_storage: Optional[CacheStorage] = None) -> "AnalyticsService":
        # Process entry point: settings from the environment, package logging configured once.
        settings = Settings.from_env(env_file)
        setup_logging(settings.log_level, settings.log_json)
        return cls(settings, cache_storage)

    def thresholds(self, snapshot: CampaignSnapshot) -> AnonymityThresholds:
        # Campaign setting, then the survey definition, then the process settings.
        governance = snapshot.definition.governance if snapshot.definition is not None else None
        general = snapshot.anonymity_threshold or (governance.anonymity_threshold if governance else None) \
            or self.settings.anonymity_threshold
        sensitive = snapshot.sensitive_threshold or (governance.sensitive_anonymity_threshold if governance else None) \
            or self.settings.sensitive_anonymity_threshold
        return AnonymityThresholds(general=general, sensitive=sensitive)

    def _config(self, snapshot: CampaignSnapshot) -> CalculationConfig:
        return CalculationConfig(
            target_population=snapshot.target_population,
            active_modules=snapshot.active_modules,
            departments=snapshot.departments,
        )

    def campaign_analytics(self, snapshot: CampaignSnapshot, force_recalculate: bool = False) -> Dict[str, Any]:
        if snapshot.definition is None:
            raise DefinitionNotFound(f"No survey definition for campaign {snapshot.campaign_id}")

        with campaign_context(snapshot.campaign_id):
            return self._campaign_analytics(snapshot, force_recalculate)

    def _campaign_analytics(self, snapshot: CampaignSnapshot, force_recalculate: bool) -> Dict[str, Any]:
        definition = snapshot.definition
        thresholds = self.thresholds(snapshot)

        if not snapshot.responses:
            return {
                "success": True,
                "campaign_id": snapshot.campaign_id,
                "campaign_name": snapshot.campaign_name,
                "response_count": 0,
                "meets_anonymity_threshold": False,
                "anonymity_threshold": thresholds.general,
                "message": NO_RESPONSES_MESSAGE,
                "results": None,
            }

        config = self._config(snapshot)
        engine = SurveyCalculationEngine(definition, working_days_per_year=self.settings.working_days_per_year)
        fingerprint = compute_fingerprint(snapshot.responses, snapshot.company, config, definition)

        lookup = self.cache.get_cached_result(
            snapshot.campaign_id,
            fingerprint,
            lambda: engine.calculate(snapshot.responses, snapshot.company, config),
            force_recalculate=force_recalculate,
        )

        logger.info(
            "Campaign analytics requested",
            extra={"responses": len(snapshot.responses), "from_cache": lookup.from_cache},
        )
        filtered = apply_anonymity_filter(lookup.result, thresholds.general, thresholds.sensitive)
        filtered.narrative = NarrativeGenerator(definition).render(filtered, company_name=snapshot.company_name)

        count = filtered.response_count
        meets_general = count >= thresholds.general
        meets_sensitive = count >= thresholds.effective_sensitive
        health_active = definition.health is not None and config.module_active(definition.health.module)

        warnings: List[str] = []
        if not meets_general:
            warnings.append(
                f"Seuil d'anonymat non atteint ({count}/{thresholds.general}). Certaines données sont masquées."
            )
        if health_active and not meets_sensitive:
            warnings.append(
                f"Seuil des données sensibles non atteint ({count}/{thresholds.effective_sensitive}). "
                "Les données de santé/présentéisme sont masquées."
            )

        return {
            "success": True,
            "campaign_id": snapshot.campaign_id,
            "campaign_name": snapshot.campaign_name,
            "survey_type": definition.name or definition.survey_type_id,
            "response_count": count,
            "anonymity_threshold": thresholds.general,
            "sensitive_threshold": thresholds.effective_sensitive,
            "meets_anonymity_threshold": meets_general,
            "meets_sensitive_threshold": meets_sensitive,
            "active_modules": sorted(snapshot.active_modules) if snapshot.active_modules is not None else None,
            "cache": {
                "from_cache": lookup.from_cache,
                "cache_age": f"{lookup.cache_age}s" if lookup.cache_age is not None else None,
            },
            "warnings": warnings,
            "trends": self._trends(filtered.dimensions, snapshot.previous_scores),
            "results": filtered.to_dict(),
        }

    @staticmethod
    def _trends(dimensions: Mapping[str, Any], previous: Optional[Mapping[str, float]]) -> Dict[str, Any]:
        # Confidential dimensions get no trend; their score is withheld.
        if not previous:
            return {}
        return {
            dim_id: json_sanitize(calculate_trend(ds.score, previous[dim_id]))
            for dim_id, ds in dimensions.items()
            if not ds.is_confidential and dim_id in previous
        }

    def recalculate(self, snapshot: CampaignSnapshot) -> Dict[str, Any]:
        self.cache.invalidate(snapshot.campaign_id)
        return self.campaign_analytics(snapshot, force_recalculate=True)

    def record_responses_changed(self, campaign_id: str) -> None:
        # New, edited or archived responses make the cached slot useless.
        self.cache.invalidate(campaign_id)

    def cache_stats(self) -> Dict[str, Any]:
        return json_sanitize(self.cache.stats())
