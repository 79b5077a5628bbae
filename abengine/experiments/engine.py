"""Caller-facing experiment engine.

Ties together validation, lifecycle, bucketing, event recording and
analysis over a shared ``ExperimentRepository``.

Example:
    engine = ExperimentEngine(ExperimentRepository(InMemoryKeyValueStore()))

    experiment = engine.create_experiment(
        {
            "name": "checkout-button",
            "variants": [
                {"id": "control", "name": "Control", "traffic_split": 50,
                 "is_control": True},
                {"id": "green", "name": "Green", "traffic_split": 50},
            ],
        }
    )
    engine.start_experiment(experiment.id)

    assignment = engine.assign(experiment.id, "user-42")
    engine.record_conversion(experiment.id, "user-42", "purchase")

    analysis = engine.analyze(experiment.id)
"""

import logging
import random
from collections.abc import Mapping, Sequence
from typing import Any

from abengine.core.logging import experiment_context
from abengine.core.settings import ABEngineSettings, get_cached_settings
from abengine.experiments.bucketing import BucketingEngine, TrafficSampler
from abengine.experiments.lifecycle import LifecycleController
from abengine.experiments.models import (
    Assignment,
    Experiment,
    ExperimentAnalysis,
    ExperimentConfig,
    ExperimentEvent,
    ExperimentStatistics,
    ExperimentStatus,
    Variant,
    VariantSummary,
)
from abengine.experiments.recorder import EventRecorder
from abengine.experiments.statistics import StatisticalAnalyzer
from abengine.experiments.store import (
    ExperimentRepository,
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)
from abengine.experiments.targeting import IdentityResolver, TargetingEvaluator
from abengine.experiments.validation import build_experiment

logger = logging.getLogger(__name__)


class ExperimentEngine:
    """Experiment assignment and analysis engine."""

    def __init__(
        self,
        repository: ExperimentRepository,
        identity_resolver: IdentityResolver | None = None,
        rng: random.Random | None = None,
        analyzer: StatisticalAnalyzer | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            repository: Record persistence.
            identity_resolver: Resolves subjects for target criteria.
            rng: Random source for traffic-allocation sampling.
            analyzer: Statistical analyzer to use.
        """
        self.repository = repository
        self.lifecycle = LifecycleController(repository)
        self.bucketing = BucketingEngine(
            repository,
            targeting=TargetingEvaluator(identity_resolver),
            sampler=TrafficSampler(rng),
        )
        self.recorder = EventRecorder(repository)
        self.analyzer = analyzer or StatisticalAnalyzer()

    # ==================== Experiments ====================

    def create_experiment(
        self, config: ExperimentConfig | Mapping[str, Any]
    ) -> Experiment:
        """Validate a definition and persist it as a draft experiment.

        Raises:
            ConfigurationError: If the definition is invalid. Nothing is stored.
        """
        experiment = build_experiment(config)
        self.repository.save_experiment(experiment)
        logger.info(
            "Experiment created: %s - %s", experiment.id, experiment.config.name
        )
        return experiment

    def find_experiment(self, experiment_id: str) -> Experiment | None:
        """Get an experiment, or None if unknown."""
        return self.repository.get_experiment(experiment_id)

    def get_experiment(self, experiment_id: str) -> Experiment:
        """Get an experiment.

        Raises:
            NotFoundError: If the experiment does not exist.
        """
        return self.lifecycle.require(experiment_id)

    def list_experiments(
        self,
        status: ExperimentStatus | None = None,
        company_id: str | None = None,
    ) -> list[Experiment]:
        """List experiments, newest first, with optional filters."""
        results = self.repository.list_experiments()

        if status:
            results = [e for e in results if e.status == status]

        if company_id:
            results = [e for e in results if e.config.company_id == company_id]

        return sorted(results, key=lambda e: e.created_at, reverse=True)

    def start_experiment(self, experiment_id: str) -> Experiment:
        return self.lifecycle.start(experiment_id)

    def pause_experiment(self, experiment_id: str) -> Experiment:
        return self.lifecycle.pause(experiment_id)

    def resume_experiment(self, experiment_id: str) -> Experiment:
        return self.lifecycle.resume(experiment_id)

    def complete_experiment(self, experiment_id: str) -> Experiment:
        return self.lifecycle.complete(experiment_id)

    def delete_experiment(self, experiment_id: str) -> int:
        return self.lifecycle.delete(experiment_id)

    def update_variants(
        self, experiment_id: str, variants: Sequence[Variant]
    ) -> Experiment:
        return self.lifecycle.update_variants(experiment_id, variants)

    # ==================== Assignment ====================

    def assign(
        self,
        experiment_id: str,
        subject_id: str,
        context: Mapping[str, Any] | None = None,
    ) -> Assignment | None:
        """Assign a subject, or return None if it is not eligible."""
        with experiment_context(experiment_id, subject_id):
            return self.bucketing.assign(experiment_id, subject_id, context)

    def get_assignment(self, experiment_id: str, subject_id: str) -> Assignment | None:
        """Get a subject's existing assignment."""
        return self.repository.get_assignment(experiment_id, subject_id)

    def get_variant_configuration(
        self, experiment_id: str, subject_id: str
    ) -> dict[str, Any] | None:
        """Get the configuration payload of the subject's assigned variant."""
        assignment = self.get_assignment(experiment_id, subject_id)
        if assignment is None:
            return None

        experiment = self.find_experiment(experiment_id)
        if experiment is None:
            return None

        variant = experiment.get_variant(assignment.variant_id)
        return variant.configuration if variant else None

    # ==================== Events ====================

    def record_event(
        self,
        experiment_id: str,
        subject_id: str,
        metric: str,
        value: float = 1.0,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> ExperimentEvent | None:
        with experiment_context(experiment_id, subject_id):
            return self.recorder.record(
                experiment_id, subject_id, metric, value, metadata, session_id
            )

    def record_conversion(
        self,
        experiment_id: str,
        subject_id: str,
        conversion_type: str = "default",
        value: float = 1.0,
    ) -> ExperimentEvent | None:
        with experiment_context(experiment_id, subject_id):
            return self.recorder.record_conversion(
                experiment_id, subject_id, conversion_type, value
            )

    def record_revenue(
        self,
        experiment_id: str,
        subject_id: str,
        amount: float,
        currency: str = "USD",
    ) -> ExperimentEvent | None:
        with experiment_context(experiment_id, subject_id):
            return self.recorder.record_revenue(
                experiment_id, subject_id, amount, currency
            )

    # ==================== Analysis ====================

    def analyze(
        self, experiment_id: str, use_cache: bool = False
    ) -> ExperimentAnalysis:
        """Analyze an experiment from its full assignment and event sets.

        Args:
            experiment_id: Experiment ID.
            use_cache: Return a cached analysis when one is present. A miss
                always recomputes.

        Raises:
            NotFoundError: If the experiment does not exist.
        """
        experiment = self.get_experiment(experiment_id)

        if use_cache:
            cached = self.repository.get_cached_analysis(experiment_id)
            if cached is not None:
                return cached

        analysis = self.analyzer.analyze(
            experiment,
            self.repository.list_assignments(experiment_id),
            self.repository.list_events(experiment_id),
        )
        self.repository.cache_analysis(analysis)
        return analysis

    def get_statistics(self, experiment_id: str) -> ExperimentStatistics:
        """Summarize an experiment's variants and participation."""
        experiment = self.get_experiment(experiment_id)
        assignments = self.repository.list_assignments(experiment_id)

        counts: dict[str, int] = {}
        for assignment in assignments:
            counts[assignment.variant_id] = counts.get(assignment.variant_id, 0) + 1

        return ExperimentStatistics(
            experiment_id=experiment.id,
            name=experiment.config.name,
            status=experiment.status,
            start_date=experiment.start_date,
            end_date=experiment.end_date,
            total_participants=len(assignments),
            variants=[
                VariantSummary(
                    id=v.id,
                    name=v.name,
                    traffic_split=v.traffic_split,
                    is_control=v.is_control,
                    sample_size=counts.get(v.id, 0),
                )
                for v in experiment.config.variants
            ],
            metrics=list(experiment.config.metrics),
        )


def build_store(settings: ABEngineSettings) -> KeyValueStore:
    """Create the key-value store selected by settings."""
    if settings.store.backend == "redis":
        return RedisKeyValueStore.from_url(
            settings.store.redis_url, settings.store.timeout_seconds
        )
    return InMemoryKeyValueStore()


def build_engine(
    settings: ABEngineSettings | None = None,
    identity_resolver: IdentityResolver | None = None,
) -> ExperimentEngine:
    """Wire an engine from settings.

    Args:
        settings: Settings to use. Defaults to the cached settings.
        identity_resolver: Optional identity collaborator.

    Returns:
        Configured engine.
    """
    settings = settings or get_cached_settings()
    repository = ExperimentRepository(
        build_store(settings),
        key_prefix=settings.store.key_prefix,
        record_ttl_seconds=settings.store.record_ttl_seconds,
        analysis_ttl_seconds=settings.store.analysis_ttl_seconds,
    )
    return ExperimentEngine(repository, identity_resolver=identity_resolver)
