"""Experiment assignment and analysis.

Usage:
    from abengine.experiments import (
        ExperimentEngine,
        ExperimentRepository,
        InMemoryKeyValueStore,
        build_engine,
    )

    # Engine over an explicit store
    engine = ExperimentEngine(ExperimentRepository(InMemoryKeyValueStore()))

    # Or wired from settings (memory or redis backend)
    engine = build_engine()

    experiment = engine.create_experiment(
        {
            "name": "pricing-page",
            "variants": [
                {"id": "control", "name": "Control", "traffic_split": 50,
                 "is_control": True},
                {"id": "annual", "name": "Annual first", "traffic_split": 50},
            ],
        }
    )
    engine.start_experiment(experiment.id)

    if engine.assign(experiment.id, "user-1"):
        engine.record_conversion(experiment.id, "user-1", "signup")

    analysis = engine.analyze(experiment.id)
    print(analysis.recommendation.reasoning)
"""

from abengine.experiments.bucketing import (
    BucketingEngine,
    TrafficSampler,
    hash_subject_id,
    select_variant,
    subject_bucket,
)
from abengine.experiments.engine import ExperimentEngine, build_engine, build_store
from abengine.experiments.lifecycle import LifecycleController
from abengine.experiments.models import (
    AnalysisMetadata,
    Assignment,
    ConfidenceInterval,
    DataQuality,
    Experiment,
    ExperimentAnalysis,
    ExperimentConfig,
    ExperimentEvent,
    ExperimentStatistics,
    ExperimentStatus,
    Metric,
    MetricGoal,
    MetricType,
    Recommendation,
    TargetCriteria,
    Variant,
    VariantResult,
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
from abengine.experiments.targeting import (
    IdentityResolver,
    StaticIdentityResolver,
    SubjectAttributes,
    TargetingEvaluator,
    matches_criteria,
)
from abengine.experiments.validation import (
    build_experiment,
    generate_experiment_id,
    validate_config,
)

__all__ = [
    # Engine
    "ExperimentEngine",
    "build_engine",
    "build_store",
    # Components
    "BucketingEngine",
    "EventRecorder",
    "LifecycleController",
    "StatisticalAnalyzer",
    "TargetingEvaluator",
    "TrafficSampler",
    # Storage
    "ExperimentRepository",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    # Identity
    "IdentityResolver",
    "StaticIdentityResolver",
    "SubjectAttributes",
    # Models
    "AnalysisMetadata",
    "Assignment",
    "ConfidenceInterval",
    "DataQuality",
    "Experiment",
    "ExperimentAnalysis",
    "ExperimentConfig",
    "ExperimentEvent",
    "ExperimentStatistics",
    "ExperimentStatus",
    "Metric",
    "MetricGoal",
    "MetricType",
    "Recommendation",
    "TargetCriteria",
    "Variant",
    "VariantResult",
    "VariantSummary",
    # Functions
    "build_experiment",
    "generate_experiment_id",
    "hash_subject_id",
    "matches_criteria",
    "select_variant",
    "subject_bucket",
    "validate_config",
]
