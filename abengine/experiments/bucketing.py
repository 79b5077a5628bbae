"""Deterministic subject-to-variant bucketing.

Variant choice is a pure function of the subject ID and the declared
variants, so concurrent first assignments for the same pair converge on the
same variant whichever write lands last. Traffic-allocation sampling is a
separate random draw that is not remembered: an excluded subject may be
sampled in on a later call.
"""

import hashlib
import logging
import random
from collections.abc import Mapping, Sequence
from typing import Any

from abengine.experiments.models import Assignment, Variant
from abengine.experiments.store import ExperimentRepository
from abengine.experiments.targeting import TargetingEvaluator

logger = logging.getLogger(__name__)

BUCKET_COUNT = 100


def hash_subject_id(subject_id: str) -> int:
    """Stable unsigned 32-bit hash of a subject ID."""
    digest = hashlib.md5(subject_id.encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def subject_bucket(subject_id: str) -> int:
    """Bucket 0-99 of a subject."""
    return hash_subject_id(subject_id) % BUCKET_COUNT


def select_variant(variants: Sequence[Variant], subject_id: str) -> Variant | None:
    """Pick a variant by walking cumulative traffic splits.

    The first variant whose cumulative boundary exceeds the subject's
    bucket wins. If float rounding leaves the bucket uncovered the first
    variant is used.
    """
    if not variants:
        return None

    bucket = subject_bucket(subject_id)
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.traffic_split
        if bucket < cumulative:
            return variant

    return variants[0]


class TrafficSampler:
    """Random participation draw for traffic allocation."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def should_include(self, traffic_allocation: float) -> bool:
        """Draw whether a subject participates, given an allocation (1-100)."""
        return self.rng.random() * 100 < traffic_allocation


class BucketingEngine:
    """Assigns subjects to variants of active experiments."""

    def __init__(
        self,
        repository: ExperimentRepository,
        targeting: TargetingEvaluator | None = None,
        sampler: TrafficSampler | None = None,
    ) -> None:
        self.repository = repository
        self.targeting = targeting or TargetingEvaluator()
        self.sampler = sampler or TrafficSampler()

    def assign(
        self,
        experiment_id: str,
        subject_id: str,
        context: Mapping[str, Any] | None = None,
    ) -> Assignment | None:
        """Assign a subject to a variant.

        Steps, stopping at the first that yields no assignment:
        1. The experiment must exist and be active.
        2. An existing assignment is returned unchanged.
        3. The subject must satisfy the target criteria.
        4. The subject must pass the traffic-allocation draw.
        5. A variant is chosen deterministically from the subject hash.
        6. The assignment is persisted.

        Returns:
            The assignment, or None when the subject is not eligible.

        Raises:
            StoreError: If the store cannot be read or written.
        """
        experiment = self.repository.get_experiment(experiment_id)
        if experiment is None or not experiment.is_active:
            return None

        existing = self.repository.get_assignment(experiment_id, subject_id)
        if existing is not None:
            return existing

        config = experiment.config
        if not self.targeting.is_eligible(config.target_criteria, subject_id, context):
            return None

        if not self.sampler.should_include(config.traffic_allocation):
            return None

        variant = select_variant(config.variants, subject_id)
        if variant is None:
            return None

        assignment = Assignment(
            experiment_id=experiment_id,
            subject_id=subject_id,
            variant_id=variant.id,
            context=dict(context) if context else None,
        )
        self.repository.save_assignment(assignment)

        logger.debug(
            "Subject assigned: %s -> %s:%s", subject_id, experiment_id, variant.id
        )
        return assignment
