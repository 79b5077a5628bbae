"""Structural validation of experiment definitions."""

import time
import uuid
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from abengine.core.exceptions import ConfigurationError
from abengine.experiments.models import Experiment, ExperimentConfig, ExperimentStatus

TRAFFIC_SPLIT_TOTAL = 100.0
TRAFFIC_SPLIT_TOLERANCE = 0.01
MIN_VARIANTS = 2
MIN_CONFIDENCE_LEVEL = 0.80
MAX_CONFIDENCE_LEVEL = 0.99
MIN_TRAFFIC_ALLOCATION = 1.0
MAX_TRAFFIC_ALLOCATION = 100.0

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_VARIANTS = 10
MAX_VARIANT_NAME_LENGTH = 100
MAX_VARIANT_DESCRIPTION_LENGTH = 500
MAX_METRICS = 10
MIN_SAMPLE_SIZE = 100
MAX_SAMPLE_SIZE = 1_000_000


def _coerce_config(config: ExperimentConfig | Mapping[str, Any]) -> ExperimentConfig:
    if isinstance(config, ExperimentConfig):
        return config
    try:
        return ExperimentConfig.model_validate(dict(config))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(first.get("msg", str(e)), field=field or None) from e


def validate_config(config: ExperimentConfig | Mapping[str, Any]) -> ExperimentConfig:
    """Check an experiment definition, failing on the first violation.

    Checks run in this order: name, variant count, traffic splits, variant
    ID uniqueness, control count, confidence level, traffic allocation,
    then the size limits on names, descriptions, variant and metric counts
    and the target sample size.

    Args:
        config: Definition as a model or a plain mapping.

    Returns:
        The parsed definition.

    Raises:
        ConfigurationError: On the first violated rule.
    """
    config = _coerce_config(config)

    if not config.name or not config.name.strip():
        raise ConfigurationError("Test name is required", field="name")

    if len(config.variants) < MIN_VARIANTS:
        raise ConfigurationError(
            f"At least {MIN_VARIANTS} variants are required", field="variants"
        )

    for variant in config.variants:
        if not 0.0 <= variant.traffic_split <= TRAFFIC_SPLIT_TOTAL:
            raise ConfigurationError(
                f"Traffic split for variant '{variant.name}' must be between "
                f"0 and 100",
                field="variants.traffic_split",
            )

    total_split = sum(v.traffic_split for v in config.variants)
    if abs(total_split - TRAFFIC_SPLIT_TOTAL) > TRAFFIC_SPLIT_TOLERANCE:
        raise ConfigurationError(
            "Variant traffic splits must sum to 100%",
            field="variants.traffic_split",
        )

    variant_ids = [v.id for v in config.variants]
    if len(set(variant_ids)) != len(variant_ids):
        raise ConfigurationError("Variant IDs must be unique", field="variants.id")

    controls = [v for v in config.variants if v.is_control]
    if len(controls) != 1:
        raise ConfigurationError(
            "Exactly one variant must be marked as control",
            field="variants.is_control",
        )

    if not MIN_CONFIDENCE_LEVEL <= config.confidence_level <= MAX_CONFIDENCE_LEVEL:
        raise ConfigurationError(
            "Confidence level must be between 80% and 99%",
            field="confidence_level",
        )

    if not (
        MIN_TRAFFIC_ALLOCATION <= config.traffic_allocation <= MAX_TRAFFIC_ALLOCATION
    ):
        raise ConfigurationError(
            "Traffic allocation must be between 1% and 100%",
            field="traffic_allocation",
        )

    _check_limits(config)
    return config


def _check_limits(config: ExperimentConfig) -> None:
    if len(config.name.strip()) > MAX_NAME_LENGTH:
        raise ConfigurationError(
            f"Test name cannot exceed {MAX_NAME_LENGTH} characters", field="name"
        )
    if len(config.description) > MAX_DESCRIPTION_LENGTH:
        raise ConfigurationError(
            f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters",
            field="description",
        )
    if len(config.variants) > MAX_VARIANTS:
        raise ConfigurationError(
            f"Must have between {MIN_VARIANTS} and {MAX_VARIANTS} variants",
            field="variants",
        )
    for variant in config.variants:
        if not 1 <= len(variant.name.strip()) <= MAX_VARIANT_NAME_LENGTH:
            raise ConfigurationError(
                f"Variant name must be between 1 and {MAX_VARIANT_NAME_LENGTH} "
                f"characters",
                field="variants.name",
            )
        if len(variant.description) > MAX_VARIANT_DESCRIPTION_LENGTH:
            raise ConfigurationError(
                f"Variant description cannot exceed "
                f"{MAX_VARIANT_DESCRIPTION_LENGTH} characters",
                field="variants.description",
            )
    if len(config.metrics) > MAX_METRICS:
        raise ConfigurationError(
            f"Cannot have more than {MAX_METRICS} metrics", field="metrics"
        )
    if config.sample_size is not None and not (
        MIN_SAMPLE_SIZE <= config.sample_size <= MAX_SAMPLE_SIZE
    ):
        raise ConfigurationError(
            "Sample size must be between 100 and 1,000,000", field="sample_size"
        )


def generate_experiment_id() -> str:
    """Generate an opaque experiment identifier."""
    return f"ab_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def build_experiment(config: ExperimentConfig | Mapping[str, Any]) -> Experiment:
    """Validate a definition and seal it into a new draft experiment.

    Nothing is persisted here.

    Raises:
        ConfigurationError: If the definition is invalid.
    """
    validated = validate_config(config)
    return Experiment(
        id=generate_experiment_id(),
        config=validated.model_copy(deep=True),
        status=ExperimentStatus.DRAFT,
    )
