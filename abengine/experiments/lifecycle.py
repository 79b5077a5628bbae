"""Experiment state machine.

    draft -> active -> paused <-> active -> completed

Every transition persists an updated copy of the experiment, so a failed
store write leaves the previous state intact.
"""

import logging
from collections.abc import Sequence
from typing import Any

from abengine.core.exceptions import (
    InvalidOperationError,
    NotFoundError,
    StateTransitionError,
)
from abengine.experiments.models import (
    Experiment,
    ExperimentStatus,
    Variant,
    _utcnow,
)
from abengine.experiments.store import ExperimentRepository
from abengine.experiments.validation import validate_config

logger = logging.getLogger(__name__)


class LifecycleController:
    """Guards and applies experiment lifecycle transitions."""

    def __init__(self, repository: ExperimentRepository) -> None:
        self.repository = repository

    def require(self, experiment_id: str) -> Experiment:
        """Get an experiment or raise ``NotFoundError``."""
        experiment = self.repository.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError(experiment_id)
        return experiment

    def _transition(
        self,
        experiment_id: str,
        action: str,
        allowed_from: Sequence[ExperimentStatus],
        target: ExperimentStatus,
        message: str,
        **updates: Any,
    ) -> Experiment:
        experiment = self.require(experiment_id)
        if experiment.status not in allowed_from:
            raise StateTransitionError(
                message,
                experiment_id=experiment_id,
                current_status=experiment.status.value,
                action=action,
            )

        updated = experiment.model_copy(
            update={"status": target, "updated_at": _utcnow(), **updates}
        )
        self.repository.save_experiment(updated)

        logger.info(
            "Experiment %s: %s -> %s",
            experiment_id,
            experiment.status.value,
            target.value,
        )
        return updated

    def start(self, experiment_id: str) -> Experiment:
        """Activate a draft experiment and stamp its start date."""
        return self._transition(
            experiment_id,
            "start",
            (ExperimentStatus.DRAFT,),
            ExperimentStatus.ACTIVE,
            "Only draft tests can be started",
            start_date=_utcnow(),
        )

    def pause(self, experiment_id: str) -> Experiment:
        """Pause an active experiment."""
        return self._transition(
            experiment_id,
            "pause",
            (ExperimentStatus.ACTIVE,),
            ExperimentStatus.PAUSED,
            "Only active tests can be paused",
        )

    def resume(self, experiment_id: str) -> Experiment:
        """Reactivate a paused experiment."""
        return self._transition(
            experiment_id,
            "resume",
            (ExperimentStatus.PAUSED,),
            ExperimentStatus.ACTIVE,
            "Only paused tests can be resumed",
        )

    def complete(self, experiment_id: str) -> Experiment:
        """Complete an active or paused experiment and stamp its end date."""
        return self._transition(
            experiment_id,
            "complete",
            (ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED),
            ExperimentStatus.COMPLETED,
            "Only active or paused tests can be completed",
            end_date=_utcnow(),
        )

    def update_variants(
        self, experiment_id: str, variants: Sequence[Variant]
    ) -> Experiment:
        """Replace the variants of a draft experiment.

        Raises:
            InvalidOperationError: If the experiment has left draft.
            ConfigurationError: If the resulting definition is invalid.
        """
        experiment = self.require(experiment_id)
        if experiment.status != ExperimentStatus.DRAFT:
            raise InvalidOperationError(
                "Variants can only be changed while the test is in draft"
            )

        candidate = experiment.config.model_copy(
            update={"variants": [v.model_copy(deep=True) for v in variants]}
        )
        validated = validate_config(candidate)

        updated = experiment.model_copy(
            update={"config": validated, "updated_at": _utcnow()}
        )
        self.repository.save_experiment(updated)
        logger.info("Experiment %s: variants updated", experiment_id)
        return updated

    def delete(self, experiment_id: str) -> int:
        """Delete a non-active experiment with all its records.

        Returns:
            Number of durable keys removed.

        Raises:
            InvalidOperationError: If the experiment is active.
        """
        experiment = self.require(experiment_id)
        if experiment.status == ExperimentStatus.ACTIVE:
            raise InvalidOperationError(
                "Cannot delete active test. Pause or complete it first."
            )

        removed = self.repository.purge_experiment(experiment_id)
        logger.info("Experiment %s deleted (%d keys)", experiment_id, removed)
        return removed
