"""Outcome event recording bound to existing assignments."""

import logging
from typing import Any

from abengine.experiments.models import ExperimentEvent
from abengine.experiments.store import ExperimentRepository

logger = logging.getLogger(__name__)

CONVERSION_PREFIX = "conversion_"
REVENUE_METRIC = "revenue"


class EventRecorder:
    """Appends events for assigned subjects.

    The variant of an event always comes from the subject's assignment.
    Events for subjects that were never assigned are dropped silently.
    """

    def __init__(self, repository: ExperimentRepository) -> None:
        self.repository = repository

    def record(
        self,
        experiment_id: str,
        subject_id: str,
        metric: str,
        value: float = 1.0,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> ExperimentEvent | None:
        """Record a metric value for a subject.

        Returns:
            The appended event, or None if the subject is not assigned.

        Raises:
            StoreError: If the store cannot be read or written.
        """
        assignment = self.repository.get_assignment(experiment_id, subject_id)
        if assignment is None:
            return None

        event = ExperimentEvent(
            experiment_id=experiment_id,
            variant_id=assignment.variant_id,
            metric=metric,
            value=value,
            subject_id=subject_id,
            session_id=session_id,
            metadata=metadata or {},
        )
        self.repository.append_event(event)

        logger.debug("Event recorded: %s:%s = %s", experiment_id, metric, value)
        return event

    def record_conversion(
        self,
        experiment_id: str,
        subject_id: str,
        conversion_type: str = "default",
        value: float = 1.0,
    ) -> ExperimentEvent | None:
        """Record a ``conversion_<type>`` event."""
        return self.record(
            experiment_id, subject_id, f"{CONVERSION_PREFIX}{conversion_type}", value
        )

    def record_revenue(
        self,
        experiment_id: str,
        subject_id: str,
        amount: float,
        currency: str = "USD",
    ) -> ExperimentEvent | None:
        """Record a ``revenue`` event carrying its currency."""
        return self.record(
            experiment_id,
            subject_id,
            REVENUE_METRIC,
            amount,
            metadata={"currency": currency},
        )
