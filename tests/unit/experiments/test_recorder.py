"""Unit tests for event recording."""

from unittest.mock import MagicMock

import pytest

from abengine.core.exceptions import StoreError
from abengine.experiments.models import Assignment
from abengine.experiments.recorder import EventRecorder
from abengine.experiments.store import ExperimentRepository


@pytest.fixture
def recorder(repository: ExperimentRepository) -> EventRecorder:
    """Create a recorder with one assigned subject."""
    repository.save_assignment(
        Assignment(experiment_id="e1", subject_id="u1", variant_id="green")
    )
    return EventRecorder(repository)


class TestEventRecorder:
    """Tests for EventRecorder."""

    def test_record_uses_assigned_variant(
        self, recorder: EventRecorder, repository: ExperimentRepository
    ) -> None:
        """Test events take the variant from the subject's assignment."""
        event = recorder.record(
            "e1", "u1", "page_view", value=3, metadata={"page": "/cart"}, session_id="s1"
        )

        assert event is not None
        assert event.variant_id == "green"
        assert event.metric == "page_view"
        assert event.value == 3
        assert event.session_id == "s1"
        assert event.metadata == {"page": "/cart"}
        assert repository.list_events("e1") == [event]

    def test_unassigned_subject_dropped(
        self, recorder: EventRecorder, repository: ExperimentRepository
    ) -> None:
        """Test events for unassigned subjects are dropped without error."""
        assert recorder.record("e1", "stranger", "page_view") is None
        assert recorder.record("other", "u1", "page_view") is None
        assert repository.list_events("e1") == []

    def test_record_conversion(self, recorder: EventRecorder) -> None:
        """Test conversions use the conversion_ prefix."""
        event = recorder.record_conversion("e1", "u1", "purchase")
        assert event is not None
        assert event.metric == "conversion_purchase"
        assert event.value == 1.0

    def test_record_conversion_default_type(self, recorder: EventRecorder) -> None:
        """Test the default conversion type."""
        event = recorder.record_conversion("e1", "u1")
        assert event is not None
        assert event.metric == "conversion_default"

    def test_record_revenue(self, recorder: EventRecorder) -> None:
        """Test revenue events carry amount and currency."""
        event = recorder.record_revenue("e1", "u1", 19.99, currency="EUR")
        assert event is not None
        assert event.metric == "revenue"
        assert event.value == 19.99
        assert event.metadata == {"currency": "EUR"}

    def test_events_append_only(
        self, recorder: EventRecorder, repository: ExperimentRepository
    ) -> None:
        """Test repeated events are all kept."""
        for _ in range(3):
            recorder.record_conversion("e1", "u1", "purchase")
        assert len(repository.list_events("e1")) == 3

    def test_store_failure_propagates(self) -> None:
        """Test store failures are raised, not swallowed."""
        repository = MagicMock(spec=ExperimentRepository)
        repository.get_assignment.return_value = Assignment(
            experiment_id="e1", subject_id="u1", variant_id="green"
        )
        repository.append_event.side_effect = StoreError("down", operation="set")

        with pytest.raises(StoreError):
            EventRecorder(repository).record("e1", "u1", "page_view")
