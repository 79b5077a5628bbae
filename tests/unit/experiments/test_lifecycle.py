"""Unit tests for the experiment lifecycle."""

from typing import Any

import pytest

from abengine.core.exceptions import (
    ConfigurationError,
    InvalidOperationError,
    NotFoundError,
    StateTransitionError,
)
from abengine.experiments.lifecycle import LifecycleController
from abengine.experiments.models import (
    Assignment,
    Experiment,
    ExperimentStatus,
    Variant,
)
from abengine.experiments.store import ExperimentRepository, InMemoryKeyValueStore
from abengine.experiments.validation import build_experiment

# ==================== Fixtures ====================


@pytest.fixture
def controller(repository: ExperimentRepository) -> LifecycleController:
    """Create a lifecycle controller."""
    return LifecycleController(repository)


@pytest.fixture
def draft(
    repository: ExperimentRepository, experiment_config: dict[str, Any]
) -> Experiment:
    """Create a stored draft experiment."""
    experiment = build_experiment(experiment_config)
    repository.save_experiment(experiment)
    return experiment


class TestTransitions:
    """Tests for lifecycle transitions."""

    def test_start(
        self,
        controller: LifecycleController,
        repository: ExperimentRepository,
        draft: Experiment,
    ) -> None:
        """Test starting a draft sets the start date."""
        started = controller.start(draft.id)

        assert started.status == ExperimentStatus.ACTIVE
        assert started.start_date is not None
        assert started.updated_at >= draft.updated_at
        assert repository.get_experiment(draft.id) == started

    def test_start_twice(self, controller: LifecycleController, draft: Experiment) -> None:
        """Test starting an active experiment fails."""
        controller.start(draft.id)

        with pytest.raises(StateTransitionError) as exc_info:
            controller.start(draft.id)

        assert str(exc_info.value) == "Only draft tests can be started"
        assert exc_info.value.current_status == "active"
        assert exc_info.value.action == "start"

    def test_pause_resume(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test pausing and resuming keep the start date."""
        started = controller.start(draft.id)
        paused = controller.pause(draft.id)
        resumed = controller.resume(draft.id)

        assert paused.status == ExperimentStatus.PAUSED
        assert resumed.status == ExperimentStatus.ACTIVE
        assert resumed.start_date == started.start_date

    def test_pause_requires_active(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test pausing a draft fails."""
        with pytest.raises(StateTransitionError, match="Only active tests can be paused"):
            controller.pause(draft.id)

    def test_resume_requires_paused(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test resuming an active experiment fails."""
        controller.start(draft.id)
        with pytest.raises(StateTransitionError, match="Only paused tests can be resumed"):
            controller.resume(draft.id)

    @pytest.mark.parametrize("pause_first", [False, True])
    def test_complete(
        self,
        controller: LifecycleController,
        draft: Experiment,
        pause_first: bool,
    ) -> None:
        """Test completing from active or paused sets the end date."""
        controller.start(draft.id)
        if pause_first:
            controller.pause(draft.id)

        completed = controller.complete(draft.id)

        assert completed.status == ExperimentStatus.COMPLETED
        assert completed.end_date is not None

    def test_complete_is_terminal(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test completed experiments accept no further transitions."""
        controller.start(draft.id)
        controller.complete(draft.id)

        for action in (controller.start, controller.pause, controller.resume):
            with pytest.raises(StateTransitionError):
                action(draft.id)
        with pytest.raises(
            StateTransitionError, match="Only active or paused tests can be completed"
        ):
            controller.complete(draft.id)

    def test_complete_draft_fails(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test a draft cannot be completed."""
        with pytest.raises(StateTransitionError):
            controller.complete(draft.id)

    def test_unknown_experiment(self, controller: LifecycleController) -> None:
        """Test transitions on unknown experiments raise NotFoundError."""
        with pytest.raises(NotFoundError):
            controller.start("missing")


class TestUpdateVariants:
    """Tests for variant updates."""

    def test_update_in_draft(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test variants can be replaced while in draft."""
        variants = [
            Variant(id="control", name="Control", traffic_split=70, is_control=True),
            Variant(id="green", name="Green", traffic_split=30),
        ]
        updated = controller.update_variants(draft.id, variants)
        assert [v.traffic_split for v in updated.config.variants] == [70, 30]

    def test_update_revalidates(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test invalid replacements are rejected and nothing changes."""
        variants = [
            Variant(id="control", name="Control", traffic_split=70, is_control=True),
            Variant(id="green", name="Green", traffic_split=70),
        ]
        with pytest.raises(ConfigurationError):
            controller.update_variants(draft.id, variants)
        assert controller.require(draft.id).config == draft.config

    def test_update_after_start_rejected(
        self, controller: LifecycleController, draft: Experiment
    ) -> None:
        """Test variants are frozen once the experiment has started."""
        controller.start(draft.id)
        with pytest.raises(InvalidOperationError):
            controller.update_variants(draft.id, draft.config.variants)


class TestDelete:
    """Tests for deletion."""

    def test_delete_active_rejected(
        self,
        controller: LifecycleController,
        repository: ExperimentRepository,
        draft: Experiment,
    ) -> None:
        """Test active experiments cannot be deleted."""
        controller.start(draft.id)
        with pytest.raises(
            InvalidOperationError,
            match="Cannot delete active test. Pause or complete it first.",
        ):
            controller.delete(draft.id)
        assert repository.get_experiment(draft.id) is not None

    @pytest.mark.parametrize("steps", [(), ("start", "pause"), ("start", "complete")])
    def test_delete_non_active(
        self,
        controller: LifecycleController,
        repository: ExperimentRepository,
        kv_store: InMemoryKeyValueStore,
        draft: Experiment,
        steps: tuple[str, ...],
    ) -> None:
        """Test draft, paused and completed experiments are purged."""
        for step in steps:
            getattr(controller, step)(draft.id)
        repository.save_assignment(
            Assignment(experiment_id=draft.id, subject_id="u1", variant_id="green")
        )

        assert controller.delete(draft.id) == 2
        assert len(kv_store) == 0
        with pytest.raises(NotFoundError):
            controller.require(draft.id)

    def test_delete_unknown(self, controller: LifecycleController) -> None:
        """Test deleting an unknown experiment raises NotFoundError."""
        with pytest.raises(NotFoundError):
            controller.delete("missing")
