"""Shared pytest fixtures for abengine tests."""

import random
from typing import Any

import pytest

from abengine.experiments.engine import ExperimentEngine
from abengine.experiments.models import Experiment
from abengine.experiments.store import ExperimentRepository, InMemoryKeyValueStore
from abengine.experiments.targeting import StaticIdentityResolver, SubjectAttributes


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    """Return an empty in-memory key-value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def repository(kv_store: InMemoryKeyValueStore) -> ExperimentRepository:
    """Return a repository over the in-memory store."""
    return ExperimentRepository(kv_store)


@pytest.fixture
def identity_resolver() -> StaticIdentityResolver:
    """Return a resolver with a few known subjects."""
    return StaticIdentityResolver(
        {
            "admin-1": SubjectAttributes(
                subject_id="admin-1",
                role="admin",
                device_type="desktop",
                region="eu",
                segments=["beta", "power"],
                company_type="enterprise",
                attributes={"plan": "pro"},
            ),
            "viewer-1": SubjectAttributes(
                subject_id="viewer-1",
                role="viewer",
                device_type="mobile",
                region="us",
                segments=["free"],
                company_type="startup",
                attributes={"plan": "free"},
            ),
        }
    )


@pytest.fixture
def rng() -> random.Random:
    """Return a deterministic random source."""
    return random.Random(1234)


@pytest.fixture
def engine(
    repository: ExperimentRepository,
    identity_resolver: StaticIdentityResolver,
    rng: random.Random,
) -> ExperimentEngine:
    """Return an engine over the in-memory repository."""
    return ExperimentEngine(repository, identity_resolver=identity_resolver, rng=rng)


@pytest.fixture
def experiment_config() -> dict[str, Any]:
    """Return a valid two-variant experiment definition."""
    return {
        "name": "checkout-button",
        "description": "Green vs blue checkout button",
        "variants": [
            {
                "id": "control",
                "name": "Control",
                "traffic_split": 50,
                "is_control": True,
                "configuration": {"color": "blue"},
            },
            {
                "id": "green",
                "name": "Green",
                "traffic_split": 50,
                "configuration": {"color": "green"},
            },
        ],
        "metrics": [{"name": "purchase", "type": "conversion", "primary_metric": True}],
        "created_by": "alice",
        "company_id": "acme",
    }


@pytest.fixture
def draft_experiment(
    engine: ExperimentEngine, experiment_config: dict[str, Any]
) -> Experiment:
    """Return a stored draft experiment."""
    return engine.create_experiment(experiment_config)


@pytest.fixture
def active_experiment(
    engine: ExperimentEngine, draft_experiment: Experiment
) -> Experiment:
    """Return a stored active experiment."""
    return engine.start_experiment(draft_experiment.id)
