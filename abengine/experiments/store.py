"""Durable key-value store contract and experiment record persistence.

The durable store is the source of truth. ``ExperimentRepository`` reads
through to it on every call and keeps an in-process mirror of decoded
records keyed by their stored payload.
"""

import fnmatch
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol, TypeVar, cast, runtime_checkable

import redis
from pydantic import BaseModel

from abengine.core.exceptions import StoreError
from abengine.experiments.models import (
    Assignment,
    Experiment,
    ExperimentAnalysis,
    ExperimentEvent,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal durable key-value store contract."""

    def get(self, key: str) -> str | None:
        """Return the value for a key, or None when absent or expired."""
        ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store a value, optionally expiring after ``ttl_seconds``."""
        ...

    def delete(self, key: str) -> bool:
        """Delete a key, returning whether it existed."""
        ...

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern, returning the count."""
        ...

    def keys(self, pattern: str) -> list[str]:
        """List keys matching a glob pattern."""
        ...


class InMemoryKeyValueStore:
    """Thread-safe in-process store with TTL expiry on read.

    Example:
        >>> store = InMemoryKeyValueStore()
        >>> store.set("ab_test:1", "{}", ttl_seconds=60)
        >>> store.get("ab_test:1")
        '{}'
    """

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.RLock()

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matched = self.keys(pattern)
            for key in matched:
                del self._data[key]
            return len(matched)

    def keys(self, pattern: str) -> list[str]:
        with self._lock:
            return [
                key
                for key in list(self._data)
                if fnmatch.fnmatchcase(key, pattern) and self._live(key) is not None
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self.keys("*"))


class RedisKeyValueStore:
    """Redis-backed store with bounded call timeouts.

    Every redis failure, timeouts included, is raised as ``StoreError``.
    """

    def __init__(self, client: redis.Redis) -> None:
        self.redis = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 2.0) -> "RedisKeyValueStore":
        """Build a store from a redis URL with socket timeouts applied."""
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
            decode_responses=True,
        )
        return cls(client)

    @contextmanager
    def _call(self, operation: str, key: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as e:
            raise StoreError(str(e), operation=operation, key=key) from e

    def get(self, key: str) -> str | None:
        with self._call("get", key):
            value = self.redis.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._call("set", key):
            self.redis.set(key, value, ex=ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._call("delete", key):
            return bool(self.redis.delete(key))

    def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        with self._call("delete_pattern", pattern):
            for key in self.redis.scan_iter(match=pattern):
                deleted += self.redis.delete(key)
        return deleted

    def keys(self, pattern: str) -> list[str]:
        with self._call("keys", pattern):
            found = list(self.redis.scan_iter(match=pattern))
        return [k.decode("utf-8") if isinstance(k, bytes) else k for k in found]


class ExperimentRepository:
    """Persists experiments, assignments, events and cached analyses.

    The durable store is authoritative: every read goes to it, and a key it
    reports missing is missing, whatever this process saw before. The
    in-process mirror only holds the decoded record for each key, reused
    while the stored payload is unchanged. Writes hit the store first and
    are mirrored only once they succeed.

    Key layout:
        ab_test:<experiment>
        ab_assignment:<experiment>:<subject>
        ab_result:<experiment>:<subject>:<event>
        ab_analysis:<experiment>
    """

    def __init__(
        self,
        store: KeyValueStore,
        key_prefix: str = "",
        record_ttl_seconds: int | None = None,
        analysis_ttl_seconds: int = 3600,
    ) -> None:
        """Initialize the repository.

        Args:
            store: Durable key-value store.
            key_prefix: Namespace prepended to every key.
            record_ttl_seconds: TTL for experiment, assignment and event
                records. None (the default) keeps them until the experiment
                is deleted.
            analysis_ttl_seconds: TTL for cached analyses.
        """
        self.store = store
        self.key_prefix = key_prefix
        self.record_ttl_seconds = record_ttl_seconds
        self.analysis_ttl_seconds = analysis_ttl_seconds

        # key -> (stored payload, decoded record)
        self._mirror: dict[str, tuple[str, BaseModel]] = {}
        self._lock = threading.RLock()

    # ---------------------------------------------------------------- keys

    def _key(self, *parts: str) -> str:
        return self.key_prefix + ":".join(parts)

    def experiment_key(self, experiment_id: str) -> str:
        return self._key("ab_test", experiment_id)

    def assignment_key(self, experiment_id: str, subject_id: str) -> str:
        return self._key("ab_assignment", experiment_id, subject_id)

    def event_key(self, event: ExperimentEvent) -> str:
        return self._key("ab_result", event.experiment_id, event.subject_id, event.id)

    def analysis_key(self, experiment_id: str) -> str:
        return self._key("ab_analysis", experiment_id)

    # ------------------------------------------------------------- plumbing

    def _write(self, key: str, record: BaseModel, ttl_seconds: int | None) -> None:
        payload = record.model_dump_json()
        try:
            self.store.set(key, payload, ttl_seconds)
        except StoreError:
            logger.error("Store write failed for %s", key)
            raise
        with self._lock:
            self._mirror[key] = (payload, record)

    def _load(self, key: str, model: type[RecordT]) -> RecordT | None:
        try:
            payload = self.store.get(key)
        except StoreError:
            logger.error("Store read failed for %s", key)
            raise

        with self._lock:
            if payload is None:
                self._mirror.pop(key, None)
                return None
            cached = self._mirror.get(key)
            if cached is not None and cached[0] == payload:
                return cast(RecordT, cached[1])
            record = model.model_validate_json(payload)
            self._mirror[key] = (payload, record)
            return record

    def _load_all(self, pattern: str, model: type[RecordT]) -> list[RecordT]:
        try:
            keys = self.store.keys(pattern)
        except StoreError:
            logger.error("Store scan failed for %s", pattern)
            raise

        records = []
        for key in keys:
            record = self._load(key, model)
            if record is not None:
                records.append(record)

        live = set(keys)
        with self._lock:
            for key in [k for k in self._mirror if fnmatch.fnmatchcase(k, pattern)]:
                if key not in live:
                    del self._mirror[key]
        return records

    # ---------------------------------------------------------- experiments

    def save_experiment(self, experiment: Experiment) -> None:
        """Persist an experiment record."""
        self._write(
            self.experiment_key(experiment.id), experiment, self.record_ttl_seconds
        )

    def get_experiment(self, experiment_id: str) -> Experiment | None:
        """Get an experiment, or None if the store does not hold it."""
        return self._load(self.experiment_key(experiment_id), Experiment)

    def list_experiments(self) -> list[Experiment]:
        """List every stored experiment."""
        return self._load_all(self._key("ab_test", "*"), Experiment)

    # ---------------------------------------------------------- assignments

    def get_assignment(self, experiment_id: str, subject_id: str) -> Assignment | None:
        """Get a subject's assignment, if any."""
        return self._load(self.assignment_key(experiment_id, subject_id), Assignment)

    def save_assignment(self, assignment: Assignment) -> None:
        """Persist an assignment. Repeated writes for a pair are last-writer-wins."""
        self._write(
            self.assignment_key(assignment.experiment_id, assignment.subject_id),
            assignment,
            self.record_ttl_seconds,
        )

    def list_assignments(self, experiment_id: str) -> list[Assignment]:
        """List all stored assignments of an experiment."""
        return self._load_all(
            self._key("ab_assignment", experiment_id, "*"), Assignment
        )

    # --------------------------------------------------------------- events

    def append_event(self, event: ExperimentEvent) -> None:
        """Append an outcome event."""
        self._write(self.event_key(event), event, self.record_ttl_seconds)

    def list_events(self, experiment_id: str) -> list[ExperimentEvent]:
        """List all stored events of an experiment in timestamp order."""
        events = self._load_all(
            self._key("ab_result", experiment_id, "*"), ExperimentEvent
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    # ------------------------------------------------------------- analysis

    def cache_analysis(self, analysis: ExperimentAnalysis) -> None:
        """Cache an analysis for the configured TTL."""
        self._write(
            self.analysis_key(analysis.experiment_id),
            analysis,
            self.analysis_ttl_seconds,
        )

    def get_cached_analysis(self, experiment_id: str) -> ExperimentAnalysis | None:
        """Return a cached analysis, or None on a miss."""
        return self._load(self.analysis_key(experiment_id), ExperimentAnalysis)

    # ---------------------------------------------------------------- purge

    def purge_experiment(self, experiment_id: str) -> int:
        """Delete an experiment and every record derived from it.

        Derived records go first and the experiment record last, so a failure
        part way leaves the experiment visible and the purge can be retried.

        Returns:
            Number of durable keys removed.
        """
        removed = 0
        try:
            removed += self.store.delete_pattern(
                self._key("ab_assignment", experiment_id, "*")
            )
            removed += self.store.delete_pattern(
                self._key("ab_result", experiment_id, "*")
            )
            removed += int(self.store.delete(self.analysis_key(experiment_id)))
            removed += int(self.store.delete(self.experiment_key(experiment_id)))
        except StoreError:
            logger.error("Store purge failed for experiment %s", experiment_id)
            raise

        derived = (
            self._key("ab_assignment", experiment_id, ""),
            self._key("ab_result", experiment_id, ""),
        )
        with self._lock:
            self._mirror.pop(self.experiment_key(experiment_id), None)
            self._mirror.pop(self.analysis_key(experiment_id), None)
            for key in [k for k in self._mirror if k.startswith(derived)]:
                del self._mirror[key]

        return removed
