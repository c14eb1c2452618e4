"""In-memory registry of trained model versions and A/B test outcomes.

A model is identified by its name and version. Versions are reserved before
training starts and are never reused, even when a training run aborts.
"""

import pickle
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from winerec.models.ab_test import ABTestResult
from winerec.models.schemas import EvaluationMetrics, ModelType, TrainedModel
from winerec.utils.logger import get_logger

logger = get_logger(__name__)

LATEST = "latest"


class ModelStatus(str, Enum):
    UNTRAINED = "untrained"
    TRAINING = "training"
    TRAINED = "trained"
    EVALUATED = "evaluated"
    SUPERSEDED = "superseded"
    DELETED = "deleted"


# Statuses of a version whose model can be served.
_LIVE = {ModelStatus.TRAINED, ModelStatus.EVALUATED, ModelStatus.SUPERSEDED}


@dataclass
class RegistryEntry:
    """One version of a named model and its lifecycle state."""

    name: str
    version: int
    status: ModelStatus = ModelStatus.UNTRAINED
    model: TrainedModel | None = None
    performance: EvaluationMetrics | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ModelRegistry:
    """Thread-safe store of model versions.

    Attributes:
        entries: Registry entries keyed by (name, version).
        ab_tests: Recorded A/B test results keyed by test id.
    """

    def __init__(self) -> None:
        self.entries: dict[tuple[str, int], RegistryEntry] = {}
        self.ab_tests: dict[str, ABTestResult] = {}
        self._next_version: dict[str, int] = {}
        self._name_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def name_lock(self, name: str) -> threading.Lock:
        """Lock serializing training runs of one model name."""
        with self._lock:
            return self._name_locks.setdefault(name, threading.Lock())

    def reserve_version(self, name: str) -> int:
        """Reserve the next version number of a model name."""
        with self._lock:
            version = self._next_version.get(name, 1)
            self._next_version[name] = version + 1
            self.entries[(name, version)] = RegistryEntry(name=name, version=version)
        return version

    def _entry(self, name: str, version: int) -> RegistryEntry:
        entry = self.entries.get((name, version))
        if entry is None:
            raise KeyError(f"Model not found: {name} v{version}")
        return entry

    def set_status(self, name: str, version: int, status: ModelStatus) -> None:
        with self._lock:
            entry = self._entry(name, version)
            entry.status = status
            entry.updated_at = datetime.now(timezone.utc)

    def discard(self, name: str, version: int) -> None:
        """Drop a reserved version whose training did not complete."""
        with self._lock:
            self.entries.pop((name, version), None)

    def store(self, model: TrainedModel) -> None:
        """Store a trained model and supersede older live versions of its name."""
        with self._lock:
            entry = self._entry(model.name, model.version)
            entry.model = model
            entry.status = ModelStatus.TRAINED
            entry.updated_at = datetime.now(timezone.utc)
            for (name, version), other in self.entries.items():
                if (
                    name == model.name
                    and version < model.version
                    and other.status in (ModelStatus.TRAINED, ModelStatus.EVALUATED)
                ):
                    other.status = ModelStatus.SUPERSEDED
        logger.info("Stored model %s v%d", model.name, model.version)

    def register(self, model: TrainedModel) -> None:
        """Add an already trained model, e.g. one loaded from disk.

        Raises:
            ValueError: If the name and version are already taken.
        """
        key = (model.name, model.version)
        with self._lock:
            if key in self.entries:
                raise ValueError(f"Model {model.name} v{model.version} already exists")
            self.entries[key] = RegistryEntry(
                name=model.name,
                version=model.version,
                status=ModelStatus.TRAINED,
                model=model,
            )
            self._next_version[model.name] = max(
                self._next_version.get(model.name, 1), model.version + 1
            )

    def record_performance(
        self, name: str, version: int, performance: EvaluationMetrics
    ) -> None:
        """Attach evaluation metrics; the newest version becomes evaluated."""
        with self._lock:
            entry = self._entry(name, version)
            entry.performance = performance
            if entry.status == ModelStatus.TRAINED:
                entry.status = ModelStatus.EVALUATED
            entry.updated_at = datetime.now(timezone.utc)

    def get_entry(self, name: str, version: int | str = LATEST) -> RegistryEntry:
        """Look up a servable version; "latest" picks the highest one.

        Raises:
            KeyError: If no servable version matches.
        """
        with self._lock:
            if version == LATEST:
                live = [
                    e
                    for (n, _), e in self.entries.items()
                    if n == name and e.status in _LIVE
                ]
                if not live:
                    raise KeyError(f"Model not found: {name}")
                return max(live, key=lambda e: e.version)

            entry = self._entry(name, int(version))
            if entry.status not in _LIVE:
                raise KeyError(f"Model {name} v{version} is {entry.status.value}")
            return entry

    def get(self, name: str, version: int | str = LATEST) -> TrainedModel:
        return self.get_entry(name, version).model

    def list_entries(
        self,
        model_type: ModelType | str | None = None,
        status: ModelStatus | str | None = None,
    ) -> list[RegistryEntry]:
        """Entries filtered by model type and status, ordered by name and version."""
        with self._lock:
            entries = list(self.entries.values())
        if model_type is not None:
            model_type = ModelType(model_type)
            entries = [e for e in entries if e.model and e.model.type == model_type]
        if status is not None:
            status = ModelStatus(status)
            entries = [e for e in entries if e.status == status]
        return sorted(entries, key=lambda e: (e.name, e.version))

    def delete(self, name: str, version: int) -> None:
        """Mark a version deleted and release its artifacts.

        Raises:
            KeyError: If the version does not exist.
        """
        with self._lock:
            entry = self._entry(name, version)
            entry.status = ModelStatus.DELETED
            entry.model = None
            entry.updated_at = datetime.now(timezone.utc)
        logger.info("Deleted model %s v%d", name, version)

    def record_ab_test(self, result: ABTestResult) -> str:
        """Store an A/B test result under a generated id."""
        test_id = uuid.uuid4().hex
        result.test_id = test_id
        with self._lock:
            self.ab_tests[test_id] = result
        return test_id

    def get_ab_test(self, test_id: str) -> ABTestResult:
        with self._lock:
            if test_id not in self.ab_tests:
                raise KeyError(f"A/B test not found: {test_id}")
            return self.ab_tests[test_id]


def save_model(model: TrainedModel, path: str) -> None:
    """Serialize a trained model to disk.

    Args:
        model: The model snapshot to save.
        path: File path for the pickle output.
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        pickle.dump(model, f)
    logger.info("Model %s v%d saved to %s", model.name, model.version, path)


def load_model(path: str) -> TrainedModel:
    """Load a serialized model from disk.

    Args:
        path: Path to the pickle file.

    Returns:
        The deserialized model snapshot.
    """
    with open(path, "rb") as f:
        model = pickle.load(f)  # noqa: S301
    logger.info("Model loaded from %s", path)
    return model
