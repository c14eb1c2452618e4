"""Training, versioning, evaluation and A/B testing of recommendation models.

A model is an immutable snapshot of a trained collaborative filtering or
content-based engine together with its metadata. Every training run under a
name produces a new version; older versions are superseded, never mutated.
"""

import json
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sklearn.metrics import r2_score

from winerec.data.preprocessor import (
    compute_rating_statistics,
    deduplicate_ratings,
    ratings_to_frame,
    validate_ratings,
    validate_wines,
)
from winerec.data.splitter import temporal_split_ratings
from winerec.models.ab_test import ABTestResult, compare_results, partition_test_data
from winerec.models.collaborative import (
    CollaborativeFilter,
    build_item_profiles,
    build_similarity_matrix,
    build_user_profiles,
    fallback_rating,
    predict_from_neighbors,
)
from winerec.models.content_based import (
    ContentBasedFilter,
    learn_weights,
    predict_content_rating,
    similarities_to,
)
from winerec.models.decision_tree import TreeEnsemble
from winerec.models.evaluator import Evaluator, overall_score
from winerec.models.registry import (
    LATEST,
    ModelRegistry,
    ModelStatus,
    RegistryEntry,
    load_model,
    save_model,
)
from winerec.models.schemas import (
    CollaborativeFilteringModel,
    ContentBasedModel,
    EvaluationMetrics,
    ModelType,
    Rating,
    TrainedModel,
    Wine,
    WineId,
)
from winerec.models.similarity import (
    calculate_statistical_significance,
    pearson_correlation,
)
from winerec.utils.config import config
from winerec.utils.logger import get_logger

logger = get_logger(__name__)


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record[name]
    return getattr(record, name)


class ModelManager:
    """Orchestrates the lifecycle of collaborative and content-based models.

    Attributes:
        registry: Store of model versions and A/B test results.
        wines: Default wine catalog for content-based training.
        min_training_ratings: Smallest valid training set that is accepted.
        test_ratio: Held-out fraction used by create_model.
        recommend_threshold: Rating that counts as "would recommend".
        ab_test_seed: Seed of the A/B test partition.
        models_path: Directory for saved model files.
    """

    pearson_correlation = staticmethod(pearson_correlation)
    calculate_statistical_significance = staticmethod(
        calculate_statistical_significance
    )
    build_similarity_matrix = staticmethod(build_similarity_matrix)
    build_user_profiles = staticmethod(build_user_profiles)
    build_item_profiles = staticmethod(build_item_profiles)

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        wines: Iterable[Any] | None = None,
        min_training_ratings: int | None = None,
        test_ratio: float | None = None,
        recommend_threshold: float | None = None,
        ab_test_seed: int | None = None,
        models_path: str | None = None,
    ) -> None:
        """Initialize the manager, defaulting to the model_manager config."""
        defaults = config["model_manager"]
        self.registry = registry or ModelRegistry()
        self.wines: list[Wine] = validate_wines(wines)[0] if wines is not None else []
        self.min_training_ratings = (
            defaults["min_training_ratings"]
            if min_training_ratings is None
            else min_training_ratings
        )
        self.test_ratio = test_ratio or defaults["test_ratio"]
        self.recommend_threshold = recommend_threshold or defaults["recommend_threshold"]
        self.ab_test_seed = (
            defaults["ab_test_seed"] if ab_test_seed is None else ab_test_seed
        )
        self.models_path = models_path or defaults["models_path"]
        self.evaluator = Evaluator(threshold=self.recommend_threshold)

    def _catalog(self, wines: Iterable[Any] | None) -> list[Wine]:
        return validate_wines(wines)[0] if wines is not None else self.wines

    def _prepare(
        self, ratings: Iterable[Any], wines: list[Wine]
    ) -> tuple[list[Rating], int]:
        known = {w.id for w in wines} if wines else None
        valid, skipped = validate_ratings(ratings, known)
        return deduplicate_ratings(valid), skipped

    def _check_training_set(self, ratings: list[Rating]) -> None:
        if not ratings or len(ratings) < self.min_training_ratings:
            raise ValueError(
                f"Insufficient training data: {len(ratings)} valid ratings "
                f"(minimum {max(1, self.min_training_ratings)})"
            )

    def _train(
        self,
        name: str,
        model_type: ModelType,
        params: Mapping[str, Any],
        ratings: list[Rating],
        skipped: int,
        wines: list[Wine],
    ) -> TrainedModel:
        self._check_training_set(ratings)

        with self.registry.name_lock(name):
            version = self.registry.reserve_version(name)
            self.registry.set_status(name, version, ModelStatus.TRAINING)
            try:
                if model_type == ModelType.COLLABORATIVE_FILTERING:
                    model = self._fit_collaborative(
                        name, version, params, ratings, skipped
                    )
                else:
                    model = self._fit_content(
                        name, version, params, ratings, wines, skipped
                    )
            except Exception:
                self.registry.discard(name, version)
                raise
            self.registry.store(model)

        logger.info(
            "Trained %s model %s v%d on %d ratings (%d skipped)",
            model_type.value,
            name,
            version,
            len(ratings),
            skipped,
        )
        return model

    def _fit_collaborative(
        self,
        name: str,
        version: int,
        params: Mapping[str, Any],
        ratings: list[Rating],
        skipped: int = 0,
    ) -> CollaborativeFilteringModel:
        engine = CollaborativeFilter(
            min_similarity=params.get("min_similarity"),
            min_common_items=params.get("min_common_items"),
            k_neighbors=params.get("k_neighbors"),
        ).initialize(ratings)
        return self._snapshot_collaborative(name, version, params, engine, skipped)

    @staticmethod
    def _snapshot_collaborative(
        name: str,
        version: int,
        params: Mapping[str, Any],
        engine: CollaborativeFilter,
        skipped: int = 0,
    ) -> CollaborativeFilteringModel:
        resolved = {
            **params,
            "min_similarity": engine.min_similarity,
            "min_common_items": engine.min_common_items,
            "k_neighbors": engine.k_neighbors,
        }
        return CollaborativeFilteringModel(
            id=uuid.uuid4().hex,
            name=name,
            algorithm=params.get("algorithm", "pearson_neighborhood"),
            parameters=resolved,
            version=version,
            statistics={**engine.statistics(), "skipped_records": skipped},
            created_at=datetime.now(timezone.utc),
            user_profiles=engine.user_profiles,
            item_profiles=engine.item_profiles,
            global_mean=engine.global_mean,
            similarity_matrix=engine.similarity_matrix,
        )

    def _fit_content(
        self,
        name: str,
        version: int,
        params: Mapping[str, Any],
        ratings: list[Rating],
        wines: list[Wine],
        skipped: int = 0,
    ) -> ContentBasedModel:
        engine = ContentBasedFilter(group_weights=params.get("group_weights"))
        if wines:
            engine.initialize(wines)
        else:
            logger.warning("No wine catalog for %s, predictions use averages", name)
        return self._content_model(
            name,
            version,
            params,
            ratings,
            engine.item_features,
            engine.group_weights,
            skipped,
        )

    @staticmethod
    def _content_model(
        name: str,
        version: int,
        params: Mapping[str, Any],
        ratings: list[Rating],
        item_features: dict[WineId, dict[str, dict[str, float]]],
        group_weights: dict[str, float],
        skipped: int = 0,
    ) -> ContentBasedModel:
        statistics = compute_rating_statistics(ratings_to_frame(ratings))
        statistics["featured_wines"] = len(item_features)
        statistics["skipped_records"] = skipped
        return ContentBasedModel(
            id=uuid.uuid4().hex,
            name=name,
            algorithm=params.get("algorithm", "weighted_cosine"),
            parameters={**params, "group_weights": group_weights},
            version=version,
            statistics=statistics,
            created_at=datetime.now(timezone.utc),
            user_profiles=build_user_profiles(ratings),
            item_profiles=build_item_profiles(ratings),
            global_mean=sum(r.rating for r in ratings) / len(ratings),
            feature_weights=learn_weights(ratings, item_features),
            group_weights=group_weights,
            item_features=item_features,
        )

    def train_collaborative_filtering_model(
        self,
        name: str,
        params: Mapping[str, Any] | None,
        ratings: Iterable[Any],
        wines: Iterable[Any] | None = None,
    ) -> CollaborativeFilteringModel:
        """Train and register a new version of a collaborative model.

        Args:
            name: Model name; the version is assigned automatically.
            params: Optional min_similarity, min_common_items, k_neighbors.
            ratings: Raw training ratings; malformed ones are skipped.
            wines: Optional catalog; ratings of unknown wines are skipped.

        Returns:
            The trained model snapshot.

        Raises:
            ValueError: If too few valid ratings remain for training.
        """
        catalog = validate_wines(wines)[0] if wines is not None else []
        valid, skipped = self._prepare(ratings, catalog)
        return self._train(
            name, ModelType.COLLABORATIVE_FILTERING, params or {}, valid, skipped, []
        )

    def train_content_based_model(
        self,
        name: str,
        params: Mapping[str, Any] | None,
        ratings: Iterable[Any],
        wines: Iterable[Any] | None = None,
    ) -> ContentBasedModel:
        """Train and register a new version of a content-based model.

        Args:
            name: Model name; the version is assigned automatically.
            params: Optional group_weights overrides.
            ratings: Raw training ratings; malformed ones are skipped.
            wines: Wine catalog, defaulting to the manager's catalog.

        Returns:
            The trained model snapshot.

        Raises:
            ValueError: If too few valid ratings remain for training.
        """
        catalog = self._catalog(wines)
        valid, skipped = self._prepare(ratings, catalog)
        return self._train(
            name, ModelType.CONTENT_BASED, params or {}, valid, skipped, catalog
        )

    def create_model(self, definition: Mapping[str, Any]) -> dict[str, Any]:
        """Train a model from its definition and evaluate it on a held-out split.

        The latest ratings of each user are held out; when that leaves no
        test ratings the model is evaluated on its training set.

        Args:
            definition: Mapping with name, type, ratings and optional parameters
                and wines.

        Returns:
            Dictionary with model_id, version and performance metrics.

        Raises:
            ValueError: For an unknown model type or insufficient data.
        """
        try:
            model_type = ModelType(definition["type"])
        except ValueError:
            raise ValueError(f"Unknown model type: {definition['type']}") from None

        catalog = (
            self._catalog(definition.get("wines"))
            if model_type == ModelType.CONTENT_BASED
            else validate_wines(definition.get("wines") or [])[0]
        )
        valid, skipped = self._prepare(definition.get("ratings", []), catalog)
        train, test = temporal_split_ratings(valid, self.test_ratio)

        model = self._train(
            definition["name"],
            model_type,
            definition.get("parameters") or {},
            train,
            skipped,
            catalog if model_type == ModelType.CONTENT_BASED else [],
        )
        performance = self.evaluate_model(model, test or train)
        self.registry.record_performance(model.name, model.version, performance)
        return {
            "model_id": model.id,
            "version": model.version,
            "performance": performance.to_dict(),
        }

    def predict_rating(self, model: TrainedModel, request: Any) -> float:
        """Predict the rating of request's user for request's wine.

        Never returns None: users without usable history get the wine's
        average rating, else the model's global average.

        Args:
            model: A trained model snapshot.
            request: Mapping or object with user_id and wine_id.

        Returns:
            Predicted rating in [1, 5].

        Raises:
            ValueError: If the model type is unknown.
        """
        user_id = _field(request, "user_id")
        wine_id = _field(request, "wine_id")

        if model.type == ModelType.COLLABORATIVE_FILTERING:
            prediction = predict_from_neighbors(
                user_id,
                wine_id,
                model.user_profiles,
                model.similarity_matrix,
                model.parameters.get("k_neighbors"),
            )
            if prediction is not None:
                return prediction[0]
            return fallback_rating(wine_id, model.item_profiles, model.global_mean)

        if model.type == ModelType.CONTENT_BASED:
            profile = model.user_profiles.get(user_id)
            if profile is None:
                return fallback_rating(wine_id, model.item_profiles, model.global_mean)
            item = model.item_profiles.get(wine_id)
            return predict_content_rating(
                profile.rating_by_item,
                similarities_to(
                    wine_id,
                    profile.rating_by_item,
                    model.item_features,
                    model.group_weights,
                ),
                item_average=item.avg_rating if item is not None else None,
                global_mean=model.global_mean,
            )

        raise ValueError(f"Unknown model type: {model.type}")

    def evaluate_model(
        self, model: TrainedModel, test_ratings: Iterable[Any]
    ) -> EvaluationMetrics:
        """Evaluate a model's predictions against actual ratings.

        Args:
            model: A trained model snapshot.
            test_ratings: Raw test ratings; malformed ones are ignored.

        Returns:
            RMSE, MAE and thresholded classification metrics.

        Raises:
            ValueError: If no prediction could be produced at all.
        """
        valid, _ = validate_ratings(test_ratings)
        predictions = [(self.predict_rating(model, r), r.rating) for r in valid]
        if not predictions:
            raise ValueError(
                f"No valid predictions for model {model.name} v{model.version}"
            )
        return self.evaluator.evaluate(predictions)

    def run_ab_test_predictions(
        self,
        model_a: TrainedModel,
        model_b: TrainedModel,
        test_data: Iterable[Any],
        split_ratio: float = 0.5,
    ) -> ABTestResult:
        """Evaluate two models on disjoint random partitions of test data.

        Args:
            model_a: First model, evaluated on the split_ratio share.
            model_b: Second model, evaluated on the remainder.
            test_data: Raw test ratings.
            split_ratio: Share of test data given to model_a.

        Returns:
            Per-model metrics and the significance of the accuracy gap.
        """
        valid, _ = validate_ratings(test_data)
        part_a, part_b = partition_test_data(valid, split_ratio, self.ab_test_seed)
        return compare_results(
            self.evaluate_model(model_a, part_a),
            self.evaluate_model(model_b, part_b),
        )

    def run_ab_test(
        self,
        name_a: str,
        version_a: int | str,
        name_b: str,
        version_b: int | str,
        test_data: Iterable[Any],
        split_ratio: float = 0.5,
    ) -> ABTestResult:
        """A/B test two registered models and record the outcome."""
        model_a = self.registry.get(name_a, version_a)
        model_b = self.registry.get(name_b, version_b)
        result = self.run_ab_test_predictions(model_a, model_b, test_data, split_ratio)
        result.model1 = {"name": model_a.name, "version": model_a.version}
        result.model2 = {"name": model_b.name, "version": model_b.version}
        self.registry.record_ab_test(result)
        return result

    def get_model(self, name: str, version: int | str = LATEST) -> TrainedModel:
        """Look up a registered model; raises KeyError when it is missing."""
        return self.registry.get(name, version)

    def get_model_performance(
        self, name: str, version: int | str = LATEST
    ) -> dict[str, Any]:
        """Recorded performance and training metadata of a model version.

        Args:
            name: Model name.
            version: Version number, or "latest".

        Returns:
            Dictionary with name, version, status, performance (None until
            the version is evaluated), statistics, parameters and the
            creation and last update times.

        Raises:
            KeyError: If no servable version matches.
        """
        entry = self.registry.get_entry(name, version)
        return {
            **self._summary(entry),
            "statistics": dict(entry.model.statistics),
            "parameters": dict(entry.model.parameters),
            "created_at": entry.model.created_at.isoformat(),
            "updated_at": entry.updated_at.isoformat(),
        }

    @staticmethod
    def _summary(entry: RegistryEntry) -> dict[str, Any]:
        return {
            "name": entry.name,
            "version": entry.version,
            "status": entry.status.value,
            "type": entry.model.type.value if entry.model else None,
            "model_id": entry.model.id if entry.model else None,
            "performance": entry.performance.to_dict() if entry.performance else None,
        }

    def list_models(
        self,
        model_type: ModelType | str | None = None,
        status: ModelStatus | str | None = None,
    ) -> list[dict[str, Any]]:
        """Summaries of registered model versions, optionally filtered."""
        return [
            self._summary(e) for e in self.registry.list_entries(model_type, status)
        ]

    def compare_models(
        self,
        name: str,
        versions: Iterable[int] | None = None,
        test_ratings: Iterable[Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Rank versions of a model by their overall score.

        Versions are scored on test_ratings when given, otherwise on their
        recorded performance; versions without either are left out.

        Returns:
            Dictionaries with version, performance and overall_score, best
            first.
        """
        if versions is None:
            versions = [
                e.version
                for e in self.registry.list_entries()
                if e.name == name and e.model is not None
            ]
        test = list(test_ratings) if test_ratings is not None else None

        ranked = []
        for version in versions:
            entry = self.registry.get_entry(name, version)
            performance = (
                self.evaluate_model(entry.model, test)
                if test is not None
                else entry.performance
            )
            if performance is None:
                continue
            ranked.append(
                {
                    "version": entry.version,
                    "performance": performance.to_dict(),
                    "overall_score": overall_score(performance),
                }
            )
        ranked.sort(key=lambda row: row["overall_score"], reverse=True)
        return ranked

    def delete_model(self, name: str, version: int) -> None:
        self.registry.delete(name, version)

    def update_model_incremental(
        self, name: str, version: int | str, new_ratings: Iterable[Any]
    ) -> TrainedModel:
        """Fold new ratings into a model, producing a new version.

        Collaborative models refresh only the similarity rows touched by the
        new ratings; content-based models are refit on the merged ratings
        with the existing item features.

        Args:
            name: Model name.
            version: Base version, or "latest".
            new_ratings: Raw ratings to add.

        Returns:
            The new model version.
        """
        base = self.registry.get(name, version)
        valid, skipped = validate_ratings(new_ratings)

        with self.registry.name_lock(name):
            new_version = self.registry.reserve_version(name)
            self.registry.set_status(name, new_version, ModelStatus.TRAINING)
            try:
                model = self._refit(
                    base,
                    new_version,
                    valid,
                    base.statistics.get("skipped_records", 0) + skipped,
                )
            except Exception:
                self.registry.discard(name, new_version)
                raise
            self.registry.store(model)

        logger.info(
            "Updated model %s v%d -> v%d with %d ratings",
            name,
            base.version,
            new_version,
            len(valid),
        )
        return model

    def _refit(
        self,
        base: TrainedModel,
        version: int,
        new_ratings: list[Rating],
        skipped: int,
    ) -> TrainedModel:
        if isinstance(base, CollaborativeFilteringModel):
            engine = CollaborativeFilter.from_model(base)
            engine.update_with_new_ratings(new_ratings)
            return self._snapshot_collaborative(
                base.name, version, base.parameters, engine, skipped
            )
        if isinstance(base, ContentBasedModel):
            existing = [r for p in base.user_profiles.values() for r in p.ratings]
            merged = deduplicate_ratings([*existing, *new_ratings])
            return self._content_model(
                base.name,
                version,
                base.parameters,
                merged,
                base.item_features,
                base.group_weights,
                skipped,
            )
        raise ValueError(f"Unknown model type: {base.type}")

    def save_model(
        self, name: str, version: int | str = LATEST, path: str | None = None
    ) -> str:
        """Pickle a registered model, returning the file path."""
        model = self.registry.get(name, version)
        path = path or str(Path(self.models_path) / f"{name}_v{model.version}.pkl")
        save_model(model, path)
        return path

    def load_model(self, path: str) -> TrainedModel:
        """Load a pickled model and register it under its name and version."""
        model = load_model(path)
        self.registry.register(model)
        return model

    @staticmethod
    def save_tree_ensemble(ensemble: TreeEnsemble, path: str) -> None:
        """Write a pairing ensemble as JSON nested-dict trees."""
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(ensemble.to_dict(), f)
        logger.info("Saved %d-tree ensemble to %s", len(ensemble.trees), path)

    @staticmethod
    def load_tree_ensemble(path: str) -> TreeEnsemble:
        """Load a pairing ensemble written by a training run.

        Raises:
            FileNotFoundError: If path does not exist.
            ValueError: If a tree node is malformed.
        """
        with open(path) as f:
            return TreeEnsemble.from_dict(json.load(f))

    def evaluate_tree_ensemble(
        self,
        ensemble: TreeEnsemble,
        features: Sequence[Sequence[float]],
        targets: Sequence[float],
    ) -> dict[str, float]:
        """Score an ensemble's predictions against known targets.

        Returns:
            Dictionary with rmse, mae and r2.

        Raises:
            ValueError: If features and targets are empty or differ in length.
        """
        if not len(features) or len(features) != len(targets):
            raise ValueError(
                f"Need matching non-empty features and targets, got "
                f"{len(features)} and {len(targets)}"
            )
        predicted = ensemble.predict(features)
        pairs = list(zip(predicted.tolist(), targets))
        return {
            "rmse": self.evaluator.rmse(pairs),
            "mae": self.evaluator.mae(pairs),
            "r2": float(r2_score(targets, predicted)),
        }
