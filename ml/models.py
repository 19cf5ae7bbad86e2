#!/usr/bin/env python3
"""
Navigation model definitions and training.

This module contains:
- The immutable Model record shared by training and serving
- Strategies for the supported model kinds (decision tree, bagged ensemble)
- Model factory for selecting a strategy by kind
- ModelTrainer: validation, fitting, inference and artifact persistence
"""

import json
import logging
import math
import pickle
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ml.exceptions import ModelNotLoadedError, TrainingError
from ml.features import FEATURE_NAMES
from ml.tree import Node, build_tree, split_sample_counts, traverse

logger = logging.getLogger(__name__)

DECISION_TREE = "decision_tree"
BAGGED_ENSEMBLE = "bagged_ensemble"

DEFAULT_PARAMS: Dict[str, Any] = {
    "max_depth": 10,
    "n_estimators": 100,
    "random_state": 42,
}


@dataclass(frozen=True)
class Model:
    """A trained navigation model. Never mutated after creation."""
    kind: str
    params: Dict[str, Any]
    trees: Tuple[Node, ...]
    feature_names: Tuple[str, ...]
    version: str
    trained_at: datetime
    metrics: Dict[str, Any] = field(default_factory=dict)
    target_classes: Tuple[str, ...] = ()
    training_data_size: int = 0


class ModelStrategy(ABC):
    """Fitting and inference rules for one model kind."""

    kind: str = ""

    @abstractmethod
    def fit(
        self,
        features: np.ndarray,
        codes: np.ndarray,
        classes: Sequence[str],
        params: Dict[str, Any],
        rng: np.random.Generator,
    ) -> Tuple[Node, ...]:
        """Grow the tree(s) for this kind."""

    @abstractmethod
    def predict(self, trees: Tuple[Node, ...], vector: Sequence[float]) -> str:
        """Predicted label for one vector."""

    @abstractmethod
    def predict_probabilities(self, trees: Tuple[Node, ...], vector: Sequence[float]) -> Dict[str, float]:
        """Per-label probability estimates for one vector."""


class DecisionTreeStrategy(ModelStrategy):
    kind = DECISION_TREE

    def fit(self, features, codes, classes, params, rng):
        return (build_tree(features, codes, classes, params["max_depth"]),)

    def predict(self, trees, vector):
        return traverse(trees[0], vector).label

    def predict_probabilities(self, trees, vector):
        return traverse(trees[0], vector).probabilities()


def bootstrap_indices(n_samples: int, rng: np.random.Generator) -> np.ndarray:
    """Indices of a bootstrap sample: n draws with replacement."""
    return rng.integers(0, n_samples, size=n_samples)


class BaggedEnsembleStrategy(ModelStrategy):
    """Bootstrap aggregation of full-feature decision trees."""

    kind = BAGGED_ENSEMBLE

    def fit(self, features, codes, classes, params, rng):
        n_samples = codes.size
        trees = []
        for _ in range(params["n_estimators"]):
            sample = bootstrap_indices(n_samples, rng)
            trees.append(build_tree(features[sample], codes[sample], classes, params["max_depth"]))
        return tuple(trees)

    def predict(self, trees, vector):
        votes: Dict[str, int] = {}
        for tree in trees:
            label = traverse(tree, vector).label
            votes[label] = votes.get(label, 0) + 1
        # First label in the tally wins ties
        return max(votes, key=votes.get)

    def predict_probabilities(self, trees, vector):
        totals: Dict[str, float] = {}
        for tree in trees:
            for label, probability in traverse(tree, vector).probabilities().items():
                totals[label] = totals.get(label, 0.0) + probability
        return {label: value / len(trees) for label, value in totals.items()}


class ModelFactory:
    """Factory for the supported navigation model kinds."""

    _strategies = {
        DECISION_TREE: DecisionTreeStrategy,
        BAGGED_ENSEMBLE: BaggedEnsembleStrategy,
    }

    @staticmethod
    def create(kind: str) -> ModelStrategy:
        """Create the strategy for a model kind."""
        strategy_cls = ModelFactory._strategies.get(kind.lower())
        if strategy_cls is None:
            raise ValueError(f"Unsupported model type: {kind}")
        return strategy_cls()

    @staticmethod
    def supported_kinds() -> List[str]:
        return list(ModelFactory._strategies)


def new_model_version() -> str:
    return f"v{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class ModelTrainer:
    """Fits navigation models and runs inference against them."""

    def __init__(
        self,
        min_data_points: int = 1,
        rng: Optional[np.random.Generator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.min_data_points = min_data_points
        self.rng = rng
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _validate(
        self,
        features: Sequence[Sequence[float]],
        targets: Sequence[str],
        feature_names: Sequence[str],
    ) -> np.ndarray:
        n_samples = len(features)
        if n_samples == 0:
            raise TrainingError("Training set is empty", n_samples=0, required=self.min_data_points)
        if n_samples != len(targets):
            raise TrainingError(
                f"Got {n_samples} feature vectors but {len(targets)} targets",
                n_samples=n_samples,
                context={"n_targets": len(targets)},
            )
        if n_samples < self.min_data_points:
            raise TrainingError(
                f"Need at least {self.min_data_points} samples, got {n_samples}",
                n_samples=n_samples,
                required=self.min_data_points,
            )

        widths = {len(row) for row in features}
        if len(widths) != 1:
            raise TrainingError("Feature vectors have inconsistent lengths", n_samples=n_samples,
                                context={"widths": sorted(widths)})
        width = widths.pop()
        if width != len(feature_names):
            raise TrainingError(
                f"Feature vectors have {width} values but {len(feature_names)} feature names",
                n_samples=n_samples,
            )

        try:
            matrix = np.asarray(features, dtype=float)
        except (TypeError, ValueError) as e:
            raise TrainingError(f"Feature vectors are not numeric: {e}", n_samples=n_samples) from e
        if not np.all(np.isfinite(matrix)):
            raise TrainingError("Feature vectors contain non-finite values", n_samples=n_samples)
        return matrix

    def fit(
        self,
        features: Sequence[Sequence[float]],
        targets: Sequence[str],
        params: Optional[Dict[str, Any]] = None,
        feature_names: Optional[Sequence[str]] = None,
    ) -> Model:
        """Fit a model of kind params['kind'] (default decision_tree)."""
        params = {**DEFAULT_PARAMS, **(params or {})}
        kind = params.pop("kind", DECISION_TREE)
        strategy = ModelFactory.create(kind)
        feature_names = tuple(feature_names or FEATURE_NAMES)

        matrix = self._validate(features, targets, feature_names)

        classes: List[str] = []
        index: Dict[str, int] = {}
        codes = np.empty(len(targets), dtype=np.int64)
        for i, target in enumerate(targets):
            if target not in index:
                index[target] = len(classes)
                classes.append(target)
            codes[i] = index[target]

        rng = self.rng or np.random.default_rng(params["random_state"])

        logger.info(f"Training {strategy.kind} on {len(targets)} samples, {len(classes)} classes")
        started = time.perf_counter()
        trees = strategy.fit(matrix, codes, classes, params, rng)
        logger.info(f"Model training completed in {time.perf_counter() - started:.2f}s ({len(trees)} trees)")

        return Model(
            kind=strategy.kind,
            params=params,
            trees=trees,
            feature_names=feature_names,
            version=new_model_version(),
            trained_at=self.clock(),
            target_classes=tuple(classes),
            training_data_size=len(targets),
        )

    @staticmethod
    def _check_vector(model: Model, vector: Sequence[float]) -> None:
        if len(vector) != len(model.feature_names):
            raise ValueError(
                f"Vector has {len(vector)} values, model {model.version} expects {len(model.feature_names)}"
            )

    def predict(self, model: Model, vector: Sequence[float]) -> str:
        self._check_vector(model, vector)
        return ModelFactory.create(model.kind).predict(model.trees, vector)

    def predict_probabilities(self, model: Model, vector: Sequence[float]) -> Dict[str, float]:
        self._check_vector(model, vector)
        return ModelFactory.create(model.kind).predict_probabilities(model.trees, vector)

    def rank(self, model: Model, vector: Sequence[float]) -> List[Tuple[str, float]]:
        """Candidate labels by probability descending; ties in target class order."""
        probabilities = self.predict_probabilities(model, vector)
        order = {label: i for i, label in enumerate(model.target_classes)}
        return sorted(
            probabilities.items(),
            key=lambda item: (-item[1], order.get(item[0], len(order))),
        )

    @staticmethod
    def feature_importance(model: Model) -> Dict[str, float]:
        """Share of split traffic per feature, normalised to sum to 1."""
        n_features = len(model.feature_names)
        totals = [0] * n_features
        for tree in model.trees:
            for i, count in enumerate(split_sample_counts(tree, n_features)):
                totals[i] += count

        grand_total = sum(totals)
        if grand_total == 0:
            return {name: 0.0 for name in model.feature_names}
        return {name: totals[i] / grand_total for i, name in enumerate(model.feature_names)}

    def save_model_artifacts(self, model: Model, output_dir: str) -> Dict[str, str]:
        """Save model and related artifacts."""
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        artifacts = {}

        model_path = output_path / "model.pkl"
        with open(model_path, 'wb') as f:
            pickle.dump(model, f)
        artifacts['model_pickle'] = str(model_path)

        features_path = output_path / "feature_names.json"
        with open(features_path, 'w') as f:
            json.dump(list(model.feature_names), f)
        artifacts['feature_names'] = str(features_path)

        metrics_path = output_path / "metrics.json"
        with open(metrics_path, 'w') as f:
            json.dump(_json_safe(model.metrics), f, indent=2)
        artifacts['metrics'] = str(metrics_path)

        logger.info(f"Model artifacts saved to {output_path}")
        return artifacts

    @staticmethod
    def load_model_artifacts(output_dir: str) -> Model:
        """Load a model saved by save_model_artifacts."""
        output_path = Path(output_dir)
        model_path = output_path / "model.pkl"
        features_path = output_path / "feature_names.json"

        if not model_path.exists() or not features_path.exists():
            raise ModelNotLoadedError(
                f"Model artifacts not found in {output_path}",
                context={"path": str(output_path)},
            )

        with open(model_path, 'rb') as f:
            model = pickle.load(f)
        with open(features_path) as f:
            feature_names = json.load(f)

        if list(model.feature_names) != feature_names:
            raise ModelNotLoadedError(
                "feature_names.json does not match the pickled model",
                version=model.version,
            )

        logger.info(f"Loaded model {model.version} from {output_path}")
        return model


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating, float)):
        value = float(value)
        return value if math.isfinite(value) else None
    return value
