#!/usr/bin/env python3
"""
Model lifecycle: retraining decisions, promotion and rollback.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from prometheus_client import Counter

from inference.config import PredictionConfig
from ml.evaluation import ModelEvaluator, split_validation
from ml.exceptions import TrainingError
from ml.models import Model, ModelTrainer
from ml.registry import ModelRegistry
from training.datasets import TrainingSample, to_training_arrays

logger = logging.getLogger(__name__)

TRAINING_RUNS = Counter(
    'navigation_training_runs_total',
    'Training runs by result',
    ['result']
)

MAX_MODEL_AGE = timedelta(days=7)


@dataclass
class TrainingOutcome:
    model: Model
    metrics: Dict[str, Any]
    promoted: bool


class ModelLifecycleManager:
    """Decides when to retrain and which model version serves."""

    def __init__(
        self,
        registry: ModelRegistry,
        config: PredictionConfig,
        trainer: Optional[ModelTrainer] = None,
        evaluator: Optional[ModelEvaluator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        validation_fraction: float = 0.2,
    ):
        self.registry = registry
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.trainer = trainer or ModelTrainer(clock=self.clock)
        self.evaluator = evaluator or ModelEvaluator(self.trainer)
        self.validation_fraction = validation_fraction

        self._observed: Optional[Tuple[str, float]] = None
        self._buffer: List[TrainingSample] = []
        self._lock = threading.Lock()

    def record_accuracy(self, accuracy: float) -> None:
        """Record an accuracy observation for the active model."""
        active = self.registry.active()
        if active is None:
            logger.warning("Ignoring accuracy observation: no active model")
            return
        self._observed = (active.version, accuracy)

    def latest_accuracy(self) -> Optional[float]:
        active = self.registry.active()
        if active is None:
            return None
        if self._observed is not None and self._observed[0] == active.version:
            return self._observed[1]
        return float(active.metrics.get("accuracy", 0.0))

    def needs_retraining(self) -> bool:
        active = self.registry.active()
        if active is None:
            return True
        if self.latest_accuracy() < self.config.retrain_threshold:
            return True
        return self.clock() - active.trained_at > MAX_MODEL_AGE

    def train_and_promote(self, samples: List[TrainingSample],
                          params: Optional[Dict[str, Any]] = None) -> TrainingOutcome:
        """Fit on the older samples, evaluate on the newest tail, promote if it passes."""
        if len(samples) < self.config.min_data_points:
            TRAINING_RUNS.labels(result="insufficient_data").inc()
            raise TrainingError(
                f"Need at least {self.config.min_data_points} samples, got {len(samples)}",
                n_samples=len(samples),
                required=self.config.min_data_points,
            )

        features, targets = to_training_arrays(samples)
        train_x, train_y, val_x, val_y = split_validation(features, targets, self.validation_fraction)
        logger.info(f"Training on {len(train_x)} samples, validating on {len(val_x)}")

        try:
            model = self.trainer.fit(train_x, train_y, params)
        except TrainingError:
            TRAINING_RUNS.labels(result="failed").inc()
            raise

        metrics = self.evaluator.evaluate(model, val_x, val_y)
        self.registry.register(model)
        model = self.registry.attach_metrics(model.version, metrics)

        promoted = not metrics["degenerate"] and metrics["accuracy"] >= self.config.min_promotion_accuracy
        if promoted:
            self.registry.promote(model.version)
            self._observed = None
            TRAINING_RUNS.labels(result="promoted").inc()
            logger.info(f"Promoted {model.version} with accuracy {metrics['accuracy']:.4f}")
        else:
            TRAINING_RUNS.labels(result="rejected").inc()
            logger.warning(
                f"Model {model.version} not promoted "
                f"(accuracy={metrics['accuracy']:.4f}, degenerate={metrics['degenerate']})"
            )

        return TrainingOutcome(model=model, metrics=metrics, promoted=promoted)

    def rollback(self) -> Optional[Model]:
        restored = self.registry.rollback()
        if restored is not None:
            self._observed = None
        return restored

    def ingest(self, samples: List[TrainingSample]) -> int:
        """Buffer new samples for the next retrain; returns the buffer size."""
        with self._lock:
            self._buffer.extend(samples)
            return len(self._buffer)

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def maybe_retrain(self, params: Optional[Dict[str, Any]] = None) -> Optional[TrainingOutcome]:
        """Retrain on the buffer when auto-retrain is on, enough data is buffered and retraining is needed."""
        if not self.config.auto_retrain:
            return None

        with self._lock:
            if len(self._buffer) < self.config.min_data_points:
                return None
            if not self.needs_retraining():
                return None
            samples = list(self._buffer)

        outcome = self.train_and_promote(samples, params)

        with self._lock:
            del self._buffer[:len(samples)]
        return outcome
