#!/usr/bin/env python3
"""
Held-out evaluation of navigation models.

Precision and recall are reported as aliases of accuracy for compatibility
with existing dashboards; the per-class macro averages live under
macro_precision / macro_recall.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sklearn.metrics import precision_score, recall_score

from ml.exceptions import EvaluationError
from ml.models import Model, ModelTrainer

logger = logging.getLogger(__name__)

METRIC_KEYS = ("accuracy", "precision", "recall", "f1", "macro_precision", "macro_recall")


def split_validation(
    features: Sequence[Any],
    targets: Sequence[Any],
    validation_fraction: float = 0.2,
) -> Tuple[List[Any], List[Any], List[Any], List[Any]]:
    """Chronological split: the last `validation_fraction` of rows is held out."""
    split_index = math.floor(len(features) * (1.0 - validation_fraction))
    return (
        list(features[:split_index]),
        list(targets[:split_index]),
        list(features[split_index:]),
        list(targets[split_index:]),
    )


def zero_metrics(validation_size: int = 0) -> Dict[str, Any]:
    metrics: Dict[str, Any] = {key: 0.0 for key in METRIC_KEYS}
    metrics.update({
        "confusion_matrix": [],
        "labels": [],
        "feature_importance": {},
        "validation_size": validation_size,
        "degenerate": True,
    })
    return metrics


class ModelEvaluator:
    """Computes performance metrics for a trained model on a validation set."""

    def __init__(self, trainer: Optional[ModelTrainer] = None):
        self.trainer = trainer or ModelTrainer()

    @staticmethod
    def _check_validation_set(targets: Sequence[str]) -> List[str]:
        labels: List[str] = []
        for target in targets:
            if target not in labels:
                labels.append(target)
        if len(targets) == 0 or len(labels) < 2:
            raise EvaluationError(
                f"Validation set has {len(targets)} samples and {len(labels)} distinct labels",
                n_samples=len(targets),
                n_classes=len(labels),
            )
        return labels

    def evaluate(
        self,
        model: Model,
        val_features: Sequence[Sequence[float]],
        val_targets: Sequence[str],
    ) -> Dict[str, Any]:
        """Score the model; degenerate validation sets yield zeroed metrics."""
        try:
            labels = self._check_validation_set(val_targets)
        except EvaluationError as e:
            logger.warning(f"Skipping evaluation of {model.version}: {e.message}")
            return zero_metrics(len(val_targets))

        predictions = [self.trainer.predict(model, vector) for vector in val_features]

        correct = sum(1 for actual, predicted in zip(val_targets, predictions) if actual == predicted)
        accuracy = correct / len(val_targets)
        precision = accuracy
        recall = accuracy
        f1 = 0.0 if precision + recall == 0 else 2 * precision * recall / (precision + recall)

        position = {label: i for i, label in enumerate(labels)}
        matrix = [[0] * len(labels) for _ in labels]
        for actual, predicted in zip(val_targets, predictions):
            if predicted in position:
                matrix[position[actual]][position[predicted]] += 1

        macro_precision = precision_score(
            val_targets, predictions, labels=labels, average="macro", zero_division=0
        )
        macro_recall = recall_score(
            val_targets, predictions, labels=labels, average="macro", zero_division=0
        )

        metrics = {
            "accuracy": accuracy,
            "precision": precision,
            "recall": recall,
            "f1": f1,
            "macro_precision": float(macro_precision),
            "macro_recall": float(macro_recall),
            "confusion_matrix": matrix,
            "labels": labels,
            "feature_importance": self.trainer.feature_importance(model),
            "validation_size": len(val_targets),
            "degenerate": False,
        }

        logger.info(f"Model {model.version} performance:")
        logger.info(f"  Accuracy: {accuracy:.4f}")
        logger.info(f"  F1: {f1:.4f}")
        logger.info(f"  Macro precision: {metrics['macro_precision']:.4f}")
        logger.info(f"  Macro recall: {metrics['macro_recall']:.4f}")

        return metrics
