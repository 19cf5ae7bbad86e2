#!/usr/bin/env python3
"""
MLflow experiment tracking for navigation model training runs.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import mlflow
import numpy as np

from training.config import TrainingConfig

logger = logging.getLogger(__name__)


class MLflowExperimentManager:
    """Manages MLflow runs; every call is a no-op when tracking is disabled."""

    def __init__(self, config: TrainingConfig):
        self.config = config
        self.enabled = config.mlflow.enabled
        self._active = False
        if self.enabled:
            self._setup_mlflow()

    def _setup_mlflow(self):
        """Setup MLflow tracking."""
        mlflow.set_tracking_uri(self.config.mlflow.tracking_uri)
        mlflow.set_experiment(self.config.mlflow.experiment_name)

        logger.info(f"MLflow tracking URI: {self.config.mlflow.tracking_uri}")
        logger.info(f"MLflow experiment: {self.config.mlflow.experiment_name}")

    def start_run(self, run_name: Optional[str] = None):
        """Start MLflow run."""
        if not self.enabled:
            return
        run_name = run_name or self.config.get_run_name()
        mlflow.start_run(run_name=run_name)
        self._active = True

        mlflow.log_params({
            "model_type": self.config.model.model_type,
            "max_depth": self.config.model.max_depth,
            "n_estimators": self.config.model.n_estimators,
            "random_state": self.config.model.random_state,
            "lookback_days": self.config.data.lookback_days,
            "min_data_points": self.config.prediction.min_data_points,
        })

    def log_metrics(self, metrics: Dict[str, Any]):
        """Log metrics to MLflow."""
        if not self._active:
            return
        # Filter out non-numeric metrics for MLflow
        numeric_metrics = {k: float(v) for k, v in metrics.items()
                           if isinstance(v, (int, float, np.integer, np.floating)) and not isinstance(v, bool)}
        mlflow.log_metrics(numeric_metrics)

    def log_artifacts(self, artifacts: Dict[str, str]):
        """Log artifacts to MLflow."""
        if not self._active:
            return
        for artifact_name, artifact_path in artifacts.items():
            if Path(artifact_path).exists():
                mlflow.log_artifact(artifact_path)

    def set_tags(self, tags: Dict[str, str]):
        if self._active:
            mlflow.set_tags(tags)

    def end_run(self):
        """End MLflow run."""
        if self._active:
            mlflow.end_run()
            self._active = False
