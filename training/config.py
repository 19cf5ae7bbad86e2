#!/usr/bin/env python3
"""
Navigation Model Training Configuration

Centralized configuration for the navigation model training pipeline with
environment-specific settings.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from inference.config import PredictionConfig, StoreConfig


class DataConfig(BaseModel):
    """Training data configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig, description="Telemetry store to read sessions from")

    # Training data parameters
    lookback_days: int = Field(default=30, ge=1, description="Days of historical sessions to use")
    min_session_duration: Optional[float] = Field(default=None, ge=0, description="Exclude shorter sessions (s)")
    exclude_bounce_sessions: bool = Field(default=False, description="Exclude sessions with bounce rate > 0.8")
    sample_size: Optional[int] = Field(default=None, ge=1, description="Upper bound on training samples")
    sample_seed: int = Field(default=42, description="Seed for sample_size sampling")

    # Synthetic data when the store has no history
    synthetic_sessions: int = Field(default=500, ge=0, description="Synthetic sessions if the store is empty")


class ModelConfig(BaseModel):
    """Model configuration."""

    model_type: str = Field(default="bagged_ensemble", description="Model kind: decision_tree or bagged_ensemble")
    max_depth: int = Field(default=10, ge=1, description="Maximum tree depth")
    n_estimators: int = Field(default=100, ge=1, description="Trees in the bagged ensemble")
    random_state: int = Field(default=42, description="Bootstrap seed")
    validation_size: float = Field(default=0.2, gt=0.0, lt=1.0, description="Validation tail proportion")

    def params(self) -> Dict[str, Any]:
        return {
            "kind": self.model_type,
            "max_depth": self.max_depth,
            "n_estimators": self.n_estimators,
            "random_state": self.random_state,
        }


class MLflowConfig(BaseModel):
    """MLflow configuration."""

    enabled: bool = Field(default=False, description="Track runs in MLflow")
    tracking_uri: str = Field(default="http://localhost:5000", description="MLflow tracking server")
    experiment_name: str = Field(default="navigation_prediction", description="MLflow experiment name")


class TrainingConfig(BaseModel):
    """Complete training configuration."""

    data: DataConfig = Field(default_factory=DataConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    mlflow: MLflowConfig = Field(default_factory=MLflowConfig)
    prediction: PredictionConfig = Field(default_factory=PredictionConfig,
                                         description="Shared retraining thresholds")

    job_name: str = Field(default="navigation_model_training", description="Training job name")
    output_dir: str = Field(default="training/outputs", description="Output directory")
    log_level: str = Field(default="INFO", description="Logging level")

    @classmethod
    def from_env(cls) -> "TrainingConfig":
        """Load configuration from environment variables."""
        config = cls()

        # Override with environment variables
        if os.getenv("TELEMETRY_BACKEND"):
            config.data.store.backend = os.getenv("TELEMETRY_BACKEND")
        if os.getenv("REDIS_HOST"):
            config.data.store.host = os.getenv("REDIS_HOST")
        if os.getenv("REDIS_PORT"):
            config.data.store.port = int(os.getenv("REDIS_PORT"))
        if os.getenv("MLFLOW_TRACKING_URI"):
            config.mlflow.tracking_uri = os.getenv("MLFLOW_TRACKING_URI")
            config.mlflow.enabled = True
        if os.getenv("MODEL_TYPE"):
            config.model.model_type = os.getenv("MODEL_TYPE")
        if os.getenv("MIN_DATA_POINTS"):
            config.prediction.min_data_points = int(os.getenv("MIN_DATA_POINTS"))
        if os.getenv("RETRAIN_THRESHOLD"):
            config.prediction.retrain_threshold = float(os.getenv("RETRAIN_THRESHOLD"))
        if os.getenv("TRAINING_OUTPUT_DIR"):
            config.output_dir = os.getenv("TRAINING_OUTPUT_DIR")
        if os.getenv("LOG_LEVEL"):
            config.log_level = os.getenv("LOG_LEVEL").upper()

        return cls.model_validate(config.model_dump())

    def create_output_dir(self) -> Path:
        """Create output directory if it doesn't exist."""
        output_path = Path(self.output_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        return output_path

    def get_run_name(self) -> str:
        """Generate unique run name for MLflow."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{self.job_name}_{timestamp}"
