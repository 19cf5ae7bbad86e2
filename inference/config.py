#!/usr/bin/env python3
"""
Prediction Service Configuration

Centralized configuration management for the navigation prediction service.
Supports environment-based configuration for different deployment environments.
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


FALLBACK_STRATEGIES = ("popular_pages", "none")


class PredictionConfig(BaseModel):
    """Prediction, caching and retraining behaviour."""

    enabled: bool = Field(default=True, description="Serve model predictions; fallback only when false")
    prediction_interval: int = Field(default=1000, ge=0, description="Pause between batch chunks in milliseconds")
    batch_size: int = Field(default=20, ge=1, description="Requests per batch chunk")

    # Cache settings
    cache_predictions: bool = Field(default=True, description="Cache full prediction responses")
    cache_ttl: int = Field(default=300, ge=0, description="Prediction cache TTL in seconds")
    cache_max_entries: int = Field(default=10000, ge=1, description="Max cached responses")

    # Fallback settings
    fallback_strategy: str = Field(default="popular_pages", description="popular_pages or none")
    popular_pages: List[str] = Field(
        default_factory=lambda: ["/dashboard", "/reports", "/analytics"],
        description="Pages ranked by the popular_pages fallback"
    )

    # Retraining settings
    min_data_points: int = Field(default=100, ge=1, description="Minimum samples required to train")
    retrain_threshold: float = Field(default=0.8, ge=0.0, le=1.0, description="Retrain below this accuracy")
    auto_retrain: bool = Field(default=True, description="Retrain automatically when needed")
    min_promotion_accuracy: float = Field(default=0.0, ge=0.0, le=1.0, description="Promotion accuracy floor")

    # Store settings
    lookup_timeout_seconds: float = Field(default=0.5, gt=0, description="Budget for each telemetry lookup")

    @field_validator("fallback_strategy")
    @classmethod
    def check_fallback_strategy(cls, value: str) -> str:
        if value not in FALLBACK_STRATEGIES:
            raise ValueError(f"fallback_strategy must be one of {FALLBACK_STRATEGIES}, got {value!r}")
        return value


class StoreConfig(BaseModel):
    """Telemetry store configuration."""

    backend: str = Field(default="memory", description="Telemetry store backend: memory or redis")

    host: str = Field(default="redis", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")

    # Connection settings
    socket_connect_timeout: int = Field(default=5, description="Connection timeout seconds")
    socket_timeout: int = Field(default=5, description="Socket timeout seconds")
    max_connections: int = Field(default=100, description="Max Redis connections")

    key_prefix: str = Field(default="nav", description="Prefix for telemetry keys")


class APIConfig(BaseModel):
    """API configuration."""

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=1, description="Number of workers")

    # API settings
    title: str = Field(default="Navigation Prediction API", description="API title")
    description: str = Field(
        default="Next-page navigation predictions with caching and fallback",
        description="API description"
    )
    version: str = Field(default="1.0.0", description="API version")

    # Model loading
    model_dir: Optional[str] = Field(default=None, description="Directory with model.pkl to activate at startup")

    # CORS settings
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")

    # Structured logging fields
    service_name: str = Field(default="navigation-prediction", description="Service name")
    environment: str = Field(default="production", description="Environment")


class InferenceConfig(BaseModel):
    """Complete prediction service configuration."""

    prediction: PredictionConfig = Field(default_factory=PredictionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    debug: bool = Field(default=False, description="Debug mode")

    @classmethod
    def from_env(cls) -> "InferenceConfig":
        """Load configuration from environment variables."""
        config = cls()

        # Prediction configuration
        if os.getenv("PREDICTION_ENABLED"):
            config.prediction.enabled = os.getenv("PREDICTION_ENABLED").lower() == "true"
        if os.getenv("PREDICTION_INTERVAL"):
            config.prediction.prediction_interval = int(os.getenv("PREDICTION_INTERVAL"))
        if os.getenv("BATCH_SIZE"):
            config.prediction.batch_size = int(os.getenv("BATCH_SIZE"))
        if os.getenv("CACHE_PREDICTIONS"):
            config.prediction.cache_predictions = os.getenv("CACHE_PREDICTIONS").lower() == "true"
        if os.getenv("CACHE_TTL"):
            config.prediction.cache_ttl = int(os.getenv("CACHE_TTL"))
        if os.getenv("FALLBACK_STRATEGY"):
            config.prediction.fallback_strategy = os.getenv("FALLBACK_STRATEGY")
        if os.getenv("MIN_DATA_POINTS"):
            config.prediction.min_data_points = int(os.getenv("MIN_DATA_POINTS"))
        if os.getenv("RETRAIN_THRESHOLD"):
            config.prediction.retrain_threshold = float(os.getenv("RETRAIN_THRESHOLD"))
        if os.getenv("AUTO_RETRAIN"):
            config.prediction.auto_retrain = os.getenv("AUTO_RETRAIN").lower() == "true"

        # Store configuration
        if os.getenv("TELEMETRY_BACKEND"):
            config.store.backend = os.getenv("TELEMETRY_BACKEND")
        if os.getenv("REDIS_HOST"):
            config.store.host = os.getenv("REDIS_HOST")
        if os.getenv("REDIS_PORT"):
            config.store.port = int(os.getenv("REDIS_PORT"))
        if os.getenv("REDIS_PASSWORD"):
            config.store.password = os.getenv("REDIS_PASSWORD")

        # API configuration
        if os.getenv("API_HOST"):
            config.api.host = os.getenv("API_HOST")
        if os.getenv("API_PORT"):
            config.api.port = int(os.getenv("API_PORT"))
        if os.getenv("MODEL_DIR"):
            config.api.model_dir = os.getenv("MODEL_DIR")

        # Logging configuration
        if os.getenv("LOG_LEVEL"):
            config.logging.level = os.getenv("LOG_LEVEL")
        if os.getenv("ENVIRONMENT"):
            config.logging.environment = os.getenv("ENVIRONMENT")

        # Attribute assignment skips validation; re-validate the whole tree
        return cls.model_validate(config.model_dump())
