#!/usr/bin/env python3
"""
Navigation Prediction Service

Serves ranked next-page predictions for a session:
- Response cache keyed by session, page and hour
- Model inference through the registry's active model
- Reasoning, alternatives, recommendations and user segment
- Fallback ranking whenever anything on the path fails
"""

import random
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog
from prometheus_client import Counter, Histogram

from inference.cache import PredictionCache, cache_key
from inference.config import PredictionConfig
from inference.fallback import FallbackPolicy, page_title
from inference.features import FeatureExtractor
from inference.schemas import (
    AlternativePrediction,
    NavigationPrediction,
    NavigationRecommendation,
    PredictionOptions,
    PredictionRequest,
    PredictionResponse,
    RecommendationType,
)
from ml.evaluation import zero_metrics
from ml.exceptions import ModelNotLoadedError
from ml.features import FEATURE_NAMES, NavigationFeatures
from ml.models import Model, ModelTrainer
from ml.registry import ModelRegistry

logger = structlog.get_logger(__name__)

# Prometheus metrics
PREDICTIONS_TOTAL = Counter(
    'navigation_predictions_total',
    'Prediction requests by outcome',
    ['outcome']
)
PREDICTION_LATENCY = Histogram(
    'navigation_prediction_duration_seconds',
    'End-to-end prediction latency'
)
MODEL_INFERENCE_DURATION = Histogram(
    'navigation_model_inference_duration_seconds',
    'Model inference duration'
)

MAX_ALTERNATIVES = 3
MAX_PERSONALIZATION_FACTORS = 3
TOP_FEATURES = 5


def classify_user_segment(features: NavigationFeatures) -> str:
    if features.total_sessions > 10 and features.average_session_duration > 300:
        return "power_users"
    if features.device_type == "mobile" and features.session_duration < 180:
        return "casual_browsers"
    return "regular_users"


def top_features(importance: Dict[str, float], limit: int = TOP_FEATURES) -> Dict[str, float]:
    ranked = sorted(importance.items(), key=lambda item: -item[1])
    return {name: value for name, value in ranked[:limit] if value > 0}


def prediction_reasoning(features: NavigationFeatures, page: str, probability: float,
                         importance: Dict[str, float]) -> List[str]:
    reasons = [
        f"{probability:.0%} of similar sessions on {features.current_page} went to {page} next",
    ]
    if importance:
        reasons.append("Strongest signals: " + ", ".join(list(importance)[:MAX_PERSONALIZATION_FACTORS]))
    period = "weekend" if features.is_weekend else "weekday"
    reasons.append(f"Navigation pattern for {period} visits around {features.hour_of_day:02d}:00")
    return reasons


class PredictionService:
    """Next-page prediction with caching and fallback. predict() never raises."""

    def __init__(
        self,
        config: PredictionConfig,
        extractor: FeatureExtractor,
        registry: ModelRegistry,
        cache: Optional[PredictionCache] = None,
        fallback: Optional[FallbackPolicy] = None,
        trainer: Optional[ModelTrainer] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.extractor = extractor
        self.registry = registry
        self.cache = cache or PredictionCache(config.cache_ttl, config.cache_max_entries)
        self.fallback = fallback or FallbackPolicy(config.fallback_strategy, config.popular_pages)
        self.trainer = trainer or ModelTrainer()
        self.clock = clock or extractor.clock
        self.sleep = sleep

    def _active_model(self) -> Model:
        model = self.registry.active()
        if model is None:
            raise ModelNotLoadedError("No active model. Train and promote a model first.")
        if tuple(model.feature_names) != tuple(FEATURE_NAMES):
            raise ModelNotLoadedError(
                "Active model feature names do not match the feature vector",
                version=model.version,
            )
        return model

    def _fallback(self, request: PredictionRequest, started: float, reason: str) -> PredictionResponse:
        PREDICTIONS_TOTAL.labels(outcome="fallback").inc()
        response = self.fallback.respond(request, started)
        PREDICTION_LATENCY.observe(time.perf_counter() - started)
        logger.info("Served fallback prediction", session_id=request.session_id,
                    current_page=request.current_page, reason=reason)
        return response

    def predict(self, request: PredictionRequest) -> PredictionResponse:
        """Ranked next-page predictions for the request."""
        started = time.perf_counter()

        if not self.config.enabled:
            return self._fallback(request, started, "prediction disabled")
        if not request.session_id.strip() or not request.current_page.strip():
            return self._fallback(request, started, "missing session or page")

        try:
            key = cache_key(request.session_id, request.current_page, self.clock())
            if self.config.cache_predictions:
                cached = self.cache.get(key)
                if cached is not None:
                    PREDICTIONS_TOTAL.labels(outcome="cache").inc()
                    return cached

            model = self._active_model()
            response = self._predict_with_model(model, request, started)

            if self.config.cache_predictions:
                self.cache.put(key, response)

            PREDICTIONS_TOTAL.labels(outcome="model").inc()
            PREDICTION_LATENCY.observe(time.perf_counter() - started)
            logger.info(
                "Prediction served",
                session_id=request.session_id,
                current_page=request.current_page,
                model_version=model.version,
                predictions=len(response.predictions),
                processing_time_ms=response.processing_time,
            )
            return response

        except ModelNotLoadedError as e:
            return self._fallback(request, started, e.message)
        except Exception as e:
            logger.error("Prediction failed, using fallback", session_id=request.session_id,
                         current_page=request.current_page, error=str(e), error_type=type(e).__name__)
            return self._fallback(request, started, "error")

    def _predict_with_model(self, model: Model, request: PredictionRequest, started: float) -> PredictionResponse:
        options = request.options
        features = self.extractor.extract(request.session_id, request.current_page, request.user_id)

        inference_start = time.perf_counter()
        ranked = self.trainer.rank(model, features.to_vector())
        MODEL_INFERENCE_DURATION.observe(time.perf_counter() - inference_start)

        ranked = [(page, p) for page, p in ranked if p >= options.min_confidence][:options.num_predictions]
        importance = top_features(model.metrics.get("feature_importance") or self.trainer.feature_importance(model))

        predictions = []
        for page, probability in ranked:
            alternatives = [
                AlternativePrediction(page=other, probability=p)
                for other, p in ranked if other != page
            ][:MAX_ALTERNATIVES]
            predictions.append(NavigationPrediction(
                page=page,
                probability=probability,
                confidence=probability,
                reasoning=prediction_reasoning(features, page, probability, importance)
                if options.include_reasoning else [],
                alternative_predictions=alternatives,
                feature_importance=importance,
            ))

        recommendations = [
            NavigationRecommendation(
                page_url=prediction.page,
                title=page_title(prediction.page),
                type=RecommendationType.NEXT_PAGE,
                confidence=prediction.confidence,
                reasoning="; ".join(prediction.reasoning),
                expected_engagement=prediction.confidence * 10,
                personalization_factors=list(prediction.feature_importance)[:MAX_PERSONALIZATION_FACTORS],
                display_priority=i + 1,
            )
            for i, prediction in enumerate(predictions)
        ]

        return PredictionResponse(
            predictions=predictions,
            recommendations=recommendations,
            user_segment=classify_user_segment(features),
            model_version=model.version,
            prediction_id=f"pred_{int(time.time() * 1000)}_{random.randrange(16 ** 6):06x}",
            processing_time=(time.perf_counter() - started) * 1000,
            fallback_used=False,
        )

    def get_realtime_recommendations(self, session_id: str, current_page: str,
                                     user_id: Optional[str] = None) -> List[NavigationRecommendation]:
        request = PredictionRequest(
            session_id=session_id,
            current_page=current_page,
            user_id=user_id,
            options=PredictionOptions(num_predictions=5, include_reasoning=True, min_confidence=0.1),
        )
        return self.predict(request).recommendations

    def predict_batch(self, requests: List[PredictionRequest]) -> List[PredictionResponse]:
        """Serve requests in chunks of batch_size, pausing prediction_interval ms between chunks."""
        responses: List[PredictionResponse] = []
        batch_size = self.config.batch_size
        for start in range(0, len(requests), batch_size):
            if start > 0 and self.config.prediction_interval > 0:
                self.sleep(self.config.prediction_interval / 1000.0)
            responses.extend(self.predict(request) for request in requests[start:start + batch_size])
        return responses

    def get_model_metrics(self) -> Dict[str, Any]:
        model = self.registry.active()
        if model is None:
            metrics = zero_metrics()
            metrics["model_version"] = None
            return metrics
        metrics = dict(model.metrics) if model.metrics else zero_metrics(0)
        metrics["model_version"] = model.version
        metrics["trained_at"] = model.trained_at.isoformat()
        metrics["training_data_size"] = model.training_data_size
        return metrics

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
