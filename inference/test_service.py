#!/usr/bin/env python3
"""
Test script for the prediction service and the HTTP API.

Exercises model-backed predictions, caching, fallback behaviour, batch
pacing and the FastAPI endpoints with an in-memory telemetry store.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from inference.app import create_app
from inference.config import InferenceConfig, PredictionConfig
from inference.features import FeatureExtractor
from inference.schemas import PredictionOptions, PredictionRequest, RecommendationType
from inference.service import PredictionService, classify_user_segment
from inference.stores import InMemoryTelemetryStore
from ml.features import NavigationFeatures
from ml.models import DECISION_TREE, ModelTrainer
from ml.registry import ModelRegistry
from training.lifecycle import ModelLifecycleManager

NOW = datetime(2026, 3, 2, 14, 25, tzinfo=timezone.utc)


class CountingTrainer(ModelTrainer):
    """Trainer that counts model inference calls."""

    def __init__(self):
        super().__init__()
        self.rank_calls = 0

    def rank(self, model, vector):
        self.rank_calls += 1
        return super().rank(model, vector)


class BrokenExtractor:
    """Extractor whose every lookup blows up."""

    clock = staticmethod(lambda: NOW)

    def extract(self, session_id, current_page, user_id=None):
        raise RuntimeError("telemetry exploded")


def train_model():
    """Dashboard visitors mostly go to reports; settings visitors go back to the dashboard."""
    vectors, targets = [], []
    for target in ["/reports", "/reports", "/reports", "/analytics"]:
        vectors.append(NavigationFeatures(session_id="t", current_page="/dashboard").to_vector())
        targets.append(target)
    for _ in range(4):
        vectors.append(NavigationFeatures(session_id="t", current_page="/settings").to_vector())
        targets.append("/dashboard")
    return ModelTrainer().fit(vectors, targets, {"kind": DECISION_TREE})


def make_service(config=None, trainer=None, with_model=True, sleep=None):
    config = config or PredictionConfig()
    registry = ModelRegistry()
    model = None
    if with_model:
        model = train_model()
        registry.register(model)
        registry.promote(model.version)

    extractor = FeatureExtractor(InMemoryTelemetryStore(), clock=lambda: NOW)
    kwargs = {"sleep": sleep} if sleep else {}
    service = PredictionService(config, extractor, registry, trainer=trainer or ModelTrainer(), **kwargs)
    return service, model


# === Service ===

def test_model_prediction():
    print("Testing model-backed prediction...")
    service, model = make_service()

    response = service.predict(PredictionRequest(session_id="s1", current_page="/dashboard"))

    assert response.fallback_used is False
    assert response.model_version == model.version
    assert response.prediction_id.startswith("pred_")
    assert response.user_segment == "regular_users"
    assert [p.page for p in response.predictions] == ["/reports", "/analytics"]
    assert [p.probability for p in response.predictions] == pytest.approx([0.75, 0.25])

    top = response.predictions[0]
    assert top.confidence == top.probability
    assert [a.page for a in top.alternative_predictions] == ["/analytics"]
    assert "page_category" in top.feature_importance
    assert top.reasoning[0] == "75% of similar sessions on /dashboard went to /reports next"

    recommendation = response.recommendations[0]
    assert recommendation.type == RecommendationType.NEXT_PAGE
    assert recommendation.title == "Reports"
    assert recommendation.display_priority == 1
    assert recommendation.expected_engagement == pytest.approx(7.5)
    print("  ✓ Ranked predictions and recommendations")


def test_options_filter_and_truncate():
    service, _ = make_service(PredictionConfig(cache_predictions=False))

    confident = service.predict(PredictionRequest(
        session_id="s1", current_page="/dashboard",
        options=PredictionOptions(min_confidence=0.5),
    ))
    assert [p.page for p in confident.predictions] == ["/reports"]
    assert confident.predictions[0].alternative_predictions == []

    single = service.predict(PredictionRequest(
        session_id="s1", current_page="/dashboard",
        options=PredictionOptions(num_predictions=1, include_reasoning=False),
    ))
    assert len(single.predictions) == 1
    assert single.predictions[0].reasoning == []


def test_cached_prediction_skips_model():
    trainer = CountingTrainer()
    service, _ = make_service(trainer=trainer)
    request = PredictionRequest(session_id="s1", current_page="/dashboard")

    first = service.predict(request)
    second = service.predict(request)

    assert trainer.rank_calls == 1
    assert second == first
    assert service.cache_stats()["cache_hits"] == 1


def test_cache_disabled_calls_model_each_time():
    trainer = CountingTrainer()
    service, _ = make_service(PredictionConfig(cache_predictions=False), trainer=trainer)
    request = PredictionRequest(session_id="s1", current_page="/dashboard")

    service.predict(request)
    service.predict(request)

    assert trainer.rank_calls == 2
    assert len(service.cache) == 0


def test_no_active_model_falls_back():
    service, _ = make_service(with_model=False)

    response = service.predict(PredictionRequest(session_id="s1", current_page="/dashboard"))

    assert response.fallback_used is True
    assert response.model_version == "fallback"
    assert [p.page for p in response.predictions] == ["/dashboard", "/reports", "/analytics"]
    assert len(service.cache) == 0


def test_disabled_prediction_falls_back():
    trainer = CountingTrainer()
    service, _ = make_service(PredictionConfig(enabled=False), trainer=trainer)

    response = service.predict(PredictionRequest(session_id="s1", current_page="/dashboard"))

    assert response.fallback_used is True
    assert trainer.rank_calls == 0


def test_prediction_never_raises():
    registry = ModelRegistry()
    model = train_model()
    registry.register(model)
    registry.promote(model.version)
    service = PredictionService(PredictionConfig(), BrokenExtractor(), registry)

    response = service.predict(PredictionRequest(session_id="s1", current_page="/dashboard"))

    assert response.fallback_used is True
    assert response.predictions


def test_feature_name_mismatch_falls_back():
    service, _ = make_service(with_model=False)
    model = ModelTrainer().fit([[0.0, 1.0], [1.0, 0.0]], ["/a", "/b"], feature_names=["x", "y"])
    service.registry.register(model)
    service.registry.promote(model.version)

    response = service.predict(PredictionRequest(session_id="s1", current_page="/dashboard"))

    assert response.fallback_used is True


def test_batch_prediction_paces_chunks():
    sleeps = []
    service, _ = make_service(PredictionConfig(batch_size=2, prediction_interval=1000),
                              sleep=sleeps.append)
    requests = [PredictionRequest(session_id=f"s{i}", current_page="/settings") for i in range(5)]

    responses = service.predict_batch(requests)

    assert len(responses) == 5
    assert sleeps == [1.0, 1.0]
    assert all(r.predictions[0].page == "/dashboard" for r in responses)


def test_realtime_recommendations():
    service, _ = make_service()

    recommendations = service.get_realtime_recommendations("s1", "/dashboard")

    assert [r.page_url for r in recommendations] == ["/reports", "/analytics"]
    assert [r.display_priority for r in recommendations] == [1, 2]


def test_blank_session_or_page_served_fallback():
    service, _ = make_service()

    blank_session = service.predict(PredictionRequest(session_id="", current_page="/dashboard"))
    blank_page = service.predict(PredictionRequest(session_id="s1", current_page="  "))

    assert blank_session.fallback_used
    assert blank_page.fallback_used
    assert service.get_realtime_recommendations("", "/dashboard")
    assert len(service.cache) == 0


def test_model_metrics_without_model():
    service, _ = make_service(with_model=False)
    metrics = service.get_model_metrics()

    assert metrics["model_version"] is None
    assert metrics["accuracy"] == 0.0


def test_user_segments():
    power = NavigationFeatures(session_id="s", current_page="/", total_sessions=11,
                               average_session_duration=301.0)
    casual = NavigationFeatures(session_id="s", current_page="/", device_type="mobile",
                                session_duration=60.0)
    regular = NavigationFeatures(session_id="s", current_page="/")

    assert classify_user_segment(power) == "power_users"
    assert classify_user_segment(casual) == "casual_browsers"
    assert classify_user_segment(regular) == "regular_users"


# === HTTP API ===

def make_client(with_model=True):
    config = InferenceConfig()
    service, model = make_service(config.prediction, with_model=with_model)
    lifecycle = ModelLifecycleManager(service.registry, config.prediction)
    app = create_app(config=config, service=service, lifecycle=lifecycle)
    return TestClient(app), service, model


def test_api_predict():
    print("Testing API prediction endpoint...")
    client, _, model = make_client()

    response = client.post("/predict", json={"session_id": "s1", "current_page": "/dashboard"})

    assert response.status_code == 200
    body = response.json()
    assert body["model_version"] == model.version
    assert body["predictions"][0]["page"] == "/reports"
    assert "X-Request-ID" in response.headers
    print("  ✓ /predict")


def test_api_validation_error():
    client, _, _ = make_client()

    response = client.post("/predict", json={"session_id": "s1"})

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "VALIDATION_ERROR"


def test_api_blank_input_served_fallback():
    client, _, _ = make_client()

    response = client.post("/predict", json={"session_id": "", "current_page": "/dashboard"})
    assert response.status_code == 200
    assert response.json()["fallback_used"] is True

    recommendations = client.get("/recommendations/s1")
    assert recommendations.status_code == 200
    assert all(r["type"] == "content_suggestion" for r in recommendations.json())


def test_api_batch_and_recommendations():
    client, _, _ = make_client()

    batch = client.post("/predict/batch", json={"requests": [
        {"session_id": "s1", "current_page": "/dashboard"},
        {"session_id": "s2", "current_page": "/settings"},
    ]})
    assert batch.status_code == 200
    assert batch.json()["total"] == 2

    recommendations = client.get("/recommendations/s1", params={"current_page": "/dashboard"})
    assert recommendations.status_code == 200
    assert recommendations.json()[0]["page_url"] == "/reports"


def test_api_health_and_metrics():
    client, _, model = make_client()

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["model_loaded"] is True
    assert health["model_version"] == model.version

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "navigation_predictions_total" in metrics.text


def test_api_health_degraded_without_model():
    client, _, _ = make_client(with_model=False)

    health = client.get("/health").json()

    assert health["status"] == "degraded"
    assert health["model_loaded"] is False


def test_api_model_info_and_rollback():
    client, service, first = make_client()

    info = client.get("/model").json()
    assert info["active_version"] == first.version
    assert info["needs_retraining"] is True

    assert client.post("/model/rollback").status_code == 409

    second = train_model()
    service.registry.register(second)
    service.registry.promote(second.version)

    rolled_back = client.post("/model/rollback")
    assert rolled_back.status_code == 200
    assert rolled_back.json()["active_version"] == first.version


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
