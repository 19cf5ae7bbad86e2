#!/usr/bin/env python3
"""
FastAPI Navigation Prediction Service

Real-time next-page prediction API providing:
- Ranked next-page predictions with reasoning and alternatives
- Dashboard recommendations for the current page
- Batch prediction with chunked pacing
- Model registry inspection and rollback
- Health checks and Prometheus metrics
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from inference.config import InferenceConfig, LoggingConfig
from inference.features import FeatureExtractor
from inference.schemas import (
    BatchPredictionRequest,
    BatchPredictionResponse,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    ModelInfoResponse,
    NavigationRecommendation,
    PredictionRequest,
    PredictionResponse,
)
from inference.service import PredictionService
from inference.stores import create_store
from ml.exceptions import ModelNotLoadedError
from ml.models import ModelTrainer
from ml.registry import ModelRegistry
from training.lifecycle import ModelLifecycleManager

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    'navigation_api_requests_total',
    'Total API requests',
    ['method', 'endpoint', 'status']
)
REQUEST_DURATION = Histogram(
    'navigation_api_request_duration_seconds',
    'Request duration in seconds',
    ['endpoint']
)
ACTIVE_REQUESTS = Gauge(
    'navigation_api_active_requests',
    'Number of active requests'
)
ERROR_COUNT = Counter(
    'navigation_api_errors_total',
    'Total errors',
    ['error_type', 'endpoint']
)


def configure_logging(config: LoggingConfig) -> None:
    """Configure structlog and the stdlib root level."""
    renderer = (
        structlog.processors.JSONRenderer()
        if config.format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger().setLevel(level)


def build_components(config: InferenceConfig):
    """Store, extractor, registry, service and lifecycle manager from configuration."""
    store = create_store(config.store)
    extractor = FeatureExtractor(store, lookup_timeout=config.prediction.lookup_timeout_seconds)
    registry = ModelRegistry()

    if config.api.model_dir:
        try:
            model = ModelTrainer.load_model_artifacts(config.api.model_dir)
            registry.register(model)
            registry.promote(model.version)
            logger.info("Activated model from disk", model_version=model.version,
                        model_dir=config.api.model_dir)
        except ModelNotLoadedError as e:
            logger.warning("No model activated at startup; serving fallback", error=e.message)

    service = PredictionService(config.prediction, extractor, registry)
    lifecycle = ModelLifecycleManager(registry, config.prediction)
    return service, lifecycle


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', 'unknown')


def _error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    payload = ErrorResponse(error=ErrorDetail(
        error_code=code,
        error_message=message,
        timestamp=_now(),
        request_id=_request_id(request),
    ))
    return JSONResponse(status_code=status_code, content=payload.model_dump(mode='json'))


def create_app(
    config: Optional[InferenceConfig] = None,
    service: Optional[PredictionService] = None,
    lifecycle: Optional[ModelLifecycleManager] = None,
) -> FastAPI:
    """Build the API. Components not passed in are created at startup from config."""
    config = config or InferenceConfig.from_env()
    configure_logging(config.logging)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Navigation Prediction Service", service=config.logging.service_name,
                    environment=config.logging.environment, log_level=config.logging.level)
        if app.state.service is None:
            app.state.service, built_lifecycle = build_components(config)
            if app.state.lifecycle is None:
                app.state.lifecycle = built_lifecycle

        try:
            yield
        finally:
            logger.info("Shutting down prediction service")
            app.state.service.extractor.close()
            logger.info("Service shutdown completed")

    app = FastAPI(
        debug=config.debug,
        title=config.api.title,
        description=config.api.description,
        version=config.api.version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.config = config
    app.state.service = service
    app.state.lifecycle = lifecycle

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        """Request middleware for logging, timing, and metrics."""
        start_time = time.perf_counter()
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        ACTIVE_REQUESTS.inc()
        path = request.url.path
        status_code = 500
        response = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            ERROR_COUNT.labels(error_type="unhandled", endpoint=path).inc()
            logger.exception("Request failed with exception", request_id=request_id, error=str(e))
            raise
        finally:
            ACTIVE_REQUESTS.dec()
            duration = time.perf_counter() - start_time
            REQUEST_COUNT.labels(method=request.method, endpoint=path, status=str(status_code)).inc()
            REQUEST_DURATION.labels(endpoint=path).observe(duration)

            logger.info("Request completed", request_id=request_id, path=path,
                        status_code=status_code, duration_ms=duration * 1000.0)

            if response is not None:
                response.headers["X-Request-ID"] = request_id
                response.headers["X-Process-Time"] = f"{duration:.6f}"

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        ERROR_COUNT.labels(error_type="validation", endpoint=request.url.path).inc()
        logger.warning("Request validation failed", request_id=_request_id(request), errors=str(exc.errors()))
        return _error_response(request, 422, "VALIDATION_ERROR", f"Request validation failed: {exc.errors()}")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        ERROR_COUNT.labels(error_type="http", endpoint=request.url.path).inc()
        return _error_response(request, exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))

    # === Health and Monitoring Endpoints ===

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        """Service health: degraded while serving fallback or when the store is unreachable."""
        service: PredictionService = app.state.service
        model = service.registry.active()
        store_healthy = service.extractor.store.health_check()

        return HealthResponse(
            status="healthy" if model is not None and store_healthy else "degraded",
            timestamp=_now(),
            model_loaded=model is not None,
            model_version=model.version if model else None,
            prediction_enabled=service.config.enabled,
            cache=service.cache_stats(),
            version=config.api.version,
        )

    @app.get("/metrics")
    def metrics():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # === Prediction Endpoints ===

    @app.post("/predict", response_model=PredictionResponse)
    def predict(request: PredictionRequest):
        """Ranked next-page predictions for a session on a page."""
        return app.state.service.predict(request)

    @app.post("/predict/batch", response_model=BatchPredictionResponse)
    def predict_batch(request: BatchPredictionRequest):
        """Predictions for many sessions, served in paced chunks."""
        responses = app.state.service.predict_batch(request.requests)
        return BatchPredictionResponse(responses=responses, total=len(responses))

    @app.get("/recommendations/{session_id}", response_model=List[NavigationRecommendation])
    def recommendations(session_id: str,
                        current_page: str = "",
                        user_id: Optional[str] = None):
        """Dashboard recommendations for the session's current page."""
        return app.state.service.get_realtime_recommendations(session_id, current_page, user_id)

    # === Model Endpoints ===

    def _model_info() -> ModelInfoResponse:
        service: PredictionService = app.state.service
        lifecycle: Optional[ModelLifecycleManager] = app.state.lifecycle
        return ModelInfoResponse(
            active_version=service.registry.active_version,
            metrics=service.get_model_metrics(),
            needs_retraining=lifecycle.needs_retraining() if lifecycle else None,
            versions=service.registry.list_versions(),
        )

    @app.get("/model", response_model=ModelInfoResponse)
    def model_info():
        """Active model metrics and registry versions."""
        return _model_info()

    @app.post("/model/rollback", response_model=ModelInfoResponse)
    def rollback():
        """Reactivate the previously active model version."""
        lifecycle: Optional[ModelLifecycleManager] = app.state.lifecycle
        if lifecycle is None:
            raise HTTPException(status_code=503, detail="Model lifecycle not initialized")
        restored = lifecycle.rollback()
        if restored is None:
            raise HTTPException(status_code=409, detail="No previous model version to roll back to")
        app.state.service.cache.clear()
        logger.info("Rolled back model", model_version=restored.version)
        return _model_info()

    @app.get("/")
    def root():
        """Root endpoint with service information."""
        return {
            "service": config.api.title,
            "version": config.api.version,
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "docs": "/docs",
                "predict": "/predict",
                "batch_predict": "/predict/batch",
                "recommendations": "/recommendations/{session_id}",
                "model": "/model",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    api_config = app.state.config.api
    uvicorn.run("inference.app:app", host=api_config.host, port=api_config.port, workers=api_config.workers)
