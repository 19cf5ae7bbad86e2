#!/usr/bin/env python3
"""
Telemetry Records and API Schemas

Pydantic models for the telemetry read from the session/event stores and for
the type-safe prediction API contracts.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# === Telemetry Records ===

class BehaviorEvent(BaseModel):
    """A single tracked interaction within a session."""

    session_id: str = Field(description="Owning session")
    page_url: str = Field(description="Page the event happened on")
    event_type: str = Field(description="page_view, click, scroll, search, error, form_submit, video_play, ...")
    timestamp: datetime = Field(description="Event time")
    user_id: Optional[str] = Field(default=None, description="User identifier")
    scroll_depth: Optional[float] = Field(default=None, ge=0.0, description="Scroll depth for scroll events")
    page_load_time: Optional[float] = Field(default=None, ge=0.0, description="Load time for page_view events")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form event payload")


class SessionRecord(BaseModel):
    """Aggregated session telemetry. Durations are in seconds."""

    session_id: str
    user_id: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = Field(default=None, description="None while the session is still open")

    device_type: str = "desktop"
    browser: str = "unknown"
    is_returning_visitor: bool = False

    duration: float = Field(default=0.0, ge=0.0, description="Session duration in seconds")
    page_views: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    form_interactions: int = Field(default=0, ge=0)

    utm_source: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_medium: Optional[str] = None
    referrer: Optional[str] = None

    events: List[BehaviorEvent] = Field(default_factory=list, description="Events, when loaded with the session")

    @property
    def has_ended(self) -> bool:
        return self.end_time is not None


class UserHistory(BaseModel):
    """Per-user aggregates across past sessions."""

    user_id: str
    session_count: int = Field(default=1, ge=0)
    average_session_duration: float = Field(default=0.0, ge=0.0, description="Seconds")
    most_visited_pages: List[str] = Field(default_factory=list)
    preferred_device_type: Optional[str] = None


# === Prediction API ===

class RecommendationType(str, Enum):
    """Kinds of recommendation surfaced to the dashboard."""
    NEXT_PAGE = "next_page"
    CONTENT_SUGGESTION = "content_suggestion"


class PredictionOptions(BaseModel):
    """Per-request prediction knobs."""

    num_predictions: int = Field(default=3, ge=0, le=50, description="Max predictions returned")
    include_reasoning: bool = Field(default=True, description="Attach human-readable reasoning")
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Drop predictions below this")


class PredictionRequest(BaseModel):
    """Next-page prediction request."""

    session_id: str = Field(..., max_length=200, description="Session identifier; blank is served the fallback")
    current_page: str = Field(..., description="Page the user is on; blank is served the fallback")
    user_id: Optional[str] = Field(default=None, description="User identifier")
    options: PredictionOptions = Field(default_factory=PredictionOptions)
    context: Dict[str, Any] = Field(default_factory=dict, description="Additional request context")

    model_config = ConfigDict(extra="ignore")


class AlternativePrediction(BaseModel):
    page: str
    probability: float = Field(ge=0.0, le=1.0)


class NavigationPrediction(BaseModel):
    """One ranked next-page candidate."""

    page: str = Field(description="Predicted page URL")
    probability: float = Field(ge=0.0, le=1.0, description="Model probability")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence score")
    reasoning: List[str] = Field(default_factory=list)
    alternative_predictions: List[AlternativePrediction] = Field(default_factory=list)
    feature_importance: Dict[str, float] = Field(default_factory=dict)


class NavigationRecommendation(BaseModel):
    """Dashboard-facing recommendation derived from a prediction."""

    page_url: str
    title: str
    type: RecommendationType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    expected_engagement: float = Field(ge=0.0)
    personalization_factors: List[str] = Field(default_factory=list)
    display_priority: int = Field(ge=1)


class PredictionResponse(BaseModel):
    """Next-page prediction response."""

    predictions: List[NavigationPrediction] = Field(default_factory=list)
    recommendations: List[NavigationRecommendation] = Field(default_factory=list)
    user_segment: str = Field(description="power_users, casual_browsers, regular_users or unknown")
    model_version: str = Field(description="Model version used, or 'fallback'")
    prediction_id: str = Field(description="Unique prediction identifier")
    processing_time: float = Field(ge=0.0, description="Processing time in milliseconds")
    fallback_used: bool = Field(default=False)


class BatchPredictionRequest(BaseModel):
    requests: List[PredictionRequest] = Field(..., max_length=500)


class BatchPredictionResponse(BaseModel):
    responses: List[PredictionResponse]
    total: int


class ModelInfoResponse(BaseModel):
    """Active model and registry summary."""

    active_version: Optional[str]
    metrics: Dict[str, Any]
    needs_retraining: Optional[bool] = None
    versions: List[Dict[str, Any]] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Service health check response."""

    status: str = Field(description="healthy or degraded")
    timestamp: datetime
    model_loaded: bool
    model_version: Optional[str] = None
    prediction_enabled: bool
    cache: Dict[str, Any] = Field(default_factory=dict)
    version: str


class ErrorDetail(BaseModel):
    """Error detail information."""

    error_code: str = Field(description="Error code")
    error_message: str = Field(description="Human-readable error message")
    timestamp: datetime
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail
    success: bool = False
