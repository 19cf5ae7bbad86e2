#!/usr/bin/env python3
"""
Navigation feature definitions.

This module handles:
- The navigation feature record produced by feature extraction
- The fixed feature order shared by training and inference
- Categorical encoding of device, browser, page category and traffic source
"""

from typing import List, Optional

from pydantic import BaseModel, Field


FEATURE_NAMES: List[str] = [
    # Numerical features
    "time_on_page",
    "scroll_depth",
    "clicks_on_page",
    "session_duration",
    "pages_visited_in_session",
    "total_clicks_in_session",
    "bounce_rate",
    "hour_of_day",
    "day_of_week",
    "total_sessions",
    "average_session_duration",
    "form_interactions_count",
    "search_queries_count",
    "error_encounters",
    "video_engagements",
    "page_load_time",
    "page_depth",

    # Categorical features (encoded)
    "device_type",
    "browser",
    "page_category",
    "traffic_source",

    # Boolean features
    "is_returning_visitor",
    "is_weekend",
    "has_forms",
    "has_videos",
    "has_downloads",
]

FEATURE_COUNT = len(FEATURE_NAMES)

DEVICE_TYPE_CODES = {"desktop": 0, "tablet": 1, "mobile": 2}
BROWSER_CODES = {"chrome": 0, "firefox": 1, "safari": 2, "edge": 3}
PAGE_CATEGORY_CODES = {
    "analytics": 0,
    "reporting": 1,
    "user_management": 2,
    "configuration": 3,
    "support": 4,
    "general": 5,
}
TRAFFIC_SOURCE_CODES = {"direct": 0, "search": 1, "social": 2, "referral": 3}

UNKNOWN_BROWSER_CODE = 4


class NavigationFeatures(BaseModel):
    """Navigation context of a single page view."""

    # User context
    session_id: str
    user_id: Optional[str] = None
    device_type: str = "desktop"
    browser: str = "unknown"
    is_returning_visitor: bool = False

    # Current state
    current_page: str
    time_on_page: float = 0.0
    scroll_depth: float = 0.0
    clicks_on_page: int = 0

    # Session context
    session_duration: float = 0.0
    pages_visited_in_session: int = 0
    total_clicks_in_session: int = 0
    bounce_rate: float = 1.0

    # Temporal features
    hour_of_day: int = Field(default=0, ge=0, le=23)
    day_of_week: int = Field(default=0, ge=0, le=6, description="Sunday = 0")
    is_weekend: bool = False

    # Historical behavior
    total_sessions: int = 1
    average_session_duration: float = 0.0
    most_visited_pages: List[str] = Field(default_factory=list)
    preferred_device_type: str = "desktop"

    # Interaction patterns
    form_interactions_count: int = 0
    search_queries_count: int = 0
    error_encounters: int = 0
    video_engagements: int = 0

    # Page-specific features
    page_load_time: float = 0.0
    page_category: str = "general"
    page_depth: int = 0
    has_forms: bool = False
    has_videos: bool = False
    has_downloads: bool = False

    # UTM and referral context
    traffic_source: str = "direct"
    utm_campaign: Optional[str] = None
    utm_medium: Optional[str] = None
    referrer_domain: Optional[str] = None

    def to_vector(self) -> List[float]:
        """Encode the record as a vector in FEATURE_NAMES order."""
        return features_to_vector(self)


def encode_device_type(device_type: Optional[str]) -> int:
    return DEVICE_TYPE_CODES.get((device_type or "").lower(), 0)


def encode_browser(browser: Optional[str]) -> int:
    return BROWSER_CODES.get((browser or "").lower(), UNKNOWN_BROWSER_CODE)


def encode_page_category(category: Optional[str]) -> int:
    return PAGE_CATEGORY_CODES.get(category or "", PAGE_CATEGORY_CODES["general"])


def encode_traffic_source(source: Optional[str]) -> int:
    return TRAFFIC_SOURCE_CODES.get(source or "", 0)


def features_to_vector(features: NavigationFeatures) -> List[float]:
    """Convert a feature record into the fixed-order numeric vector."""
    vector = [
        float(features.time_on_page),
        float(features.scroll_depth),
        float(features.clicks_on_page),
        float(features.session_duration),
        float(features.pages_visited_in_session),
        float(features.total_clicks_in_session),
        float(features.bounce_rate),
        float(features.hour_of_day),
        float(features.day_of_week),
        float(features.total_sessions),
        float(features.average_session_duration),
        float(features.form_interactions_count),
        float(features.search_queries_count),
        float(features.error_encounters),
        float(features.video_engagements),
        float(features.page_load_time),
        float(features.page_depth),

        float(encode_device_type(features.device_type)),
        float(encode_browser(features.browser)),
        float(encode_page_category(features.page_category)),
        float(encode_traffic_source(features.traffic_source)),

        1.0 if features.is_returning_visitor else 0.0,
        1.0 if features.is_weekend else 0.0,
        1.0 if features.has_forms else 0.0,
        1.0 if features.has_videos else 0.0,
        1.0 if features.has_downloads else 0.0,
    ]

    # Keep this in lockstep with FEATURE_NAMES
    assert len(vector) == FEATURE_COUNT
    return vector
