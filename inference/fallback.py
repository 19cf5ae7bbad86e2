#!/usr/bin/env python3
"""
Deterministic fallback predictions used when the model cannot serve.
"""

import random
import time
from typing import List, Optional

from inference.schemas import (
    NavigationPrediction,
    NavigationRecommendation,
    PredictionRequest,
    PredictionResponse,
    RecommendationType,
)

FALLBACK_VERSION = "fallback"
BASE_CONFIDENCE = 0.3
CONFIDENCE_STEP = 0.1
MIN_CONFIDENCE = 0.01

PAGE_TITLES = {
    "/dashboard": "Dashboard",
    "/reports": "Reports",
    "/analytics": "Analytics",
    "/users": "User Management",
    "/settings": "Settings",
}


def page_title(page_url: str) -> str:
    return PAGE_TITLES.get(page_url, "Page")


class FallbackPolicy:
    """Static backup ranking of popular pages."""

    def __init__(self, strategy: str = "popular_pages", popular_pages: Optional[List[str]] = None):
        self.strategy = strategy
        self.popular_pages = list(popular_pages or ["/dashboard", "/reports", "/analytics"])

    def confidences(self) -> List[float]:
        """Strictly decreasing: 0.3, 0.2, 0.1, then halving towards zero."""
        values: List[float] = []
        for i in range(len(self.popular_pages)):
            value = round(BASE_CONFIDENCE - i * CONFIDENCE_STEP, 10)
            if value < MIN_CONFIDENCE:
                value = (values[-1] if values else MIN_CONFIDENCE) / 2
            values.append(value)
        return values

    def predictions(self) -> List[NavigationPrediction]:
        if self.strategy == "none":
            return []
        return [
            NavigationPrediction(
                page=page,
                probability=confidence,
                confidence=confidence,
                reasoning=["Fallback recommendation based on popular pages"],
            )
            for page, confidence in zip(self.popular_pages, self.confidences())
        ]

    def respond(self, request: Optional[PredictionRequest] = None, started: Optional[float] = None) -> PredictionResponse:
        """Build a fallback response; never raises."""
        predictions = self.predictions()
        if request is not None:
            predictions = predictions[:request.options.num_predictions]

        recommendations = [
            NavigationRecommendation(
                page_url=p.page,
                title=page_title(p.page),
                type=RecommendationType.CONTENT_SUGGESTION,
                confidence=p.confidence,
                reasoning="Popular page recommendation",
                expected_engagement=p.confidence * 10,
                personalization_factors=[],
                display_priority=i + 1,
            )
            for i, p in enumerate(predictions)
        ]

        now_ms = int(time.time() * 1000)
        elapsed_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
        return PredictionResponse(
            predictions=predictions,
            recommendations=recommendations,
            user_segment="unknown",
            model_version=FALLBACK_VERSION,
            prediction_id=f"fallback_{now_ms}_{random.randrange(16 ** 6):06x}",
            processing_time=max(elapsed_ms, 0.0),
            fallback_used=True,
        )
