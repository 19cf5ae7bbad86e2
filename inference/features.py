#!/usr/bin/env python3
"""
Navigation Feature Extraction

This module handles:
- Time-bounded retrieval of session, event and user-history telemetry
- Derivation of page, session and historical features
- Conservative defaults whenever telemetry is missing or unavailable
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from prometheus_client import Counter

from inference.schemas import BehaviorEvent, SessionRecord, UserHistory
from inference.stores import TelemetryStore
from ml.exceptions import DataUnavailableError
from ml.features import NavigationFeatures

logger = logging.getLogger(__name__)

# Prometheus metrics for telemetry lookups
STORE_LOOKUP_FAILURES = Counter(
    'telemetry_lookup_failures_total',
    'Telemetry lookups that failed or timed out',
    ['source']
)

PAGE_CATEGORY_RULES = [
    (("dashboard",), "analytics"),
    (("report",), "reporting"),
    (("user", "profile"), "user_management"),
    (("setting",), "configuration"),
    (("help", "support"), "support"),
]

BOUNCE_MIN_DURATION_SECONDS = 30


# === Derivation helpers ===

def infer_page_metadata(page_url: str) -> Dict[str, Any]:
    """Infer category and content flags from the URL."""
    category = "general"
    for needles, name in PAGE_CATEGORY_RULES:
        if any(needle in page_url for needle in needles):
            category = name
            break

    return {
        "category": category,
        "has_forms": any(word in page_url for word in ("form", "contact", "signup")),
        "has_videos": any(word in page_url for word in ("video", "tutorial")),
        "has_downloads": any(word in page_url for word in ("download", "report")),
    }


def page_depth(page_url: str) -> int:
    """Slashes in the absolute URL minus the two of the scheme separator."""
    if "://" not in page_url:
        page_url = "https://localhost" + (page_url if page_url.startswith("/") else "/" + page_url)
    return max(page_url.count("/") - 2, 0)


def session_bounce_rate(session: Optional[SessionRecord]) -> float:
    if session is None:
        return 1.0
    if session.page_views <= 1 or session.duration < BOUNCE_MIN_DURATION_SECONDS:
        return 1.0
    return 0.0


def extract_domain(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return urlparse(url).hostname


def page_analytics(events: List[BehaviorEvent]) -> Dict[str, Any]:
    """Aggregate the events of one page."""
    events = sorted(events, key=lambda e: e.timestamp)
    page_views = [e for e in events if e.event_type == "page_view"]

    time_on_page = 0.0
    if len(events) >= 2 and page_views:
        time_on_page = max((events[-1].timestamp - page_views[0].timestamp).total_seconds(), 0.0)

    scroll_depths = [e.scroll_depth or 0.0 for e in events if e.event_type == "scroll"]
    load_times = [e.page_load_time for e in page_views if e.page_load_time is not None]

    return {
        "time_on_page": time_on_page,
        "scroll_depth": max(scroll_depths) if scroll_depths else 0.0,
        "clicks_on_page": sum(1 for e in events if e.event_type == "click"),
        "form_interactions_count": sum(1 for e in events if "form" in e.event_type),
        "search_queries_count": sum(1 for e in events if e.event_type == "search"),
        "error_encounters": sum(1 for e in events if e.event_type == "error"),
        "video_engagements": sum(1 for e in events if "video" in e.event_type),
        "page_load_time": sum(load_times) / len(load_times) if load_times else 0.0,
    }


def temporal_context(moment: datetime) -> Dict[str, Any]:
    # Python weekday() is Monday=0; features use Sunday=0
    day_of_week = (moment.weekday() + 1) % 7
    return {
        "hour_of_day": moment.hour,
        "day_of_week": day_of_week,
        "is_weekend": day_of_week in (0, 6),
    }


def build_features(
    session: Optional[SessionRecord],
    page_events: List[BehaviorEvent],
    history: Optional[UserHistory],
    current_page: str,
    moment: datetime,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> NavigationFeatures:
    """Derive the feature record from already-loaded telemetry."""
    analytics = page_analytics(page_events)
    metadata = infer_page_metadata(current_page)

    device_type = session.device_type if session else "desktop"
    preferred_device = (history.preferred_device_type if history else None) or device_type or "desktop"
    traffic_source = "direct"
    if session is not None:
        traffic_source = session.utm_source or session.referrer or "direct"

    return NavigationFeatures(
        session_id=session_id or (session.session_id if session else ""),
        user_id=user_id or (session.user_id if session else None),
        device_type=device_type,
        browser=session.browser if session else "unknown",
        is_returning_visitor=session.is_returning_visitor if session else False,

        current_page=current_page,
        time_on_page=analytics["time_on_page"],
        scroll_depth=analytics["scroll_depth"],
        clicks_on_page=analytics["clicks_on_page"],

        session_duration=session.duration if session else 0.0,
        pages_visited_in_session=session.page_views if session else 0,
        total_clicks_in_session=session.clicks if session else 0,
        bounce_rate=session_bounce_rate(session),

        **temporal_context(moment),

        total_sessions=(history.session_count if history else 0) or 1,
        average_session_duration=history.average_session_duration if history else 0.0,
        most_visited_pages=(history.most_visited_pages if history else None) or [current_page],
        preferred_device_type=preferred_device,

        form_interactions_count=analytics["form_interactions_count"],
        search_queries_count=analytics["search_queries_count"],
        error_encounters=analytics["error_encounters"],
        video_engagements=analytics["video_engagements"],

        page_load_time=analytics["page_load_time"],
        page_category=metadata["category"],
        page_depth=page_depth(current_page),
        has_forms=metadata["has_forms"],
        has_videos=metadata["has_videos"],
        has_downloads=metadata["has_downloads"],

        traffic_source=traffic_source,
        utm_campaign=session.utm_campaign if session else None,
        utm_medium=session.utm_medium if session else None,
        referrer_domain=extract_domain(session.referrer) if session else None,
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FeatureExtractor:
    """Builds navigation features from a telemetry store, never failing."""

    def __init__(
        self,
        store: TelemetryStore,
        clock: Optional[Callable[[], datetime]] = None,
        lookup_timeout: float = 0.5,
        max_workers: int = 8,
    ):
        self.store = store
        self.clock = clock or utc_now
        self.lookup_timeout = lookup_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="telemetry")

    def _lookup(self, source: str, key: str, fn: Callable[[], Any]) -> Any:
        """Run one store call within the lookup budget."""
        future = self._executor.submit(fn)
        try:
            return future.result(timeout=self.lookup_timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise DataUnavailableError(
                f"{source} lookup exceeded {self.lookup_timeout}s",
                source=source, key=key,
            ) from e
        except DataUnavailableError:
            raise
        except Exception as e:
            raise DataUnavailableError(f"{source} lookup failed: {e}", source=source, key=key) from e

    def _lookup_or_default(self, source: str, key: str, fn: Callable[[], Any], default: Any) -> Any:
        try:
            return self._lookup(source, key, fn)
        except DataUnavailableError as e:
            STORE_LOOKUP_FAILURES.labels(source=source).inc()
            logger.warning("Using defaults for %s=%s: %s", source, key, e.message)
            return default

    def extract(self, session_id: str, current_page: str, user_id: Optional[str] = None) -> NavigationFeatures:
        """Feature record for a session on a page, as of the clock's current instant."""
        moment = self.clock()

        session = self._lookup_or_default(
            "session", session_id, lambda: self.store.get_session(session_id), None
        )
        page_events = self._lookup_or_default(
            "events", session_id, lambda: self.store.get_page_events(session_id, current_page), []
        )
        history = None
        if user_id:
            history = self._lookup_or_default(
                "history", user_id, lambda: self.store.get_user_history(user_id), None
            )

        return build_features(
            session, page_events, history, current_page, moment,
            session_id=session_id, user_id=user_id,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        logger.info("Feature extractor closed")
