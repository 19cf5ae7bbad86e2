#!/usr/bin/env python3
"""
Training dataset creation from historical sessions.

This module handles:
- Turning consecutive page views into labeled next-page samples
- Session outcome, engagement and satisfaction labels
- Session filters and seeded sampling
- Conversion to training arrays and a tabular view for statistics
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from inference.features import build_features, session_bounce_rate
from inference.schemas import SessionRecord, UserHistory
from inference.stores import TelemetryStore
from ml.exceptions import DataUnavailableError
from ml.features import FEATURE_NAMES, NavigationFeatures

logger = logging.getLogger(__name__)

BOUNCE_THRESHOLD = 0.8


@dataclass
class TrainingSample:
    """One observed transition from a page to the next page."""
    features: NavigationFeatures
    target: str
    session_outcome: str
    engagement_score: float
    time_to_next_action: float
    user_satisfaction: int
    timestamp: datetime


@dataclass
class DateRange:
    """Inclusive range of session start times."""
    start: datetime
    end: datetime


@dataclass
class SampleFilters:
    min_session_duration: Optional[float] = None
    exclude_bounce_sessions: bool = False
    sample_size: Optional[int] = None


def session_outcome(session: SessionRecord) -> str:
    if session_bounce_rate(session) > BOUNCE_THRESHOLD:
        return "bounce"
    if session.page_views >= 5 and session.duration > 300:
        return "conversion"
    if session.page_views > 1:
        return "continued"
    return "exit"


def engagement_score(session: SessionRecord) -> float:
    score = 0.0
    score += min(session.duration / 60, 10)
    score += min(session.page_views, 5)
    score += min(session.clicks / 10, 3)
    score += session.form_interactions * 2
    return min(score, 20.0)


def user_satisfaction(session: SessionRecord) -> int:
    if session_bounce_rate(session) > BOUNCE_THRESHOLD:
        return 1
    if session.duration > 300 and session.page_views >= 3:
        return 5
    if session.duration > 120:
        return 4
    if session.duration > 60:
        return 3
    return 2


class TrainingDataBuilder:
    """Builds labeled next-page samples from a telemetry store."""

    def __init__(self, store: TelemetryStore, seed: int = 42):
        self.store = store
        self.seed = seed

    def _history(self, user_id: Optional[str], cache: Dict[str, Optional[UserHistory]]) -> Optional[UserHistory]:
        if not user_id:
            return None
        if user_id not in cache:
            try:
                cache[user_id] = self.store.get_user_history(user_id)
            except DataUnavailableError as e:
                logger.warning(f"User history unavailable for {user_id}: {e.message}")
                cache[user_id] = None
        return cache[user_id]

    @staticmethod
    def _keep_session(session: SessionRecord, filters: SampleFilters) -> bool:
        if not session.has_ended:
            return False
        if filters.min_session_duration is not None and session.duration < filters.min_session_duration:
            return False
        if filters.exclude_bounce_sessions and session_bounce_rate(session) > BOUNCE_THRESHOLD:
            return False
        return True

    def _session_samples(self, session: SessionRecord, history: Optional[UserHistory]) -> List[TrainingSample]:
        events = sorted(session.events, key=lambda e: e.timestamp)
        page_views = [e for e in events if e.event_type == "page_view"]

        samples = []
        for current, following in zip(page_views, page_views[1:]):
            try:
                page_events = [
                    e for e in events
                    if e.page_url == current.page_url and current.timestamp <= e.timestamp <= following.timestamp
                ]
                features = build_features(
                    session, page_events, history, current.page_url, current.timestamp,
                    session_id=session.session_id, user_id=session.user_id,
                )
                samples.append(TrainingSample(
                    features=features,
                    target=following.page_url,
                    session_outcome=session_outcome(session),
                    engagement_score=engagement_score(session),
                    time_to_next_action=(following.timestamp - current.timestamp).total_seconds(),
                    user_satisfaction=user_satisfaction(session),
                    timestamp=current.timestamp,
                ))
            except ValueError as e:
                logger.warning(f"Skipping sample {session.session_id}@{current.page_url}: {e}")
        return samples

    def build(self, date_range: DateRange, filters: Optional[SampleFilters] = None) -> List[TrainingSample]:
        """Labeled samples from ended sessions starting within date_range."""
        sessions = self.store.list_sessions(date_range.start, date_range.end)
        logger.info(f"Retrieved {len(sessions)} sessions between {date_range.start} and {date_range.end}")
        return self._build_from(sessions, filters or SampleFilters())

    def build_ended(self, after: datetime, until: datetime,
                    filters: Optional[SampleFilters] = None) -> List[TrainingSample]:
        """Labeled samples from sessions that ended within (after, until]."""
        sessions = self.store.list_ended_sessions(after, until)
        logger.info(f"Retrieved {len(sessions)} sessions ended after {after} up to {until}")
        return self._build_from(sessions, filters or SampleFilters())

    def _build_from(self, sessions: List[SessionRecord], filters: SampleFilters) -> List[TrainingSample]:
        histories: Dict[str, Optional[UserHistory]] = {}
        samples: List[TrainingSample] = []
        kept = 0
        for session in sessions:
            if not self._keep_session(session, filters):
                continue
            kept += 1
            samples.extend(self._session_samples(session, self._history(session.user_id, histories)))

        samples.sort(key=lambda s: s.timestamp)

        if filters.sample_size is not None and len(samples) > filters.sample_size:
            rng = np.random.default_rng(self.seed)
            chosen = np.sort(rng.choice(len(samples), size=filters.sample_size, replace=False))
            samples = [samples[i] for i in chosen]

        logger.info(f"Created {len(samples)} training samples from {kept} sessions")
        return samples


def to_training_arrays(samples: List[TrainingSample]) -> Tuple[List[List[float]], List[str]]:
    """Feature vectors in FEATURE_NAMES order and their targets."""
    return [s.features.to_vector() for s in samples], [s.target for s in samples]


def samples_to_dataframe(samples: List[TrainingSample]) -> pd.DataFrame:
    """Tabular view of samples: one column per feature plus the labels."""
    features, targets = to_training_arrays(samples)
    df = pd.DataFrame(features, columns=FEATURE_NAMES)
    df["target"] = targets
    df["session_outcome"] = [s.session_outcome for s in samples]
    df["engagement_score"] = [s.engagement_score for s in samples]
    df["time_to_next_action"] = [s.time_to_next_action for s in samples]
    df["user_satisfaction"] = [s.user_satisfaction for s in samples]
    df["timestamp"] = pd.to_datetime([s.timestamp for s in samples], utc=True)
    return df


def dataset_statistics(samples: List[TrainingSample]) -> Dict[str, float]:
    """Numeric summary of a sample set for logging and tracking."""
    if not samples:
        return {"samples": 0, "distinct_targets": 0}

    df = samples_to_dataframe(samples)
    outcome_share = df["session_outcome"].value_counts(normalize=True)
    stats = {
        "samples": len(df),
        "distinct_targets": int(df["target"].nunique()),
        "top_target_share": float(df["target"].value_counts(normalize=True).iloc[0]),
        "mean_engagement_score": float(df["engagement_score"].mean()),
        "mean_time_to_next_action": float(df["time_to_next_action"].mean()),
    }
    for outcome, share in outcome_share.items():
        stats[f"outcome_{outcome}_rate"] = float(share)
    return stats
