#!/usr/bin/env python3
"""
Navigation Session Generator

Generates realistic synthetic dashboard navigation sessions.
Features:
- Users with devices, browsers and returning-visitor behaviour
- Page-to-page transitions with learnable navigation patterns
- Per-page interaction events (scrolls, clicks, searches, forms, videos, errors)
- Per-user history aggregates derived from the generated sessions
"""

import json
import logging
import random
import sys
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import click
import numpy as np
from faker import Faker

from inference.schemas import BehaviorEvent, SessionRecord, UserHistory

logger = logging.getLogger(__name__)

# Page transitions and their probabilities
PAGE_TRANSITIONS: Dict[str, Dict[str, float]] = {
    '/dashboard': {'/reports': 0.5, '/analytics': 0.3, '/users': 0.1, '/settings': 0.1},
    '/reports': {'/reports/download': 0.5, '/analytics': 0.3, '/dashboard': 0.2},
    '/reports/download': {'/dashboard': 0.7, '/reports': 0.3},
    '/analytics': {'/reports': 0.5, '/dashboard': 0.3, '/help/tutorial': 0.2},
    '/users': {'/users/profile': 0.6, '/settings': 0.4},
    '/users/profile': {'/settings': 0.6, '/dashboard': 0.4},
    '/settings': {'/dashboard': 0.6, '/help/contact-form': 0.4},
    '/help/tutorial': {'/analytics': 0.6, '/dashboard': 0.4},
    '/help/contact-form': {'/dashboard': 1.0},
}

ENTRY_PAGES = {'/dashboard': 0.7, '/analytics': 0.2, '/reports': 0.1}

# Base dwell times by page (seconds)
BASE_DWELL = {
    '/dashboard': 40,
    '/reports': 90,
    '/reports/download': 20,
    '/analytics': 120,
    '/users': 45,
    '/users/profile': 60,
    '/settings': 50,
    '/help/tutorial': 180,
    '/help/contact-form': 75,
}

DEVICES = {'desktop': 0.6, 'mobile': 0.3, 'tablet': 0.1}
BROWSERS = {'Chrome': 0.55, 'Firefox': 0.15, 'Safari': 0.2, 'Edge': 0.1}
TRAFFIC_SOURCES = {None: 0.5, 'search': 0.25, 'social': 0.15, 'referral': 0.1}


def _weighted(rng: random.Random, choices: Dict) -> object:
    return rng.choices(list(choices), weights=list(choices.values()))[0]


class NavigationSessionGenerator:
    """Generates synthetic navigation sessions with their events."""

    def __init__(self, n_users: int = 50, seed: int = 43, start_time: Optional[datetime] = None):
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)

        self.start_time = start_time or datetime.now(timezone.utc) - timedelta(days=7)
        self.users = [self._create_user() for _ in range(n_users)]
        self._session_counter = 0

        logger.info(f"Initialized NavigationSessionGenerator with {n_users} users")

    def _create_user(self) -> Dict[str, object]:
        device = _weighted(self.rng, DEVICES)
        return {
            'user_id': f"user_{self.fake.uuid4()[:8]}",
            'device_type': device,
            'browser': 'Safari' if device == 'tablet' else _weighted(self.rng, BROWSERS),
            'sessions': 0,
        }

    def _next_page(self, current_page: str) -> str:
        transitions = PAGE_TRANSITIONS.get(current_page)
        if not transitions:
            return '/dashboard'
        return _weighted(self.rng, transitions)

    def _dwell_seconds(self, page: str) -> float:
        """Time spent on a page (log-normal around the page's base time)."""
        base = BASE_DWELL.get(page, 30)
        return float(max(2.0, min(600.0, base * self.np_rng.lognormal(0, 0.4))))

    def _page_events(self, session_id: str, user_id: str, page: str,
                     entered: datetime, dwell: float) -> List[BehaviorEvent]:
        """page_view followed by interactions spread over the dwell time."""
        events = [BehaviorEvent(
            session_id=session_id,
            user_id=user_id,
            page_url=page,
            event_type='page_view',
            timestamp=entered,
            page_load_time=round(self.rng.uniform(0.2, 2.5), 3),
        )]

        interactions = ['scroll', 'click', 'click']
        if 'report' in page or 'analytics' in page:
            interactions.append('search')
        if 'form' in page or 'settings' in page:
            interactions.append('form_submit')
        if 'tutorial' in page:
            interactions.append('video_play')
        if self.rng.random() < 0.05:
            interactions.append('error')

        n_interactions = self.rng.randint(0, len(interactions))
        offsets = sorted(self.rng.uniform(0.5, dwell) for _ in range(n_interactions))
        for offset, event_type in zip(offsets, self.rng.sample(interactions, n_interactions)):
            events.append(BehaviorEvent(
                session_id=session_id,
                user_id=user_id,
                page_url=page,
                event_type=event_type,
                timestamp=entered + timedelta(seconds=offset),
                scroll_depth=round(self.rng.uniform(0.1, 1.0), 2) if event_type == 'scroll' else None,
            ))
        return events

    def generate_session(self, started: Optional[datetime] = None) -> SessionRecord:
        """Generate one ended session with its events."""
        user = self.rng.choice(self.users)
        self._session_counter += 1
        session_id = f"sess_{self._session_counter:06d}_{self.fake.uuid4()[:6]}"
        started = started or self.start_time + timedelta(minutes=self._session_counter * 7)

        source = _weighted(self.rng, TRAFFIC_SOURCES)
        referrer = None
        if source in ('social', 'referral'):
            referrer = f"https://{self.fake.domain_name()}/"

        page = _weighted(self.rng, ENTRY_PAGES)
        n_pages = self.rng.choices([1, 2, 3, 4, 5, 6, 7], weights=[1, 2, 3, 3, 2, 2, 1])[0]

        events: List[BehaviorEvent] = []
        moment = started
        for _ in range(n_pages):
            dwell = self._dwell_seconds(page)
            events.extend(self._page_events(session_id, user['user_id'], page, moment, dwell))
            moment += timedelta(seconds=dwell)
            page = self._next_page(page)

        user['sessions'] += 1
        duration = (moment - started).total_seconds()
        return SessionRecord(
            session_id=session_id,
            user_id=user['user_id'],
            start_time=started,
            end_time=moment,
            device_type=user['device_type'],
            browser=user['browser'],
            is_returning_visitor=user['sessions'] > 1,
            duration=round(duration, 3),
            page_views=n_pages,
            clicks=sum(1 for e in events if e.event_type == 'click'),
            form_interactions=sum(1 for e in events if 'form' in e.event_type),
            utm_source=source,
            utm_campaign=f"{self.fake.word()}_campaign" if source == 'social' else None,
            utm_medium='cpc' if source == 'search' else None,
            referrer=referrer,
            events=events,
        )

    def generate(self, n_sessions: int) -> Tuple[List[SessionRecord], List[UserHistory]]:
        """Generate sessions and the user histories they imply."""
        sessions = [self.generate_session() for _ in range(n_sessions)]
        return sessions, build_user_histories(sessions)


def build_user_histories(sessions: List[SessionRecord]) -> List[UserHistory]:
    """Aggregate per-user session counts, durations and favourite pages."""
    by_user: Dict[str, List[SessionRecord]] = {}
    for session in sessions:
        if session.user_id:
            by_user.setdefault(session.user_id, []).append(session)

    histories = []
    for user_id, user_sessions in by_user.items():
        pages = Counter(e.page_url for s in user_sessions for e in s.events if e.event_type == 'page_view')
        devices = Counter(s.device_type for s in user_sessions)
        histories.append(UserHistory(
            user_id=user_id,
            session_count=len(user_sessions),
            average_session_duration=sum(s.duration for s in user_sessions) / len(user_sessions),
            most_visited_pages=[page for page, _ in pages.most_common(5)],
            preferred_device_type=devices.most_common(1)[0][0],
        ))
    return histories


def populate_store(store, n_sessions: int, seed: int = 43,
                   start_time: Optional[datetime] = None) -> List[SessionRecord]:
    """Fill a telemetry store that supports add_session/add_user_history."""
    generator = NavigationSessionGenerator(seed=seed, start_time=start_time)
    sessions, histories = generator.generate(n_sessions)
    for session in sessions:
        store.add_session(session)
    for history in histories:
        store.add_user_history(history)
    logger.info(f"Populated store with {len(sessions)} sessions for {len(histories)} users")
    return sessions


@click.command()
@click.option('--sessions', '-n', default=200, help='Number of sessions to generate')
@click.option('--users', default=50, help='Number of distinct users')
@click.option('--seed', default=43, help='Random seed')
@click.option('--redis-host', default=None, help='Write sessions to this Redis host instead of stdout')
@click.option('--redis-port', default=6379, help='Redis port')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(sessions, users, seed, redis_host, redis_port, verbose):
    """Synthetic navigation session generator."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)

    try:
        if redis_host:
            from inference.config import StoreConfig
            from inference.stores import RedisTelemetryStore

            store = RedisTelemetryStore(StoreConfig(backend='redis', host=redis_host, port=redis_port))
            populate_store(store, sessions, seed=seed)
            return

        generator = NavigationSessionGenerator(n_users=users, seed=seed)
        generated, _ = generator.generate(sessions)
        for session in generated:
            click.echo(json.dumps(session.model_dump(mode='json')))

    except Exception as e:
        logger.error(f"Generator failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
