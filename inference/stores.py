#!/usr/bin/env python3
"""
Telemetry Store Adapters

This module handles:
- The read interface over session, event and user-history telemetry
- An in-memory adapter for tests, local runs and synthetic data
- A Redis adapter storing JSON documents under nav:* keys
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

import redis
from redis.exceptions import RedisError

from inference.config import StoreConfig
from inference.schemas import BehaviorEvent, SessionRecord, UserHistory
from ml.exceptions import DataUnavailableError

logger = logging.getLogger(__name__)


class TelemetryStore(ABC):
    """Read-only access to behavioral telemetry."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Session aggregate without events; None when unknown."""

    @abstractmethod
    def get_page_events(self, session_id: str, page_url: str) -> List[BehaviorEvent]:
        """Events of one session on one page, oldest first."""

    @abstractmethod
    def get_user_history(self, user_id: str) -> Optional[UserHistory]:
        """Per-user aggregates; None when unknown."""

    @abstractmethod
    def list_sessions(self, start: datetime, end: datetime) -> List[SessionRecord]:
        """Sessions starting within [start, end], with their events loaded."""

    @abstractmethod
    def list_ended_sessions(self, after: datetime, until: datetime) -> List[SessionRecord]:
        """Sessions ending within (after, until], with their events loaded."""

    def health_check(self) -> bool:
        return True


def _sorted_events(events: List[BehaviorEvent]) -> List[BehaviorEvent]:
    return sorted(events, key=lambda e: e.timestamp)


class InMemoryTelemetryStore(TelemetryStore):
    """Dictionary-backed telemetry store."""

    def __init__(self):
        self._sessions: Dict[str, SessionRecord] = {}
        self._events: Dict[str, List[BehaviorEvent]] = {}
        self._histories: Dict[str, UserHistory] = {}
        self._lock = threading.Lock()

    def add_session(self, session: SessionRecord, events: Optional[List[BehaviorEvent]] = None) -> None:
        with self._lock:
            events = list(events if events is not None else session.events)
            self._sessions[session.session_id] = session.model_copy(update={"events": []})
            self._events[session.session_id] = _sorted_events(events)

    def add_user_history(self, history: UserHistory) -> None:
        with self._lock:
            self._histories[history.user_id] = history

    def get_session(self, session_id):
        with self._lock:
            return self._sessions.get(session_id)

    def get_page_events(self, session_id, page_url):
        with self._lock:
            return [e for e in self._events.get(session_id, []) if e.page_url == page_url]

    def get_user_history(self, user_id):
        with self._lock:
            return self._histories.get(user_id)

    def list_sessions(self, start, end):
        with self._lock:
            sessions = [
                session.model_copy(update={"events": list(self._events.get(session.session_id, []))})
                for session in self._sessions.values()
                if start <= session.start_time <= end
            ]
        return sorted(sessions, key=lambda s: s.start_time)

    def list_ended_sessions(self, after, until):
        with self._lock:
            sessions = [
                session.model_copy(update={"events": list(self._events.get(session.session_id, []))})
                for session in self._sessions.values()
                if session.end_time is not None and after < session.end_time <= until
            ]
        return sorted(sessions, key=lambda s: s.end_time)


class RedisTelemetryStore(TelemetryStore):
    """
    Redis-backed telemetry store.

    Layout:
        nav:session:<session_id>   JSON SessionRecord (without events)
        nav:events:<session_id>    list of JSON BehaviorEvent, append order
        nav:history:<user_id>      JSON UserHistory
        nav:sessions               sorted set of session ids scored by start time
        nav:ended                  sorted set of ended session ids scored by end time
    """

    def __init__(self, config: StoreConfig, client: Optional[redis.Redis] = None):
        self.config = config
        self.prefix = config.key_prefix
        if client is None:
            pool = redis.ConnectionPool(
                host=config.host,
                port=config.port,
                db=config.db,
                password=config.password,
                socket_connect_timeout=config.socket_connect_timeout,
                socket_timeout=config.socket_timeout,
                max_connections=config.max_connections,
                decode_responses=True,
            )
            client = redis.Redis(connection_pool=pool)
            logger.info("Using Redis telemetry store: host=%s, port=%d, db=%d", config.host, config.port, config.db)
        self.redis_client = client

    def _key(self, kind: str, identifier: str) -> str:
        return f"{self.prefix}:{kind}:{identifier}"

    @property
    def _index_key(self) -> str:
        return f"{self.prefix}:sessions"

    @property
    def _ended_key(self) -> str:
        return f"{self.prefix}:ended"

    def health_check(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except RedisError as e:
            logger.warning("Redis health check failed: %s", str(e))
            return False

    def add_session(self, session: SessionRecord, events: Optional[List[BehaviorEvent]] = None) -> None:
        events = list(events if events is not None else session.events)
        record = session.model_copy(update={"events": []})
        pipe = self.redis_client.pipeline()
        pipe.set(self._key("session", session.session_id), record.model_dump_json())
        pipe.delete(self._key("events", session.session_id))
        for event in _sorted_events(events):
            pipe.rpush(self._key("events", session.session_id), event.model_dump_json())
        pipe.zadd(self._index_key, {session.session_id: session.start_time.timestamp()})
        if session.end_time is not None:
            pipe.zadd(self._ended_key, {session.session_id: session.end_time.timestamp()})
        pipe.execute()

    def add_user_history(self, history: UserHistory) -> None:
        self.redis_client.set(self._key("history", history.user_id), history.model_dump_json())

    def _read(self, key: str, source: str) -> Optional[str]:
        try:
            return self.redis_client.get(key)
        except RedisError as e:
            raise DataUnavailableError(f"Redis error reading {key}: {e}", source=source, key=key) from e

    def _read_events(self, session_id: str) -> List[BehaviorEvent]:
        key = self._key("events", session_id)
        try:
            raw_events = self.redis_client.lrange(key, 0, -1)
        except RedisError as e:
            raise DataUnavailableError(f"Redis error reading {key}: {e}", source="events", key=key) from e
        return _sorted_events([BehaviorEvent.model_validate_json(raw) for raw in raw_events])

    def get_session(self, session_id):
        raw = self._read(self._key("session", session_id), "session")
        return SessionRecord.model_validate_json(raw) if raw else None

    def get_page_events(self, session_id, page_url):
        return [e for e in self._read_events(session_id) if e.page_url == page_url]

    def get_user_history(self, user_id):
        raw = self._read(self._key("history", user_id), "history")
        return UserHistory.model_validate_json(raw) if raw else None

    def _range(self, key: str, low, high) -> List[str]:
        try:
            return self.redis_client.zrangebyscore(key, low, high)
        except RedisError as e:
            raise DataUnavailableError(f"Redis error listing sessions: {e}", source="sessions", key=key) from e

    def list_sessions(self, start, end):
        return self._load_sessions(self._range(self._index_key, start.timestamp(), end.timestamp()))

    def list_ended_sessions(self, after, until):
        # "(" makes the lower bound exclusive
        return self._load_sessions(self._range(self._ended_key, f"({after.timestamp()}", until.timestamp()))

    def _load_sessions(self, session_ids: List[str]) -> List[SessionRecord]:
        sessions = []
        for session_id in session_ids:
            session = self.get_session(session_id)
            if session is None:
                logger.warning("Session %s is indexed but has no record", session_id)
                continue
            sessions.append(session.model_copy(update={"events": self._read_events(session_id)}))
        return sessions


def create_store(config: StoreConfig) -> TelemetryStore:
    """Build the telemetry store selected by config.backend."""
    backend = config.backend.lower()
    if backend == "memory":
        return InMemoryTelemetryStore()
    if backend == "redis":
        return RedisTelemetryStore(config)
    raise ValueError(f"Unsupported telemetry backend: {config.backend}")
