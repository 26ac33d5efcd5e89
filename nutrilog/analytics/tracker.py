"""Product analytics instrumentation.

``Tracker`` turns application-level occurrences (page views, feature use, errors,
daily-active users, onboarding and session timing) into registry writes plus a
structured log line. Every public call is best-effort: failures are logged and
swallowed so tracking can never break the caller's request.
"""

from __future__ import annotations

import functools
import traceback
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

import structlog

from nutrilog.analytics.events import (
    DEFAULT_LABEL_KEYS,
    MAX_PROPERTIES,
    AnalyticsEvent,
    EventType,
    PropertyValue,
    promote_labels,
)
from nutrilog.observability.registry import MetricRegistry


F = TypeVar("F", bound=Callable[..., Any])

DURATION_BUCKETS: tuple[float, ...] = (1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0)

_log = structlog.get_logger("analytics")


class AnalyticsStorage(Protocol):
    """Small key/value store for per-client dedup markers."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryStorage:
    """Process-local storage. Read-modify-write on it is not atomic across trackers.

    Oldest keys are evicted once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int = 100_000) -> None:
        self._data: dict[str, str] = {}
        self._max_entries = max_entries

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if key not in self._data and len(self._data) >= self._max_entries:
            self._data.pop(next(iter(self._data)))
        self._data[key] = value


@dataclass
class AnalyticsSession:
    session_id: str
    started_at: datetime
    user_id: str | None = None
    ended_at: datetime | None = None
    # A throwaway id minted for a request that carried none; never counted as a session.
    ephemeral: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_session_id(now: datetime) -> str:
    return f"session_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


def best_effort(fn: F) -> F:
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception:
            # Tracking must never surface to business logic.
            _log.exception("tracking_failed", call=fn.__name__)
            return None

    return wrapper  # type: ignore[return-value]


class Tracker:
    def __init__(
        self,
        registry: MetricRegistry,
        storage: AnalyticsStorage | None = None,
        *,
        label_keys: Iterable[str] = DEFAULT_LABEL_KEYS,
        duration_buckets: Iterable[float] = DURATION_BUCKETS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._registry = registry
        self._storage: AnalyticsStorage = storage if storage is not None else InMemoryStorage()
        self._label_keys = tuple(label_keys)
        self._buckets = tuple(duration_buckets)
        self._clock = clock
        self._session: AnalyticsSession | None = None
        self._ttfv_started_at: datetime | None = None
        self._onboarding_started_at: datetime | None = None

    @property
    def session(self) -> AnalyticsSession | None:
        return self._session

    # -- session -----------------------------------------------------------------

    def _ensure_session(
        self,
        user_id: str | None = None,
        session_id: str | None = None,
        ephemeral: bool = False,
    ) -> AnalyticsSession:
        if self._session is None:
            now = self._clock()
            self._session = AnalyticsSession(
                session_id=session_id or _new_session_id(now),
                started_at=now,
                user_id=user_id,
                ephemeral=ephemeral,
            )
            if ephemeral:
                return self._session
            # Trackers sharing storage (one per ingestion request) count a session once.
            marker = f"session:{self._session.session_id}"
            if self._storage.get(marker) is None:
                self._storage.set(marker, now.isoformat())
                self._registry.counter("sessions_total", "Total number of sessions")
                _log.info("session_started", session_id=self._session.session_id, user_id=user_id)
        elif user_id is not None:
            self._session.user_id = user_id
        return self._session

    @best_effort
    def init_session(
        self,
        user_id: str | None = None,
        session_id: str | None = None,
        *,
        ephemeral: bool = False,
    ) -> None:
        """Start the session on first call; later calls only (re)bind the user.

        ``ephemeral`` marks a one-off context (an ingested event without a session
        id): it is not counted in ``sessions_total`` and cannot carry anonymous DAU.
        """

        self._ensure_session(user_id=user_id, session_id=session_id, ephemeral=ephemeral)

    @best_effort
    def bind_user(self, user_id: str) -> None:
        session = self._ensure_session()
        session.user_id = user_id
        _log.info("session_user_bound", session_id=session.session_id, user_id=user_id)

    @best_effort
    def track_session_end(self) -> None:
        session = self._session
        if session is None or session.ended_at is not None:
            return

        session.ended_at = self._clock()
        duration = (session.ended_at - session.started_at).total_seconds()
        self._registry.histogram(
            "session_duration_seconds",
            "Session duration in seconds",
            max(duration, 0.0),
            buckets=self._buckets,
        )
        # Reported under page_view, the same type the client uses for app_loaded.
        self._emit("page_view", "session_end", {"duration_seconds": round(duration)})

    # -- events ------------------------------------------------------------------

    def _emit(self, type: EventType, name: str, properties: Mapping[str, Any] | None) -> None:
        session = self._ensure_session()
        props: dict[str, PropertyValue] = {}
        for key, value in (properties or {}).items():
            if len(props) >= MAX_PROPERTIES:
                break
            if isinstance(value, (str, int, float, bool)) or value is None:
                props[str(key)] = value

        event = AnalyticsEvent(
            type=type,
            name=name,
            properties=props,
            user_id=session.user_id,
            session_id=session.session_id,
            timestamp=self._clock(),
        )
        _log.info(
            "analytics_event",
            event_type=event.type,
            event_name=event.name,
            user_id=event.user_id,
            session_id=event.session_id,
            properties=event.properties,
        )

    @best_effort
    def track_page_view(self, page_name: str, properties: Mapping[str, Any] | None = None) -> None:
        self._ensure_session()
        self._registry.counter("page_view_total", "Total number of page views", {"page": page_name})
        self._emit("page_view", page_name, properties)

    @best_effort
    def track_feature_use(self, feature_name: str, properties: Mapping[str, Any] | None = None) -> None:
        self._ensure_session()
        self._registry.counter("feature_usage_total", "Total number of feature uses", {"feature": feature_name})
        self._emit("feature_used", feature_name, properties)

    @best_effort
    def track_error(
        self,
        error_name: str,
        error: BaseException | str,
        properties: Mapping[str, Any] | None = None,
    ) -> None:
        self._ensure_session()
        self._registry.counter("error_total", "Total number of tracked errors", {"error": error_name})

        # Messages and stacks are unbounded; they go to the log only.
        session = self._session
        _log.warning(
            "tracked_error",
            error_name=error_name,
            error_type=type(error).__name__ if isinstance(error, BaseException) else "str",
            error_message=str(error),
            user_id=session.user_id if session else None,
            session_id=session.session_id if session else None,
            properties=dict(properties or {}),
            error_stack="".join(traceback.format_exception(error)) if isinstance(error, BaseException) else None,
        )

    @best_effort
    def track_event(self, name: str, properties: Mapping[str, Any] | None = None) -> None:
        self._ensure_session()
        labels = promote_labels(properties, self._label_keys)
        labels["event"] = name
        self._registry.counter("analytics_events_total", "Total number of analytics events", labels)

        dropped = sorted(set(properties or {}) - set(labels))
        if dropped:
            _log.debug("event_properties_not_labeled", event_name=name, keys=dropped)
        self._emit("feature_used", name, properties)

    @best_effort
    def track_dau(self) -> None:
        """Count this user once per UTC calendar day."""

        session = self._ensure_session()
        now = self._clock()
        day = now.astimezone(timezone.utc).date().isoformat()
        if session.user_id:
            identity = session.user_id
        elif session.ephemeral:
            _log.debug("dau_skipped_without_identity", session_id=session.session_id)
            return
        else:
            identity = f"anonymous:{session.session_id}"
        key = f"dau:{identity}:{day}"

        # Not atomic: two trackers sharing storage can both miss the key.
        if self._storage.get(key) is not None:
            return
        self._storage.set(key, now.isoformat())

        self._registry.counter("dau_total", "Total number of daily active users")
        self._registry.gauge_inc("users_dau_gauge", "Daily active users gauge", {"date": day})
        self._emit("feature_used", "daily_active_user", {"date": day})

    # -- funnels -----------------------------------------------------------------

    @best_effort
    def track_onboarding_start(self) -> None:
        self._ensure_session()
        self._onboarding_started_at = self._clock()
        self._registry.counter("onboarding_started_total", "Total number of onboarding starts")
        self._emit("onboarding_start", "onboarding_started", None)

    @best_effort
    def track_onboarding_complete(self, step: int, total_steps: int) -> None:
        started = self._onboarding_started_at
        if started is None:
            return

        duration = (self._clock() - started).total_seconds()
        self._onboarding_started_at = None
        self._registry.counter("onboarding_completed_total", "Total number of completed onboardings")
        self._registry.histogram(
            "onboarding_duration_seconds",
            "Onboarding duration in seconds",
            max(duration, 0.0),
            buckets=self._buckets,
        )
        completion_rate = (step / total_steps) * 100 if total_steps else 0.0
        self._emit(
            "onboarding_complete",
            "onboarding_completed",
            {
                "step": step,
                "total_steps": total_steps,
                "duration_seconds": round(duration),
                "completion_rate": completion_rate,
            },
        )

    @best_effort
    def track_ttfv_start(self) -> None:
        if self._ttfv_started_at is None:
            self._ttfv_started_at = self._clock()

    @best_effort
    def track_ttfv_complete(self, action: str) -> None:
        started = self._ttfv_started_at
        if started is None:
            return

        ttfv = (self._clock() - started).total_seconds()
        self._ttfv_started_at = None
        self._registry.histogram(
            "ttfv_seconds",
            "Time to First Value in seconds",
            max(ttfv, 0.0),
            {"action": action},
            buckets=self._buckets,
        )
        self._emit("feature_used", "first_value", {"action": action, "ttfv_seconds": round(ttfv)})
