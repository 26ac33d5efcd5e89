from __future__ import annotations

from fastapi import APIRouter, Depends

from nutrilog.analytics.error_metrics import ErrorPathMetrics
from nutrilog.analytics.events import AnalyticsEvent
from nutrilog.analytics.tracker import AnalyticsStorage, Tracker
from nutrilog.api.deps import get_analytics_storage, get_registry
from nutrilog.config import get_settings
from nutrilog.models.schemas import TrackResponse
from nutrilog.observability.registry import MetricRegistry


router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def build_tracker(registry: MetricRegistry, storage: AnalyticsStorage) -> Tracker:
    settings = get_settings()
    return Tracker(
        registry,
        storage,
        label_keys=settings.analytics_label_keys,
        duration_buckets=settings.duration_buckets,
    )


def dispatch_event(tracker: Tracker, error_paths: ErrorPathMetrics, event: AnalyticsEvent) -> None:
    """Route a client-side event to the matching tracker call."""

    if event.type == "page_view":
        tracker.track_page_view(event.name, event.properties)
    elif event.type == "feature_used" and event.name == "daily_active_user":
        tracker.track_dau()
    elif event.type == "feature_used":
        tracker.track_feature_use(event.name, event.properties)
    elif event.type == "error_occurred":
        if error_paths.track_from_properties(event.name, event.properties):
            return
        message = event.properties.get("error")
        tracker.track_error(event.name, str(message) if message is not None else event.name, event.properties)
    else:
        tracker.track_event(event.name, event.properties)


@router.post("/track", response_model=TrackResponse)
def track(
    event: AnalyticsEvent,
    registry: MetricRegistry = Depends(get_registry),
    storage: AnalyticsStorage = Depends(get_analytics_storage),
) -> TrackResponse:
    tracker = build_tracker(registry, storage)
    # Without a client session id every request would look like a new session.
    tracker.init_session(user_id=event.user_id, session_id=event.session_id, ephemeral=event.session_id is None)
    dispatch_event(tracker, ErrorPathMetrics(registry), event)
    return TrackResponse()
