from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from nutrilog.analytics.events import DEFAULT_LABEL_KEYS
from nutrilog.analytics.tracker import DURATION_BUCKETS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="Nutrilog", alias="APP_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")
    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")

    # Property keys that may become labels on analytics_events_total; everything else is log-only.
    analytics_label_keys: list[str] = Field(default_factory=lambda: list(DEFAULT_LABEL_KEYS), alias="ANALYTICS_LABEL_KEYS")
    # Seconds; session, onboarding and time-to-first-value histograms.
    duration_buckets: list[float] = Field(default_factory=lambda: list(DURATION_BUCKETS), alias="DURATION_BUCKETS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
