from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


EventType = Literal[
    "page_view",
    "button_click",
    "form_submit",
    "onboarding_start",
    "onboarding_complete",
    "meal_added",
    "meal_saved",
    "weight_logged",
    "report_viewed",
    "achievement_unlocked",
    "error_occurred",
    "feature_used",
]

PropertyValue = Union[str, int, float, bool, None]

MAX_PROPERTIES = 32
MAX_LABEL_VALUE_LENGTH = 128

# Property keys allowed to become metric labels.
DEFAULT_LABEL_KEYS: tuple[str, ...] = ("feature", "role", "source", "status", "variant")


class AnalyticsEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: EventType
    name: str = Field(min_length=1, max_length=200)
    properties: dict[str, PropertyValue] = Field(default_factory=dict)
    user_id: str | None = Field(default=None, alias="userId")
    session_id: str | None = Field(default=None, alias="sessionId")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("properties")
    @classmethod
    def _bounded(cls, value: dict[str, PropertyValue]) -> dict[str, PropertyValue]:
        if len(value) > MAX_PROPERTIES:
            raise ValueError(f"At most {MAX_PROPERTIES} properties are allowed")
        return value


def _label_value(value: PropertyValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)[:MAX_LABEL_VALUE_LENGTH]


def promote_labels(properties: Mapping[str, object] | None, allowed_keys: Iterable[str]) -> dict[str, str]:
    """Pick the whitelisted scalar properties and stringify them for use as labels."""

    if not properties:
        return {}

    labels: dict[str, str] = {}
    for key in allowed_keys:
        value = properties.get(key)
        if value is None or not isinstance(value, (str, int, float, bool)):
            continue
        labels[key] = _label_value(value)
    return labels
