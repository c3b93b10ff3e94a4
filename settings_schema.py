from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic.alias_generators import to_camel


class AppSettingsSchema(BaseModel):
    sync_enabled: bool = False
    sync_base_url: str = "http://localhost:8000"
    sync_api_key: Optional[str] = None
    rate_limit: Optional[int] = None
    sync_interval_seconds: float = 300.0
    min_sync_gap_seconds: float = 60.0
    sign_in_delay_seconds: float = 2.0
    log_level: str = "INFO"


class UserSettingsSchema(BaseModel):
    """Defaults for the per-user settings record that travels with sync."""

    weight_unit: Literal["kg", "lbs"] = "kg"
    default_rest_seconds: int = Field(default=90, ge=0)
    sound_enabled: bool = True
    auto_progress_weight: bool = True
    progression_increment: float = Field(default=2.5, gt=0)
    auto_start_rest_timer: bool = True


def validate_settings(data: dict) -> AppSettingsSchema:
    try:
        return AppSettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))


def load_user_settings(record: dict | None) -> UserSettingsSchema:
    """Merge a stored settings record (camelCase keys) over the defaults."""
    if not record:
        return UserSettingsSchema()
    values = {}
    for name in UserSettingsSchema.model_fields:
        camel = to_camel(name)
        if record.get(camel) is not None:
            values[name] = record[camel]
        elif record.get(name) is not None:
            values[name] = record[name]
    return UserSettingsSchema(**values)
