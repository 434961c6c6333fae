from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from tools import REST_TIMER_PRESETS


class SettingsSchema(BaseModel):
    weight_unit: Literal["kg", "lb"] = "kg"
    rest_timer_default: int = 90
    weight_increment: float = Field(2.5, gt=0)
    day_streak_gap: int = Field(2, ge=1)
    language: str = "en"
    timezone: str = "UTC"
    backend_api_key: Optional[str | bool] = None

    @field_validator("rest_timer_default")
    @classmethod
    def check_preset(cls, v: int) -> int:
        if v not in REST_TIMER_PRESETS:
            raise ValueError(f"rest_timer_default must be one of {REST_TIMER_PRESETS}")
        return v


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
