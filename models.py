from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from tools import to_number


class SetType(str, Enum):
    NORMAL = "normal"
    WARMUP = "warmup"
    DROPSET = "dropset"
    RESTPAUSE = "restpause"


class LoggedSet(BaseModel):
    """A validated set log.

    Built once where rows enter the application (database rows, request
    bodies, in-session edits). Numeric fields are coerced permissively:
    anything that is not a finite non-negative number becomes ``0``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[int] = None
    session_id: Optional[int] = None
    exercise_id: Optional[int] = None
    reps: int = 0
    weight_kg: float = 0.0
    set_number: int = 1
    notes: Optional[str] = None
    set_type: SetType = SetType.NORMAL
    is_warmup: bool = False

    @field_validator("reps", mode="before")
    @classmethod
    def coerce_reps(cls, v: Any) -> int:
        return max(int(to_number(v)), 0)

    @field_validator("weight_kg", mode="before")
    @classmethod
    def coerce_weight(cls, v: Any) -> float:
        return max(to_number(v), 0.0)

    @field_validator("set_number", mode="before")
    @classmethod
    def coerce_set_number(cls, v: Any) -> int:
        return max(int(to_number(v)), 1)

    @field_validator("set_type", mode="before")
    @classmethod
    def coerce_set_type(cls, v: Any) -> SetType:
        try:
            return SetType(v)
        except ValueError:
            return SetType.NORMAL

    @field_validator("is_warmup", mode="before")
    @classmethod
    def coerce_warmup(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.lower() in {"1", "true"}
        return bool(v)

    @field_validator("notes", mode="before")
    @classmethod
    def blank_notes(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LoggedSet":
        return cls.model_validate(dict(row))

    @property
    def is_empty(self) -> bool:
        """A set with neither reps nor weight is never persisted."""
        return self.reps == 0 and self.weight_kg == 0

    @property
    def warmup(self) -> bool:
        return self.is_warmup or self.set_type is SetType.WARMUP

    @property
    def volume(self) -> float:
        return self.reps * self.weight_kg
