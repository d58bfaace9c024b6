from pydantic import BaseModel, ConfigDict, field_validator
from datetime import datetime
from typing import Optional

from feedforge.models.feed_schedule import ALLOWED_INTERVAL_HOURS


class ScheduleUpdate(BaseModel):
    enabled: bool = True
    interval_hours: int
    # Defaults to now + interval_hours when the schedule is created or its interval changes
    next_run_at: Optional[datetime] = None

    @field_validator("interval_hours")
    @classmethod
    def _allowed_interval(cls, value: int) -> int:
        if value not in ALLOWED_INTERVAL_HOURS:
            allowed = ", ".join(str(h) for h in ALLOWED_INTERVAL_HOURS)
            raise ValueError(f"interval_hours must be one of {allowed}")
        return value


class ScheduleResponse(BaseModel):
    feed_id: str
    enabled: bool
    interval_hours: int
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    consecutive_failures: int
    last_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RunScheduledResponse(BaseModel):
    dispatched: int
