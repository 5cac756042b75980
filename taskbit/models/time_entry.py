from taskbit.core.clock import UtcDateTime
from typing import Optional
from pydantic import BaseModel, Field, model_validator
from taskbit.models.update import PartialUpdate


class TimeEntry(BaseModel):
    id: str
    uid: str
    project_id: str
    project_name: Optional[str] = None
    task_id: Optional[str] = None
    task_name: Optional[str] = None
    start_time: UtcDateTime
    end_time: UtcDateTime
    duration_seconds: int
    notes: Optional[str] = None
    created_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None


class TimeEntryCreate(BaseModel):
    project_id: str
    task_id: Optional[str] = None
    start_time: UtcDateTime
    end_time: UtcDateTime
    duration_seconds: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class TimeEntryUpdate(PartialUpdate):
    non_nullable = frozenset({"start_time", "end_time", "duration_seconds"})

    task_id: Optional[str] = None
    start_time: Optional[UtcDateTime] = None
    end_time: Optional[UtcDateTime] = None
    duration_seconds: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None
