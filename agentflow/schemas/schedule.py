from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from agentflow.engine import cron

class ScheduleBase(BaseModel):
    cron_expression: str = Field(..., description="5-field cron expression")
    timezone: str = "UTC"
    enabled: bool = True

class ScheduleCreate(ScheduleBase):
    workflow_id: str

    @field_validator("cron_expression")
    @classmethod
    def validate_cron_expression(cls, v: str) -> str:
        if not cron.validate(v):
            raise ValueError(f"Invalid cron expression: {v}")
        return v

class ScheduleUpdate(BaseModel):
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    enabled: Optional[bool] = None

class Schedule(ScheduleBase):
    id: str
    workflow_id: str
    last_run: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class UpcomingRuns(BaseModel):
    schedule_id: str
    runs: list[datetime]
