"""Pydantic models for cron schedules and their fire history."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel


class ScheduleBase(BaseModel):
    """Fields shared by scenario and chain schedules.

    ``next_run`` is ``None`` exactly when ``enabled`` is false.
    """

    id: str
    name: str
    cron_expr: str
    enabled: bool = True
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime


class Schedule(ScheduleBase):
    """Cron-triggered start of a scenario."""

    scenario_type: str
    config: dict[str, Any] = {}


class ChainSchedule(ScheduleBase):
    """Cron-triggered start of a chain."""

    chain_id: str


class ScheduleExecution(BaseModel):
    """One fire of a schedule as dispatched by the scheduler."""

    id: str
    schedule_id: str
    kind: Literal["scenario", "chain"]
    target: str  # scenario type or chain id
    status: Literal["dispatched", "failed"]
    fired_at: datetime
    reference_id: Optional[str] = None  # scenario instance or chain execution id
    error: Optional[str] = None
