"""API models for logsim."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .chains.schema import ChainStep


class GenerateRequest(BaseModel):
    """One-shot burst of log entries."""

    log_count: int = Field(..., ge=1, le=10_000, description="Number of entries to generate")
    scenario: Optional[str] = Field(None, description="Scenario label attached to the entries")


class ScenarioRequest(BaseModel):
    """Start or stop a scenario by type."""

    type: str = Field(..., description="Scenario type, e.g. load_test")
    config: Optional[dict[str, Any]] = Field(
        None,
        description="Overrides merged over the type defaults (log_count, duration_*, interval_*, ...)",
    )
    instance_id: Optional[str] = Field(None, description="Only stop this instance")


class ScheduleCreate(BaseModel):
    name: str
    scenario_type: str
    cron_expr: str = Field(..., description="Five-field cron expression")
    config: dict[str, Any] = {}
    enabled: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ScheduleUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""

    name: Optional[str] = None
    cron_expr: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    enabled: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ChainCreate(BaseModel):
    name: str
    description: str = ""
    config: dict[str, Any] = Field(default_factory=dict, description="Defaults for every step")
    steps: list[ChainStep]


class ChainScheduleCreate(BaseModel):
    name: str
    chain_id: str
    cron_expr: str = Field(..., description="Five-field cron expression")
    enabled: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ChainScheduleUpdate(BaseModel):
    name: Optional[str] = None
    cron_expr: Optional[str] = None
    enabled: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str = "logsim"
    version: str
    scheduler_running: bool
    active_scenarios: int
    active_chains: int
