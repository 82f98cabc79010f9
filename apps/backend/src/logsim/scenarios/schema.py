"""Pydantic models for scenario types and running instances."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ScenarioType(BaseModel):
    """A catalog entry describing one kind of log generation."""

    type: str
    name: str
    description: str
    default_log_count: int
    labels: dict[str, str] = {}
    parameters: dict[str, Any] = {}

    def default_config(self) -> dict[str, Any]:
        return {"log_count": self.default_log_count, "labels": dict(self.labels), **self.parameters}


class ScenarioInstance(BaseModel):
    """A run of a scenario type, live while ``active`` is true."""

    id: str
    type: str
    name: str
    config: dict[str, Any] = {}
    active: bool = True
    started: datetime
    finished: Optional[datetime] = None
    outcome: Optional[Literal["completed", "stopped", "failed"]] = None
    generated: int = 0
    error: Optional[str] = None


class ScenarioListing(BaseModel):
    """Snapshot returned by ``ScenarioRunner.list``."""

    available: list[ScenarioType] = Field(default_factory=list)
    active: list[ScenarioInstance] = Field(default_factory=list)
