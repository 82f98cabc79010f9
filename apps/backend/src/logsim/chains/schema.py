"""Pydantic models defining scenario chains and their executions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ExecutionStatus = Literal["pending", "running", "completed", "failed", "stopped"]
StepStatus = Literal["pending", "running", "completed", "failed", "skipped"]

TERMINAL_STATUSES = frozenset({"completed", "failed", "stopped"})

# Allowed ChainExecution status transitions
TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "failed", "stopped"}),
    "running": frozenset({"completed", "failed", "stopped"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "stopped": frozenset(),
}

DURATION_KEYS = (
    ("duration_seconds", 1),
    ("duration_minutes", 60),
    ("duration_hours", 3600),
)


def duration_from_config(config: dict[str, Any]) -> Optional[float]:
    """Return the duration bound in seconds carried by a step config, if any."""
    for key, factor in DURATION_KEYS:
        value = config.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return float(value) * factor
    return None


class ChainStep(BaseModel):
    """A single scenario run inside a chain."""

    name: str = ""
    scenario_type: str
    delay_before: float = Field(0, ge=0, description="Seconds to wait before starting")
    config: dict[str, Any] = {}


class Chain(BaseModel):
    """An ordered sequence of scenario steps."""

    id: str
    name: str
    description: str = ""
    config: dict[str, Any] = {}  # defaults merged under every step's config
    steps: list[ChainStep]
    predefined: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    def step_config(self, index: int) -> dict[str, Any]:
        return {**self.config, **self.steps[index].config}


class ChainExecutionStep(BaseModel):
    """Progress of one step within an execution."""

    step_index: int
    scenario_type: str
    status: StepStatus = "pending"
    instance_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class ChainExecution(BaseModel):
    """A single run of a chain."""

    id: str
    chain_id: str
    status: ExecutionStatus = "pending"
    current_step_index: int = 0
    started: datetime
    finished: Optional[datetime] = None
    error: Optional[str] = None
    failed_step_index: Optional[int] = None
    steps: list[ChainExecutionStep] = []

    @property
    def in_flight(self) -> bool:
        return self.status not in TERMINAL_STATUSES

    def transition(self, status: ExecutionStatus, at: datetime) -> None:
        """Move to ``status``, refusing anything the state machine forbids."""
        if status not in TRANSITIONS[self.status]:
            raise RuntimeError(f"Illegal chain execution transition {self.status} -> {status}")
        self.status = status
        if status in TERMINAL_STATUSES:
            self.finished = at
