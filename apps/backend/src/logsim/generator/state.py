"""Log entry and generation result models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LogEntry(BaseModel):
    """A single synthetic application log line."""

    timestamp: datetime = Field(default_factory=datetime.now)
    level: str
    service: str
    message: str
    trace_id: str
    method: str
    path: str
    status: int
    duration: int  # milliseconds
    scenario: Optional[str] = None

    def as_text(self) -> str:
        stamp = self.timestamp.isoformat(timespec="milliseconds")
        return f"{stamp} [{self.level}] {self.service}: {self.method} {self.path} {self.status} {self.duration}ms"


class GenerationResult(BaseModel):
    """Outcome of one ``LogGenerator.run`` call."""

    scenario: str
    generated: int
    sample_log: Optional[LogEntry] = None
