"""Synthetic log and metric generation backing scenario runs."""

from .metrics import GenerationMetrics
from .service import LogGenerator
from .state import GenerationResult, LogEntry

__all__ = [
    "GenerationMetrics",
    "GenerationResult",
    "LogEntry",
    "LogGenerator",
]
